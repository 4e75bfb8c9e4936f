from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from adapters.chain.web3_chain_rpc import Web3ChainRpcGateway
from adapters.external.database.chain_config_repository_mongodb import ChainConfigRepositoryMongoDB
from adapters.external.database.paymaster_pool_repository_mongodb import PaymasterPoolRepositoryMongoDB
from core.domain.entities.chain_config_entity import ChainConfigEntity
from core.domain.entities.dapp_instance_entity import ONE_NATIVE
from core.domain.entities.paymaster_pool_entity import PaymasterPoolEntity
from core.domain.enums.paymaster_enums import ChainStatus, PaymasterMode
from core.domain.gateways.chain_rpc_gateway_interface import ChainRpcGateway
from core.domain.repositories.chain_config_repository_interface import ChainConfigRepositoryInterface
from core.domain.repositories.paymaster_pool_repository_interface import PaymasterPoolRepositoryInterface
from core.services.cas import retry_on_conflict
from core.services.exceptions import (
    ChainAlreadyRegisteredError,
    ChainNotFoundError,
    InvalidAmountError,
    InvalidModeError,
    InvalidRpcError,
    PoolNotFoundError,
    TopUpInFlightError,
)
from core.services.ledger_writer import LedgerWriter, get_ledger_writer
from core.services.normalize import ZERO_ADDRESS, _norm, _norm_lower

logger = logging.getLogger(__name__)

DEFAULT_POOL_MIN_BALANCE = ONE_NATIVE
DEFAULT_POOL_TARGET_BALANCE = 5 * ONE_NATIVE

_ADMIN_POOL_MODES = (PaymasterMode.NORMAL, PaymasterMode.PAUSED)


@dataclass
class AdminChainRegistryUseCase:
    """
    Admin-only use case: chain registration (with its paymaster pool), chain
    status, pool configuration and manual pool mode control. Every change is
    audit logged.
    """

    chains: ChainConfigRepositoryInterface
    pools: PaymasterPoolRepositoryInterface
    rpc: ChainRpcGateway
    ledger_writer: Optional[LedgerWriter] = None

    @classmethod
    def from_settings(cls) -> "AdminChainRegistryUseCase":
        chains = ChainConfigRepositoryMongoDB()
        pools = PaymasterPoolRepositoryMongoDB()

        for repo in (chains, pools):
            try:
                repo.ensure_indexes()
            except Exception:
                logger.exception("[AdminChainRegistry] Could not ensure indexes on %s", repo.COLLECTION_NAME)

        return cls(
            chains=chains,
            pools=pools,
            rpc=Web3ChainRpcGateway(chains),
            ledger_writer=get_ledger_writer(),
        )

    def _audit(self, admin_id: str, action: str, target_id: str, changes: dict) -> None:
        if self.ledger_writer is not None:
            self.ledger_writer.audit(admin_id, action, target_id, changes)

    def validate_rpc(self, url: str, chain_id: int) -> bool:
        url = _norm(url)
        if not url:
            return False
        ok = self.rpc.verify_chain_id(url, int(chain_id))
        if not ok:
            logger.warning("[AdminChainRegistry] RPC %s did not answer chain id %s", url, chain_id)
        return ok

    def register_chain(
        self,
        *,
        admin_id: str,
        config: ChainConfigEntity,
        gas_account_address: Optional[str] = None,
        vault_address: Optional[str] = None,
        min_balance: int = DEFAULT_POOL_MIN_BALANCE,
        target_balance: int = DEFAULT_POOL_TARGET_BALANCE,
        validate_rpc: bool = True,
    ) -> dict:
        """
        Register a chain and create its paymaster pool in INIT mode.

        Raises:
            ChainAlreadyRegisteredError: the chain id is taken.
            InvalidRpcError: the primary RPC does not serve this chain.
        """
        chain_id = int(config.chain_id)
        if self.chains.get(chain_id) is not None:
            raise ChainAlreadyRegisteredError(chain_id)

        if validate_rpc and not self.validate_rpc(config.rpc.primary, chain_id):
            raise InvalidRpcError(f"RPC {config.rpc.primary} does not serve chain {chain_id}")

        pool = PaymasterPoolEntity(
            chain_id=chain_id,
            gas_account_address=_norm(gas_account_address) or ZERO_ADDRESS,
            vault_address=_norm(vault_address) or ZERO_ADDRESS,
            balance=0,
            min_balance=int(min_balance),
            target_balance=int(target_balance),
            spend_rate_24h=0,
            mode=PaymasterMode.INIT,
        )

        saved_chain = self.chains.insert(config)
        try:
            saved_pool = self.pools.insert(pool)
        except Exception:
            logger.exception("[AdminChainRegistry] Pool creation failed for chain %s; rolling back", chain_id)
            self.chains.delete(chain_id)
            raise

        logger.info("[AdminChainRegistry] Chain %s (%s) registered with pool %s", chain_id, config.name, pool.pool_id)
        self._audit(admin_id, "REGISTER_CHAIN", str(chain_id), {"config": config.model_dump(mode="json", exclude_none=True)})
        return {"chain": saved_chain, "pool": saved_pool}

    def update_chain_status(self, *, admin_id: str, chain_id: int, status: ChainStatus) -> ChainConfigEntity:
        status = ChainStatus(status)
        if not self.chains.set_status(int(chain_id), status):
            raise ChainNotFoundError(int(chain_id))
        self._audit(admin_id, "UPDATE_CHAIN_STATUS", str(chain_id), {"status": str(status)})
        return self.chains.get(int(chain_id))

    def set_pool_mode(self, *, admin_id: str, chain_id: int, mode: PaymasterMode) -> PaymasterPoolEntity:
        try:
            mode = PaymasterMode(mode)
        except ValueError as exc:
            raise InvalidModeError(f"Unknown mode {mode!r}") from exc
        if mode not in _ADMIN_POOL_MODES:
            raise InvalidModeError(f"Admins may only set NORMAL or PAUSED, not {mode}")

        def _apply() -> PaymasterPoolEntity:
            pool = self.get_pool(chain_id)
            return self.pools.update_pool(int(chain_id), {"mode": mode}, expected_version=pool.version)

        updated = retry_on_conflict(_apply)
        logger.info("[AdminChainRegistry] Pool %s mode set to %s by %s", updated.pool_id, mode, admin_id)
        self._audit(admin_id, "SET_POOL_MODE", updated.pool_id, {"mode": str(mode)})
        return updated

    def configure_pool(
        self,
        *,
        admin_id: str,
        chain_id: int,
        gas_account_address: Optional[str] = None,
        vault_address: Optional[str] = None,
        min_balance: Optional[int] = None,
        target_balance: Optional[int] = None,
    ) -> PaymasterPoolEntity:
        """
        Set a pool's gas account, vault and balance thresholds. Omitted
        fields keep their stored value.

        Pools registered without addresses stay unfunded until this is called:
        the orchestrator skips a pool whose vault or gas account is the zero
        address.

        Raises:
            PoolNotFoundError: no pool for the chain.
            InvalidAmountError: target_balance would end up under min_balance.
            TopUpInFlightError: an address change while a transfer is unconfirmed.
        """
        changes: Dict[str, Any] = {}
        for name, addr in (("gas_account_address", gas_account_address), ("vault_address", vault_address)):
            addr = _norm(addr)
            if not addr:
                continue
            if _norm_lower(addr) == ZERO_ADDRESS:
                raise ValueError(f"{name} cannot be the zero address")
            changes[name] = addr
        if min_balance is not None:
            changes["min_balance"] = int(min_balance)
        if target_balance is not None:
            changes["target_balance"] = int(target_balance)
        if not changes:
            raise ValueError("Nothing to update")

        def _apply() -> PaymasterPoolEntity:
            pool = self.get_pool(chain_id)
            new_min = int(changes.get("min_balance", pool.min_balance))
            new_target = int(changes.get("target_balance", pool.target_balance))
            if new_target < new_min:
                raise InvalidAmountError(f"target_balance {new_target} is under min_balance {new_min}")
            moving = any(k in changes for k in ("gas_account_address", "vault_address"))
            if moving and pool.pending_top_up is not None:
                raise TopUpInFlightError(pool.chain_id, pool.pending_top_up.tx_hash)
            return self.pools.update_pool(int(chain_id), changes, expected_version=pool.version)

        updated = retry_on_conflict(_apply)
        logger.info("[AdminChainRegistry] Pool %s reconfigured by %s: %s", updated.pool_id, admin_id, sorted(changes))
        self._audit(admin_id, "CONFIGURE_POOL", updated.pool_id, {k: str(v) for k, v in changes.items()})
        return updated

    def list_chains(self) -> List[ChainConfigEntity]:
        return list(self.chains.list_all())

    def get_pool(self, chain_id: int) -> PaymasterPoolEntity:
        pool = self.pools.get_pool(int(chain_id))
        if pool is None:
            raise PoolNotFoundError(int(chain_id))
        return pool
