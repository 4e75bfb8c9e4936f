from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from adapters.external.database.chain_config_repository_mongodb import ChainConfigRepositoryMongoDB
from adapters.external.database.dapp_repository_mongodb import DAppInstanceRepositoryMongoDB, DAppRepositoryMongoDB
from core.domain.entities.base_entity import MongoEntity
from core.domain.entities.dapp_entity import ComplianceHooks, DAppAccountEntity
from core.domain.entities.dapp_instance_entity import (
    DAppPaymasterInstanceEntity,
    InstanceAnalytics,
    InstancePolicy,
)
from core.domain.enums.paymaster_enums import DAppStatus
from core.domain.repositories.chain_config_repository_interface import ChainConfigRepositoryInterface
from core.domain.repositories.dapp_repository_interface import DAppInstanceRepositoryInterface, DAppRepositoryInterface
from core.services.cas import retry_on_conflict
from core.services.exceptions import (
    ChainNotFoundError,
    DAppBlockedError,
    DAppNotFoundError,
    InstanceNotFoundError,
    InvalidAmountError,
)
from core.services.ledger_writer import LedgerWriter, get_ledger_writer
from core.services.normalize import _norm

logger = logging.getLogger(__name__)


@dataclass
class DAppPolicyUseCase:
    """
    DApp accounts, their per-chain paymaster instances and the sponsorship
    gatekeeper (`validate_request`).
    """

    dapps: DAppRepositoryInterface
    instances: DAppInstanceRepositoryInterface
    chains: Optional[ChainConfigRepositoryInterface] = None
    ledger_writer: Optional[LedgerWriter] = None

    @classmethod
    def from_settings(cls) -> "DAppPolicyUseCase":
        dapps = DAppRepositoryMongoDB()
        instances = DAppInstanceRepositoryMongoDB()

        for repo in (dapps, instances):
            try:
                repo.ensure_indexes()
            except Exception:
                logger.exception("[DAppPolicy] Could not ensure indexes on %s", repo.COLLECTION_NAME)

        return cls(
            dapps=dapps,
            instances=instances,
            chains=ChainConfigRepositoryMongoDB(),
            ledger_writer=get_ledger_writer(),
        )

    # ---------- helpers ----------

    def _require_dapp(self, dapp_id: str) -> DAppAccountEntity:
        dapp = self.dapps.get_dapp(_norm(dapp_id))
        if dapp is None:
            raise DAppNotFoundError(dapp_id)
        return dapp

    def _require_instance(self, instance_id: str) -> DAppPaymasterInstanceEntity:
        inst = self.instances.get_instance(_norm(instance_id))
        if inst is None:
            raise InstanceNotFoundError(instance_id)
        return inst

    # ---------- accounts ----------

    def register_dapp(self, *, owner_id: str, name: str) -> DAppAccountEntity:
        owner_id = _norm(owner_id)
        name = _norm(name)
        if not owner_id:
            raise ValueError("owner_id is required")
        if not name:
            raise ValueError("name is required")

        dapp_id = f"dapp_{MongoEntity.now_ms()}_{secrets.token_hex(3)}"
        entity = DAppAccountEntity(
            dapp_id=dapp_id,
            owner_id=owner_id,
            name=name,
            status=DAppStatus.ACTIVE,
            allowed_chains=[],
            compliance=ComplianceHooks(),
        )
        saved = self.dapps.insert_dapp(entity)
        logger.info("[DAppPolicy] Registered dapp %s (%s) for owner %s", dapp_id, name, owner_id)
        if self.ledger_writer is not None:
            self.ledger_writer.audit(owner_id, "REGISTER_DAPP", dapp_id, {"name": name})
        return saved

    def get_dapp(self, dapp_id: str) -> DAppAccountEntity:
        return self._require_dapp(dapp_id)

    # ---------- instances ----------

    def create_instance(
        self,
        *,
        dapp_id: str,
        chain_id: int,
        webhook_url: Optional[str] = None,
    ) -> DAppPaymasterInstanceEntity:
        """
        Create the dapp's paymaster instance on `chain_id`.

        Raises:
            DAppNotFoundError, DAppBlockedError, ChainNotFoundError,
            InstanceAlreadyExistsError.
        """
        dapp = self._require_dapp(dapp_id)
        reason = dapp.blocked_reason()
        if reason is not None:
            raise DAppBlockedError(dapp.dapp_id, reason)

        chain_id = int(chain_id)
        if self.chains is not None and self.chains.get(chain_id) is None:
            raise ChainNotFoundError(chain_id)

        entity = DAppPaymasterInstanceEntity(
            instance_id=DAppPaymasterInstanceEntity.instance_id_for(dapp.dapp_id, chain_id),
            dapp_id=dapp.dapp_id,
            chain_id=chain_id,
            api_key=f"vk_{secrets.token_urlsafe(24)}",
            webhook_url=_norm(webhook_url) or None,
            deposited_balance=0,
            policy=InstancePolicy(),
            analytics=InstanceAnalytics(day_started_at=MongoEntity.now_ms()),
        )
        saved = self.instances.insert_instance(entity)

        def _allow_chain() -> DAppAccountEntity:
            current = self._require_dapp(dapp.dapp_id)
            if chain_id in current.allowed_chains:
                return current
            return self.dapps.update_dapp(
                current.dapp_id,
                {"allowed_chains": [*current.allowed_chains, chain_id]},
                expected_version=current.version,
            )

        retry_on_conflict(_allow_chain)
        logger.info("[DAppPolicy] Created instance %s", saved.instance_id)
        return saved

    def get_instance(self, instance_id: str) -> DAppPaymasterInstanceEntity:
        return self._require_instance(instance_id)

    def list_instances(self, *, owner_id: str) -> List[DAppPaymasterInstanceEntity]:
        dapp_ids = [d.dapp_id for d in self.dapps.list_by_owner(_norm(owner_id))]
        if not dapp_ids:
            return []
        return list(self.instances.list_by_dapps(dapp_ids))

    def deposit(self, *, instance_id: str, amount: int) -> DAppPaymasterInstanceEntity:
        if amount is None or int(amount) < 0:
            raise InvalidAmountError("deposit amount must be >= 0")
        amount = int(amount)

        def _apply() -> DAppPaymasterInstanceEntity:
            inst = self._require_instance(instance_id)
            return self.instances.update_instance(
                inst.instance_id,
                {"deposited_balance": int(inst.deposited_balance) + amount},
                expected_version=inst.version,
            )

        updated = retry_on_conflict(_apply)
        logger.info("[DAppPolicy] Deposit %s wei into %s (balance=%s)", amount, instance_id, updated.deposited_balance)
        return updated

    def update_policy(self, *, instance_id: str, updates: Dict[str, Any]) -> DAppPaymasterInstanceEntity:
        unknown = sorted(set(updates) - set(InstancePolicy.model_fields))
        if unknown:
            raise ValueError(f"Unknown policy field(s): {', '.join(unknown)}")

        def _apply() -> DAppPaymasterInstanceEntity:
            inst = self._require_instance(instance_id)
            merged = {**inst.policy.model_dump(), **updates}
            try:
                policy = InstancePolicy.model_validate(merged)
            except ValidationError as exc:
                raise ValueError(f"Invalid policy: {exc}") from exc
            return self.instances.update_instance(
                inst.instance_id,
                {"policy": policy},
                expected_version=inst.version,
            )

        return retry_on_conflict(_apply)

    # ---------- gatekeeper ----------

    def validate_request(
        self,
        *,
        instance_id: str,
        estimated_cost: int,
        user_address: Optional[str] = None,
    ) -> bool:
        """
        True when the owning dapp may be sponsored and `estimated_cost` more
        wei keeps today's usage within the instance's daily gas cap.

        Unknown instances or dapps are refused. `user_address` is only logged:
        the per-user cap is not enforced here.
        """
        inst = self.instances.get_instance(_norm(instance_id))
        if inst is None:
            return False

        dapp = self.dapps.get_dapp(inst.dapp_id)
        if dapp is None:
            logger.warning("[DAppPolicy] Instance %s points at missing dapp %s", inst.instance_id, inst.dapp_id)
            return False
        reason = dapp.blocked_reason()
        if reason is not None:
            logger.info("[DAppPolicy] Refused %s for %s: dapp %s", inst.instance_id, user_address, reason)
            return False
        if estimated_cost is None or int(estimated_cost) < 0:
            raise InvalidAmountError("estimated_cost must be >= 0")

        used = inst.analytics.sponsored_today
        cap = int(inst.policy.daily_gas_cap)
        if used + int(estimated_cost) > cap:
            logger.info(
                "[DAppPolicy] Instance %s over daily cap: used=%s cost=%s cap=%s",
                inst.instance_id,
                used,
                estimated_cost,
                cap,
            )
            return False
        return True

    def record_sponsorship(
        self,
        *,
        instance_id: str,
        amount: int,
        new_user: bool = False,
    ) -> DAppPaymasterInstanceEntity:
        if amount is None or int(amount) < 0:
            raise InvalidAmountError("amount must be >= 0")
        amount = int(amount)

        def _apply() -> DAppPaymasterInstanceEntity:
            inst = self._require_instance(instance_id)
            analytics = inst.analytics.model_copy(
                update={
                    "total_sponsored": int(inst.analytics.total_sponsored) + amount,
                    "tx_count": inst.analytics.tx_count + 1,
                    "user_count": inst.analytics.user_count + (1 if new_user else 0),
                }
            )
            return self.instances.update_instance(
                inst.instance_id,
                {"analytics": analytics},
                expected_version=inst.version,
            )

        return retry_on_conflict(_apply)

    def reset_daily_usage(self, instance_ids: Optional[Sequence[str]] = None) -> int:
        """
        Start a new daily window on every instance (or the given ones).
        Returns how many instances were reset.
        """
        if instance_ids is None:
            targets = [i.instance_id for i in self.instances.list_all()]
        else:
            targets = [_norm(i) for i in instance_ids]

        now = MongoEntity.now_ms()
        count = 0
        for instance_id in targets:

            def _apply(instance_id: str = instance_id) -> DAppPaymasterInstanceEntity:
                inst = self._require_instance(instance_id)
                analytics = inst.analytics.model_copy(
                    update={"day_start_total": int(inst.analytics.total_sponsored), "day_started_at": now}
                )
                return self.instances.update_instance(
                    inst.instance_id,
                    {"analytics": analytics},
                    expected_version=inst.version,
                )

            try:
                retry_on_conflict(_apply)
                count += 1
            except Exception:
                logger.exception("[DAppPolicy] Daily reset failed for %s", instance_id)

        logger.info("[DAppPolicy] Daily usage reset on %s instance(s)", count)
        return count
