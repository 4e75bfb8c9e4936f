from __future__ import annotations

import logging
from typing import Optional

from eth_account import Account
from web3 import Web3
from web3.exceptions import TimeExhausted, TransactionNotFound

from config import get_settings
from core.domain.enums.paymaster_enums import FeeModel, GasStrategy
from core.domain.gateways.vault_transfer_gateway_interface import VaultTransferGateway
from core.domain.repositories.chain_config_repository_interface import ChainConfigRepositoryInterface
from core.services.exceptions import ChainNotFoundError, InvalidAmountError, TransactionRevertedError
from core.services.normalize import _norm_lower
from core.services.utils import receipt_to_json
from core.services.web3_cache import get_web3

logger = logging.getLogger(__name__)

NATIVE_TRANSFER_GAS = 21_000


class Web3VaultTransferGateway(VaultTransferGateway):
    """
    Native-token transfer executor for pool top-ups.

    Responsibilities:
    - Build and sign a value transfer from the vault signer to the gas account.
    - Apply gas padding strategy.
    - Broadcast without waiting; `confirm` checks the receipt separately and
      raises on revert so callers never credit a transfer that did not land.
    """

    def __init__(
        self,
        chains: ChainConfigRepositoryInterface,
        *,
        private_key: Optional[str] = None,
        gas_strategy: GasStrategy = GasStrategy.BUFFERED,
    ):
        self.chains = chains
        self.pk = private_key or get_settings().PRIVATE_KEY
        if not self.pk:
            raise RuntimeError("PRIVATE_KEY is not configured; the vault signer is required for top-ups.")
        self.account = Account.from_key(self.pk)
        self.gas_strategy = gas_strategy

    def sender_address(self) -> str:
        return self.account.address

    # ---------- internal helpers ----------

    def _w3_for(self, chain_id: int) -> tuple[Web3, str]:
        chain = self.chains.get(chain_id)
        if chain is None:
            raise ChainNotFoundError(chain_id)
        return get_web3(chain.rpc.primary), str(chain.fee_model)

    def _estimate_with_strategy(self, w3: Web3, tx: dict) -> int:
        """
        Calls estimateGas(tx) and applies a safety buffer depending on strategy.
        Falls back to the plain transfer cost if node estimation fails.
        """
        try:
            base_estimate = int(w3.eth.estimate_gas(tx))
        except Exception:
            base_estimate = NATIVE_TRANSFER_GAS

        if self.gas_strategy == GasStrategy.DEFAULT:
            return base_estimate
        if self.gas_strategy == GasStrategy.BUFFERED:
            return int(base_estimate * 1.25) + 10_000
        if self.gas_strategy == GasStrategy.AGGRESSIVE:
            return int(base_estimate * 1.5) + 25_000
        return base_estimate

    def _finalize_fee_fields(self, w3: Web3, tx: dict, fee_model: str) -> dict:
        if fee_model == FeeModel.EIP1559:
            try:
                base_fee = int(w3.eth.get_block("latest")["baseFeePerGas"])
                tip = int(w3.eth.max_priority_fee)
                tx["maxPriorityFeePerGas"] = tip
                tx["maxFeePerGas"] = base_fee * 2 + tip
                return tx
            except Exception as exc:
                logger.info("EIP-1559 fee fields unavailable, falling back to gasPrice: %s", exc)
        tx["gasPrice"] = int(w3.eth.gas_price)
        return tx

    # ---------- public API ----------

    def transfer(
        self,
        *,
        chain_id: int,
        vault_address: str,
        gas_account_address: str,
        amount: int,
    ) -> str:
        if int(amount) <= 0:
            raise InvalidAmountError("transfer amount must be > 0")
        if _norm_lower(vault_address) != _norm_lower(self.account.address):
            raise ValueError(
                f"Configured signer {self.account.address} does not control vault {vault_address}."
            )

        w3, fee_model = self._w3_for(chain_id)

        tx = {
            "from": self.account.address,
            "to": Web3.to_checksum_address(gas_account_address),
            "value": int(amount),
            "nonce": w3.eth.get_transaction_count(self.account.address, "pending"),
            "chainId": int(chain_id),
        }
        tx["gas"] = self._estimate_with_strategy(w3, tx)
        tx = self._finalize_fee_fields(w3, tx, fee_model)

        signed = w3.eth.account.sign_transaction(tx, self.pk)
        txh = w3.eth.send_raw_transaction(signed.raw_transaction)
        tx_hash = Web3.to_hex(txh)
        logger.info("Top-up transfer broadcast on chain %s: %s (%s wei)", chain_id, tx_hash, amount)
        return tx_hash

    def confirm(self, *, chain_id: int, tx_hash: str, timeout_sec: float = 0) -> bool:
        w3, _ = self._w3_for(chain_id)
        try:
            if timeout_sec and float(timeout_sec) > 0:
                rcpt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=float(timeout_sec))
            else:
                rcpt = w3.eth.get_transaction_receipt(tx_hash)
        except (TimeExhausted, TransactionNotFound):
            logger.info("Top-up transfer %s on chain %s not mined yet", tx_hash, chain_id)
            return False

        if rcpt is None:
            return False
        if int(rcpt.get("status", 0)) == 0:
            raise TransactionRevertedError(
                tx_hash=tx_hash,
                receipt=receipt_to_json(rcpt),
                msg="Top-up transfer reverted (status=0)",
            )
        return True
