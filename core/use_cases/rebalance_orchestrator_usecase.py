from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.interval import IntervalTrigger

from adapters.chain.vault_transfer import Web3VaultTransferGateway
from adapters.external.database.chain_config_repository_mongodb import ChainConfigRepositoryMongoDB
from adapters.external.database.paymaster_pool_repository_mongodb import PaymasterPoolRepositoryMongoDB
from config import get_settings
from core.domain.entities.base_entity import MongoEntity
from core.domain.entities.ledger_entry_entity import RebalanceLedgerEntry
from core.domain.entities.paymaster_pool_entity import PaymasterPoolEntity, PendingTopUp
from core.domain.enums.paymaster_enums import PaymasterMode, TopUpReason
from core.domain.gateways.vault_transfer_gateway_interface import VaultTransferGateway
from core.domain.repositories.chain_config_repository_interface import ChainConfigRepositoryInterface
from core.domain.repositories.paymaster_pool_repository_interface import PaymasterPoolRepositoryInterface
from core.services.cas import retry_on_conflict
from core.services.exceptions import PoolNotFoundError, TransactionRevertedError
from core.services.ledger_writer import LedgerWriter, get_ledger_writer, new_entry_id
from core.services.normalize import ZERO_ADDRESS, _norm_lower

logger = logging.getLogger(__name__)

# one lock per chain for the whole process, shared by every orchestrator instance
_CHAIN_LOCKS: Dict[int, threading.Lock] = {}
_CHAIN_LOCKS_GUARD = threading.Lock()


def _chain_lock(chain_id: int) -> threading.Lock:
    with _CHAIN_LOCKS_GUARD:
        lock = _CHAIN_LOCKS.get(int(chain_id))
        if lock is None:
            lock = threading.Lock()
            _CHAIN_LOCKS[int(chain_id)] = lock
        return lock


@dataclass(frozen=True)
class TopUpResult:
    chain_id: int
    amount: int
    reason: TopUpReason
    tx_hash: str
    balance_before: int
    balance_after: int
    mode: PaymasterMode

    def to_dict(self) -> dict:
        return {
            "chain_id": self.chain_id,
            "amount": str(self.amount),
            "reason": str(self.reason),
            "tx_hash": self.tx_hash,
            "balance_before": str(self.balance_before),
            "balance_after": str(self.balance_after),
            "mode": str(self.mode),
        }


class RebalanceOrchestrator:
    """
    Moves native funds from each chain's vault into its gas account.

    Two entry points share one code path:
    - run_rebalance_job: periodic sweep over every registered chain, topping up
      pools whose balance fell under TOP_UP_THRESHOLD_PCT of target.
    - trigger_emergency_top_up: on-demand top-up of one chain, regardless of
      the threshold.

    Top-ups for the same chain are serialized by a per-chain lock, and the
    pool is re-read inside the lock so a second caller sees the first one's
    credit and transfers nothing. A broadcast transfer is recorded on the
    pool as `pending_top_up` until its receipt is seen; while one is recorded
    no other transfer is sent for that chain.
    """

    JOB_ID = "paymaster_rebalance"

    def __init__(
        self,
        *,
        chains: ChainConfigRepositoryInterface,
        pools: PaymasterPoolRepositoryInterface,
        vault: VaultTransferGateway,
        ledger_writer: Optional[LedgerWriter] = None,
        threshold_pct: int = 80,
        max_credit_attempts: int = 3,
        receipt_timeout_sec: float = 120,
    ):
        self.chains = chains
        self.pools = pools
        self.vault = vault
        self.ledger_writer = ledger_writer
        self.threshold_pct = int(threshold_pct)
        self.max_credit_attempts = max(1, int(max_credit_attempts))
        self.receipt_timeout_sec = float(receipt_timeout_sec)
        self._job: Optional[Job] = None

    @classmethod
    def from_settings(cls) -> "RebalanceOrchestrator":
        s = get_settings()
        chains = ChainConfigRepositoryMongoDB()
        return cls(
            chains=chains,
            pools=PaymasterPoolRepositoryMongoDB(),
            vault=Web3VaultTransferGateway(chains, private_key=s.PRIVATE_KEY),
            ledger_writer=get_ledger_writer(),
            threshold_pct=s.TOP_UP_THRESHOLD_PCT,
            receipt_timeout_sec=s.TOP_UP_RECEIPT_TIMEOUT_SEC,
        )

    # ---------- scheduling ----------

    def start(self, scheduler: BaseScheduler, interval_sec: int) -> None:
        self._job = scheduler.add_job(
            self.run_rebalance_job,
            trigger=IntervalTrigger(seconds=int(interval_sec)),
            id=self.JOB_ID,
            name="Paymaster batch rebalance",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

    def stop(self) -> None:
        if self._job is None:
            return
        try:
            self._job.remove()
        except JobLookupError:
            pass
        self._job = None

    # ---------- entry points ----------

    def needs_top_up(self, pool: PaymasterPoolEntity) -> bool:
        return int(pool.balance) < int(pool.target_balance) * self.threshold_pct // 100

    def run_rebalance_job(self) -> List[TopUpResult]:
        """
        Sweep every registered chain. A failure on one chain is logged and the
        sweep moves on to the next.
        """
        logger.info("[Rebalance] Starting batch rebalance job")
        try:
            chains = list(self.chains.list_all())
        except Exception:
            logger.exception("[Rebalance] Could not list chains; batch skipped")
            return []

        results: List[TopUpResult] = []
        for chain in chains:
            try:
                pool = self.pools.get_pool(chain.chain_id)
                if pool is None or (pool.pending_top_up is None and not self.needs_top_up(pool)):
                    continue
                res = self._top_up(chain.chain_id, TopUpReason.BATCH_SCHEDULER, require_threshold=True)
                if res is not None:
                    results.append(res)
            except Exception:
                logger.exception("[Rebalance] Batch top-up failed for chain %s", chain.chain_id)

        logger.info("[Rebalance] Batch finished: %s top-up(s)", len(results))
        return results

    def trigger_emergency_top_up(self, chain_id: int) -> Optional[TopUpResult]:
        logger.warning("[Rebalance] Emergency top-up requested for chain %s", chain_id)
        return self._top_up(int(chain_id), TopUpReason.EMERGENCY_TRIGGER, require_threshold=False)

    # ---------- core ----------

    def _top_up(self, chain_id: int, reason: TopUpReason, *, require_threshold: bool) -> Optional[TopUpResult]:
        with _chain_lock(chain_id):
            try:
                pool = self.pools.get_pool(chain_id)
            except Exception:
                logger.exception("[Rebalance] Could not read pool for chain %s", chain_id)
                return None
            if pool is None:
                logger.warning("[Rebalance] No pool for chain %s; nothing to top up", chain_id)
                return None

            if pool.pending_top_up is not None:
                pool, result = self._reconcile(chain_id, pool.pending_top_up)
                if pool is None:
                    return result

            if require_threshold and not self.needs_top_up(pool):
                return None

            if ZERO_ADDRESS in (_norm_lower(pool.vault_address), _norm_lower(pool.gas_account_address)):
                logger.warning("[Rebalance] Chain %s has no vault or gas account configured; skipping", chain_id)
                return None

            balance_before = int(pool.balance)
            amount = int(pool.target_balance) - balance_before
            if amount <= 0:
                logger.info("[Rebalance] Chain %s already at or above target; skipping", chain_id)
                return None

            try:
                tx_hash = self.vault.transfer(
                    chain_id=chain_id,
                    vault_address=pool.vault_address,
                    gas_account_address=pool.gas_account_address,
                    amount=amount,
                )
            except Exception:
                logger.exception("[Rebalance] Vault transfer failed for chain %s (amount=%s)", chain_id, amount)
                return None

            pending = PendingTopUp(
                tx_hash=tx_hash,
                amount=amount,
                reason=reason,
                balance_before=balance_before,
                sent_at=MongoEntity.now_ms(),
            )
            self._mark_pending(chain_id, pending)

            landed = self._confirm(chain_id, tx_hash, self.receipt_timeout_sec)
            if landed is None:
                logger.warning(
                    "[Rebalance] Top-up %s on chain %s not confirmed after %ss; it is reconciled before the next transfer",
                    tx_hash,
                    chain_id,
                    self.receipt_timeout_sec,
                )
                return None

            updated = self._close_pending(chain_id, pending, landed=landed)
            if updated is None or not landed:
                return None
            return self._record(chain_id, pending, updated)

    def _reconcile(
        self, chain_id: int, pending: PendingTopUp
    ) -> Tuple[Optional[PaymasterPoolEntity], Optional[TopUpResult]]:
        """
        Resolve the transfer recorded on the pool before anything new is sent.

        Returns (pool, None) once a reverted transfer is cleared, (None, result)
        once a landed one is credited and (None, None) while it is in flight.
        """
        landed = self._confirm(chain_id, pending.tx_hash, 0)
        if landed is None:
            logger.warning(
                "[Rebalance] Top-up %s for chain %s in flight since %s; not sending another",
                pending.tx_hash,
                chain_id,
                pending.sent_at,
            )
            return None, None

        updated = self._close_pending(chain_id, pending, landed=landed)
        if updated is None:
            return None, None
        if landed:
            logger.info("[Rebalance] Earlier top-up %s for chain %s confirmed", pending.tx_hash, chain_id)
            return None, self._record(chain_id, pending, updated)
        return updated, None

    def _confirm(self, chain_id: int, tx_hash: str, timeout_sec: float) -> Optional[bool]:
        """
        True when the transfer landed, False when it reverted, None while unknown.
        """
        try:
            if self.vault.confirm(chain_id=chain_id, tx_hash=tx_hash, timeout_sec=timeout_sec):
                return True
            return None
        except TransactionRevertedError as exc:
            logger.error("[Rebalance] Top-up %s on chain %s reverted: %s", tx_hash, chain_id, exc.receipt)
            return False
        except Exception:
            logger.exception("[Rebalance] Receipt check for %s on chain %s failed", tx_hash, chain_id)
            return None

    def _mark_pending(self, chain_id: int, pending: PendingTopUp) -> None:
        def _apply() -> PaymasterPoolEntity:
            current = self.pools.get_pool(chain_id)
            if current is None:
                raise PoolNotFoundError(chain_id)
            return self.pools.update_pool(chain_id, {"pending_top_up": pending}, expected_version=current.version)

        try:
            retry_on_conflict(_apply, attempts=self.max_credit_attempts)
        except Exception:
            logger.critical(
                "[Rebalance] Transfer %s of %s wei to chain %s was sent but could not be recorded on the pool",
                pending.tx_hash,
                pending.amount,
                chain_id,
                exc_info=True,
            )

    def _close_pending(self, chain_id: int, pending: PendingTopUp, *, landed: bool) -> Optional[PaymasterPoolEntity]:
        """
        Clear the recorded transfer and, when it landed, add its amount to the
        stored balance in the same write.

        The health monitor may write the same document (mode) meanwhile, so a
        version conflict re-reads and retries.
        """

        def _apply() -> PaymasterPoolEntity:
            current = self.pools.get_pool(chain_id)
            if current is None:
                raise PoolNotFoundError(chain_id)
            fields: Dict[str, object] = {"pending_top_up": None}
            if landed:
                mode = PaymasterMode(current.mode)
                fields.update(
                    balance=int(current.balance) + int(pending.amount),
                    last_top_up_at=MongoEntity.now_ms(),
                    # admin pause wins over a successful top-up
                    mode=mode if mode == PaymasterMode.PAUSED else PaymasterMode.NORMAL,
                )
            return self.pools.update_pool(chain_id, fields, expected_version=current.version)

        try:
            return retry_on_conflict(_apply, attempts=self.max_credit_attempts)
        except Exception:
            if landed:
                logger.critical(
                    "[Rebalance] Transfer %s of %s wei to chain %s landed but the pool balance was not credited",
                    pending.tx_hash,
                    pending.amount,
                    chain_id,
                    exc_info=True,
                )
            else:
                logger.exception("[Rebalance] Could not clear reverted top-up %s for chain %s", pending.tx_hash, chain_id)
            return None

    def _record(self, chain_id: int, pending: PendingTopUp, updated: PaymasterPoolEntity) -> TopUpResult:
        result = TopUpResult(
            chain_id=chain_id,
            amount=int(pending.amount),
            reason=TopUpReason(pending.reason),
            tx_hash=pending.tx_hash,
            balance_before=int(pending.balance_before),
            balance_after=int(updated.balance),
            mode=PaymasterMode(updated.mode),
        )
        logger.info(
            "[Rebalance] Top-up chain %s (%s): +%s wei, tx=%s, mode=%s",
            chain_id,
            result.reason,
            result.amount,
            result.tx_hash,
            result.mode,
        )

        if self.ledger_writer is not None:
            self.ledger_writer.submit(
                RebalanceLedgerEntry(
                    entry_id=new_entry_id("rebal"),
                    chain_id=chain_id,
                    timestamp=MongoEntity.now_ms(),
                    amount=result.amount,
                    reason=result.reason,
                    tx_hash=result.tx_hash,
                    balance_before=result.balance_before,
                    balance_after=result.balance_after,
                )
            )
        return result
