from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.domain.entities.base_entity import MongoEntity
from core.domain.entities.ledger_entry_entity import ModeChangeLedgerEntry
from core.domain.entities.paymaster_pool_entity import PaymasterPoolEntity
from core.domain.enums.paymaster_enums import PaymasterMode
from core.domain.gateways.chain_rpc_gateway_interface import ChainRpcGateway
from core.domain.repositories.paymaster_pool_repository_interface import PaymasterPoolRepositoryInterface
from core.services.exceptions import ConcurrentUpdateError, GasPriceUnavailableError
from core.services.ledger_writer import LedgerWriter, new_entry_id
from core.services.mode_transition import HealthPredicates, is_gas_stable, resolve_target_mode

logger = logging.getLogger(__name__)


class PoolHealthMonitor:
    """
    Health state machine for one chain's paymaster pool.

    Each tick reads the pool, evaluates three predicates (RPC reachable, gas
    price stable, balance above minimum) and moves the pool between NORMAL and
    SAFE_MODE. A PAUSED pool is never touched. Any store or RPC error abandons
    the tick without changing the mode.
    """

    JOB_PREFIX = "pool_health_"

    def __init__(
        self,
        *,
        chain_id: int,
        rpc_url: str,
        min_balance: int,
        pools: PaymasterPoolRepositoryInterface,
        rpc: ChainRpcGateway,
        ledger_writer: Optional[LedgerWriter] = None,
        max_gas_variance_pct: int = 25,
        on_low_balance: Optional[Callable[[int], object]] = None,
    ):
        self.chain_id = int(chain_id)
        self.rpc_url = rpc_url
        self.min_balance = int(min_balance)
        self.pools = pools
        self.rpc = rpc
        self.ledger_writer = ledger_writer
        self.max_gas_variance_pct = int(max_gas_variance_pct)
        self.on_low_balance = on_low_balance

        # seeded from the persisted mode on the first successful read
        self.current_mode: Optional[PaymasterMode] = None
        self._job: Optional[Job] = None

        logger.info("[PoolHealthMonitor] Initialized for chain %s", self.chain_id)

    @property
    def job_id(self) -> str:
        return f"{self.JOB_PREFIX}{self.chain_id}"

    @property
    def running(self) -> bool:
        return self._job is not None

    def start(self, scheduler: BaseScheduler, interval_sec: int) -> None:
        """
        Run a health check now and then every `interval_sec` seconds.
        """
        self._job = scheduler.add_job(
            self.run_health_check,
            trigger=IntervalTrigger(seconds=int(interval_sec)),
            id=self.job_id,
            name=f"Pool health check (chain {self.chain_id})",
            next_run_time=datetime.now(timezone.utc),
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

    def stop(self) -> None:
        """
        Cancel future ticks. An in-flight tick finishes; persisted state is left as is.
        """
        if self._job is None:
            return
        try:
            self._job.remove()
        except JobLookupError:
            pass
        self._job = None
        logger.info("[PoolHealthMonitor] Stopped for chain %s", self.chain_id)

    # ---------- predicates ----------

    def _check_gas_stability(self) -> bool:
        try:
            sample = self.rpc.get_gas_sample(self.chain_id)
        except GasPriceUnavailableError as exc:
            logger.warning("[PoolHealthMonitor] %s", exc)
            return False
        return is_gas_stable(
            sample.median,
            sample.variance_pct,
            max_variance_pct=self.max_gas_variance_pct,
            max_gas_price=self.rpc.get_max_gas_price(self.chain_id),
        )

    def evaluate(self, pool: PaymasterPoolEntity) -> HealthPredicates:
        rpc_ok = bool(self.rpc.check_health(self.chain_id, self.rpc_url))
        gas_ok = self._check_gas_stability() if rpc_ok else False
        return HealthPredicates(
            rpc_reachable=rpc_ok,
            gas_stable=gas_ok,
            balance_sufficient=int(pool.balance) > self.min_balance,
        )

    # ---------- state machine ----------

    def run_health_check(self) -> Optional[PaymasterMode]:
        """
        One monitor tick. Returns the mode after the tick, or None when the
        tick was skipped or abandoned.
        """
        try:
            pool = self.pools.get_pool(self.chain_id)
            if pool is None:
                logger.warning("[PoolHealthMonitor] Pool not found for chain %s; skipping.", self.chain_id)
                return None

            persisted = PaymasterMode(pool.mode)
            if self.current_mode is None:
                self.current_mode = persisted

            predicates = self.evaluate(pool)
            target = resolve_target_mode(persisted, predicates)

            if target == persisted:
                # already stored (e.g. a top-up restored NORMAL): sync memory, no write
                self.current_mode = target
            else:
                self._transition(pool, target, predicates)

            if not predicates.balance_sufficient and target != PaymasterMode.PAUSED:
                self._signal_low_balance()

            return self.current_mode

        except ConcurrentUpdateError as exc:
            logger.warning("[PoolHealthMonitor] Chain %s: %s; retrying next tick.", self.chain_id, exc)
            return None
        except Exception:
            logger.exception("[PoolHealthMonitor] Health check failed for chain %s", self.chain_id)
            return None

    def _transition(self, pool: PaymasterPoolEntity, target: PaymasterMode, predicates: HealthPredicates) -> None:
        previous = self.current_mode
        now = MongoEntity.now_ms()

        updated = self.pools.update_pool(
            self.chain_id,
            {"mode": target, "last_health_check": now},
            expected_version=pool.version,
        )
        self.current_mode = PaymasterMode(updated.mode)

        logger.info(
            "[PoolHealthMonitor] Mode transition chain %s: %s -> %s (%s)",
            self.chain_id,
            previous,
            self.current_mode,
            predicates.as_dict(),
        )

        if self.ledger_writer is not None:
            self.ledger_writer.submit(
                ModeChangeLedgerEntry(
                    entry_id=new_entry_id("mode"),
                    chain_id=self.chain_id,
                    timestamp=now,
                    from_mode=previous,
                    to_mode=self.current_mode,
                    reason="Health Check Auto-update",
                    predicates=predicates.as_dict(),
                )
            )

    def _signal_low_balance(self) -> None:
        if self.on_low_balance is None:
            return
        try:
            self.on_low_balance(self.chain_id)
        except Exception:
            logger.exception("[PoolHealthMonitor] Low-balance escalation failed for chain %s", self.chain_id)
