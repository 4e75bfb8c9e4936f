from __future__ import annotations

import logging
from typing import Dict, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from adapters.chain.web3_chain_rpc import Web3ChainRpcGateway
from adapters.external.database.chain_config_repository_mongodb import ChainConfigRepositoryMongoDB
from adapters.external.database.paymaster_pool_repository_mongodb import PaymasterPoolRepositoryMongoDB
from config import get_settings
from core.domain.gateways.chain_rpc_gateway_interface import ChainRpcGateway
from core.domain.repositories.chain_config_repository_interface import ChainConfigRepositoryInterface
from core.domain.repositories.paymaster_pool_repository_interface import PaymasterPoolRepositoryInterface
from core.services.ledger_writer import LedgerWriter, get_ledger_writer
from core.use_cases.dapp_policy_usecase import DAppPolicyUseCase
from core.use_cases.pool_health_monitor_usecase import PoolHealthMonitor
from core.use_cases.rebalance_orchestrator_usecase import RebalanceOrchestrator

logger = logging.getLogger(__name__)

DAILY_RESET_JOB_ID = "paymaster_daily_usage_reset"
MONITOR_SYNC_JOB_ID = "paymaster_monitor_sync"
MONITOR_SYNC_INTERVAL_SEC = 60


class PaymasterSupervisor:
    """
    Owns the scheduler and every periodic paymaster job:

    - one PoolHealthMonitor per registered chain (HEALTH_CHECK_INTERVAL_SEC),
    - the batch rebalance (REBALANCE_INTERVAL_SEC),
    - the daily usage reset (00:00 UTC),
    - a monitor sync that picks up chains registered after start.
    """

    def __init__(
        self,
        *,
        chains: ChainConfigRepositoryInterface,
        pools: PaymasterPoolRepositoryInterface,
        rpc: ChainRpcGateway,
        orchestrator: RebalanceOrchestrator,
        policy: Optional[DAppPolicyUseCase] = None,
        ledger_writer: Optional[LedgerWriter] = None,
        health_interval_sec: int = 10,
        rebalance_interval_sec: int = 6 * 60 * 60,
        max_gas_variance_pct: int = 25,
        scheduler: Optional[BaseScheduler] = None,
    ):
        self.chains = chains
        self.pools = pools
        self.rpc = rpc
        self.orchestrator = orchestrator
        self.policy = policy
        self.ledger_writer = ledger_writer
        self.health_interval_sec = int(health_interval_sec)
        self.rebalance_interval_sec = int(rebalance_interval_sec)
        self.max_gas_variance_pct = int(max_gas_variance_pct)

        self.scheduler: BaseScheduler = scheduler or BackgroundScheduler(
            timezone="UTC",
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 30},
        )
        self.monitors: Dict[int, PoolHealthMonitor] = {}

    @classmethod
    def from_settings(cls) -> "PaymasterSupervisor":
        s = get_settings()
        chains = ChainConfigRepositoryMongoDB()
        return cls(
            chains=chains,
            pools=PaymasterPoolRepositoryMongoDB(),
            rpc=Web3ChainRpcGateway(chains),
            orchestrator=RebalanceOrchestrator.from_settings(),
            policy=DAppPolicyUseCase.from_settings(),
            ledger_writer=get_ledger_writer(),
            health_interval_sec=s.HEALTH_CHECK_INTERVAL_SEC,
            rebalance_interval_sec=s.REBALANCE_INTERVAL_SEC,
            max_gas_variance_pct=s.MAX_GAS_VARIANCE_PCT,
        )

    def sync_monitors(self) -> int:
        """
        Start a monitor for every registered chain that has a pool and none yet.
        Returns how many monitors were started.
        """
        try:
            chains = list(self.chains.list_all())
        except Exception:
            logger.exception("[Supervisor] Could not list chains for monitor sync")
            return 0

        started = 0
        for chain in chains:
            if chain.chain_id in self.monitors:
                continue
            try:
                pool = self.pools.get_pool(chain.chain_id)
            except Exception:
                logger.exception("[Supervisor] Could not read pool for chain %s", chain.chain_id)
                continue
            if pool is None:
                continue

            monitor = PoolHealthMonitor(
                chain_id=chain.chain_id,
                rpc_url=chain.rpc.primary,
                min_balance=int(pool.min_balance),
                pools=self.pools,
                rpc=self.rpc,
                ledger_writer=self.ledger_writer,
                max_gas_variance_pct=self.max_gas_variance_pct,
                on_low_balance=self.orchestrator.trigger_emergency_top_up,
            )
            monitor.start(self.scheduler, self.health_interval_sec)
            self.monitors[chain.chain_id] = monitor
            started += 1
        return started

    def start(self) -> None:
        started = self.sync_monitors()
        self.orchestrator.start(self.scheduler, self.rebalance_interval_sec)

        if self.policy is not None:
            self.scheduler.add_job(
                self.policy.reset_daily_usage,
                trigger=CronTrigger(hour=0, minute=0, timezone="UTC"),
                id=DAILY_RESET_JOB_ID,
                name="Paymaster daily usage reset",
                replace_existing=True,
            )

        self.scheduler.add_job(
            self.sync_monitors,
            trigger=IntervalTrigger(seconds=MONITOR_SYNC_INTERVAL_SEC),
            id=MONITOR_SYNC_JOB_ID,
            name="Paymaster monitor sync",
            replace_existing=True,
        )

        if not self.scheduler.running:
            self.scheduler.start()
        logger.info("[Supervisor] Started: %s monitor(s), rebalance every %ss", started, self.rebalance_interval_sec)

    def stop(self) -> None:
        """
        Cancel every job. In-flight ticks are not awaited.
        """
        for monitor in self.monitors.values():
            monitor.stop()
        self.monitors.clear()
        self.orchestrator.stop()

        for job_id in (DAILY_RESET_JOB_ID, MONITOR_SYNC_JOB_ID):
            try:
                self.scheduler.remove_job(job_id)
            except JobLookupError:
                pass

        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        if self.ledger_writer is not None:
            self.ledger_writer.flush(timeout=5)
        logger.info("[Supervisor] Stopped")
