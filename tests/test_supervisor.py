from __future__ import annotations

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from core.services.paymaster_supervisor import DAILY_RESET_JOB_ID, MONITOR_SYNC_JOB_ID, PaymasterSupervisor
from core.use_cases.dapp_policy_usecase import DAppPolicyUseCase
from core.use_cases.rebalance_orchestrator_usecase import RebalanceOrchestrator


@pytest.fixture
def scheduler():
    sched = BackgroundScheduler(timezone="UTC")
    sched.start(paused=True)
    yield sched
    if sched.running:
        sched.shutdown(wait=False)


@pytest.fixture
def supervisor(chains, pools, rpc, vault, dapps, instances, writer, scheduler):
    return PaymasterSupervisor(
        chains=chains,
        pools=pools,
        rpc=rpc,
        orchestrator=RebalanceOrchestrator(chains=chains, pools=pools, vault=vault, ledger_writer=writer),
        policy=DAppPolicyUseCase(dapps=dapps, instances=instances, chains=chains),
        ledger_writer=writer,
        scheduler=scheduler,
    )


def test_start_schedules_every_job(supervisor, scheduler, add_chain):
    add_chain(1)
    add_chain(10)

    supervisor.start()

    job_ids = {job.id for job in scheduler.get_jobs()}
    assert job_ids == {
        "pool_health_1",
        "pool_health_10",
        RebalanceOrchestrator.JOB_ID,
        DAILY_RESET_JOB_ID,
        MONITOR_SYNC_JOB_ID,
    }


def test_sync_picks_up_new_chains_once(supervisor, add_chain, chains):
    add_chain(1)
    assert supervisor.sync_monitors() == 1
    assert supervisor.sync_monitors() == 0

    add_chain(5)
    assert supervisor.sync_monitors() == 1
    assert sorted(supervisor.monitors) == [1, 5]


def test_chain_without_pool_gets_no_monitor(supervisor, chains, pools, add_chain):
    add_chain(3)
    del pools.store.docs[3]
    assert supervisor.sync_monitors() == 0


def test_monitor_escalates_to_the_orchestrator(supervisor, add_chain, pools, vault):
    add_chain(1, balance=10**17)
    supervisor.sync_monitors()

    supervisor.monitors[1].run_health_check()

    assert len(vault.transfers) == 1
    assert pools.get_pool(1).balance == pools.get_pool(1).target_balance


def test_stop_removes_jobs_and_shuts_down(supervisor, scheduler, add_chain):
    add_chain(1)
    supervisor.start()

    supervisor.stop()

    assert supervisor.monitors == {}
    assert not scheduler.running
