# main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adapters.entry.http.views.admin.admin_view import router as admin_router
from adapters.entry.http.views.dapp_view import router as dapp_router
from adapters.entry.http.views.sponsorship_view import router as sponsorship_router
from adapters.external.database.audit_repository_mongodb import AuditRepositoryMongoDB, DenylistRepositoryMongoDB
from adapters.external.database.chain_config_repository_mongodb import ChainConfigRepositoryMongoDB
from adapters.external.database.dapp_repository_mongodb import DAppInstanceRepositoryMongoDB, DAppRepositoryMongoDB
from adapters.external.database.ledger_repository_mongodb import LedgerRepositoryMongoDB
from adapters.external.database.mongo_client import close_mongo_client
from adapters.external.database.paymaster_pool_repository_mongodb import PaymasterPoolRepositoryMongoDB
from adapters.external.database.quote_repository_mongodb import QuoteRepositoryMongoDB
from config import get_settings
from core.services.ledger_writer import get_ledger_writer
from core.services.paymaster_supervisor import PaymasterSupervisor

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, get_settings().LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )
    # scheduler chatter on every tick
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def init_mongo_indexes() -> None:
    """
    Create the indexes every paymaster collection relies on, including the
    unique settlement index that makes settlement exactly-once.
    """
    for repo in (
        ChainConfigRepositoryMongoDB(),
        PaymasterPoolRepositoryMongoDB(),
        DAppRepositoryMongoDB(),
        DAppInstanceRepositoryMongoDB(),
        QuoteRepositoryMongoDB(),
        LedgerRepositoryMongoDB(),
        AuditRepositoryMongoDB(),
        DenylistRepositoryMongoDB(),
    ):
        repo.ensure_indexes()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: indexes, then the paymaster scheduler (monitors, rebalance,
    daily reset) when SCHEDULER_ENABLED. Shutdown stops the scheduler and
    drains pending ledger writes before closing the Mongo client.
    """
    init_mongo_indexes()

    supervisor: Optional[PaymasterSupervisor] = None
    if get_settings().SCHEDULER_ENABLED:
        supervisor = PaymasterSupervisor.from_settings()
        supervisor.start()
    else:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED=false)")
    app.state.supervisor = supervisor

    yield

    if supervisor is not None:
        supervisor.stop()
    get_ledger_writer().flush(timeout=5)
    close_mongo_client()


def create_app() -> FastAPI:
    """
    Application factory for the Paymaster API.
    """
    configure_logging()

    app = FastAPI(
        title="Paymaster API",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(admin_router, prefix="/api")
    app.include_router(dapp_router, prefix="/api")
    app.include_router(sponsorship_router, prefix="/api")

    return app


app = create_app()
