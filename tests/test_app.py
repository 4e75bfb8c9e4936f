from __future__ import annotations

from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient

import main


def test_app_exposes_every_router():
    paths = {route.path for route in main.create_app().routes}

    assert "/api/paymaster/quotes" in paths
    assert "/api/paymaster/settlements" in paths
    assert "/api/paymaster/dapps/{dapp_id}/instances" in paths
    assert "/api/admin/paymaster/chains" in paths
    assert "/api/admin/paymaster/pools/{chain_id}/top-up" in paths


def test_lifespan_starts_and_stops_the_supervisor():
    supervisor = MagicMock()
    settings = MagicMock(SCHEDULER_ENABLED=True, LOG_LEVEL="INFO")

    with patch.object(main, "init_mongo_indexes") as indexes, patch.object(
        main, "get_settings", return_value=settings
    ), patch.object(main.PaymasterSupervisor, "from_settings", return_value=supervisor), patch.object(
        main, "get_ledger_writer"
    ) as writer, patch.object(main, "close_mongo_client") as close_mongo:
        app = main.create_app()
        with TestClient(app):
            assert app.state.supervisor is supervisor
            supervisor.start.assert_called_once()

    indexes.assert_called_once()
    supervisor.stop.assert_called_once()
    writer.return_value.flush.assert_called_once()
    close_mongo.assert_called_once()


def test_scheduler_can_be_disabled():
    settings = MagicMock(SCHEDULER_ENABLED=False, LOG_LEVEL="INFO")

    with patch.object(main, "init_mongo_indexes"), patch.object(main, "get_settings", return_value=settings), patch.object(
        main.PaymasterSupervisor, "from_settings"
    ) as build, patch.object(main, "get_ledger_writer"):
        app = main.create_app()
        with TestClient(app):
            assert app.state.supervisor is None

    build.assert_not_called()
