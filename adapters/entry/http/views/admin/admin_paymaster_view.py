from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from adapters.entry.http.dtos.admin_paymaster_dtos import (
    ConfigurePoolRequest,
    DenylistDAppRequest,
    RegisterChainRequest,
    SetPoolModeRequest,
    UpdateChainStatusRequest,
)
from adapters.entry.http.views.admin.admin_auth import AdminPrincipal, require_admin
from adapters.entry.http.views.errors import to_http_error
from core.domain.enums.paymaster_enums import LedgerEntryType
from core.use_cases.admin_chain_registry_usecase import AdminChainRegistryUseCase
from core.use_cases.compliance_usecase import ComplianceUseCase
from core.use_cases.rebalance_orchestrator_usecase import RebalanceOrchestrator
from core.use_cases.settlement_usecase import SettlementUseCase

router = APIRouter(prefix="/admin/paymaster", tags=["admin", "paymaster"])


def get_use_case() -> AdminChainRegistryUseCase:
    return AdminChainRegistryUseCase.from_settings()


def get_orchestrator() -> RebalanceOrchestrator:
    return RebalanceOrchestrator.from_settings()


def get_compliance() -> ComplianceUseCase:
    return ComplianceUseCase.from_settings()


def get_settlement() -> SettlementUseCase:
    return SettlementUseCase.from_settings()


@router.post("/chains")
async def register_chain(
    body: RegisterChainRequest,
    admin: AdminPrincipal = Depends(require_admin),
    use_case: AdminChainRegistryUseCase = Depends(get_use_case),
):
    """
    Register a chain (RPC checked with eth_chainId) and create its pool.
    """
    try:
        return use_case.register_chain(
            admin_id=admin.admin_id,
            config=body.to_chain_config(),
            gas_account_address=body.gas_account_address,
            vault_address=body.vault_address,
            min_balance=body.min_balance,
            target_balance=body.target_balance,
            validate_rpc=body.validate_rpc,
        )
    except Exception as exc:
        raise to_http_error(exc, action="register chain") from exc


@router.get("/chains")
async def list_chains(
    admin: AdminPrincipal = Depends(require_admin),
    use_case: AdminChainRegistryUseCase = Depends(get_use_case),
):
    try:
        return use_case.list_chains()
    except Exception as exc:
        raise to_http_error(exc, action="list chains") from exc


@router.patch("/chains/{chain_id}/status")
async def update_chain_status(
    chain_id: int,
    body: UpdateChainStatusRequest,
    admin: AdminPrincipal = Depends(require_admin),
    use_case: AdminChainRegistryUseCase = Depends(get_use_case),
):
    try:
        return use_case.update_chain_status(admin_id=admin.admin_id, chain_id=chain_id, status=body.status)
    except Exception as exc:
        raise to_http_error(exc, action="update chain status") from exc


@router.get("/pools/{chain_id}")
async def get_pool(
    chain_id: int,
    admin: AdminPrincipal = Depends(require_admin),
    use_case: AdminChainRegistryUseCase = Depends(get_use_case),
):
    try:
        return use_case.get_pool(chain_id)
    except Exception as exc:
        raise to_http_error(exc, action="get pool") from exc


@router.patch("/pools/{chain_id}")
async def configure_pool(
    chain_id: int,
    body: ConfigurePoolRequest,
    admin: AdminPrincipal = Depends(require_admin),
    use_case: AdminChainRegistryUseCase = Depends(get_use_case),
):
    """
    Set the pool's gas account, vault or balance thresholds.
    """
    try:
        return use_case.configure_pool(
            admin_id=admin.admin_id,
            chain_id=chain_id,
            gas_account_address=body.gas_account_address,
            vault_address=body.vault_address,
            min_balance=body.min_balance,
            target_balance=body.target_balance,
        )
    except Exception as exc:
        raise to_http_error(exc, action="configure pool") from exc


@router.put("/pools/{chain_id}/mode")
async def set_pool_mode(
    chain_id: int,
    body: SetPoolModeRequest,
    admin: AdminPrincipal = Depends(require_admin),
    use_case: AdminChainRegistryUseCase = Depends(get_use_case),
):
    """
    Manual pause/resume. Only NORMAL and PAUSED are accepted.
    """
    try:
        return use_case.set_pool_mode(admin_id=admin.admin_id, chain_id=chain_id, mode=body.mode)
    except Exception as exc:
        raise to_http_error(exc, action="set pool mode") from exc


@router.post("/pools/{chain_id}/top-up")
async def emergency_top_up(
    chain_id: int,
    admin: AdminPrincipal = Depends(require_admin),
    orchestrator: RebalanceOrchestrator = Depends(get_orchestrator),
):
    """
    Refill the pool to its target balance now, regardless of the threshold.
    """
    try:
        res = orchestrator.trigger_emergency_top_up(chain_id)
        return {"performed": res is not None, "result": res.to_dict() if res else None}
    except Exception as exc:
        raise to_http_error(exc, action="top up pool") from exc


@router.post("/rebalance/run")
async def run_rebalance(
    admin: AdminPrincipal = Depends(require_admin),
    orchestrator: RebalanceOrchestrator = Depends(get_orchestrator),
):
    try:
        results = orchestrator.run_rebalance_job()
        return {"count": len(results), "results": [r.to_dict() for r in results]}
    except Exception as exc:
        raise to_http_error(exc, action="run rebalance") from exc


@router.post("/dapps/{dapp_id}/denylist")
async def denylist_dapp(
    dapp_id: str,
    body: DenylistDAppRequest,
    admin: AdminPrincipal = Depends(require_admin),
    compliance: ComplianceUseCase = Depends(get_compliance),
):
    try:
        return compliance.denylist_dapp(admin_id=admin.admin_id, dapp_id=dapp_id, reason=body.reason)
    except Exception as exc:
        raise to_http_error(exc, action="denylist dapp") from exc


@router.get("/ledger")
async def list_ledger(
    entry_type: Optional[LedgerEntryType] = Query(None, alias="type"),
    chain_id: Optional[int] = Query(None, gt=0),
    limit: int = Query(100, ge=1, le=500),
    admin: AdminPrincipal = Depends(require_admin),
    settlement: SettlementUseCase = Depends(get_settlement),
):
    try:
        return settlement.list_ledger(entry_type=entry_type, chain_id=chain_id, limit=limit)
    except Exception as exc:
        raise to_http_error(exc, action="list ledger") from exc
