from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from adapters.entry.http.dtos.dapp_dtos import (
    CreateInstanceRequest,
    DepositRequest,
    RegisterDAppRequest,
    UpdatePolicyRequest,
)
from adapters.entry.http.views.errors import to_http_error
from core.use_cases.dapp_policy_usecase import DAppPolicyUseCase

router = APIRouter(prefix="/paymaster/dapps", tags=["paymaster"])


def get_use_case() -> DAppPolicyUseCase:
    return DAppPolicyUseCase.from_settings()


@router.post("")
async def register_dapp(
    body: RegisterDAppRequest,
    use_case: DAppPolicyUseCase = Depends(get_use_case),
):
    try:
        return use_case.register_dapp(owner_id=body.owner_id, name=body.name)
    except Exception as exc:
        raise to_http_error(exc, action="register dapp") from exc


@router.get("/instances")
async def list_instances(
    owner_id: str = Query(..., min_length=1),
    use_case: DAppPolicyUseCase = Depends(get_use_case),
):
    try:
        return use_case.list_instances(owner_id=owner_id)
    except Exception as exc:
        raise to_http_error(exc, action="list instances") from exc


@router.post("/{dapp_id}/instances")
async def create_instance(
    dapp_id: str,
    body: CreateInstanceRequest,
    use_case: DAppPolicyUseCase = Depends(get_use_case),
):
    """
    Create the dapp's paymaster instance on a chain. Blocked dapps get 403.
    """
    try:
        return use_case.create_instance(dapp_id=dapp_id, chain_id=body.chain_id, webhook_url=body.webhook_url)
    except Exception as exc:
        raise to_http_error(exc, action="create instance") from exc


@router.post("/instances/{instance_id}/deposit")
async def deposit(
    instance_id: str,
    body: DepositRequest,
    use_case: DAppPolicyUseCase = Depends(get_use_case),
):
    try:
        return use_case.deposit(instance_id=instance_id, amount=body.amount)
    except Exception as exc:
        raise to_http_error(exc, action="deposit") from exc


@router.patch("/instances/{instance_id}/policy")
async def update_policy(
    instance_id: str,
    body: UpdatePolicyRequest,
    use_case: DAppPolicyUseCase = Depends(get_use_case),
):
    try:
        return use_case.update_policy(instance_id=instance_id, updates=body.to_updates())
    except Exception as exc:
        raise to_http_error(exc, action="update policy") from exc
