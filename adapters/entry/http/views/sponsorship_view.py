from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from adapters.entry.http.dtos.sponsorship_dtos import QuoteRequest, SettleRequest, ValidateSponsorshipRequest
from adapters.entry.http.views.errors import to_http_error
from core.services.exceptions import QuoteExpiredError
from core.use_cases.dapp_policy_usecase import DAppPolicyUseCase
from core.use_cases.fee_quote_usecase import FeeQuoteUseCase
from core.use_cases.settlement_usecase import SettlementUseCase

router = APIRouter(prefix="/paymaster", tags=["paymaster"])


def get_quote_use_case() -> FeeQuoteUseCase:
    return FeeQuoteUseCase.from_settings()


def get_policy_use_case() -> DAppPolicyUseCase:
    return DAppPolicyUseCase.from_settings()


def get_settlement_use_case() -> SettlementUseCase:
    return SettlementUseCase.from_settings()


@router.post("/quotes")
async def generate_quote(
    body: QuoteRequest,
    use_case: FeeQuoteUseCase = Depends(get_quote_use_case),
):
    """
    Price a sponsored transaction. The quote is valid for QUOTE_TTL_SEC.
    """
    try:
        return use_case.generate_quote(
            dapp_id=body.dapp_id,
            user_id=body.user_id,
            chain_id=body.chain_id,
            token_in=body.token_in,
            estimated_gas=body.estimated_gas,
        )
    except Exception as exc:
        raise to_http_error(exc, action="generate quote") from exc


@router.get("/quotes/{quote_id}")
async def get_quote(
    quote_id: str,
    use_case: SettlementUseCase = Depends(get_settlement_use_case),
):
    try:
        return use_case.get_quote(quote_id)
    except Exception as exc:
        raise to_http_error(exc, action="get quote") from exc


@router.post("/validate")
async def validate_request(
    body: ValidateSponsorshipRequest,
    use_case: DAppPolicyUseCase = Depends(get_policy_use_case),
):
    try:
        allowed = use_case.validate_request(
            instance_id=body.instance_id,
            estimated_cost=body.estimated_cost,
            user_address=body.user_address,
        )
        return {"instance_id": body.instance_id, "allowed": allowed}
    except Exception as exc:
        raise to_http_error(exc, action="validate request") from exc


@router.post("/settlements")
async def settle(
    body: SettleRequest,
    use_case: SettlementUseCase = Depends(get_settlement_use_case),
):
    try:
        entry = use_case.settle(
            body.quote_id,
            actual_gas_used=body.actual_gas_used,
            tx_hash=body.tx_hash,
            effective_gas_price=body.effective_gas_price,
        )
        return {"quote": use_case.get_quote(body.quote_id), "settlement": entry}
    except QuoteExpiredError as exc:
        raise HTTPException(
            status_code=409,
            detail={"error": "quote_expired", "quote_id": exc.quote_id, "status": "DECLINED"},
        ) from exc
    except Exception as exc:
        raise to_http_error(exc, action="settle") from exc


@router.get("/settlements/{quote_id}")
async def get_settlement(
    quote_id: str,
    use_case: SettlementUseCase = Depends(get_settlement_use_case),
):
    try:
        entry = use_case.get_settlement(quote_id)
    except Exception as exc:
        raise to_http_error(exc, action="get settlement") from exc
    if entry is None:
        raise HTTPException(status_code=404, detail=f"No settlement for quote {quote_id}.")
    return entry
