from __future__ import annotations

from typing import Any, Dict, Literal, Optional, Union

from pydantic import ConfigDict, Field

from core.domain.entities.base_entity import MongoEntity, Wei
from core.domain.enums.paymaster_enums import LedgerEntryType, PaymasterMode, TopUpReason
from core.services.exceptions import RecordValidationError


class LedgerEntry(MongoEntity):
    """
    Mongo document (collection: paymaster_ledger).

    Append-only: entries are frozen once built and the repository never
    updates or deletes them. `type` selects the variant.
    """

    entry_id: str
    type: LedgerEntryType
    chain_id: int
    timestamp: int

    model_config = ConfigDict(extra="allow", use_enum_values=True, frozen=True)


class QuoteLedgerEntry(LedgerEntry):
    type: Literal["QUOTE"] = "QUOTE"
    quote_id: str
    dapp_id: str
    amount: Wei
    token: str
    latency_ms: int = Field(..., ge=0)


class RebalanceLedgerEntry(LedgerEntry):
    type: Literal["REBALANCE"] = "REBALANCE"
    amount: Wei
    reason: TopUpReason
    tx_hash: str
    balance_before: Wei
    balance_after: Wei


class SettlementLedgerEntry(LedgerEntry):
    type: Literal["SETTLEMENT"] = "SETTLEMENT"
    quote_id: str
    dapp_id: str
    tx_hash: str
    actual_gas_used: int = Field(..., ge=0)
    effective_gas_price: Wei
    final_cost: Wei
    revenue: Wei
    refund: Wei
    total_max_token_in: Wei


class ModeChangeLedgerEntry(LedgerEntry):
    type: Literal["MODE_CHANGE"] = "MODE_CHANGE"
    from_mode: Optional[PaymasterMode] = None
    to_mode: PaymasterMode
    reason: str
    predicates: Dict[str, bool] = Field(default_factory=dict)


AnyLedgerEntry = Union[QuoteLedgerEntry, RebalanceLedgerEntry, SettlementLedgerEntry, ModeChangeLedgerEntry]

_VARIANTS = {
    LedgerEntryType.QUOTE.value: QuoteLedgerEntry,
    LedgerEntryType.REBALANCE.value: RebalanceLedgerEntry,
    LedgerEntryType.SETTLEMENT.value: SettlementLedgerEntry,
    LedgerEntryType.MODE_CHANGE.value: ModeChangeLedgerEntry,
}


def ledger_entry_from_mongo(doc: Optional[Dict[str, Any]]) -> Optional[LedgerEntry]:
    """
    Build the ledger entry variant matching the stored `type`.
    """
    if not doc:
        return None
    kind = str(doc.get("type") or "")
    cls = _VARIANTS.get(kind)
    if cls is None:
        raise RecordValidationError("LedgerEntry", str(doc.get("_id")), f"unknown ledger type {kind!r}")
    return cls.from_mongo(doc)
