from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from adapters.chain.web3_chain_rpc import Web3ChainRpcGateway
from adapters.external.database.chain_config_repository_mongodb import ChainConfigRepositoryMongoDB
from adapters.external.database.ledger_repository_mongodb import LedgerRepositoryMongoDB
from adapters.external.database.quote_repository_mongodb import QuoteRepositoryMongoDB
from core.domain.entities.base_entity import MongoEntity
from core.domain.entities.fee_quote_entity import FeeQuote
from core.domain.entities.ledger_entry_entity import LedgerEntry, SettlementLedgerEntry
from core.domain.enums.paymaster_enums import LedgerEntryType, QuoteStatus
from core.domain.gateways.chain_rpc_gateway_interface import ChainRpcGateway
from core.domain.repositories.ledger_repository_interface import LedgerRepositoryInterface
from core.domain.repositories.quote_repository_interface import QuoteRepositoryInterface
from core.services.cas import retry_on_conflict
from core.services.exceptions import (
    InvalidAmountError,
    QuoteExpiredError,
    QuoteNotFoundError,
    QuoteNotSettleableError,
)
from core.services.normalize import _norm

logger = logging.getLogger(__name__)

_SETTLEABLE = (QuoteStatus.PENDING, QuoteStatus.EXECUTED)


@dataclass
class SettlementUseCase:
    """
    Reconciles an executed, sponsored transaction against its quote.

    final_cost = actual_gas_used * effective_gas_price
    revenue    = quote surcharge
    refund     = max(0, total_max_token_in - final_cost - surcharge)

    Quotes are looked up by id in the quote store; terms sent by a caller are
    never trusted. The SETTLEMENT entry is the operation itself, so it is
    written synchronously; the ledger rejects a second settlement for the
    same quote.
    """

    quotes: QuoteRepositoryInterface
    ledger: LedgerRepositoryInterface
    rpc: Optional[ChainRpcGateway] = None
    clock: Callable[[], int] = field(default=MongoEntity.now_ms)

    @classmethod
    def from_settings(cls) -> "SettlementUseCase":
        ledger = LedgerRepositoryMongoDB()
        try:
            ledger.ensure_indexes()
        except Exception:
            logger.exception("[Settlement] Could not ensure ledger indexes")
        return cls(
            quotes=QuoteRepositoryMongoDB(),
            ledger=ledger,
            rpc=Web3ChainRpcGateway(ChainConfigRepositoryMongoDB()),
        )

    def get_quote(self, quote_id: str) -> FeeQuote:
        quote = self.quotes.get_quote(_norm(quote_id))
        if quote is None:
            raise QuoteNotFoundError(quote_id)
        return quote

    def _set_status(self, quote_id: str, status: QuoteStatus) -> Optional[FeeQuote]:
        """
        Move a still-open quote to `status`. A quote already closed by a
        concurrent call is left as is. A failed write is logged: the ledger,
        not the quote status, is the record of a settlement.
        """

        def _apply() -> FeeQuote:
            current = self.get_quote(quote_id)
            if current.status not in _SETTLEABLE:
                return current
            return self.quotes.update_quote(current.quote_id, {"status": status}, expected_version=current.version)

        try:
            return retry_on_conflict(_apply, attempts=3)
        except Exception:
            logger.exception("[Settlement] Could not store status %s for quote %s", status, quote_id)
            return None

    def _effective_gas_price(self, quote: FeeQuote, tx_hash: str) -> int:
        if self.rpc is not None:
            try:
                receipt = self.rpc.get_transaction_receipt(quote.chain_id, tx_hash)
                if receipt is not None and receipt.effective_gas_price > 0:
                    return int(receipt.effective_gas_price)
            except Exception as exc:
                logger.warning("[Settlement] Receipt lookup failed for %s (%s); using quoted gas price", tx_hash, exc)
        return int(quote.gas_price)

    def settle(
        self,
        quote_id: str,
        *,
        actual_gas_used: int,
        tx_hash: str,
        effective_gas_price: Optional[int] = None,
    ) -> SettlementLedgerEntry:
        """
        Settle the stored quote `quote_id` and mark it SETTLED.

        Raises:
            QuoteNotFoundError: no quote with this id was issued.
            QuoteNotSettleableError: the quote is not PENDING or EXECUTED.
            QuoteExpiredError: the quote expired; it is marked DECLINED.
            QuoteAlreadySettledError: a settlement already exists.
        """
        quote = self.get_quote(quote_id)
        if quote.status not in _SETTLEABLE:
            raise QuoteNotSettleableError(quote.quote_id, str(quote.status))

        now = int(self.clock())
        if quote.is_expired(now):
            self._set_status(quote.quote_id, QuoteStatus.DECLINED)
            logger.warning("[Settlement] Quote %s expired at %s; declined", quote.quote_id, quote.expiry)
            raise QuoteExpiredError(quote.quote_id, quote.expiry, now)

        if actual_gas_used is None or int(actual_gas_used) < 0:
            raise InvalidAmountError("actual_gas_used must be >= 0")
        tx_hash = _norm(tx_hash)
        if not tx_hash:
            raise ValueError("tx_hash is required")

        if effective_gas_price is None:
            gas_price = self._effective_gas_price(quote, tx_hash)
        else:
            gas_price = int(effective_gas_price)
            if gas_price < 0:
                raise InvalidAmountError("effective_gas_price must be >= 0")

        final_cost = int(actual_gas_used) * gas_price
        revenue = int(quote.surcharge)
        refund = max(0, int(quote.total_max_token_in) - final_cost - revenue)

        entry = SettlementLedgerEntry(
            entry_id=f"stl_{quote.quote_id}",
            chain_id=quote.chain_id,
            timestamp=now,
            quote_id=quote.quote_id,
            dapp_id=quote.dapp_id,
            tx_hash=tx_hash,
            actual_gas_used=int(actual_gas_used),
            effective_gas_price=gas_price,
            final_cost=final_cost,
            revenue=revenue,
            refund=refund,
            total_max_token_in=int(quote.total_max_token_in),
        )
        saved = self.ledger.append(entry)
        self._set_status(quote.quote_id, QuoteStatus.SETTLED)

        if final_cost > int(quote.total_max_token_in):
            logger.warning(
                "[Settlement] Quote %s under-collected: cost %s > quoted max %s",
                quote.quote_id,
                final_cost,
                quote.total_max_token_in,
            )
        logger.info(
            "[Settlement] Quote %s settled: cost=%s revenue=%s refund=%s tx=%s",
            quote.quote_id,
            final_cost,
            revenue,
            refund,
            tx_hash,
        )
        return saved

    def get_settlement(self, quote_id: str) -> Optional[SettlementLedgerEntry]:
        return self.ledger.find_settlement(_norm(quote_id))

    def list_ledger(
        self,
        *,
        entry_type: Optional[LedgerEntryType] = None,
        chain_id: Optional[int] = None,
        limit: int = 100,
    ) -> List[LedgerEntry]:
        limit = max(1, min(int(limit), 500))
        return list(self.ledger.list_recent(entry_type=entry_type, chain_id=chain_id, limit=limit))
