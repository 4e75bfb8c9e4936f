from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

from adapters.chain.web3_chain_rpc import Web3ChainRpcGateway
from adapters.external.database.chain_config_repository_mongodb import ChainConfigRepositoryMongoDB
from adapters.external.database.quote_repository_mongodb import QuoteRepositoryMongoDB
from config import get_settings
from core.domain.entities.base_entity import MongoEntity
from core.domain.entities.fee_quote_entity import FeeQuote
from core.domain.entities.ledger_entry_entity import QuoteLedgerEntry
from core.domain.gateways.chain_rpc_gateway_interface import ChainRpcGateway
from core.domain.repositories.quote_repository_interface import QuoteRepositoryInterface
from core.services.exceptions import InvalidAmountError
from core.services.ledger_writer import LedgerWriter, get_ledger_writer
from core.services.normalize import _norm, _norm_upper
from core.services.token_rate_oracle import TokenRateOracle

logger = logging.getLogger(__name__)


@dataclass
class FeeQuoteUseCase:
    """
    Prices the sponsorship of one transaction.

    total = base + buffer + surcharge, with base = estimated_gas * gas_price,
    buffer = base * QUOTE_BUFFER_PCT / 100 and surcharge = base *
    QUOTE_SURCHARGE_PCT / 100, all in native wei (integer division).

    The quote is stored before it is returned: a quote the store does not
    hold was never issued and cannot be settled.
    """

    rpc: ChainRpcGateway
    oracle: TokenRateOracle
    quotes: QuoteRepositoryInterface
    ledger_writer: Optional[LedgerWriter] = None

    buffer_pct: int = 5
    surcharge_pct: int = 20
    ttl_sec: int = 60
    slo_ms: int = 800
    default_gas_price: int = 1_000_000_000
    chain_default_gas_prices: Dict[int, int] = field(default_factory=dict)

    @classmethod
    def from_settings(cls) -> "FeeQuoteUseCase":
        s = get_settings()
        return cls(
            rpc=Web3ChainRpcGateway(ChainConfigRepositoryMongoDB()),
            oracle=TokenRateOracle.from_settings(),
            quotes=QuoteRepositoryMongoDB(),
            ledger_writer=get_ledger_writer(),
            buffer_pct=s.QUOTE_BUFFER_PCT,
            surcharge_pct=s.QUOTE_SURCHARGE_PCT,
            ttl_sec=s.QUOTE_TTL_SEC,
            slo_ms=s.QUOTE_SLO_MS,
            default_gas_price=s.DEFAULT_GAS_PRICE_WEI,
            chain_default_gas_prices=dict(s.CHAIN_DEFAULT_GAS_PRICES),
        )

    def _gas_price(self, chain_id: int) -> int:
        try:
            price = int(self.rpc.get_gas_price(chain_id))
            if price > 0:
                return price
            logger.warning("[FeeQuote] Chain %s reported gas price %s; using default", chain_id, price)
        except Exception as exc:
            logger.warning("[FeeQuote] Gas price unavailable for chain %s (%s); using default", chain_id, exc)
        return int(self.chain_default_gas_prices.get(int(chain_id), self.default_gas_price))

    def generate_quote(
        self,
        *,
        dapp_id: str,
        user_id: str,
        chain_id: int,
        token_in: str,
        estimated_gas: int,
    ) -> FeeQuote:
        started = time.perf_counter()

        if estimated_gas is None or int(estimated_gas) < 0:
            raise InvalidAmountError("estimated_gas must be >= 0")
        estimated_gas = int(estimated_gas)
        token = _norm_upper(token_in)

        gas_price = self._gas_price(chain_id)

        base_cost = estimated_gas * gas_price
        buffer = base_cost * self.buffer_pct // 100
        surcharge = base_cost * self.surcharge_pct // 100
        total = base_cost + buffer + surcharge
        total_in_token = self.oracle.convert(total, token)

        now = MongoEntity.now_ms()
        quote = FeeQuote(
            quote_id=f"q_{now}_{secrets.token_hex(4)}",
            dapp_id=_norm(dapp_id),
            user_id=_norm(user_id),
            chain_id=int(chain_id),
            token_in=token,
            estimated_gas=estimated_gas,
            gas_price=gas_price,
            base_cost=base_cost,
            buffer=buffer,
            surcharge=surcharge,
            total_max_token_in=total,
            total_in_token=total_in_token,
            issued_at=now,
            expiry=now + self.ttl_sec * 1000,
        )
        quote = self.quotes.insert(quote)

        latency_ms = int((time.perf_counter() - started) * 1000)
        if latency_ms > self.slo_ms:
            logger.warning("[FeeQuote] Quote %s took %sms (SLO %sms)", quote.quote_id, latency_ms, self.slo_ms)

        if self.ledger_writer is not None:
            self.ledger_writer.submit(
                QuoteLedgerEntry(
                    entry_id=f"quote_{quote.quote_id}",
                    chain_id=quote.chain_id,
                    timestamp=now,
                    quote_id=quote.quote_id,
                    dapp_id=quote.dapp_id,
                    amount=total_in_token,
                    token=token,
                    latency_ms=latency_ms,
                )
            )

        return quote
