from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from web3 import Web3
from web3.exceptions import TransactionNotFound

from core.domain.entities.chain_config_entity import ChainConfigEntity
from core.domain.gateways.chain_rpc_gateway_interface import ChainRpcGateway, GasPriceSample, TxReceipt
from core.domain.repositories.chain_config_repository_interface import ChainConfigRepositoryInterface
from core.services.exceptions import ChainNotFoundError, GasPriceUnavailableError
from core.services.web3_cache import get_web3

logger = logging.getLogger(__name__)


def median_gas_sample(prices: Sequence[int]) -> GasPriceSample:
    """
    Aggregate raw gas price answers into a median and a spread percentage.

    The median keeps a single misbehaving endpoint from moving the price;
    the spread is what the stability predicate looks at.
    """
    if not prices:
        raise ValueError("at least one gas price is required")

    ordered = sorted(int(p) for p in prices)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        median = (ordered[mid - 1] + ordered[mid]) // 2
    else:
        median = ordered[mid]

    variance = 0
    if len(ordered) > 1 and median > 0:
        variance = (ordered[-1] - ordered[0]) * 100 // median

    return GasPriceSample(median=median, sources=list(ordered), variance_pct=int(variance))


class Web3ChainRpcGateway(ChainRpcGateway):
    """
    ChainRpcGateway backed by web3 HTTP providers.

    Endpoints come from the chain's registry record (primary, then secondary).
    """

    def __init__(self, chains: ChainConfigRepositoryInterface):
        self.chains = chains

    def _chain(self, chain_id: int) -> ChainConfigEntity:
        chain = self.chains.get(chain_id)
        if chain is None:
            raise ChainNotFoundError(chain_id)
        return chain

    def _urls(self, chain_id: int) -> List[str]:
        return self._chain(chain_id).rpc.http_urls()

    def verify_chain_id(self, rpc_url: str, chain_id: int) -> bool:
        try:
            answered = int(get_web3(rpc_url).eth.chain_id)
        except Exception as exc:
            logger.warning("RPC validation failed for %s (chain %s): %s", rpc_url, chain_id, exc)
            return False

        if answered != int(chain_id):
            logger.warning("Chain ID mismatch at %s: expected %s, got %s", rpc_url, chain_id, answered)
            return False
        return True

    def check_health(self, chain_id: int, rpc_url: Optional[str] = None) -> bool:
        url = (rpc_url or "").strip() or self._urls(chain_id)[0]
        try:
            w3 = get_web3(url)
            block = int(w3.eth.block_number)
            answered = int(w3.eth.chain_id)
        except Exception as exc:
            logger.warning("RPC unreachable for chain %s at %s: %s", chain_id, url, exc)
            return False
        return block > 0 and answered == int(chain_id)

    def get_gas_sample(self, chain_id: int) -> GasPriceSample:
        prices: List[int] = []
        errors: List[str] = []
        for url in self._urls(chain_id):
            try:
                prices.append(int(get_web3(url).eth.gas_price))
            except Exception as exc:
                errors.append(f"{url}: {exc}")

        if not prices:
            raise GasPriceUnavailableError(chain_id, "; ".join(errors))
        return median_gas_sample(prices)

    def get_max_gas_price(self, chain_id: int) -> Optional[int]:
        cap = self._chain(chain_id).max_gas_price
        return int(cap) if cap is not None else None

    def get_transaction_receipt(self, chain_id: int, tx_hash: str) -> Optional[TxReceipt]:
        w3 = get_web3(self._urls(chain_id)[0])
        try:
            rcpt = w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None

        eff = rcpt.get("effectiveGasPrice")
        if eff is None:
            eff = w3.eth.get_transaction(tx_hash).get("gasPrice") or 0

        return TxReceipt(
            tx_hash=Web3.to_hex(rcpt["transactionHash"]),
            block_number=int(rcpt["blockNumber"]),
            success=int(rcpt.get("status", 0)) == 1,
            gas_used=int(rcpt["gasUsed"]),
            effective_gas_price=int(eff),
        )
