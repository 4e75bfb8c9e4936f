from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class GasPriceSample:
    """
    Gas price observed across every configured endpoint of one chain.

    median: median of the answers, in wei.
    sources: raw answers, in wei.
    variance_pct: (max - min) * 100 / median, 0 with a single source.
    """

    median: int
    sources: List[int] = field(default_factory=list)
    variance_pct: int = 0


@dataclass(frozen=True)
class TxReceipt:
    tx_hash: str
    block_number: int
    success: bool
    gas_used: int
    effective_gas_price: int


class ChainRpcGateway(ABC):
    """
    Per-chain RPC oracle: health, gas price and receipts.
    """

    @abstractmethod
    def verify_chain_id(self, rpc_url: str, chain_id: int) -> bool:
        """
        True when `eth_chainId` at `rpc_url` answers `chain_id`. Never raises.
        """
        raise NotImplementedError

    @abstractmethod
    def check_health(self, chain_id: int, rpc_url: Optional[str] = None) -> bool:
        """
        True when the endpoint answers a block number > 0 for the right chain.

        Uses `rpc_url` when given, otherwise the chain's primary endpoint.
        Connection failures return False.
        """
        raise NotImplementedError

    @abstractmethod
    def get_gas_sample(self, chain_id: int) -> GasPriceSample:
        """
        Raises GasPriceUnavailableError when no endpoint answered.
        """
        raise NotImplementedError

    def get_gas_price(self, chain_id: int) -> int:
        return int(self.get_gas_sample(chain_id).median)

    @abstractmethod
    def get_max_gas_price(self, chain_id: int) -> Optional[int]:
        """
        Configured gas price ceiling for the chain, if any.
        """
        raise NotImplementedError

    @abstractmethod
    def get_transaction_receipt(self, chain_id: int, tx_hash: str) -> Optional[TxReceipt]:
        raise NotImplementedError
