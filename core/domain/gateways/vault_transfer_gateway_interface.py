from __future__ import annotations

from abc import ABC, abstractmethod


class VaultTransferGateway(ABC):
    """
    Moves native gas token from a vault to a pool's gas account.

    Sending and confirming are separate steps so the caller can record the
    transaction before waiting on it.
    """

    @abstractmethod
    def transfer(
        self,
        *,
        chain_id: int,
        vault_address: str,
        gas_account_address: str,
        amount: int,
    ) -> str:
        """
        Sign and broadcast the transfer and return its transaction hash
        without waiting for a receipt.

        Raises if nothing was broadcast.
        """
        raise NotImplementedError

    @abstractmethod
    def confirm(self, *, chain_id: int, tx_hash: str, timeout_sec: float = 0) -> bool:
        """
        Wait up to `timeout_sec` for the receipt of `tx_hash` (0 = look once).

        Returns True once the transfer is mined and False while it is not.

        Raises:
            TransactionRevertedError: the transfer was mined with status=0.
        """
        raise NotImplementedError
