from __future__ import annotations

from typing import Any, Optional


class PaymasterError(Exception):
    """
    Base class for domain errors raised to callers of the paymaster use cases.
    """


class RecordValidationError(PaymasterError):
    """
    A stored document does not match its schema (missing or invalid fields).
    """

    def __init__(self, entity: str, record_id: Optional[str], detail: str):
        self.entity = entity
        self.record_id = record_id
        self.detail = detail
        super().__init__(f"Invalid {entity} record {record_id!r}: {detail}")


class ConcurrentUpdateError(PaymasterError):
    """
    Compare-and-swap on a record's version failed: someone else wrote first.
    """

    def __init__(self, collection: str, record_id: str, expected_version: int):
        self.collection = collection
        self.record_id = record_id
        self.expected_version = expected_version
        super().__init__(
            f"Concurrent update on {collection}/{record_id} (expected version {expected_version})"
        )


class NotFoundError(PaymasterError, LookupError):
    pass


class ChainNotFoundError(NotFoundError):
    def __init__(self, chain_id: int):
        self.chain_id = chain_id
        super().__init__(f"Chain {chain_id} is not registered.")


class PoolNotFoundError(NotFoundError):
    def __init__(self, chain_id: int):
        self.chain_id = chain_id
        super().__init__(f"Pool for chain {chain_id} not found.")


class DAppNotFoundError(NotFoundError):
    def __init__(self, dapp_id: str):
        self.dapp_id = dapp_id
        super().__init__(f"DApp {dapp_id} not found.")


class InstanceNotFoundError(NotFoundError):
    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Instance {instance_id} not found.")


class QuoteNotFoundError(NotFoundError):
    def __init__(self, quote_id: str):
        self.quote_id = quote_id
        super().__init__(f"Quote {quote_id} was not issued by this service.")


class ConflictError(PaymasterError):
    pass


class ChainAlreadyRegisteredError(ConflictError):
    def __init__(self, chain_id: int):
        self.chain_id = chain_id
        super().__init__(f"Chain {chain_id} already registered.")


class InstanceAlreadyExistsError(ConflictError):
    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Instance {instance_id} already exists.")


class QuoteAlreadySettledError(ConflictError):
    def __init__(self, quote_id: str):
        self.quote_id = quote_id
        super().__init__(f"Quote {quote_id} has already been settled.")


class TopUpInFlightError(ConflictError):
    def __init__(self, chain_id: int, tx_hash: str):
        self.chain_id = chain_id
        self.tx_hash = tx_hash
        super().__init__(f"Pool for chain {chain_id} has top-up {tx_hash} in flight; retry once it is confirmed.")


class DAppBlockedError(PaymasterError):
    def __init__(self, dapp_id: str, reason: str):
        self.dapp_id = dapp_id
        self.reason = reason
        super().__init__(f"DApp {dapp_id} is blocked from creating instances ({reason}).")


class InvalidAmountError(PaymasterError, ValueError):
    pass


class InvalidRpcError(PaymasterError, ValueError):
    pass


class InvalidModeError(PaymasterError, ValueError):
    pass


class UnsupportedTokenError(PaymasterError, ValueError):
    def __init__(self, token: str):
        self.token = token
        super().__init__(f"No exchange rate configured for token {token!r}.")


class QuoteExpiredError(PaymasterError):
    def __init__(self, quote_id: str, expiry_ms: int, now_ms: int):
        self.quote_id = quote_id
        self.expiry_ms = expiry_ms
        self.now_ms = now_ms
        super().__init__(f"Quote {quote_id} expired at {expiry_ms} (now {now_ms}).")


class QuoteNotSettleableError(PaymasterError):
    def __init__(self, quote_id: str, status: str):
        self.quote_id = quote_id
        self.status = status
        super().__init__(f"Quote {quote_id} cannot be settled from status {status}.")


class GasPriceUnavailableError(PaymasterError):
    def __init__(self, chain_id: int, detail: str = ""):
        self.chain_id = chain_id
        super().__init__(f"No gas price source answered for chain {chain_id}. {detail}".strip())


class TransactionRevertedError(PaymasterError):
    """
    Raised after a transaction was mined with status=0.
    """

    def __init__(
        self,
        *,
        tx_hash: str,
        receipt: Any = None,
        msg: str = "Transaction reverted (status=0)",
    ):
        self.tx_hash = tx_hash
        self.receipt = receipt
        super().__init__(f"{msg}: {tx_hash}")
