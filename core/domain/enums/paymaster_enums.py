from __future__ import annotations

from enum import StrEnum


class PaymasterMode(StrEnum):
    """
    Operating mode of a per-chain paymaster pool.

    - INIT: value at pool creation, before the first health check.
    - NORMAL: sponsorship enabled.
    - SAFE_MODE: a health predicate failed (RPC, gas price or balance).
    - PAUSED: admin override; never cleared by the health monitor.
    - THROTTLED / RECOVERY: reserved, no transition rule enters them.
    """

    INIT = "INIT"
    NORMAL = "NORMAL"
    SAFE_MODE = "SAFE_MODE"
    THROTTLED = "THROTTLED"
    PAUSED = "PAUSED"
    RECOVERY = "RECOVERY"


class ChainStatus(StrEnum):
    TESTING = "TESTING"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"


class NodeType(StrEnum):
    MANAGED = "MANAGED"
    SELF_HOSTED = "SELF_HOSTED"


class FeeModel(StrEnum):
    EIP1559 = "EIP1559"
    LEGACY = "LEGACY"


class DAppStatus(StrEnum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    BANNED = "BANNED"


class SponsorScheme(StrEnum):
    FULL = "FULL"
    DISCOUNT = "DISCOUNT"
    SUBSIDIZED = "SUBSIDIZED"


class QuoteStatus(StrEnum):
    PENDING = "PENDING"
    EXECUTED = "EXECUTED"
    SETTLED = "SETTLED"
    EXPIRED = "EXPIRED"
    DECLINED = "DECLINED"


class LedgerEntryType(StrEnum):
    QUOTE = "QUOTE"
    DEDUCT = "DEDUCT"
    EXECUTE = "EXECUTE"
    SETTLEMENT = "SETTLEMENT"
    REBALANCE = "REBALANCE"
    MODE_CHANGE = "MODE_CHANGE"


class TopUpReason(StrEnum):
    BATCH_SCHEDULER = "BATCH_SCHEDULER"
    EMERGENCY_TRIGGER = "EMERGENCY_TRIGGER"


class DenylistTargetType(StrEnum):
    DAPP = "DAPP"
    USER = "USER"


class GasStrategy(StrEnum):
    """
    Gas padding applied to vault top-up transfers.
    """

    DEFAULT = "default"
    BUFFERED = "buffered"
    AGGRESSIVE = "aggressive"
