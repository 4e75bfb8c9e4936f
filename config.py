import os
from dotenv import load_dotenv
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, List

load_dotenv()


def _parse_csv(value: str, *, lower: bool = False) -> List[str]:
    if not value:
        return []
    items = [x.strip() for x in value.split(",")]
    items = [x for x in items if x]
    if lower:
        items = [x.lower() for x in items]
    return items


def _parse_pairs(value: str) -> Dict[str, str]:
    """
    Parse "k1:v1,k2:v2" into a dict. Items without ':' are ignored.
    """
    out: Dict[str, str] = {}
    for item in _parse_csv(value):
        k, sep, v = item.partition(":")
        if not sep:
            continue
        k, v = k.strip(), v.strip()
        if k and v:
            out[k] = v
    return out


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    return int(raw) if raw else default


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


@dataclass
class Settings:
    # MongoDB
    MONGO_URI: str
    MONGO_DB: str

    # vault signer (funds the gas accounts)
    PRIVATE_KEY: str

    # ---- Admin / Privy Auth ----
    PRIVY_APP_ID: str
    PRIVY_APP_SECRET: str
    ADMIN_WALLETS: str

    # generic
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    # scheduling
    SCHEDULER_ENABLED: bool = True
    HEALTH_CHECK_INTERVAL_SEC: int = 10
    REBALANCE_INTERVAL_SEC: int = 6 * 60 * 60
    TOP_UP_THRESHOLD_PCT: int = 80
    TOP_UP_RECEIPT_TIMEOUT_SEC: int = 120

    # mongo server selection / connect timeout
    MONGO_TIMEOUT_MS: int = 5000

    # quoting
    QUOTE_TTL_SEC: int = 60
    QUOTE_BUFFER_PCT: int = 5
    QUOTE_SURCHARGE_PCT: int = 20
    QUOTE_SLO_MS: int = 800
    DEFAULT_GAS_PRICE_WEI: int = 1_000_000_000
    CHAIN_DEFAULT_GAS_PRICES: Dict[int, int] = field(default_factory=dict)
    TOKEN_RATES: Dict[str, str] = field(default_factory=dict)

    # health
    MAX_GAS_VARIANCE_PCT: int = 25

    LEDGER_WRITER_WORKERS: int = 2


@lru_cache()
def get_settings() -> Settings:
    gas_defaults_raw = _parse_pairs(os.getenv("CHAIN_DEFAULT_GAS_PRICES", "1:20000000000,9999:1000000000"))
    gas_defaults = {int(k): int(v) for k, v in gas_defaults_raw.items()}

    # token units per 1 native unit
    rates = {k.upper(): v for k, v in _parse_pairs(os.getenv("TOKEN_RATES", "USDT:0.15,ETH:0.0003")).items()}

    return Settings(
        # Vault signer
        PRIVATE_KEY=os.getenv("PRIVATE_KEY", ""),

        # Mongo
        MONGO_URI=os.getenv("MONGO_URI", "mongodb://mongo-paymaster:27017/paymaster"),
        MONGO_DB=os.getenv("MONGO_DB", "paymaster"),
        MONGO_TIMEOUT_MS=_env_int("MONGO_TIMEOUT_MS", 5000),

        # Admin / Privy Auth
        PRIVY_APP_ID=os.getenv("PRIVY_APP_ID", ""),
        ADMIN_WALLETS=os.getenv("ADMIN_WALLETS", ""),
        PRIVY_APP_SECRET=os.getenv("PRIVY_APP_SECRET", ""),

        ENV=os.getenv("ENV", "dev"),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),

        SCHEDULER_ENABLED=_env_bool("SCHEDULER_ENABLED", True),
        HEALTH_CHECK_INTERVAL_SEC=_env_int("HEALTH_CHECK_INTERVAL_SEC", 10),
        REBALANCE_INTERVAL_SEC=_env_int("REBALANCE_INTERVAL_SEC", 6 * 60 * 60),
        TOP_UP_THRESHOLD_PCT=_env_int("TOP_UP_THRESHOLD_PCT", 80),
        TOP_UP_RECEIPT_TIMEOUT_SEC=_env_int("TOP_UP_RECEIPT_TIMEOUT_SEC", 120),

        QUOTE_TTL_SEC=_env_int("QUOTE_TTL_SEC", 60),
        QUOTE_BUFFER_PCT=_env_int("QUOTE_BUFFER_PCT", 5),
        QUOTE_SURCHARGE_PCT=_env_int("QUOTE_SURCHARGE_PCT", 20),
        QUOTE_SLO_MS=_env_int("QUOTE_SLO_MS", 800),
        DEFAULT_GAS_PRICE_WEI=_env_int("DEFAULT_GAS_PRICE_WEI", 1_000_000_000),
        CHAIN_DEFAULT_GAS_PRICES=gas_defaults,
        TOKEN_RATES=rates,

        MAX_GAS_VARIANCE_PCT=_env_int("MAX_GAS_VARIANCE_PCT", 25),
        LEDGER_WRITER_WORKERS=_env_int("LEDGER_WRITER_WORKERS", 2),
    )
