from .audit_repository_interface import AuditRepositoryInterface, DenylistRepositoryInterface
from .chain_config_repository_interface import ChainConfigRepositoryInterface
from .dapp_repository_interface import DAppInstanceRepositoryInterface, DAppRepositoryInterface
from .ledger_repository_interface import LedgerRepositoryInterface
from .paymaster_pool_repository_interface import PaymasterPoolRepositoryInterface
from .quote_repository_interface import QuoteRepositoryInterface

__all__ = [
    "AuditRepositoryInterface",
    "ChainConfigRepositoryInterface",
    "DAppInstanceRepositoryInterface",
    "DAppRepositoryInterface",
    "DenylistRepositoryInterface",
    "LedgerRepositoryInterface",
    "PaymasterPoolRepositoryInterface",
    "QuoteRepositoryInterface",
]
