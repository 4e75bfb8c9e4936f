"""
Pytest fixtures for the paymaster tests.

Repositories are in-memory fakes that keep the Mongo adapters' contracts:
documents are stored serialized (money as strings), updates are
compare-and-swap on `version`, and the ledger rejects a second settlement
for the same quote. RPC and vault transfers are scripted fakes.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Dict, List, Optional, Sequence

import pytest

from adapters.external.database.helper_repo import dump_partial
from core.domain.entities.audit_log_entity import AuditLogEntity, DenylistEntryEntity
from core.domain.entities.chain_config_entity import ChainConfigEntity, RpcConfig
from core.domain.entities.dapp_entity import DAppAccountEntity
from core.domain.entities.dapp_instance_entity import DAppPaymasterInstanceEntity
from core.domain.entities.fee_quote_entity import FeeQuote
from core.domain.entities.ledger_entry_entity import LedgerEntry, SettlementLedgerEntry, ledger_entry_from_mongo
from core.domain.entities.paymaster_pool_entity import PaymasterPoolEntity
from core.domain.enums.paymaster_enums import ChainStatus, DenylistTargetType, LedgerEntryType, PaymasterMode
from core.domain.gateways.chain_rpc_gateway_interface import ChainRpcGateway, GasPriceSample, TxReceipt
from core.domain.gateways.vault_transfer_gateway_interface import VaultTransferGateway
from core.domain.repositories import (
    AuditRepositoryInterface,
    ChainConfigRepositoryInterface,
    DAppInstanceRepositoryInterface,
    DAppRepositoryInterface,
    DenylistRepositoryInterface,
    LedgerRepositoryInterface,
    PaymasterPoolRepositoryInterface,
    QuoteRepositoryInterface,
)
from core.services.exceptions import (
    ChainAlreadyRegisteredError,
    ConcurrentUpdateError,
    GasPriceUnavailableError,
    InstanceAlreadyExistsError,
    QuoteAlreadySettledError,
    TransactionRevertedError,
)
from core.services.ledger_writer import LedgerWriter

ONE = 10**18
GWEI = 10**9

VAULT_ADDRESS = "0x1111111111111111111111111111111111111111"
GAS_ACCOUNT_ADDRESS = "0x2222222222222222222222222222222222222222"


class StoreDown(ConnectionError):
    pass


class _VersionedStore:
    """
    Dict of serialized documents with Mongo-like CAS updates.
    """

    def __init__(self, name: str, model_cls):
        self.name = name
        self.model_cls = model_cls
        self.docs: Dict[Any, dict] = {}
        self.lock = threading.Lock()
        self.fail_reads = False
        self.fail_writes = False
        self.conflicts_remaining = 0
        self.update_calls = 0

    def read(self, key):
        if self.fail_reads:
            raise StoreDown(f"{self.name} unavailable")
        doc = self.docs.get(key)
        return self.model_cls.from_mongo(dict(doc)) if doc else None

    def put(self, key, entity) -> None:
        self.docs[key] = entity.to_mongo()

    def cas(self, key, fields: Dict[str, Any], expected_version: int):
        if self.fail_writes:
            raise StoreDown(f"{self.name} unavailable")
        with self.lock:
            self.update_calls += 1
            doc = self.docs.get(key)
            if self.conflicts_remaining > 0 and doc is not None:
                # someone else wrote first
                self.conflicts_remaining -= 1
                doc["version"] = int(doc.get("version", 0)) + 1
            if doc is None or int(doc.get("version", 0)) != int(expected_version):
                raise ConcurrentUpdateError(self.name, str(key), int(expected_version))
            doc.update(dump_partial(self.model_cls, fields))
            doc["version"] = int(doc.get("version", 0)) + 1
            return self.model_cls.from_mongo(dict(doc))


class FakeChainRepo(ChainConfigRepositoryInterface):
    def __init__(self):
        self.docs: Dict[int, dict] = {}

    def get(self, chain_id: int) -> Optional[ChainConfigEntity]:
        doc = self.docs.get(int(chain_id))
        return ChainConfigEntity.from_mongo(dict(doc)) if doc else None

    def list_all(self) -> Sequence[ChainConfigEntity]:
        return [ChainConfigEntity.from_mongo(dict(d)) for _, d in sorted(self.docs.items())]

    def insert(self, entity: ChainConfigEntity) -> ChainConfigEntity:
        if entity.chain_id in self.docs:
            raise ChainAlreadyRegisteredError(entity.chain_id)
        entity.id = ChainConfigEntity.doc_id(entity.chain_id)
        self.docs[entity.chain_id] = entity.to_mongo()
        return entity

    def delete(self, chain_id: int) -> bool:
        return self.docs.pop(int(chain_id), None) is not None

    def set_status(self, chain_id: int, status: ChainStatus) -> bool:
        doc = self.docs.get(int(chain_id))
        if doc is None:
            return False
        doc["status"] = ChainStatus(status).value
        return True


class FakePoolRepo(PaymasterPoolRepositoryInterface):
    def __init__(self):
        self.store = _VersionedStore("paymaster_pools", PaymasterPoolEntity)
        self.fail_inserts = False

    def get_pool(self, chain_id: int) -> Optional[PaymasterPoolEntity]:
        return self.store.read(int(chain_id))

    def insert(self, entity: PaymasterPoolEntity) -> PaymasterPoolEntity:
        if self.fail_inserts:
            raise StoreDown("paymaster_pools unavailable")
        entity.id = entity.pool_id
        self.store.put(entity.chain_id, entity)
        return entity

    def update_pool(self, chain_id: int, fields: Dict[str, Any], *, expected_version: int) -> PaymasterPoolEntity:
        return self.store.cas(int(chain_id), fields, expected_version)

    def raw(self, chain_id: int) -> dict:
        return self.store.docs[int(chain_id)]


class FakeDAppRepo(DAppRepositoryInterface):
    def __init__(self):
        self.store = _VersionedStore("paymaster_dapps", DAppAccountEntity)

    def get_dapp(self, dapp_id: str) -> Optional[DAppAccountEntity]:
        return self.store.read(dapp_id)

    def insert_dapp(self, entity: DAppAccountEntity) -> DAppAccountEntity:
        entity.id = entity.dapp_id
        self.store.put(entity.dapp_id, entity)
        return entity

    def update_dapp(self, dapp_id: str, fields: Dict[str, Any], *, expected_version: int) -> DAppAccountEntity:
        return self.store.cas(dapp_id, fields, expected_version)

    def list_by_owner(self, owner_id: str) -> Sequence[DAppAccountEntity]:
        return [DAppAccountEntity.from_mongo(dict(d)) for d in self.store.docs.values() if d["owner_id"] == owner_id]


class FakeInstanceRepo(DAppInstanceRepositoryInterface):
    def __init__(self):
        self.store = _VersionedStore("paymaster_instances", DAppPaymasterInstanceEntity)

    def get_instance(self, instance_id: str) -> Optional[DAppPaymasterInstanceEntity]:
        return self.store.read(instance_id)

    def insert_instance(self, entity: DAppPaymasterInstanceEntity) -> DAppPaymasterInstanceEntity:
        if entity.instance_id in self.store.docs:
            raise InstanceAlreadyExistsError(entity.instance_id)
        entity.id = entity.instance_id
        self.store.put(entity.instance_id, entity)
        return entity

    def update_instance(
        self,
        instance_id: str,
        fields: Dict[str, Any],
        *,
        expected_version: int,
    ) -> DAppPaymasterInstanceEntity:
        return self.store.cas(instance_id, fields, expected_version)

    def list_by_dapps(self, dapp_ids: Sequence[str]) -> Sequence[DAppPaymasterInstanceEntity]:
        wanted = set(dapp_ids)
        return [
            DAppPaymasterInstanceEntity.from_mongo(dict(d)) for d in self.store.docs.values() if d["dapp_id"] in wanted
        ]

    def list_all(self) -> Sequence[DAppPaymasterInstanceEntity]:
        return [DAppPaymasterInstanceEntity.from_mongo(dict(d)) for d in self.store.docs.values()]


class FakeQuoteRepo(QuoteRepositoryInterface):
    def __init__(self):
        self.store = _VersionedStore("paymaster_quotes", FeeQuote)

    def insert(self, quote: FeeQuote) -> FeeQuote:
        quote.id = quote.quote_id
        self.store.put(quote.quote_id, quote)
        return quote

    def get_quote(self, quote_id: str) -> Optional[FeeQuote]:
        return self.store.read(quote_id)

    def update_quote(self, quote_id: str, fields: Dict[str, Any], *, expected_version: int) -> FeeQuote:
        return self.store.cas(quote_id, fields, expected_version)


class FakeLedgerRepo(LedgerRepositoryInterface):
    def __init__(self):
        self.docs: Dict[str, dict] = {}
        self.lock = threading.Lock()
        self.fail_writes = False

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        if self.fail_writes:
            raise StoreDown("paymaster_ledger unavailable")
        with self.lock:
            if isinstance(entry, SettlementLedgerEntry) and self.find_settlement(entry.quote_id) is not None:
                raise QuoteAlreadySettledError(entry.quote_id)
            if entry.entry_id in self.docs:
                raise ValueError(f"duplicate ledger id {entry.entry_id}")
            doc = entry.to_mongo()
            doc["_id"] = entry.entry_id
            self.docs[entry.entry_id] = doc
        return entry

    def get(self, entry_id: str) -> Optional[LedgerEntry]:
        return ledger_entry_from_mongo(self.docs.get(entry_id))

    def find_settlement(self, quote_id: str) -> Optional[SettlementLedgerEntry]:
        for doc in self.docs.values():
            if doc["type"] == LedgerEntryType.SETTLEMENT.value and doc["quote_id"] == quote_id:
                return SettlementLedgerEntry.from_mongo(dict(doc))
        return None

    def list_recent(
        self,
        *,
        entry_type: Optional[LedgerEntryType] = None,
        chain_id: Optional[int] = None,
        limit: int = 100,
    ) -> Sequence[LedgerEntry]:
        docs = [
            d
            for d in self.docs.values()
            if (entry_type is None or d["type"] == LedgerEntryType(entry_type).value)
            and (chain_id is None or d["chain_id"] == int(chain_id))
        ]
        docs.sort(key=lambda d: d["timestamp"], reverse=True)
        return [ledger_entry_from_mongo(dict(d)) for d in docs[:limit]]

    def of_type(self, entry_type: LedgerEntryType) -> List[dict]:
        return [d for d in self.docs.values() if d["type"] == LedgerEntryType(entry_type).value]


class FakeAuditRepo(AuditRepositoryInterface):
    def __init__(self):
        self.entries: List[AuditLogEntity] = []

    def append(self, entry: AuditLogEntity) -> None:
        self.entries.append(entry)

    def list_for_target(self, target_id: str, limit: int = 100) -> Sequence[AuditLogEntity]:
        return [e for e in self.entries if e.target_id == target_id][:limit]


class FakeDenylistRepo(DenylistRepositoryInterface):
    def __init__(self):
        self.entries: Dict[str, DenylistEntryEntity] = {}

    def upsert(self, entry: DenylistEntryEntity) -> None:
        self.entries[DenylistEntryEntity.doc_id(entry.target_type, entry.target_id)] = entry

    def get(self, target_type: DenylistTargetType, target_id: str) -> Optional[DenylistEntryEntity]:
        return self.entries.get(DenylistEntryEntity.doc_id(target_type, target_id))


class FakeRpc(ChainRpcGateway):
    """
    Scripted RPC: every chain is healthy with a stable 20 gwei price unless told otherwise.
    """

    def __init__(self):
        self.healthy = True
        self.gas_price = 20 * GWEI
        self.variance_pct = 0
        self.gas_error = False
        self.max_gas_price: Optional[int] = None
        self.served_chain_ids: Dict[str, int] = {}
        self.receipts: Dict[str, TxReceipt] = {}
        self.health_calls = 0
        self.gas_calls = 0

    def verify_chain_id(self, rpc_url: str, chain_id: int) -> bool:
        return self.served_chain_ids.get(rpc_url) == int(chain_id)

    def check_health(self, chain_id: int, rpc_url: Optional[str] = None) -> bool:
        self.health_calls += 1
        return self.healthy

    def get_gas_sample(self, chain_id: int) -> GasPriceSample:
        self.gas_calls += 1
        if self.gas_error:
            raise GasPriceUnavailableError(chain_id, "all endpoints failed")
        return GasPriceSample(median=self.gas_price, sources=[self.gas_price], variance_pct=self.variance_pct)

    def get_max_gas_price(self, chain_id: int) -> Optional[int]:
        return self.max_gas_price

    def get_transaction_receipt(self, chain_id: int, tx_hash: str) -> Optional[TxReceipt]:
        return self.receipts.get(tx_hash)


class FakeVault(VaultTransferGateway):
    """
    Transfers land as soon as they are sent unless `hold` is set; held ones
    stay unmined until `land` or `revert` is called.
    """

    def __init__(self):
        self.transfers: List[dict] = []
        self.fail = False
        self.hold = False
        self.delay_sec = 0.0
        self.outcomes: Dict[str, Optional[bool]] = {}
        self.confirm_calls: List[tuple] = []
        self._lock = threading.Lock()

    def transfer(self, *, chain_id: int, vault_address: str, gas_account_address: str, amount: int) -> str:
        if self.delay_sec:
            time.sleep(self.delay_sec)
        if self.fail:
            raise RuntimeError("vault transfer rejected")
        with self._lock:
            self.transfers.append(
                {"chain_id": chain_id, "from": vault_address, "to": gas_account_address, "amount": amount}
            )
            tx_hash = "0x" + f"{len(self.transfers):064x}"
            self.outcomes[tx_hash] = None if self.hold else True
            return tx_hash

    def confirm(self, *, chain_id: int, tx_hash: str, timeout_sec: float = 0) -> bool:
        self.confirm_calls.append((tx_hash, timeout_sec))
        outcome = self.outcomes.get(tx_hash)
        if outcome is False:
            raise TransactionRevertedError(tx_hash=tx_hash, receipt={"status": 0})
        return bool(outcome)

    def land(self, tx_hash: str) -> None:
        self.outcomes[tx_hash] = True

    def revert(self, tx_hash: str) -> None:
        self.outcomes[tx_hash] = False


@pytest.fixture
def chains():
    return FakeChainRepo()


@pytest.fixture
def pools():
    return FakePoolRepo()


@pytest.fixture
def dapps():
    return FakeDAppRepo()


@pytest.fixture
def instances():
    return FakeInstanceRepo()


@pytest.fixture
def quotes():
    return FakeQuoteRepo()


@pytest.fixture
def ledger():
    return FakeLedgerRepo()


@pytest.fixture
def audit():
    return FakeAuditRepo()


@pytest.fixture
def denylist():
    return FakeDenylistRepo()


@pytest.fixture
def rpc():
    return FakeRpc()


@pytest.fixture
def vault():
    return FakeVault()


@pytest.fixture
def writer(ledger, audit):
    w = LedgerWriter(ledger, audit, max_workers=1)
    yield w
    w.shutdown(wait_pending=True)


def make_chain(chain_id: int = 1, *, status: ChainStatus = ChainStatus.ACTIVE) -> ChainConfigEntity:
    return ChainConfigEntity(
        chain_id=chain_id,
        name=f"chain-{chain_id}",
        native_token="ETH",
        rpc=RpcConfig(primary=f"http://rpc-{chain_id}.local"),
        explorer_url=f"http://explorer-{chain_id}.local",
        status=status,
    )


@pytest.fixture
def add_chain(chains, pools):
    """
    Register a chain and its pool directly in the fakes.
    """

    def _add(
        chain_id: int = 1,
        *,
        balance: int = 3 * ONE,
        min_balance: int = ONE,
        target_balance: int = 5 * ONE,
        mode: PaymasterMode = PaymasterMode.NORMAL,
        vault_address: str = VAULT_ADDRESS,
        gas_account_address: str = GAS_ACCOUNT_ADDRESS,
    ) -> PaymasterPoolEntity:
        chains.insert(make_chain(chain_id))
        return pools.insert(
            PaymasterPoolEntity(
                chain_id=chain_id,
                gas_account_address=gas_account_address,
                vault_address=vault_address,
                balance=balance,
                min_balance=min_balance,
                target_balance=target_balance,
                spend_rate_24h=0,
                mode=mode,
            )
        )

    return _add
