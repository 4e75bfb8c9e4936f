from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from functools import lru_cache
from typing import Any, Dict, Optional, Set

from adapters.external.database.audit_repository_mongodb import AuditRepositoryMongoDB
from adapters.external.database.ledger_repository_mongodb import LedgerRepositoryMongoDB
from config import get_settings
from core.domain.entities.audit_log_entity import AuditLogEntity
from core.domain.entities.base_entity import MongoEntity
from core.domain.entities.ledger_entry_entity import LedgerEntry
from core.domain.repositories.audit_repository_interface import AuditRepositoryInterface
from core.domain.repositories.ledger_repository_interface import LedgerRepositoryInterface

logger = logging.getLogger(__name__)


def new_entry_id(prefix: str) -> str:
    return f"{prefix}_{MongoEntity.now_ms()}_{uuid.uuid4().hex[:10]}"


class LedgerWriter:
    """
    Best-effort, asynchronous writer for event and audit records.

    Used for records that describe an operation (QUOTE, REBALANCE,
    MODE_CHANGE, audit trail) rather than being the operation itself: a
    failed write is logged and never reaches the caller.
    """

    def __init__(
        self,
        ledger: LedgerRepositoryInterface,
        audit: Optional[AuditRepositoryInterface] = None,
        *,
        max_workers: int = 2,
    ):
        self.ledger = ledger
        self.audit_repo = audit
        self._executor = ThreadPoolExecutor(max_workers=max(1, int(max_workers)), thread_name_prefix="ledger-writer")
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def _track(self, fut: Future) -> Future:
        with self._lock:
            self._pending.add(fut)

        def _done(f: Future) -> None:
            with self._lock:
                self._pending.discard(f)

        fut.add_done_callback(_done)
        return fut

    def _append_entry(self, entry: LedgerEntry) -> None:
        try:
            self.ledger.append(entry)
        except Exception:
            logger.exception("Ledger write failed for %s entry %s", entry.type, entry.entry_id)

    def _append_audit(self, entry: AuditLogEntity) -> None:
        try:
            self.audit_repo.append(entry)
            logger.info("[Audit] %s on %s by %s", entry.action, entry.target_id, entry.admin_id)
        except Exception:
            logger.exception("Audit write failed for %s on %s", entry.action, entry.target_id)

    def submit(self, entry: LedgerEntry) -> Future:
        """
        Queue a ledger entry for insertion and return immediately.
        """
        return self._track(self._executor.submit(self._append_entry, entry))

    def audit(self, admin_id: str, action: str, target_id: str, changes: Optional[Dict[str, Any]] = None) -> Optional[Future]:
        if self.audit_repo is None:
            logger.info("[Audit] %s on %s by %s (no audit store)", action, target_id, admin_id)
            return None
        entry = AuditLogEntity(
            admin_id=str(admin_id),
            action=action,
            target_id=str(target_id),
            changes=changes or {},
            timestamp=MongoEntity.now_ms(),
        )
        return self._track(self._executor.submit(self._append_audit, entry))

    def flush(self, timeout: Optional[float] = None) -> None:
        """
        Block until every queued write has finished (used on shutdown and in tests).
        """
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self, wait_pending: bool = True) -> None:
        self._executor.shutdown(wait=wait_pending)


@lru_cache()
def get_ledger_writer() -> LedgerWriter:
    """
    Process-wide writer shared by the HTTP layer and the scheduled jobs.
    """
    s = get_settings()
    return LedgerWriter(
        LedgerRepositoryMongoDB(),
        AuditRepositoryMongoDB(),
        max_workers=s.LEDGER_WRITER_WORKERS,
    )
