from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from adapters.external.database.audit_repository_mongodb import DenylistRepositoryMongoDB
from adapters.external.database.dapp_repository_mongodb import DAppRepositoryMongoDB
from core.domain.entities.base_entity import MongoEntity
from core.domain.entities.dapp_entity import DAppAccountEntity
from core.domain.entities.audit_log_entity import DenylistEntryEntity
from core.domain.enums.paymaster_enums import DAppStatus, DenylistTargetType
from core.domain.repositories.audit_repository_interface import DenylistRepositoryInterface
from core.domain.repositories.dapp_repository_interface import DAppRepositoryInterface
from core.services.cas import retry_on_conflict
from core.services.exceptions import DAppNotFoundError
from core.services.ledger_writer import LedgerWriter, get_ledger_writer
from core.services.normalize import _norm

logger = logging.getLogger(__name__)

FRAUD_VELOCITY_TX_PER_MIN = 100


@dataclass
class ComplianceUseCase:
    denylist: DenylistRepositoryInterface
    dapps: DAppRepositoryInterface
    ledger_writer: Optional[LedgerWriter] = None

    @classmethod
    def from_settings(cls) -> "ComplianceUseCase":
        denylist = DenylistRepositoryMongoDB()
        try:
            denylist.ensure_indexes()
        except Exception:
            logger.exception("[Compliance] Could not ensure denylist indexes")
        return cls(denylist=denylist, dapps=DAppRepositoryMongoDB(), ledger_writer=get_ledger_writer())

    def denylist_dapp(self, *, admin_id: str, dapp_id: str, reason: str) -> DAppAccountEntity:
        """
        Ban a dapp: record it on the denylist and freeze its account so no
        new instance can be created for it.
        """
        dapp_id = _norm(dapp_id)
        reason = _norm(reason) or "unspecified"
        if self.dapps.get_dapp(dapp_id) is None:
            raise DAppNotFoundError(dapp_id)

        self.denylist.upsert(
            DenylistEntryEntity(
                target_type=DenylistTargetType.DAPP,
                target_id=dapp_id,
                reason=reason,
                active=True,
                timestamp=MongoEntity.now_ms(),
            )
        )

        def _freeze() -> DAppAccountEntity:
            current = self.dapps.get_dapp(dapp_id)
            if current is None:
                raise DAppNotFoundError(dapp_id)
            compliance = current.compliance.model_copy(update={"is_denylisted": True, "freeze_reason": reason})
            return self.dapps.update_dapp(
                dapp_id,
                {"compliance": compliance, "status": DAppStatus.BANNED},
                expected_version=current.version,
            )

        updated = retry_on_conflict(_freeze)
        logger.warning("[Compliance] DApp %s denylisted by %s: %s", dapp_id, admin_id, reason)

        if self.ledger_writer is not None:
            self.ledger_writer.audit(admin_id, "DENYLIST_DAPP", dapp_id, {"reason": reason})
        return updated

    def is_blocked(self, target_type: DenylistTargetType, target_id: str) -> bool:
        entry = self.denylist.get(DenylistTargetType(target_type), _norm(target_id))
        return bool(entry is not None and entry.active)

    def check_fraud_velocity(self, *, user_id: str, tx_count_last_min: int) -> bool:
        """
        True when the user's rate looks like abuse (more than 100 tx per minute).
        """
        if int(tx_count_last_min) > FRAUD_VELOCITY_TX_PER_MIN:
            logger.warning("[Compliance] Fraud velocity alert for user %s: %s tx/min", user_id, tx_count_last_min)
            return True
        return False
