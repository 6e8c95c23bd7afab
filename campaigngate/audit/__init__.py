"""
Campaign Gate - Audit Hash

Tamper-evident audit entries for governance actions:
- Deterministic SHA-256 over canonical JSON of the entry content
- Constant-time verification of stored entries
- Awaited, append-only writes to the governance collection
- Integrity scan over everything already written

Entries are independent; each carries its own hash and is not linked to
its predecessor.
"""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

from ..core.config import AuditConfig
from ..core.exceptions import AuditWriteError
from ..store import DocumentStore

logger = logging.getLogger(__name__)

HASH_PREFIX = "sha256:"

# Fields that identify an audit entry inside the shared governance collection.
AUDIT_FIELDS = ("action", "resourceId", "userId", "timestamp")


@dataclass
class AuditEntry:
    """
    A single governance audit record.

    Append-only: once persisted, an entry is never edited or deleted.
    """
    action: str
    resource_id: str
    user_id: str
    timestamp: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    hash: str = ""

    def content(self) -> Dict[str, Any]:
        """The hashed portion of the entry."""
        return {
            "action": self.action,
            "resourceId": self.resource_id,
            "userId": self.user_id,
            "timestamp": self.timestamp,
            "metadata": self.metadata or {},
        }

    def to_document(self) -> Dict[str, Any]:
        """Persisted ``governance/{id}`` shape."""
        doc = self.content()
        doc["hash"] = self.hash
        return doc

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "AuditEntry":
        return cls(
            action=doc["action"],
            resource_id=doc["resourceId"],
            user_id=doc["userId"],
            timestamp=doc["timestamp"],
            metadata=dict(doc.get("metadata") or {}),
            hash=doc.get("hash") or "",
        )


AuditData = Union[AuditEntry, Mapping[str, Any]]


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def canonicalize(data: AuditData) -> str:
    """Canonical JSON of the hashed fields: sorted keys, compact separators."""
    if isinstance(data, AuditEntry):
        content = data.content()
    else:
        content = {
            "action": data.get("action"),
            "resourceId": data.get("resourceId"),
            "userId": data.get("userId"),
            "timestamp": data.get("timestamp"),
            "metadata": data.get("metadata") or {},
        }
    return json.dumps(content, sort_keys=True, separators=(",", ":"), default=str)


def audit_hash(data: AuditData) -> str:
    """
    Compute the audit hash of an entry.

    Args:
        data: AuditEntry or mapping with action, resourceId, userId,
            timestamp and optional metadata

    Returns:
        "sha256:<hex digest>"
    """
    h = hashlib.sha256(canonicalize(data).encode("utf-8"))
    return f"{HASH_PREFIX}{h.hexdigest()}"


def verify_audit_hash(data: AuditData, expected_hash: str) -> bool:
    """Recompute the hash and compare it with the stored one."""
    if not expected_hash:
        return False
    return hmac.compare_digest(audit_hash(data), expected_hash)


def create_audit_entry(
    action: str,
    resource_id: str,
    user_id: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, str]:
    """
    Stamp a timestamp and hash for a new entry.

    The caller must persist exactly this timestamp and metadata alongside
    the hash, or the entry will not verify later.

    Returns:
        {"hash": ..., "timestamp": ...}
    """
    timestamp = _utc_timestamp()
    digest = audit_hash({
        "action": action,
        "resourceId": resource_id,
        "userId": user_id,
        "timestamp": timestamp,
        "metadata": metadata,
    })
    return {"hash": digest, "timestamp": timestamp}


def is_audit_record(doc: Mapping[str, Any]) -> bool:
    """Audit entries and review records share a collection; tell them apart."""
    return all(name in doc for name in AUDIT_FIELDS)


class AuditTrail:
    """
    Writes audit entries to the governance collection.

    Every write is awaited. A failed write raises AuditWriteError so the
    caller can report an unaudited action instead of a silent success.
    """

    def __init__(self, store: DocumentStore, config: Optional[AuditConfig] = None):
        self.store = store
        self.config = config or AuditConfig()

    async def record(
        self,
        action: str,
        resource_id: str,
        user_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditEntry:
        """
        Create and persist one audit entry.

        Returns:
            The persisted entry

        Raises:
            AuditWriteError: If the entry could not be written
        """
        stamp = create_audit_entry(action, resource_id, user_id, metadata)
        entry = AuditEntry(
            action=action,
            resource_id=resource_id,
            user_id=user_id,
            timestamp=stamp["timestamp"],
            metadata=dict(metadata or {}),
            hash=stamp["hash"],
        )

        try:
            await self.store.add(self.config.collection, entry.to_document())
        except Exception as e:
            logger.error(
                f"Audit write failed for {action} on {resource_id}: {e}",
                exc_info=True,
            )
            raise AuditWriteError(
                f"Audit entry for {action} could not be written",
                action=action,
                resource_id=resource_id,
                audit_hash=entry.hash,
            ) from e

        logger.debug(f"Audit entry written: {action} {resource_id} {entry.hash}")
        return entry

    async def entries_for(self, resource_id: str) -> List[AuditEntry]:
        """All audit entries recorded against a resource."""
        docs = await self.store.list(self.config.collection)
        return [
            AuditEntry.from_document(doc)
            for _, doc in docs
            if is_audit_record(doc) and doc.get("resourceId") == resource_id
        ]


@dataclass
class AuditVerificationReport:
    """Result of scanning the governance collection."""
    checked: int = 0
    verified: List[str] = field(default_factory=list)
    tampered: List[str] = field(default_factory=list)
    unhashed: List[str] = field(default_factory=list)
    skipped: int = 0

    @property
    def intact(self) -> bool:
        return not self.tampered and not self.unhashed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checked": self.checked,
            "verified": len(self.verified),
            "tampered": list(self.tampered),
            "unhashed": list(self.unhashed),
            "skipped": self.skipped,
            "intact": self.intact,
        }


async def verify_governance_records(
    store: DocumentStore,
    collection: str = "governance",
) -> AuditVerificationReport:
    """
    Verify every audit entry in the governance collection.

    Review records (no audit fields) are skipped.
    """
    report = AuditVerificationReport()

    for doc_id, doc in await store.list(collection):
        if not is_audit_record(doc):
            report.skipped += 1
            continue

        report.checked += 1
        stored_hash = doc.get("hash")
        if not stored_hash:
            report.unhashed.append(doc_id)
        elif verify_audit_hash(doc, stored_hash):
            report.verified.append(doc_id)
        else:
            logger.warning(f"Audit entry {doc_id} failed hash verification")
            report.tampered.append(doc_id)

    logger.info(
        f"Audit scan: {report.checked} checked, {len(report.tampered)} tampered, "
        f"{len(report.unhashed)} unhashed"
    )
    return report


__all__ = [
    "AuditEntry",
    "AuditTrail",
    "AuditVerificationReport",
    "audit_hash",
    "canonicalize",
    "create_audit_entry",
    "is_audit_record",
    "verify_audit_hash",
    "verify_governance_records",
]
