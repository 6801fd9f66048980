"""credmarket.store — Issued credentials and their revocations.

Provides:
- RevocationPolicy — how unknown credential ids are treated by ``is_revoked``
- RevocationReason — common revocation reasons (free-form strings also accepted)
- RevocationRecord — who revoked a credential, why, and when
- CredentialStore — put/get/revoke over an injected StorageBackend
"""

import logging
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from .core import Credential
from .errors import DuplicateId, NotFound
from .events import EventBus, EventType
from .storage import MemoryBackend, StorageBackend

logger = logging.getLogger(__name__)

CREDENTIAL_PREFIX = "credential:"
REVOCATION_PREFIX = "revocation:"


class RevocationPolicy(str, Enum):
    """Treatment of credential ids the store has never seen.

    FAIL_OPEN reports unknown ids as not revoked (the marketplace default).
    FAIL_CLOSED reports them as revoked, for high-value programs that must not
    trust credentials issued elsewhere.
    """
    FAIL_OPEN = "fail-open"
    FAIL_CLOSED = "fail-closed"


class RevocationReason(str, Enum):
    """Standard reasons for revoking a credential."""
    FRAUD = "fraud"
    KEY_COMPROMISE = "key_compromise"
    SUPERSEDED = "superseded"
    PRIVILEGE_WITHDRAWN = "privilege_withdrawn"


class RevocationRecord:
    """A single revocation entry."""

    def __init__(self, credential_id: str, reason: str, revoked_by: str = "",
                 revoked_at: Optional[str] = None):
        self.credential_id = credential_id
        self.reason = reason
        self.revoked_by = revoked_by
        self.revoked_at = revoked_at or datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> dict:
        return {
            "credentialId": self.credential_id,
            "revoked": True,
            "revokedAt": self.revoked_at,
            "reason": self.reason,
            "revokedBy": self.revoked_by,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RevocationRecord":
        return cls(
            credential_id=data["credentialId"],
            reason=data.get("reason", ""),
            revoked_by=data.get("revokedBy", ""),
            revoked_at=data.get("revokedAt"),
        )

    def __repr__(self):
        return f"RevocationRecord({self.credential_id}, {self.reason!r})"


class CredentialStore:
    """Owns issued credential records and the revocation set.

    External issuers only append; the one in-place mutation is the one-way
    ``revoked`` flip. Every operation runs under one lock, so a committed
    revocation is visible to all later reads of the same id.
    """

    def __init__(self, backend: Optional[StorageBackend] = None,
                 revocation_policy: RevocationPolicy = RevocationPolicy.FAIL_OPEN,
                 event_bus: Optional[EventBus] = None):
        self._backend = backend or MemoryBackend()
        self.revocation_policy = RevocationPolicy(revocation_policy)
        self._event_bus = event_bus
        self._lock = threading.RLock()

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    def put(self, credential: Credential) -> Credential:
        """Insert a newly issued credential. Raises DuplicateId if the id exists."""
        if not credential.id:
            raise ValueError("a stored credential needs an id")
        key = CREDENTIAL_PREFIX + credential.id
        with self._lock:
            if self._backend.exists(key):
                raise DuplicateId(credential.id)
            self._backend.save(key, credential.to_dict())
        logger.info("Credential stored", extra={"credential_id": credential.id, "type": credential.type})
        return credential

    def get(self, credential_id: str) -> Credential:
        """Return the credential with its current revocation state. Raises NotFound."""
        with self._lock:
            data = self._backend.load(CREDENTIAL_PREFIX + credential_id)
            if data is None:
                raise NotFound("Credential", credential_id)
            credential = Credential.from_dict(data)
            if self._backend.exists(REVOCATION_PREFIX + credential_id):
                credential.revoked = True
        return credential

    def revoke(self, credential_id: str, reason: Union[str, RevocationReason] = "",
               revoked_by: str = "") -> RevocationRecord:
        """Revoke a credential. Idempotent: a repeat call returns the first record."""
        if isinstance(reason, RevocationReason):
            reason = reason.value
        with self._lock:
            data = self._backend.load(CREDENTIAL_PREFIX + credential_id)
            if data is None:
                raise NotFound("Credential", credential_id)
            existing = self._backend.load(REVOCATION_PREFIX + credential_id)
            if existing is not None:
                return RevocationRecord.from_dict(existing)

            record = RevocationRecord(credential_id, reason=reason, revoked_by=revoked_by)
            self._backend.save(REVOCATION_PREFIX + credential_id, record.to_dict())
            data["revoked"] = True
            self._backend.save(CREDENTIAL_PREFIX + credential_id, data)

        logger.warning("Credential revoked", extra={
            "credential_id": credential_id, "reason": reason, "revoked_by": revoked_by,
        })
        if self._event_bus is not None:
            self._event_bus.emit(EventType.CREDENTIAL_REVOKED, record.to_dict(), source=revoked_by)
        return record

    def is_revoked(self, credential_id: str) -> bool:
        """Revocation check. Unknown ids follow the configured RevocationPolicy."""
        with self._lock:
            if self._backend.exists(REVOCATION_PREFIX + credential_id):
                return True
            data = self._backend.load(CREDENTIAL_PREFIX + credential_id)
        if data is None:
            return self.revocation_policy == RevocationPolicy.FAIL_CLOSED
        return bool(data.get("revoked", False))

    def revocation_status(self, credential_id: str) -> dict:
        revoked = self.is_revoked(credential_id)
        return {
            "credentialId": credential_id,
            "isRevoked": revoked,
            "status": "REVOKED" if revoked else "ACTIVE",
        }

    def get_revocation(self, credential_id: str) -> Optional[RevocationRecord]:
        with self._lock:
            data = self._backend.load(REVOCATION_PREFIX + credential_id)
        return RevocationRecord.from_dict(data) if data else None

    @property
    def revoked_ids(self) -> set[str]:
        with self._lock:
            keys = self._backend.list_keys(REVOCATION_PREFIX)
        return {k[len(REVOCATION_PREFIX):] for k in keys}

    def __contains__(self, credential_id: str) -> bool:
        with self._lock:
            return self._backend.exists(CREDENTIAL_PREFIX + credential_id)

    def __len__(self):
        with self._lock:
            return len(self._backend.list_keys(CREDENTIAL_PREFIX))

    def __repr__(self):
        return f"CredentialStore({len(self)} credentials, {len(self.revoked_ids)} revoked)"
