"""
credmarket.core — Credential records shared by the store, rule engine and
disclosure transformer.

Credential authenticity (issuer signatures, DID resolution) is established
outside this package; a credential arrives with ``verified`` already set by
the issuer/verifier that produced it.
"""

import copy
import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def canonical_json(data: Any) -> bytes:
    """Deterministic JSON encoding used for hashing and signing."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str).encode()


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


# ─── Credential ────────────────────────────────────────────────────

# wire keys describing the credential itself rather than a claim
_RESERVED_KEYS = frozenset({"id", "type", "issuer", "issuedAt", "claims", "revoked", "verified"})


@dataclass
class Credential:
    """A claim set issued by a trusted issuer about a subject.

    ``id`` is globally unique and immutable once issued. The only field that
    ever changes after issuance is ``revoked``, and only from False to True.
    Credentials presented for verification may have no id; the store refuses
    them and revocation checks treat them as unknown ids.
    """
    id: str
    type: str
    issuer: str = ""
    issued_at: str = field(default_factory=utc_now_iso)
    claims: dict[str, Any] = field(default_factory=dict)
    revoked: bool = False
    verified: bool = True

    @property
    def is_active(self) -> bool:
        return self.verified and not self.revoked

    def claim(self, key: str, default: Any = None) -> Any:
        return self.claims.get(key, default)

    def copy(self) -> "Credential":
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "issuer": self.issuer,
            "issuedAt": self.issued_at,
            "claims": copy.deepcopy(self.claims),
            "revoked": self.revoked,
            "verified": self.verified,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Credential":
        """Parse the wire shape.

        Presented credentials may omit ``id`` and carry their claims at the top
        level (``{"type": "trust-score", "trustScore": 80}``); such keys are
        folded into ``claims``, with an explicit ``claims`` object winning.
        """
        claims = {k: v for k, v in data.items() if k not in _RESERVED_KEYS}
        claims.update(data.get("claims") or {})
        return cls(
            id=str(data.get("id") or ""),
            type=data["type"],
            issuer=data.get("issuer", ""),
            issued_at=data.get("issuedAt") or utc_now_iso(),
            claims=claims,
            revoked=bool(data.get("revoked", False)),
            verified=bool(data.get("verified", True)),
        )

    def __repr__(self):
        status = "revoked" if self.revoked else "active"
        return f"Credential({self.id} {self.type} [{status}])"
