"""
credmarket.disclosure — Selective disclosure of credential claims.

A partial credential reveals a subset of claims and lists the names of the
rest. Its commitment proof binds the full claim set:

    leaf(key)   = sha256(canonical_json([key, value, salt(key)]))
    commitment  = sha256(canonical_json(sorted([key, leaf(key)] for every claim)))

Revealed fields ship with their salt so a verifier can rebuild their leaves
and the commitment; hidden fields ship only their leaf digest. Salts are an
HMAC of ``credential_id:key`` under the transformer secret, which keeps
low-entropy hidden values (ages, yes/no flags) from being guessed off the
leaf digests.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import secrets
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Union

from .core import Credential, canonical_json, sha256_hex
from .errors import EmptyCredential, MalformedProof

logger = logging.getLogger(__name__)

COMMITMENT_SCHEME = "sha256-salted-leaves/v1"

# trust-related fields only; personal info (email, location, realName...) stays hidden
SELLER_PREVIEW_FIELDS = ("verified", "humanhood", "trustScore", "memberSince")
# aggregate counts and consent; raw URLs, timestamps and user agents stay hidden
DATASET_PREVIEW_FIELDS = ("siteCount", "categories", "timeRange", "verified", "consentGiven")

_HEX64 = re.compile(r"^[0-9a-f]{64}$")


@dataclass
class CommitmentProof:
    scheme: str
    commitment: str
    leaves: dict[str, str]
    revealed_salts: dict[str, str]
    hidden_count: int

    def to_dict(self) -> dict:
        return {
            "scheme": self.scheme,
            "commitment": self.commitment,
            "leaves": dict(self.leaves),
            "revealedSalts": dict(self.revealed_salts),
            "hiddenCount": self.hidden_count,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "CommitmentProof":
        if not isinstance(data, dict):
            raise MalformedProof("commitment proof must be an object")
        try:
            proof = cls(
                scheme=data["scheme"],
                commitment=data["commitment"],
                leaves=data["leaves"],
                revealed_salts=data["revealedSalts"],
                hidden_count=data["hiddenCount"],
            )
        except KeyError as e:
            raise MalformedProof(f"commitment proof missing {e.args[0]}")
        if proof.scheme != COMMITMENT_SCHEME:
            raise MalformedProof(f"unsupported scheme {proof.scheme!r}")
        if not isinstance(proof.commitment, str) or not _HEX64.match(proof.commitment):
            raise MalformedProof("commitment is not a sha256 hex digest")
        if not isinstance(proof.leaves, dict) or not all(
            isinstance(v, str) and _HEX64.match(v) for v in proof.leaves.values()
        ):
            raise MalformedProof("leaves must map field names to sha256 hex digests")
        if not isinstance(proof.revealed_salts, dict) or not all(
            isinstance(v, str) for v in proof.revealed_salts.values()
        ):
            raise MalformedProof("revealedSalts must map field names to strings")
        if isinstance(proof.hidden_count, bool) or not isinstance(proof.hidden_count, int):
            raise MalformedProof("hiddenCount must be an integer")
        return proof


@dataclass
class PartialCredential:
    """A credential with only some claims revealed.

    ``revealed_claims`` keys and ``hidden_fields`` are disjoint and together
    equal the original claim key set.
    """
    id: str
    type: str
    revealed_claims: dict[str, Any]
    hidden_fields: set[str]
    commitment_proof: Union[CommitmentProof, dict, None] = None

    def to_dict(self) -> dict:
        proof = self.commitment_proof
        return {
            "id": self.id,
            "type": self.type,
            "revealedClaims": dict(self.revealed_claims),
            "hiddenFields": sorted(self.hidden_fields),
            "commitmentProof": proof.to_dict() if isinstance(proof, CommitmentProof) else proof,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PartialCredential":
        return cls(
            id=data["id"],
            type=data.get("type", ""),
            revealed_claims=dict(data.get("revealedClaims") or {}),
            hidden_fields=set(data.get("hiddenFields") or []),
            commitment_proof=data.get("commitmentProof"),
        )


def _leaf(key: str, value: Any, salt: str) -> str:
    return sha256_hex(canonical_json([key, value, salt]))


def _commit(leaves: dict[str, str]) -> str:
    return sha256_hex(canonical_json(sorted([k, v] for k, v in leaves.items())))


class DisclosureTransformer:
    """Splits claim sets into revealed/hidden parts with a binding commitment."""

    def __init__(self, secret: Optional[Union[str, bytes]] = None):
        if secret is None:
            secret = secrets.token_bytes(32)
        self._secret = secret.encode() if isinstance(secret, str) else secret

    def _salt(self, credential_id: str, key: str) -> str:
        return hmac.new(self._secret, f"{credential_id}:{key}".encode(), hashlib.sha256).hexdigest()[:32]

    def commitment(self, credential: Credential) -> str:
        """Commitment over the credential's full claim set."""
        leaves = {k: _leaf(k, v, self._salt(credential.id, k)) for k, v in credential.claims.items()}
        return _commit(leaves)

    def disclose(self, credential: Credential, fields_to_reveal: Iterable[str]) -> PartialCredential:
        """Reveal the named claims; every other claim becomes a hidden field."""
        if not credential.claims:
            raise EmptyCredential(credential.id)

        reveal = set(fields_to_reveal)
        revealed: dict[str, Any] = {}
        hidden: set[str] = set()
        leaves: dict[str, str] = {}
        salts: dict[str, str] = {}

        for key, value in credential.claims.items():
            salt = self._salt(credential.id, key)
            leaves[key] = _leaf(key, value, salt)
            if key in reveal:
                revealed[key] = value
                salts[key] = salt
            else:
                hidden.add(key)

        proof = CommitmentProof(
            scheme=COMMITMENT_SCHEME,
            commitment=_commit(leaves),
            leaves=leaves,
            revealed_salts=salts,
            hidden_count=len(hidden),
        )
        logger.info("Selective disclosure", extra={
            "credential_id": credential.id,
            "revealed": sorted(revealed),
            "hidden_count": len(hidden),
        })
        return PartialCredential(
            id=credential.id,
            type=credential.type,
            revealed_claims=revealed,
            hidden_fields=hidden,
            commitment_proof=proof,
        )

    def seller_preview(self, credential: Credential) -> PartialCredential:
        return self.disclose(credential, SELLER_PREVIEW_FIELDS)

    def dataset_preview(self, credential: Credential) -> PartialCredential:
        return self.disclose(credential, DATASET_PREVIEW_FIELDS)

    def matches(self, partial: PartialCredential, credential: Credential) -> bool:
        """True if ``partial`` was derived from exactly this credential's claims."""
        if not self.verify(partial):
            return False
        proof = partial.commitment_proof
        if not isinstance(proof, CommitmentProof):
            proof = CommitmentProof.from_dict(proof)
        return hmac.compare_digest(proof.commitment, self.commitment(credential))

    @staticmethod
    def verify(partial: PartialCredential) -> bool:
        """Structural check of a partial credential. Fails closed.

        Confirms that revealed values reproduce their leaves and that the
        leaves reproduce the commitment; it says nothing about who issued the
        original credential.
        """
        if not partial.id or not partial.revealed_claims:
            return False
        try:
            proof = partial.commitment_proof
            if not isinstance(proof, CommitmentProof):
                proof = CommitmentProof.from_dict(proof)
        except MalformedProof as e:
            logger.warning("Rejected partial credential", extra={"credential_id": partial.id, "reason": e.reason})
            return False

        revealed = set(partial.revealed_claims)
        if revealed & partial.hidden_fields:
            return False
        if revealed | partial.hidden_fields != set(proof.leaves):
            return False
        if proof.hidden_count != len(partial.hidden_fields) or set(proof.revealed_salts) != revealed:
            return False
        for key, value in partial.revealed_claims.items():
            if not hmac.compare_digest(_leaf(key, value, proof.revealed_salts[key]), proof.leaves[key]):
                return False
        return hmac.compare_digest(_commit(proof.leaves), proof.commitment)
