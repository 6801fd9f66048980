"""
credmarket.proofs — Range and set-membership attestations over private claims.

A proof exposes only the predicate result and the bounds/set it was checked
against; the underlying value never appears in ``public_inputs``. Callers read
``public_inputs`` and hand the proof back to a backend's ``verify``; they never
interpret ``opaque_proof`` themselves, so a real SNARK/STARK verifier can
replace the backends here without changing callers.

Backends:
    PredicateProofBackend — deterministic digest over the public inputs (tests)
    SignedProofBackend    — Ed25519 prover key signs the public inputs
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional

from nacl.encoding import HexEncoder
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .core import canonical_json, sha256_hex
from .errors import MalformedProof

logger = logging.getLogger(__name__)

DATASET_CATEGORIES = (
    "tech", "finance", "ecommerce", "news", "social", "entertainment",
    "browsing", "tracked-session", "user-activity",
)


class ProofType(str, Enum):
    RANGE = "range"
    MEMBERSHIP = "membership"


@dataclass
class Proof:
    """Attestation that a hidden claim value satisfies a predicate."""
    proof_type: ProofType
    claim: str
    public_inputs: dict
    opaque_proof: str
    metadata: dict = field(default_factory=dict)

    @property
    def holds(self) -> bool:
        """Predicate result as published in the public inputs."""
        key = "meetsRequirement" if self.proof_type == ProofType.RANGE else "isMember"
        return self.public_inputs.get(key) is True

    def to_dict(self) -> dict:
        return {
            "proofType": self.proof_type.value,
            "claim": self.claim,
            "publicInputs": dict(self.public_inputs),
            "proof": self.opaque_proof,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Proof":
        if not isinstance(data, dict):
            raise MalformedProof("proof must be an object")
        try:
            proof_type = ProofType(data["proofType"])
            claim = data["claim"]
            public_inputs = data["publicInputs"]
            opaque = data["proof"]
        except KeyError as e:
            raise MalformedProof(f"missing field {e.args[0]}", claim=data.get("claim"))
        except ValueError:
            raise MalformedProof(f"unsupported proof type {data.get('proofType')!r}", claim=data.get("claim"))
        if not isinstance(public_inputs, dict) or not isinstance(opaque, str):
            raise MalformedProof("publicInputs must be an object and proof a string", claim=claim)
        return cls(proof_type, claim, public_inputs, opaque, dict(data.get("metadata") or {}))


@dataclass
class DatasetQualityProof:
    """Composite proof that a dataset is non-empty and of a known category."""
    site_count_proof: Proof
    category_proof: Proof
    timestamp: str
    verified: bool

    def to_dict(self) -> dict:
        return {
            "siteCountProof": self.site_count_proof.to_dict(),
            "categoryProof": self.category_proof.to_dict(),
            "timestamp": self.timestamp,
            "verified": self.verified,
        }


def _range_inputs(value: Any, min_range: float, max_range: Optional[float]) -> dict:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"range proofs need a numeric value, got {type(value).__name__}")
    if max_range is not None and max_range < min_range:
        raise ValueError(f"max_range {max_range} is below min_range {min_range}")
    meets = value >= min_range and (max_range is None or value <= max_range)
    return {"minRange": min_range, "maxRange": max_range, "meetsRequirement": meets}


def _check_structure(proof: Proof) -> None:
    inputs = proof.public_inputs
    if proof.proof_type == ProofType.RANGE:
        required = ("minRange", "maxRange", "meetsRequirement")
    else:
        required = ("allowedSet", "isMember")
    missing = [k for k in required if k not in inputs]
    if missing:
        raise MalformedProof(f"public inputs missing {', '.join(missing)}", claim=proof.claim)
    if proof.proof_type == ProofType.RANGE:
        if not isinstance(inputs["minRange"], (int, float)) or isinstance(inputs["minRange"], bool):
            raise MalformedProof("minRange must be numeric", claim=proof.claim)
    elif not isinstance(inputs["allowedSet"], list):
        raise MalformedProof("allowedSet must be a list", claim=proof.claim)
    if not proof.opaque_proof:
        raise MalformedProof("empty proof bytes", claim=proof.claim)


# ─── Backend interface ─────────────────────────────────────────────

class ProofBackend(ABC):
    """Capability interface for producing and checking claim proofs."""

    proof_system: str = "abstract"

    @abstractmethod
    def _prove(self, statement: dict) -> str:
        """Produce opaque proof bytes (hex) binding the public statement."""

    @abstractmethod
    def _check(self, statement: dict, opaque_proof: str) -> bool:
        """Check opaque proof bytes against the public statement."""

    def _build(self, proof_type: ProofType, claim: str, public_inputs: dict, extra: Optional[dict] = None) -> Proof:
        statement = {"proofType": proof_type.value, "claim": claim, "publicInputs": public_inputs}
        metadata = {
            "proofSystem": self.proof_system,
            "generated": datetime.now(timezone.utc).isoformat(),
        }
        metadata.update(extra or {})
        return Proof(proof_type, claim, public_inputs, self._prove(statement), metadata)

    def range_proof(self, claim: str, value: float, min_range: float,
                    max_range: Optional[float] = None) -> Proof:
        """Prove ``min_range <= value <= max_range`` without publishing value."""
        inputs = _range_inputs(value, min_range, max_range)
        logger.debug("Range proof generated", extra={"claim": claim, "holds": inputs["meetsRequirement"]})
        return self._build(ProofType.RANGE, claim, inputs)

    def membership_proof(self, claim: str, value: str, allowed_set: Iterable[str]) -> Proof:
        """Prove ``value in allowed_set`` without publishing which member it is."""
        allowed = list(allowed_set)
        inputs = {"allowedSet": allowed, "isMember": value in allowed}
        logger.debug("Membership proof generated", extra={"claim": claim, "holds": inputs["isMember"]})
        return self._build(ProofType.MEMBERSHIP, claim, inputs, {"setSize": len(allowed)})

    def verify(self, proof: Proof) -> bool:
        """Re-check a proof. Raises MalformedProof for broken structure."""
        _check_structure(proof)
        statement = {"proofType": proof.proof_type.value, "claim": proof.claim,
                     "publicInputs": proof.public_inputs}
        if not self._check(statement, proof.opaque_proof):
            return False
        return proof.holds

    def dataset_quality_proof(self, dataset: dict) -> DatasetQualityProof:
        """Non-empty range proof over the dataset's pages plus a category membership proof."""
        pages = dataset.get("pages") or dataset.get("browsingHistory") or dataset.get("resources") or []
        categories = dataset.get("categories") or ["browsing"]
        collected_at = dataset.get("collectedAt") or datetime.now(timezone.utc).isoformat()

        site_count_proof = self.range_proof("siteCount", len(pages), min_range=1)
        category_proof = self.membership_proof(
            "primaryCategory", categories[0] or "browsing", DATASET_CATEGORIES,
        )
        return DatasetQualityProof(
            site_count_proof=site_count_proof,
            category_proof=category_proof,
            timestamp=collected_at,
            verified=self.verify(site_count_proof) and self.verify(category_proof),
        )


# ─── Implementations ───────────────────────────────────────────────

class PredicateProofBackend(ProofBackend):
    """Deterministic stub: proof bytes are a SHA-256 digest of the statement."""

    proof_system = "predicate-digest"

    def _prove(self, statement: dict) -> str:
        return sha256_hex(canonical_json(statement))

    def _check(self, statement: dict, opaque_proof: str) -> bool:
        return opaque_proof == sha256_hex(canonical_json(statement))


class SignedProofBackend(ProofBackend):
    """Prover-attested proofs: an Ed25519 key signs the public statement.

    Verifiers only need the public key, so a backend built with
    ``from_public_key`` can check proofs but not create them.
    """

    proof_system = "ed25519-attested"

    def __init__(self, signing_key: Optional[SigningKey] = None, verify_key: Optional[VerifyKey] = None):
        self.signing_key = signing_key if signing_key is not None else (None if verify_key else SigningKey.generate())
        self.verify_key = verify_key or self.signing_key.verify_key

    @classmethod
    def from_public_key(cls, public_key_hex: str) -> "SignedProofBackend":
        return cls(verify_key=VerifyKey(public_key_hex.encode(), encoder=HexEncoder))

    @property
    def public_key_hex(self) -> str:
        return self.verify_key.encode(encoder=HexEncoder).decode()

    def _prove(self, statement: dict) -> str:
        if self.signing_key is None:
            raise RuntimeError("verify-only backend cannot produce proofs")
        return self.signing_key.sign(canonical_json(statement)).signature.hex()

    def _check(self, statement: dict, opaque_proof: str) -> bool:
        try:
            self.verify_key.verify(canonical_json(statement), bytes.fromhex(opaque_proof))
            return True
        except (BadSignatureError, ValueError):
            return False


def proof_lower_bound(proof: Proof) -> float:
    """Lower bound published by a range proof (``-inf`` when absent)."""
    value = proof.public_inputs.get("minRange")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return -math.inf
    return float(value)
