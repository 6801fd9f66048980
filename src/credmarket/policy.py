"""Verification programs — declarative credential requirements for marketplace access.

A program such as "premium-buyer" lists the credentials a buyer must present
("over 18, human, trust score of at least 75"). The RuleEngine evaluates every
rule of a program against the presented credentials and returns a full
per-rule report plus the access decision.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Sequence

from .core import Credential
from .errors import MalformedProof, UnknownProgram
from .proofs import Proof, ProofBackend, ProofType, proof_lower_bound
from .store import CredentialStore

logger = logging.getLogger(__name__)


class RuleKind(str, Enum):
    """Closed set of rule kinds. Values are the credential types they consume."""
    AGE = "age-verification"
    HUMANITY = "human-verification"
    TRUST_SCORE = "trust-score"
    KYC = "kyc-status"
    BALANCE = "minimum-balance"
    ACCREDITED = "accredited-investor"


# credential types accepted for each kind (beyond the kind's own value)
_ACCEPTED_TYPES: dict[RuleKind, frozenset[str]] = {
    RuleKind.AGE: frozenset({"age-verification"}),
    RuleKind.HUMANITY: frozenset({"human-verification"}),
    RuleKind.TRUST_SCORE: frozenset({"trust-score"}),
    RuleKind.KYC: frozenset({"kyc-status", "kyc-complete"}),
    RuleKind.BALANCE: frozenset({"minimum-balance", "balance"}),
    RuleKind.ACCREDITED: frozenset({"accredited-investor"}),
}

# claim compared against the threshold, for kinds that take one
_THRESHOLD_CLAIM: dict[RuleKind, tuple[str, str, float]] = {
    # kind: (claim, parameter, default)
    RuleKind.AGE: ("age", "min_age", 18),
    RuleKind.TRUST_SCORE: ("trustScore", "min_score", 0),
    RuleKind.BALANCE: ("balance", "amount", 0),
}

_KYC_OK = frozenset({"complete", "completed", "approved", "verified"})
_AMOUNT_RE = re.compile(r"^\s*([0-9]+(?:\.[0-9]+)?)\s*([A-Za-z]*)\s*$")

# aliases used by the marketplace's program definitions
_PARAM_ALIASES = {"minAge": "min_age", "minScore": "min_score"}


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _normalize_parameters(kind: RuleKind, params: Mapping[str, Any]) -> dict:
    out = {_PARAM_ALIASES.get(k, k): v for k, v in params.items()}
    if kind == RuleKind.BALANCE and isinstance(out.get("amount"), str):
        m = _AMOUNT_RE.match(out["amount"])
        if not m:
            raise ValueError(f"cannot parse balance amount {out['amount']!r}")
        out["amount"] = float(m.group(1))
        if m.group(2):
            out.setdefault("currency", m.group(2))
    return out


@dataclass(frozen=True)
class VerificationRule:
    """A single credential requirement. Advisory when ``required`` is False."""
    kind: RuleKind
    required: bool = True
    parameters: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        kind = RuleKind(self.kind)
        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "parameters", MappingProxyType(_normalize_parameters(kind, self.parameters)))

    @property
    def threshold(self) -> Optional[float]:
        spec = _THRESHOLD_CLAIM.get(self.kind)
        if spec is None:
            return None
        _, param, default = spec
        return float(self.parameters.get(param, default))

    def to_dict(self) -> dict:
        return {"type": self.kind.value, "required": self.required, **dict(self.parameters)}

    @classmethod
    def from_dict(cls, data: dict) -> "VerificationRule":
        data = dict(data)
        kind = data.pop("type", None) or data.pop("kind")
        required = bool(data.pop("required", True))
        return cls(kind=RuleKind(kind), required=required, parameters=data)


@dataclass(frozen=True)
class VerificationProgram:
    """A named, ordered rule list. Immutable once loaded."""
    id: str
    name: str
    rules: tuple[VerificationRule, ...]

    def __post_init__(self):
        object.__setattr__(self, "rules", tuple(self.rules))

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "rules": [r.to_dict() for r in self.rules]}

    @classmethod
    def from_dict(cls, program_id: str, data: dict) -> "VerificationProgram":
        return cls(
            id=program_id,
            name=data.get("name", program_id),
            rules=tuple(VerificationRule.from_dict(r) for r in data.get("rules", [])),
        )


@dataclass
class RuleResult:
    kind: RuleKind
    required: bool
    passed: bool
    message: str

    def to_dict(self) -> dict:
        return {
            "rule": self.kind.value,
            "required": self.required,
            "passed": self.passed,
            "message": self.message,
        }


@dataclass
class VerificationReport:
    """Result of evaluating one program."""
    program_id: str
    program_name: str
    results: list[RuleResult]
    granted_access: bool

    @property
    def status(self) -> str:
        return "Compliant" if self.granted_access else "Non-Compliant"

    def failed(self) -> list[RuleResult]:
        return [r for r in self.results if not r.passed]

    def to_dict(self) -> dict:
        return {
            "programId": self.program_id,
            "programName": self.program_name,
            "status": self.status,
            "results": [r.to_dict() for r in self.results],
            "grantedAccess": self.granted_access,
        }


# ─── Program registry ──────────────────────────────────────────────

class ProgramRegistry:
    """Programs are configuration: loaded once, then only looked up."""

    def __init__(self, programs: Iterable[VerificationProgram] = ()):
        table: dict[str, VerificationProgram] = {}
        for p in programs:
            if p.id in table:
                raise ValueError(f"duplicate program id {p.id!r}")
            table[p.id] = p
        self._programs: Mapping[str, VerificationProgram] = MappingProxyType(table)

    def get(self, program_id: str) -> VerificationProgram:
        try:
            return self._programs[program_id]
        except KeyError:
            raise UnknownProgram(program_id) from None

    def __contains__(self, program_id: str) -> bool:
        return program_id in self._programs

    def __iter__(self):
        return iter(self._programs.values())

    def __len__(self):
        return len(self._programs)

    def to_dict(self) -> dict:
        return {pid: {k: v for k, v in p.to_dict().items() if k != "id"} for pid, p in self._programs.items()}

    @classmethod
    def from_dict(cls, data: dict) -> "ProgramRegistry":
        return cls(VerificationProgram.from_dict(pid, pdata) for pid, pdata in data.items())

    @classmethod
    def from_json(cls, json_str: str) -> "ProgramRegistry":
        return cls.from_dict(json.loads(json_str))

    @classmethod
    def load(cls, filepath: str) -> "ProgramRegistry":
        with open(filepath) as f:
            return cls.from_dict(json.load(f))


MARKETPLACE_PROGRAMS = {
    "premium-buyer": {
        "name": "Premium Buyer Access",
        "rules": [
            {"type": "age-verification", "minAge": 18, "required": True},
            {"type": "human-verification", "required": True},
            {"type": "trust-score", "minScore": 75, "required": True},
        ],
    },
    "verified-seller": {
        "name": "Verified Seller Badge",
        "rules": [
            {"type": "human-verification", "required": True},
            {"type": "kyc-status", "required": False},
            {"type": "trust-score", "minScore": 60, "required": True},
        ],
    },
    "institutional-buyer": {
        "name": "Institutional Access ($1000+ datasets)",
        "rules": [
            {"type": "kyc-status", "required": True},
            {"type": "accredited-investor", "required": True},
            {"type": "minimum-balance", "amount": "100 MOCA", "required": True},
        ],
    },
}


def default_registry() -> ProgramRegistry:
    return ProgramRegistry.from_dict(MARKETPLACE_PROGRAMS)


# ─── Rule engine ───────────────────────────────────────────────────

class RuleEngine:
    """Evaluates verification programs against presented credentials.

    Stateless between calls and read-only over the registry and store, so a
    single engine can serve concurrent requests.

    Usage:
        engine = RuleEngine(default_registry(), store=store)
        report = engine.evaluate("premium-buyer", credentials)
        if report.granted_access:
            # unlock premium datasets
    """

    def __init__(self, registry: ProgramRegistry, store: Optional[CredentialStore] = None,
                 proof_backend: Optional[ProofBackend] = None):
        self.registry = registry
        self.store = store
        self.proof_backend = proof_backend

    def evaluate(self, program_id: str, credentials: Sequence[Credential],
                 proofs: Sequence[Proof] = ()) -> VerificationReport:
        """Evaluate every rule of the program; no short-circuit."""
        program = self.registry.get(program_id)
        revoked = [self._is_revoked(c) for c in credentials]

        results = [self._evaluate_rule(rule, credentials, proofs, revoked) for rule in program.rules]
        granted = all(r.passed for r in results if r.required)

        report = VerificationReport(
            program_id=program.id,
            program_name=program.name,
            results=results,
            granted_access=granted,
        )
        logger.info("Verification program evaluated", extra={
            "program_id": program.id,
            "status": report.status,
            "failed_rules": [r.kind.value for r in report.failed()],
        })
        return report

    def _is_revoked(self, credential: Credential) -> bool:
        if credential.revoked:
            return True
        return self.store is not None and self.store.is_revoked(credential.id)

    def _evaluate_rule(self, rule: VerificationRule, credentials: Sequence[Credential],
                       proofs: Sequence[Proof], revoked: Sequence[bool]) -> RuleResult:
        label = rule.kind.value
        candidates = [(c, r) for c, r in zip(credentials, revoked) if c.type in _ACCEPTED_TYPES[rule.kind]]
        usable = [c for c, r in candidates if not r and c.verified]

        if any(self._satisfies(rule, c) for c in usable) or self._proven(rule, proofs):
            return RuleResult(rule.kind, rule.required, True, f"{label} verified")

        if not rule.required:
            return RuleResult(rule.kind, rule.required, False, f"Optional: {label}")
        if not candidates:
            return RuleResult(rule.kind, rule.required, False, f"Missing required: {label}")
        if not usable:
            if any(r for _, r in candidates):
                return RuleResult(rule.kind, rule.required, False, f"{label}: credential revoked")
            return RuleResult(rule.kind, rule.required, False, f"{label}: credential not verified by issuer")
        return RuleResult(rule.kind, rule.required, False, self._failure_message(rule))

    @staticmethod
    def _failure_message(rule: VerificationRule) -> str:
        label = rule.kind.value
        if rule.kind in _THRESHOLD_CLAIM:
            claim, _, _ = _THRESHOLD_CLAIM[rule.kind]
            msg = f"{label}: {claim} below minimum {rule.threshold:g}"
            currency = rule.parameters.get("currency")
            return f"{msg} {currency}" if currency and rule.kind == RuleKind.BALANCE else msg
        return f"{label}: credential does not attest the requirement"

    @staticmethod
    def _satisfies(rule: VerificationRule, credential: Credential) -> bool:
        claims = credential.claims
        kind = rule.kind

        if kind == RuleKind.AGE:
            age = _number(claims.get("age"))
            if age is None:
                age = _number(claims.get("ageOver"))
            return age is not None and age >= rule.threshold

        if kind == RuleKind.TRUST_SCORE:
            score = _number(claims.get("trustScore"))
            return score is not None and score >= rule.threshold

        if kind == RuleKind.BALANCE:
            balance = _number(claims.get("balance"))
            if balance is None or balance < rule.threshold:
                return False
            wanted = rule.parameters.get("currency")
            held = claims.get("currency")
            return not (wanted and held and str(held).upper() != str(wanted).upper())

        if kind == RuleKind.HUMANITY:
            return claims.get("humanhood", True) is not False and claims.get("verified", True) is not False

        if kind == RuleKind.KYC:
            status = claims.get("kycStatus")
            if status is not None and str(status).lower() not in _KYC_OK:
                return False
            return claims.get("kycComplete", True) is not False

        if kind == RuleKind.ACCREDITED:
            return claims.get("accredited", True) is not False

        return False

    def _proven(self, rule: VerificationRule, proofs: Sequence[Proof]) -> bool:
        """A verified range proof over the rule's claim can stand in for the raw value."""
        if self.proof_backend is None or rule.kind not in _THRESHOLD_CLAIM:
            return False
        claim, _, _ = _THRESHOLD_CLAIM[rule.kind]
        for proof in proofs:
            if proof.proof_type != ProofType.RANGE or proof.claim != claim:
                continue
            if proof_lower_bound(proof) < rule.threshold:
                continue
            try:
                if self.proof_backend.verify(proof):
                    return True
            except MalformedProof as e:
                logger.warning("Ignoring malformed proof", extra={"claim": claim, "reason": e.reason})
        return False
