"""credmarket.errors — Typed failures raised by the verification and reputation engine."""

from typing import Optional


class CredMarketError(Exception):
    """Base class for all engine errors."""


class NotFound(CredMarketError):
    """Raised when a credential (or other record) id is unknown."""

    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} '{record_id}' not found")


class DuplicateId(CredMarketError):
    """Raised when re-issuing a credential id that already exists."""

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Credential '{record_id}' already exists")


class UnknownProgram(CredMarketError):
    """Raised when a verification program id is not registered."""

    def __init__(self, program_id: str):
        self.program_id = program_id
        super().__init__(f"Unknown verification program '{program_id}'")


class EmptyCredential(CredMarketError):
    """Raised when a disclosure is requested for a credential with no claims."""

    def __init__(self, credential_id: str):
        self.credential_id = credential_id
        super().__init__(f"Credential '{credential_id}' has no claims to disclose")


class MalformedProof(CredMarketError):
    """Raised when a proof or commitment does not have the expected structure."""

    def __init__(self, reason: str, claim: Optional[str] = None):
        self.reason = reason
        self.claim = claim
        prefix = f"Malformed proof for '{claim}'" if claim else "Malformed proof"
        super().__init__(f"{prefix}: {reason}")


class UpstreamUnavailable(CredMarketError):
    """Raised when an issuer, chain or storage call failed or timed out."""

    def __init__(self, service: str, detail: str = ""):
        self.service = service
        self.detail = detail
        super().__init__(f"Upstream '{service}' unavailable" + (f": {detail}" if detail else ""))
