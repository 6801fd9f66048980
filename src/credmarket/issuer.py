"""
credmarket.issuer — Credential issuers the engine consumes.

Usage:
    issuer = IssuerClient("https://issuer.example", access_token="...")
    credential = issue_and_store(issuer, store, "data-quality", claims, user_id="0xabc")

LocalIssuer issues unsigned backend credentials in-process, for development
deployments without an issuer service.
"""

from __future__ import annotations

import logging
import secrets
import string
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from .core import Credential, utc_now_iso
from .errors import UpstreamUnavailable
from .events import EventBus, EventType
from .points import DataMetrics
from .store import CredentialStore

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


class Issuer(ABC):
    """Turns ``(credential_type, claims)`` into an issued credential."""

    @abstractmethod
    def issue(self, credential_type: str, claims: dict[str, Any], user_id: str = "") -> Credential: ...


class LocalIssuer(Issuer):
    """Backend-issued credentials without an external issuer service."""

    def __init__(self, issuer_did: str = "did:air:id:test:backend", issued_by: str = "DataMarket Backend"):
        self.issuer_did = issuer_did
        self.issued_by = issued_by

    @staticmethod
    def new_id() -> str:
        suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
        return f"cred_{int(time.time() * 1000)}_{suffix}"

    def issue(self, credential_type: str, claims: dict[str, Any], user_id: str = "") -> Credential:
        issued_at = utc_now_iso()
        return Credential(
            id=self.new_id(),
            type=credential_type,
            issuer=self.issuer_did,
            issued_at=issued_at,
            claims={**claims, "issuedBy": self.issued_by, "issuedAt": issued_at, "userId": user_id},
            verified=True,
        )


@dataclass
class IssuerClient(Issuer):
    """Client for a remote issuer service authenticated with a bearer token."""

    base_url: str
    access_token: str = ""
    timeout: float = 10.0
    _http: httpx.Client = field(init=False, repr=False)

    def __post_init__(self):
        headers = {"Authorization": f"Bearer {self.access_token}"} if self.access_token else {}
        self._http = httpx.Client(base_url=self.base_url, timeout=self.timeout, headers=headers)

    def close(self):
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def issue(self, credential_type: str, claims: dict[str, Any], user_id: str = "") -> Credential:
        try:
            r = self._http.post("/credentials/issue", json={
                "type": credential_type,
                "claims": claims,
                "userId": user_id,
            })
        except httpx.HTTPError as e:
            raise UpstreamUnavailable("issuer", str(e) or type(e).__name__) from e
        if r.status_code >= 400:
            raise UpstreamUnavailable("issuer", f"HTTP {r.status_code}")
        try:
            payload = r.json()
            credential = Credential.from_dict(payload.get("credential", payload))
        except (ValueError, KeyError, AttributeError) as e:
            raise UpstreamUnavailable("issuer", f"unexpected response: {e}") from e
        if not credential.id:
            raise UpstreamUnavailable("issuer", "issued credential has no id")
        return credential


def issue_and_store(issuer: Issuer, store: CredentialStore, credential_type: str,
                    claims: dict[str, Any], user_id: str = "",
                    metrics: Optional[DataMetrics] = None,
                    event_bus: Optional[EventBus] = None) -> Credential:
    """Issue a credential, record it in the store and announce the issuance.

    When ``metrics`` is given the announcement carries them, so a progression
    engine attached to the bus scores the dataset for ``user_id``.
    """
    credential = issuer.issue(credential_type, claims, user_id)
    store.put(credential)
    if event_bus is not None:
        data: dict[str, Any] = {"user": user_id, "credentialId": credential.id, "type": credential.type}
        if metrics is not None:
            data["metrics"] = metrics
        event_bus.emit(EventType.CREDENTIAL_ISSUED, data, source=credential.issuer)
    logger.info("Credential issued", extra={"credential_id": credential.id, "type": credential_type, "user": user_id})
    return credential
