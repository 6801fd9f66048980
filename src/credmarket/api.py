"""
credmarket API — Credential verification and reputation for the data marketplace.

Public endpoints:
  POST /verify                      — Evaluate a verification program
  GET  /programs                    — Registered programs
  POST /credentials/issue           — Issue a credential through the configured issuer
  GET  /credentials/{id}            — Stored credential
  GET  /revoke?id=, /revocations/{id} — Revocation status
  POST /disclose, /disclose/verify  — Selective disclosure
  POST /proofs/...                  — Range / membership / dataset-quality proofs
  POST /progression/{user}/...      — Points, streaks and badges
  GET  /leaderboard                 — Local score merged with the remote feed
  POST /reputation/import           — Cross-app composite trust score
  GET  /health

Admin endpoints (X-Admin-Key):
  POST /credentials                 — Insert an externally issued credential
  POST /revoke                      — Revoke a credential
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Callable, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field

from . import __version__
from .config import Settings
from .core import Credential
from .disclosure import DisclosureTransformer, PartialCredential
from .events import EventBus, EventType
from .issuer import Issuer, IssuerClient, LocalIssuer, issue_and_store
from .leaderboard import HttpLeaderboardSource, LeaderboardAggregator, LeaderboardPoller
from .points import DataMetrics
from .policy import ProgramRegistry, RuleEngine, default_registry
from .progression import ProgressionEngine
from .proofs import Proof, ProofBackend, SignedProofBackend
from .reputation import ReputationRecord, summarize_reputation
from .security import apply_security, limiter, logger, require_admin_key, setup_structured_logging
from .storage import MemoryBackend, SQLiteBackend
from .store import CredentialStore

DISCLOSURE_PRESETS = ("seller", "dataset")


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class VerifyRequest(_CamelModel):
    program_id: str = Field(alias="programId")
    credentials: list[dict] = []
    proofs: list[dict] = []


class IssueRequest(_CamelModel):
    type: str = Field(..., min_length=1)
    claims: dict[str, Any] = {}
    user_id: str = Field("", alias="userId")
    metrics: Optional[dict] = None


class RevokeRequest(_CamelModel):
    credential_id: str = Field(alias="credentialId")
    reason: str = ""
    revoked_by: str = Field("", alias="revokedBy")


class DiscloseRequest(_CamelModel):
    credential_id: Optional[str] = Field(None, alias="credentialId")
    credential: Optional[dict] = None
    reveal: Optional[list[str]] = Field(None, alias="fields")
    preset: Optional[str] = Field(None, pattern=r"^(seller|dataset)$")


class RangeProofRequest(_CamelModel):
    claim: str
    value: float
    min_range: float = Field(alias="minRange")
    max_range: Optional[float] = Field(None, alias="maxRange")


class MembershipProofRequest(_CamelModel):
    claim: str
    value: str
    allowed_set: list[str] = Field(alias="allowedSet")


class MarketActivityRequest(BaseModel):
    cid: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)


class ReputationImportRequest(BaseModel):
    records: list[dict]


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = __version__
    credentials: int = 0
    revoked: int = 0
    programs: int = 0
    leaderboard_snapshot: bool = False


# ---------------------------------------------------------------------------
# Engine wiring
# ---------------------------------------------------------------------------

@dataclass
class Engine:
    """Everything a request handler needs, built once per app."""
    settings: Settings
    store: CredentialStore
    registry: ProgramRegistry
    rules: RuleEngine
    disclosure: DisclosureTransformer
    proofs: ProofBackend
    progression: ProgressionEngine
    aggregator: LeaderboardAggregator
    issuer: Issuer
    event_bus: EventBus

    @classmethod
    def from_settings(cls, settings: Settings) -> "Engine":
        bus = EventBus()
        backend = SQLiteBackend(settings.db_path) if settings.db_path else MemoryBackend()
        store = CredentialStore(backend, revocation_policy=settings.revocation_policy, event_bus=bus)
        registry = ProgramRegistry.load(settings.programs_file) if settings.programs_file else default_registry()
        proofs = SignedProofBackend()
        progression = ProgressionEngine(event_bus=bus)

        source = None
        if settings.leaderboard_url:
            source = HttpLeaderboardSource(settings.leaderboard_url, timeout=settings.upstream_timeout)
        aggregator = LeaderboardAggregator(source, timeout=settings.upstream_timeout,
                                           top_k=settings.leaderboard_size)

        if settings.issuer_url:
            issuer: Issuer = IssuerClient(settings.issuer_url, settings.issuer_token,
                                          timeout=settings.upstream_timeout)
        else:
            issuer = LocalIssuer()

        return cls(
            settings=settings,
            store=store,
            registry=registry,
            rules=RuleEngine(registry, store=store, proof_backend=proofs),
            disclosure=DisclosureTransformer(settings.disclosure_secret),
            proofs=proofs,
            progression=progression,
            aggregator=aggregator,
            issuer=issuer,
            event_bus=bus,
        )


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def _parse(factory: Callable[[Any], Any], data: Any, what: str):
    """Build a domain object from a request payload; bad payloads are a 422."""
    try:
        return factory(data)
    except (KeyError, TypeError, ValueError) as e:
        raise HTTPException(status_code=422, detail=f"invalid {what}: {e}")


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(engine: Engine = Depends(get_engine)):
    return HealthResponse(
        credentials=len(engine.store),
        revoked=len(engine.store.revoked_ids),
        programs=len(engine.registry),
        leaderboard_snapshot=engine.aggregator.snapshot is not None,
    )


# --- Verification ---

@router.post("/verify", tags=["verification"])
@limiter.limit("120/minute")
async def verify(request: Request, body: VerifyRequest, engine: Engine = Depends(get_engine)):
    """Evaluate every rule of a program against the presented credentials."""
    credentials = [_parse(Credential.from_dict, c, "credential") for c in body.credentials]
    proofs = [Proof.from_dict(p) for p in body.proofs]
    report = engine.rules.evaluate(body.program_id, credentials, proofs)
    return report.to_dict()


@router.get("/programs", tags=["verification"])
async def list_programs(engine: Engine = Depends(get_engine)):
    return {"programs": engine.registry.to_dict()}


# --- Credentials ---

@router.post("/credentials", tags=["credentials"], status_code=201,
             dependencies=[Depends(require_admin_key)])
async def add_credential(body: dict, engine: Engine = Depends(get_engine)):
    """Insert a credential issued elsewhere. Duplicate ids are a 409."""
    credential = _parse(Credential.from_dict, body, "credential")
    return _parse(engine.store.put, credential, "credential").to_dict()


@router.post("/credentials/issue", tags=["credentials"], status_code=201)
@limiter.limit("30/minute")
async def issue_credential(request: Request, body: IssueRequest, engine: Engine = Depends(get_engine)):
    """Issue, store and announce a credential; metrics (if any) are scored for the user."""
    metrics = None
    if body.metrics is not None:
        if not body.user_id:
            raise HTTPException(status_code=422, detail="userId is required when metrics are given")
        metrics = _parse(DataMetrics.from_dict, body.metrics, "metrics")

    credential = issue_and_store(
        engine.issuer, engine.store, body.type, body.claims,
        user_id=body.user_id, event_bus=engine.event_bus,
    )
    result: dict[str, Any] = {"credential": credential.to_dict()}
    if metrics is not None:
        engine.progression.record_credential_issued(body.user_id, metrics)
        result["progression"] = engine.progression.snapshot(body.user_id).to_dict()
    return result


@router.get("/credentials/{credential_id}", tags=["credentials"])
async def get_credential(credential_id: str, engine: Engine = Depends(get_engine)):
    return engine.store.get(credential_id).to_dict()


# --- Revocation ---

@router.post("/revoke", tags=["revocation"], dependencies=[Depends(require_admin_key)])
async def revoke(body: RevokeRequest, engine: Engine = Depends(get_engine)):
    """Revoke a credential. Repeating the call returns the original record."""
    record = engine.store.revoke(body.credential_id, reason=body.reason, revoked_by=body.revoked_by)
    return record.to_dict()


@router.get("/revoke", tags=["revocation"])
async def revocation_status_query(credential_id: str = Query(..., alias="id", min_length=1),
                                  engine: Engine = Depends(get_engine)):
    return engine.store.revocation_status(credential_id)


@router.get("/revocations/{credential_id}", tags=["revocation"])
async def revocation_status(credential_id: str, engine: Engine = Depends(get_engine)):
    status = engine.store.revocation_status(credential_id)
    record = engine.store.get_revocation(credential_id)
    if record is not None:
        status.update(reason=record.reason, revokedAt=record.revoked_at, revokedBy=record.revoked_by)
    return status


# --- Disclosure ---

@router.post("/disclose", tags=["disclosure"])
async def disclose(body: DiscloseRequest, engine: Engine = Depends(get_engine)):
    if body.credential is not None:
        credential = _parse(Credential.from_dict, body.credential, "credential")
    elif body.credential_id:
        credential = engine.store.get(body.credential_id)
    else:
        raise HTTPException(status_code=422, detail="credentialId or credential is required")

    if body.preset == "seller":
        partial = engine.disclosure.seller_preview(credential)
    elif body.preset == "dataset":
        partial = engine.disclosure.dataset_preview(credential)
    elif body.reveal is not None:
        partial = engine.disclosure.disclose(credential, body.reveal)
    else:
        raise HTTPException(status_code=422, detail=f"fields or preset ({'|'.join(DISCLOSURE_PRESETS)}) is required")
    return partial.to_dict()


@router.post("/disclose/verify", tags=["disclosure"])
async def verify_disclosure(body: dict, engine: Engine = Depends(get_engine)):
    partial = _parse(PartialCredential.from_dict, body, "partial credential")
    return {"valid": engine.disclosure.verify(partial)}


# --- Proofs ---

@router.post("/proofs/range", tags=["proofs"])
async def range_proof(body: RangeProofRequest, engine: Engine = Depends(get_engine)):
    proof = _parse(
        lambda b: engine.proofs.range_proof(b.claim, b.value, b.min_range, b.max_range), body, "range",
    )
    return proof.to_dict()


@router.post("/proofs/membership", tags=["proofs"])
async def membership_proof(body: MembershipProofRequest, engine: Engine = Depends(get_engine)):
    return engine.proofs.membership_proof(body.claim, body.value, body.allowed_set).to_dict()


@router.post("/proofs/verify", tags=["proofs"])
async def verify_proof(body: dict, engine: Engine = Depends(get_engine)):
    """Re-check a proof. Malformed proofs are a 422, failing ones ``valid: false``."""
    payload = body["proof"] if isinstance(body.get("proof"), dict) else body
    proof = Proof.from_dict(payload)
    return {"valid": engine.proofs.verify(proof)}


@router.post("/proofs/dataset-quality", tags=["proofs"])
async def dataset_quality_proof(body: dict, engine: Engine = Depends(get_engine)):
    return engine.proofs.dataset_quality_proof(body).to_dict()


# --- Progression ---

@router.post("/progression/{user}/issuance", tags=["progression"])
async def record_issuance(user: str, body: dict, engine: Engine = Depends(get_engine)):
    metrics = _parse(DataMetrics.from_dict, body, "metrics")
    return engine.progression.record_credential_issued(user, metrics).to_dict()


@router.post("/progression/{user}/listing", tags=["progression"])
async def record_listing(user: str, body: MarketActivityRequest, engine: Engine = Depends(get_engine)):
    engine.progression.record_listing(user, body.cid, body.price)
    engine.event_bus.emit(EventType.DATASET_LISTED, {"user": user, "cid": body.cid, "price": body.price})
    return engine.progression.snapshot(user).to_dict()


@router.post("/progression/{user}/sale", tags=["progression"])
async def record_sale(user: str, body: MarketActivityRequest, engine: Engine = Depends(get_engine)):
    engine.progression.record_sale(user, body.cid, body.price)
    engine.event_bus.emit(EventType.DATASET_SOLD, {"user": user, "cid": body.cid, "price": body.price})
    return engine.progression.snapshot(user).to_dict()


@router.get("/progression/{user}", tags=["progression"])
async def get_progression(user: str, engine: Engine = Depends(get_engine)):
    return engine.progression.snapshot(user).to_dict()


# --- Leaderboard / reputation ---

@router.get("/leaderboard", tags=["leaderboard"])
async def leaderboard(user: Optional[str] = None, engine: Engine = Depends(get_engine)):
    local_points = engine.progression.points(user) if user else None
    rows = engine.aggregator.leaderboard(local_points)
    return {"leaderboard": [r.to_dict() for r in rows]}


@router.post("/reputation/import", tags=["reputation"])
async def import_reputation(body: ReputationImportRequest):
    records = [_parse(ReputationRecord.from_dict, r, "reputation record") for r in body.records]
    return summarize_reputation(records).to_dict()


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the leaderboard poller when a remote feed is configured."""
    engine: Engine = app.state.engine
    poller = None
    if engine.aggregator.source is not None:
        poller = LeaderboardPoller(engine.aggregator, interval=engine.settings.leaderboard_interval)
        await poller.start()
    yield
    if poller is not None:
        await poller.stop()


def create_app(settings: Optional[Settings] = None, engine: Optional[Engine] = None) -> FastAPI:
    settings = settings or (engine.settings if engine else Settings.from_env())
    setup_structured_logging(settings.log_level)

    app = FastAPI(
        title="credmarket API",
        description="Credential verification, selective disclosure and reputation for the data marketplace.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.engine = engine or Engine.from_settings(settings)
    apply_security(app, settings)
    app.include_router(router)
    logger.info("credmarket API configured", extra={
        "revocation_policy": settings.revocation_policy.value,
        "programs": len(app.state.engine.registry),
        "leaderboard_url": settings.leaderboard_url or "",
    })
    return app
