"""credmarket — Credential verification and reputation engine for a data marketplace."""

__version__ = "0.4.0"

from credmarket.errors import (
    CredMarketError, NotFound, DuplicateId, UnknownProgram,
    EmptyCredential, MalformedProof, UpstreamUnavailable,
)
from credmarket.core import Credential
from credmarket.storage import StorageBackend, MemoryBackend, SQLiteBackend
from credmarket.events import Event, EventBus, EventType
from credmarket.store import (
    CredentialStore, RevocationPolicy, RevocationReason, RevocationRecord,
)
from credmarket.policy import (
    RuleKind, VerificationRule, VerificationProgram, RuleResult,
    VerificationReport, ProgramRegistry, RuleEngine,
    MARKETPLACE_PROGRAMS, default_registry,
)
from credmarket.disclosure import (
    CommitmentProof, PartialCredential, DisclosureTransformer,
    SELLER_PREVIEW_FIELDS, DATASET_PREVIEW_FIELDS,
)
from credmarket.proofs import (
    Proof, ProofType, ProofBackend, PredicateProofBackend,
    SignedProofBackend, DatasetQualityProof,
)
from credmarket.points import (
    DataMetrics, compute_data_points, points_for_listing, points_for_sale,
)
from credmarket.progression import (
    Badge, ProgressionState, ProgressionEngine, IssuanceOutcome, MarketOutcome,
)
from credmarket.leaderboard import (
    LeaderboardRow, merge_leaderboard, RemoteScoreSource,
    HttpLeaderboardSource, ChainLeaderboardSource, ChainReader, ChainDataset,
    LeaderboardAggregator, LeaderboardPoller,
)
from credmarket.issuer import Issuer, IssuerClient, LocalIssuer, issue_and_store
from credmarket.reputation import ReputationRecord, summarize_reputation, composite_trust_score
from credmarket.config import Settings

__all__ = [
    "__version__",
    "CredMarketError", "NotFound", "DuplicateId", "UnknownProgram",
    "EmptyCredential", "MalformedProof", "UpstreamUnavailable",
    "Credential",
    "StorageBackend", "MemoryBackend", "SQLiteBackend",
    "Event", "EventBus", "EventType",
    "CredentialStore", "RevocationPolicy", "RevocationReason", "RevocationRecord",
    "RuleKind", "VerificationRule", "VerificationProgram", "RuleResult",
    "VerificationReport", "ProgramRegistry", "RuleEngine",
    "MARKETPLACE_PROGRAMS", "default_registry",
    "CommitmentProof", "PartialCredential", "DisclosureTransformer",
    "SELLER_PREVIEW_FIELDS", "DATASET_PREVIEW_FIELDS",
    "Proof", "ProofType", "ProofBackend", "PredicateProofBackend",
    "SignedProofBackend", "DatasetQualityProof",
    "DataMetrics", "compute_data_points", "points_for_listing", "points_for_sale",
    "Badge", "ProgressionState", "ProgressionEngine", "IssuanceOutcome", "MarketOutcome",
    "LeaderboardRow", "merge_leaderboard", "RemoteScoreSource",
    "HttpLeaderboardSource", "ChainLeaderboardSource", "ChainReader", "ChainDataset",
    "LeaderboardAggregator", "LeaderboardPoller",
    "Issuer", "IssuerClient", "LocalIssuer", "issue_and_store",
    "ReputationRecord", "summarize_reputation", "composite_trust_score",
    "Settings",
]
