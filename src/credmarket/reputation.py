"""Cross-application reputation import.

Sellers bring reputation earned on other marketplaces. Each platform reports
a rating, sales volume and badges; these fold into one composite trust score
(0-100) that can back a ``trust-score`` credential:

    40% from average seller rating (out of 5)
    up to 30 points from sales volume (1 point per 10 sales)
    5 points per unique badge
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional


@dataclass
class ReputationRecord:
    platform: str
    seller_rating: Optional[float] = None
    total_sales: int = 0
    governance_score: Optional[float] = None
    badges: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: dict) -> "ReputationRecord":
        return cls(
            platform=d["platform"],
            seller_rating=d.get("sellerRating"),
            total_sales=int(d.get("totalSales", 0)),
            governance_score=d.get("governanceScore"),
            badges=list(d.get("badges") or []),
        )

    def to_dict(self) -> dict:
        return {
            "platform": self.platform,
            "sellerRating": self.seller_rating,
            "totalSales": self.total_sales,
            "governanceScore": self.governance_score,
            "badges": list(self.badges),
        }


@dataclass
class ReputationSummary:
    composite_trust_score: int
    avg_rating: float
    total_sales: int
    badges: list[str]
    platforms: list[str]

    def to_dict(self) -> dict:
        return {
            "compositeTrustScore": self.composite_trust_score,
            "avgRating": round(self.avg_rating, 1),
            "totalSales": self.total_sales,
            "allBadges": list(self.badges),
            "verifiedOn": f"{len(self.platforms)} platform(s)",
        }


def summarize_reputation(records: Iterable[ReputationRecord]) -> ReputationSummary:
    records = list(records)
    # platforms without a rating count as 0, matching the ecosystem feed
    avg_rating = sum(r.seller_rating or 0 for r in records) / (len(records) or 1)
    total_sales = sum(r.total_sales for r in records)
    badges = list(dict.fromkeys(b for r in records for b in r.badges))

    score = min(100, round(
        (avg_rating / 5) * 40
        + min(total_sales / 10, 30)
        + len(badges) * 5
    ))
    return ReputationSummary(
        composite_trust_score=score,
        avg_rating=avg_rating,
        total_sales=total_sales,
        badges=badges,
        platforms=[r.platform for r in records],
    )


def composite_trust_score(records: Iterable[ReputationRecord]) -> int:
    return summarize_reputation(records).composite_trust_score
