"""
Point calculation for farmed datasets and marketplace activity.

More demanding data (longer tracking, more sites, richer telemetry) earns more
points. Every function here is pure: the progression engine is the only
place that turns points into state.

Score = floor(Σ component bonuses × quality multiplier), minimum 10.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional

BASE_POINTS = 50
MIN_POINTS = 10
MIB = 1024 * 1024

QUALITY_MULTIPLIERS = {
    "premium": 1.5,
    "standard": 1.2,
    "basic": 1.0,
}


@dataclass
class DataMetrics:
    """Summary of a farmed browsing dataset, produced by the collection UI."""
    site_count: int = 0
    total_interactions: int = 0
    total_time_spent: float = 0.0  # seconds
    resources_loaded: int = 0
    unique_domains: int = 0
    data_quality: str = "basic"  # premium | standard | basic
    has_performance_metrics: bool = False
    has_device_specs: bool = False
    has_network_data: bool = False
    has_interaction_data: bool = False
    tracking_duration: Optional[float] = None  # seconds, real-time tracking only
    data_size: Optional[int] = None  # bytes
    categories: list[str] = field(default_factory=list)

    def __post_init__(self):
        if self.data_quality not in QUALITY_MULTIPLIERS:
            raise ValueError(f"data_quality must be one of {sorted(QUALITY_MULTIPLIERS)}, got {self.data_quality!r}")

    def to_dict(self) -> dict:
        return {
            "siteCount": self.site_count,
            "totalInteractions": self.total_interactions,
            "totalTimeSpent": self.total_time_spent,
            "trackingDuration": self.tracking_duration,
            "resourcesLoaded": self.resources_loaded,
            "uniqueDomains": self.unique_domains,
            "dataQuality": self.data_quality,
            "categories": list(self.categories),
            "hasPerformanceMetrics": self.has_performance_metrics,
            "hasDeviceSpecs": self.has_device_specs,
            "hasNetworkData": self.has_network_data,
            "hasInteractionData": self.has_interaction_data,
            "dataSize": self.data_size,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "DataMetrics":
        return cls(
            site_count=int(d.get("siteCount", 0)),
            total_interactions=int(d.get("totalInteractions", 0)),
            total_time_spent=float(d.get("totalTimeSpent", 0)),
            tracking_duration=_optional(float, d.get("trackingDuration")),
            resources_loaded=int(d.get("resourcesLoaded", 0)),
            unique_domains=int(d.get("uniqueDomains", 0)),
            data_quality=d.get("dataQuality", "basic"),
            categories=list(d.get("categories") or []),
            has_performance_metrics=bool(d.get("hasPerformanceMetrics", False)),
            has_device_specs=bool(d.get("hasDeviceSpecs", False)),
            has_network_data=bool(d.get("hasNetworkData", False)),
            has_interaction_data=bool(d.get("hasInteractionData", False)),
            data_size=_optional(int, d.get("dataSize")),
        )


def _optional(convert, value):
    return None if value is None else convert(value)


def _site_bonus(sites: int) -> int:
    if sites <= 0:
        return 0
    if sites >= 20:
        return 150
    if sites >= 10:
        return 100
    if sites >= 5:
        return 50
    return 25


def _interaction_bonus(interactions: int) -> int:
    if interactions >= 1000:
        return 100
    if interactions >= 500:
        return 60
    if interactions >= 100:
        return 30
    return 10


def _domain_bonus(domains: int) -> int:
    if domains <= 0:
        return 0
    if domains >= 10:
        return 60
    if domains >= 5:
        return 30
    return 15


def compute_data_points(metrics: DataMetrics) -> int:
    """Points earned for issuing a credential over a dataset. Deterministic."""
    points = BASE_POINTS

    points += _site_bonus(metrics.site_count)

    if metrics.has_interaction_data and metrics.total_interactions > 0:
        points += _interaction_bonus(metrics.total_interactions)

    if metrics.has_performance_metrics:
        points += 40
    if metrics.has_device_specs:
        points += 30
    if metrics.has_network_data:
        points += 25

    if metrics.resources_loaded > 0:
        points += min(50, metrics.resources_loaded // 10)

    points += _domain_bonus(metrics.unique_domains)

    # real-time tracking needs active participation
    if metrics.tracking_duration and metrics.tracking_duration > 0:
        minutes = int(metrics.tracking_duration // 60)
        points += min(100, minutes * 5)
        points += min(100, math.floor(metrics.total_interactions * 0.1))

    if metrics.total_time_spent > 0:
        hours = metrics.total_time_spent / 3600
        points += min(100, math.floor(hours * 20))

    if metrics.data_size:
        mib = metrics.data_size / MIB
        if mib >= 1:
            points += 50
        elif mib >= 0.5:
            points += 25

    points = math.floor(points * QUALITY_MULTIPLIERS[metrics.data_quality])
    return max(MIN_POINTS, points)


def describe_dataset(metrics: DataMetrics) -> str:
    """Activity-log label for a dataset."""
    if metrics.tracking_duration:
        return "Real-Time Tracking"
    if metrics.site_count >= 20:
        return "Comprehensive Session"
    if metrics.total_interactions >= 1000:
        return "High Interaction Data"
    return "Standard Dataset"


def points_for_listing(price: float) -> int:
    """Listing bonus; pricier listings indicate more valuable data."""
    if price >= 1.0:
        return 100
    if price >= 0.5:
        return 60
    if price >= 0.1:
        return 30
    return 15


def points_for_sale(price: float) -> int:
    """200 points per MOCA of sale price."""
    return math.floor(price * 200)
