"""Per-query cost estimates and processing-time statistics."""

import json
import logging
import threading
import time
from pathlib import Path
from typing import Any

from .models import QueryCost

logger = logging.getLogger(__name__)

TIERS = ("basic", "pro")

# Estimated cost per call, in USD
MODEL_COSTS = {
    "gemini": 0.01,
    "openai": 0.03,
    "claude": 0.02,
}
EMBEDDINGS_COST = 0.0001
SYNTHESIS_COST = 0.04

# Targets for the pro tier
TARGET_PROCESSING_SECONDS = 50
TARGET_COST_PER_QUERY = 0.15

SECONDS_PER_DAY = 24 * 60 * 60


class CostTracker:
    """Append-only log of QueryCost records.

    When ``data_file`` is set the log is loaded on construction and saved
    after every query; otherwise it lives in memory only.
    """

    def __init__(self, data_file: str | Path | None = None) -> None:
        self.data_file = Path(data_file) if data_file else None
        self._costs: list[QueryCost] = []
        self._lock = threading.Lock()
        self._load()

    def _load(self) -> None:
        if self.data_file is None or not self.data_file.exists():
            logger.info("Starting fresh cost tracking. File: %s", self.data_file)
            return
        try:
            with open(self.data_file) as f:
                self._costs = [QueryCost.from_dict(entry) for entry in json.load(f)]
        except (OSError, json.JSONDecodeError, TypeError, AttributeError) as e:
            logger.warning(
                "Could not load cost data, starting fresh. File: %s, Error: %s",
                self.data_file, e,
            )
            self._costs = []
            return
        logger.info("Loaded cost records. Count: %d", len(self._costs))

    def _save(self) -> None:
        if self.data_file is None:
            return
        try:
            self.data_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.data_file, "w") as f:
                json.dump([cost.to_dict() for cost in self._costs], f, indent=2)
        except OSError as e:
            logger.error("Failed to save cost data. File: %s, Error: %s", self.data_file, e)

    def track_query(self, tier: str, processing_time: int) -> QueryCost:
        """
        Record one completed query.

        Args:
            tier: "basic" or "pro"; pro adds embedding and synthesis costs
            processing_time: Wall-clock milliseconds for the whole query

        Returns:
            The recorded QueryCost
        """
        if tier not in TIERS:
            raise ValueError(f"Unknown tier: {tier}")

        synthesis: dict[str, float] = {}
        if tier == "pro":
            synthesis = {"embeddings": EMBEDDINGS_COST, "synthesis": SYNTHESIS_COST}

        cost = QueryCost(
            timestamp=time.time(),
            tier=tier,
            models=dict(MODEL_COSTS),
            synthesis=synthesis,
            total=round(sum(MODEL_COSTS.values()) + sum(synthesis.values()), 6),
            processing_time=processing_time,
        )

        with self._lock:
            self._costs.append(cost)
            self._save()

        logger.info(
            "Query cost tracked. Tier: %s, Total: $%.4f, ProcessingMs: %d",
            tier, cost.total, processing_time,
        )
        return cost

    def _recent(self, days: float, tier: str | None = None) -> list[QueryCost]:
        cutoff = time.time() - days * SECONDS_PER_DAY
        with self._lock:
            return [
                c for c in self._costs
                if c.timestamp > cutoff and (tier is None or c.tier == tier)
            ]

    def get_average_cost(self, tier: str, days: float = 7) -> float:
        recent = self._recent(days, tier)
        if not recent:
            return 0.0
        return sum(c.total for c in recent) / len(recent)

    def get_average_processing_time(self, tier: str, days: float = 7) -> float:
        """Average processing time in milliseconds."""
        recent = self._recent(days, tier)
        if not recent:
            return 0.0
        return sum(c.processing_time for c in recent) / len(recent)

    def get_total_costs(self, days: float = 30) -> dict[str, float]:
        recent = self._recent(days)
        totals = {tier: sum(c.total for c in recent if c.tier == tier) for tier in TIERS}
        totals["total"] = sum(totals[tier] for tier in TIERS)
        return totals

    def get_performance_stats(self, days: float = 7) -> dict[str, dict[str, float]]:
        """Per-tier average cost, average time (ms) and query count."""
        recent = self._recent(days)
        stats = {}
        for tier in TIERS:
            queries = [c for c in recent if c.tier == tier]
            count = len(queries)
            stats[tier] = {
                "avg_cost": sum(c.total for c in queries) / count if count else 0.0,
                "avg_time": sum(c.processing_time for c in queries) / count if count else 0.0,
                "count": count,
            }
        return stats

    def validate_targets(self) -> dict[str, Any]:
        """Check the pro tier's 7-day averages against the time and cost targets."""
        pro = self.get_performance_stats(7)["pro"]
        avg_time_seconds = pro["avg_time"] / 1000
        return {
            "processing_time_ok": avg_time_seconds < TARGET_PROCESSING_SECONDS,
            "cost_per_query_ok": pro["avg_cost"] < TARGET_COST_PER_QUERY,
            "avg_cost": pro["avg_cost"],
            "avg_time": avg_time_seconds,
        }

    def get_recommendations(self) -> list[str]:
        """Plain-language notes on the 7-day targets and tier usage."""
        validation = self.validate_targets()
        stats = self.get_performance_stats(7)
        recommendations = []

        avg_time = validation["avg_time"]
        if validation["processing_time_ok"]:
            recommendations.append(
                f"Synthesis time of {avg_time:.1f}s is within target (<{TARGET_PROCESSING_SECONDS}s)."
            )
        else:
            recommendations.append(
                f"Synthesis averaging {avg_time:.1f}s exceeds the {TARGET_PROCESSING_SECONDS}s target. "
                "Consider optimizing model calls or reducing synthesis complexity."
            )

        avg_cost = validation["avg_cost"]
        if validation["cost_per_query_ok"]:
            recommendations.append(
                f"Average cost of ${avg_cost:.4f} is within target (<${TARGET_COST_PER_QUERY})."
            )
        else:
            recommendations.append(
                f"Average cost of ${avg_cost:.4f} exceeds the ${TARGET_COST_PER_QUERY} target. "
                "Consider optimizing model usage or adjusting pricing."
            )

        basic, pro = stats["basic"], stats["pro"]
        if pro["count"] and basic["count"]:
            ratio = pro["count"] / basic["count"]
            if ratio > 2:
                recommendations.append(
                    f"High pro mode usage ({ratio:.1f}:1 ratio). Consider pro tier pricing optimization."
                )
            elif ratio < 0.5:
                recommendations.append(
                    f"Low pro mode adoption ({ratio:.1f}:1 ratio). Consider improving the pro mode offering."
                )

        if pro["avg_time"] and basic["avg_time"]:
            slowdown = pro["avg_time"] / basic["avg_time"]
            if slowdown > 5:
                recommendations.append(
                    f"Pro mode is {slowdown:.1f}x slower than basic. Consider streaming optimizations."
                )

        return recommendations

    def get_summary(self) -> dict[str, Any]:
        validation = self.validate_targets()
        totals = self.get_total_costs(30)
        with self._lock:
            query_count = len(self._costs)
        passed = validation["processing_time_ok"] and validation["cost_per_query_ok"]
        return {
            "total_queries": query_count,
            "total_cost": totals["total"],
            "avg_cost_per_query": totals["total"] / query_count if query_count else 0.0,
            "status": "PASS" if passed else "FAIL",
        }

    def export_costs(self) -> list[QueryCost]:
        with self._lock:
            return list(self._costs)
