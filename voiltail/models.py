"""Data models for multi-model synthesis results."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

ERROR_PREFIX = "Error: "


class Provider(str, Enum):
    """The three hosted model providers queried for every prompt."""

    GEMINI = "gemini"
    OPENAI = "openai"
    CLAUDE = "claude"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    Provider.GEMINI: "Gemini",
    Provider.OPENAI: "OpenAI",
    Provider.CLAUDE: "Claude",
}


class AlignmentLevel(str, Enum):
    """Qualitative agreement band."""

    HIGH = "high"
    MODERATE = "moderate"
    LOW = "low"


@dataclass(frozen=True)
class ModelResponse:
    """One provider's answer to one prompt.

    A response is either a success carrying content and latency, or a
    failure carrying the reason. ``is_error`` is the tag; callers must not
    inspect ``content`` to tell the two apart.
    """

    model: Provider
    content: str
    response_time: int = 0  # milliseconds; 0 means the call never completed
    error: str | None = None

    @classmethod
    def success(cls, model: Provider, content: str, response_time: int) -> "ModelResponse":
        return cls(model=model, content=content, response_time=max(0, response_time))

    @classmethod
    def failure(cls, model: Provider, reason: str) -> "ModelResponse":
        reason = reason or "Unknown error occurred"
        return cls(model=model, content=f"{ERROR_PREFIX}{reason}", response_time=0, error=reason)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        result = {
            "model": self.model.value,
            "content": self.content,
            "response_time": self.response_time,
        }
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass(frozen=True)
class AlignedPoint:
    """A claim the models agree on."""

    content: str
    models: list[str]
    strength: float

    def to_dict(self) -> dict[str, Any]:
        return {"content": self.content, "models": list(self.models), "strength": self.strength}


@dataclass(frozen=True)
class DivergentSection:
    """A dimension along which the models disagree."""

    topic: str
    content: str
    models: list[str]
    description: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "topic": self.topic,
            "content": self.content,
            "models": list(self.models),
            "description": self.description,
        }


@dataclass(frozen=True)
class AlignmentData:
    """Agreement measures across a response set."""

    semantic: float  # average pairwise embedding cosine, 0-1
    surface: float  # Jaccard index over filtered word sets, 0-1
    model_levels: dict[Provider, AlignmentLevel]
    overall_alignment: AlignmentLevel
    description: str
    methodology: str
    aligned_points: list[AlignedPoint] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "semantic": self.semantic,
            "surface": self.surface,
            "model_levels": {
                provider.value: level.value for provider, level in self.model_levels.items()
            },
            "overall_alignment": self.overall_alignment.value,
            "description": self.description,
            "methodology": self.methodology,
            "aligned_points": [p.to_dict() for p in self.aligned_points],
        }


@dataclass(frozen=True)
class ConsensusAnalysis:
    """Complete output of one synthesis request."""

    unified_response: str
    alignment: AlignmentData
    aligned_points: list[AlignedPoint]
    divergent_sections: list[DivergentSection]
    original_responses: list[ModelResponse]

    def to_dict(self) -> dict[str, Any]:
        return {
            "unified_response": self.unified_response,
            "alignment": self.alignment.to_dict(),
            "aligned_points": [p.to_dict() for p in self.aligned_points],
            "divergent_sections": [d.to_dict() for d in self.divergent_sections],
            "original_responses": [r.to_dict() for r in self.original_responses],
        }


@dataclass
class QueryCost:
    """Estimated cost and wall-clock time of one completed query."""

    timestamp: float  # epoch seconds
    tier: str  # "basic" | "pro"
    models: dict[str, float]
    synthesis: dict[str, float]
    total: float
    processing_time: int  # milliseconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "tier": self.tier,
            "models": dict(self.models),
            "synthesis": dict(self.synthesis),
            "total": self.total,
            "processing_time": self.processing_time,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueryCost":
        return cls(
            timestamp=data.get("timestamp", 0.0),
            tier=data.get("tier", "pro"),
            models=dict(data.get("models", {})),
            synthesis=dict(data.get("synthesis", {})),
            total=data.get("total", 0.0),
            processing_time=data.get("processing_time", 0),
        )
