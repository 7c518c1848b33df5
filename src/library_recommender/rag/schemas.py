"""
Records and collaborator contracts shared by the recommendation pipeline.

Collaborators (history, metadata, embeddings, generation) are plain
`typing.Protocol`s so the Steam/OpenAI adapters and test fakes are
interchangeable.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol, Sequence, Union


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_zero_vector(vec: Sequence[float] | None) -> bool:
    """True for a missing vector or one made only of zeros (embedding fallback)."""
    if not vec:
        return True
    return all(x == 0 for x in vec)


# -----------------------------
# Catalog
# -----------------------------
@dataclass
class CatalogItem:
    item_id: int
    name: str
    description_text: str
    genres: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    developer: str | None = None
    embedding: list[float] | None = None
    short_description: str | None = None
    publisher: str | None = None
    last_updated: datetime = field(default_factory=utc_now)

    @property
    def has_embedding(self) -> bool:
        return not is_zero_vector(self.embedding)


@dataclass(frozen=True)
class CandidateMatch:
    item_id: int
    name: str
    description_text: str
    genres: list[str]
    developer: str | None
    similarity: float
    short_description: str | None = None


@dataclass(frozen=True)
class Readiness:
    ready: bool
    indexed_count: int


# -----------------------------
# Collaborator inputs
# -----------------------------
@dataclass(frozen=True)
class PlayRecord:
    item_id: int
    name: str
    playtime_minutes: int


@dataclass(frozen=True)
class PlayHistoryPage:
    items: list[PlayRecord]
    total_count: int


@dataclass(frozen=True)
class ItemDetails:
    name: str
    short_description: str = ""
    genres: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    developers: list[str] = field(default_factory=list)
    publishers: list[str] = field(default_factory=list)


# -----------------------------
# Sync
# -----------------------------
class SyncOutcome(str, enum.Enum):
    INDEXED = "indexed"
    UNEMBEDDED = "unembedded"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class SyncResult:
    succeeded: int
    failed: int
    total: int
    skipped: int = 0
    unembedded: int = 0


# -----------------------------
# Recommendation
# -----------------------------
@dataclass(frozen=True)
class ParsedRecommendation:
    recommended_game: str
    reason: str
    confidence: float
    game_type: str = ""
    similarity: str = ""


@dataclass(frozen=True)
class RawTextFallback:
    """The model answered, but not with the requested JSON object."""

    raw_text: str
    recommended_game: str = "Recommendation analysis"
    confidence: float = 0.8
    game_type: str = "Similarity-based analysis"
    similarity: str = "High similarity match"

    @property
    def reason(self) -> str:
        return self.raw_text


RecommendationAnswer = Union[ParsedRecommendation, RawTextFallback]


@dataclass(frozen=True)
class TopUserItem:
    name: str
    hours: int


@dataclass(frozen=True)
class RecommendationResult:
    answer: RecommendationAnswer
    top_user_items: list[TopUserItem]
    candidate_count: int
    max_similarity: float
    generated_at: datetime
    candidates: list[CandidateMatch] = field(default_factory=list)

    @property
    def recommended_item_name(self) -> str:
        return self.answer.recommended_game

    @property
    def reason(self) -> str:
        return self.answer.reason

    @property
    def confidence_score(self) -> float:
        return self.answer.confidence

    @property
    def item_type(self) -> str:
        return self.answer.game_type

    @property
    def similarity_narrative(self) -> str:
        return self.answer.similarity

    @property
    def is_fallback(self) -> bool:
        return isinstance(self.answer, RawTextFallback)

    def to_dict(self) -> dict[str, Any]:
        return {
            "recommendation": {
                "recommendedGame": self.recommended_item_name,
                "reason": self.reason,
                "confidence": self.confidence_score,
                "gameType": self.item_type,
                "similarity": self.similarity_narrative,
                "userPreferenceAnalysis": self.similarity_narrative,
            },
            "metadata": {
                "userTopGames": [{"name": t.name, "hours": t.hours} for t in self.top_user_items],
                "similarGamesFound": self.candidate_count,
                "maxSimilarity": self.max_similarity,
                "generatedAt": self.generated_at.isoformat(),
                "fallback": self.is_fallback,
            },
        }


# -----------------------------
# Collaborator contracts
# -----------------------------
class PlayHistoryProvider(Protocol):
    async def get_top_played(self, user_id: str, limit: int) -> list[PlayRecord]: ...

    async def get_all_played(self, user_id: str, limit: int, offset: int) -> PlayHistoryPage: ...


class ItemMetadataProvider(Protocol):
    async def get_details(self, item_id: int) -> ItemDetails | None: ...


class EmbeddingBackend(Protocol):
    async def embed(self, texts: list[str]) -> list[list[float]]: ...


class CompletionFunction(Protocol):
    async def complete(self, prompt: str) -> str: ...
