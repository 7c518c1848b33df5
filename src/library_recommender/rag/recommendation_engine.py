"""
Retrieval-augmented recommendation: one pass, no retries across stages.

1. top-N most played items of the user
2. preference text from their names
3. embed the preference text
4. k-NN search in the item vector store
5. candidate context (ranked text blocks)
6. LLM picks one candidate and explains it (JSON, with raw-text fallback)
7. RecommendationResult with metadata

Reference behaviour does not check that the answer names a retrieved candidate.
`strict=True` enables the checked variant: one corrective re-prompt, then the
top candidate by similarity.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from library_recommender.rag.embedding_client import EmbeddingClient
from library_recommender.rag.errors import (
    EmbeddingUnavailable,
    GenerationUnavailable,
    HistoryUnavailable,
    InsufficientHistory,
    NoCandidates,
    RecommendationCancelled,
)
from library_recommender.rag.schemas import (
    CandidateMatch,
    CompletionFunction,
    ParsedRecommendation,
    PlayHistoryProvider,
    PlayRecord,
    RawTextFallback,
    RecommendationAnswer,
    RecommendationResult,
    TopUserItem,
    is_zero_vector,
    utc_now,
)
from library_recommender.rag.vector_store import QdrantItemStore

logger = logging.getLogger(__name__)

DEFAULT_TOP_N = 5
DEFAULT_K = 15

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?```$", re.DOTALL)


# ===============================
# Prompt building
# ===============================
def build_preference_text(top_items: list[PlayRecord]) -> str:
    return "The player's favourite games are: " + ", ".join(r.name for r in top_items) + "."


def build_candidate_context(candidates: list[CandidateMatch]) -> str:
    blocks = []
    for c in candidates:
        description = c.short_description or c.description_text
        blocks.append(
            f"Game: {c.name}\n"
            f"Description: {description}\n"
            f"Genres: {', '.join(c.genres)}\n"
            f"Developer: {c.developer or 'Unknown'}\n"
            f"Similarity: {c.similarity * 100:.1f}%"
        )
    return "\n\n".join(blocks)


def build_recommendation_prompt(preference_text: str, context: str) -> str:
    return f"""You are a professional game recommendation expert. Based on the player's preferences and the similar games below, recommend the single best-fitting game.

Player preferences:
{preference_text}

Similar games:
{context}

Reply with a JSON object only:
{{
  "recommendedGame": "name of the recommended game",
  "reason": "detailed reason for the recommendation",
  "confidence": 0.85,
  "gameType": "type of game",
  "similarity": "analysis of how it matches the player's preferences"
}}

Requirements:
1. The recommended game must be one of the similar games listed above
2. Explain in detail why this game is recommended
3. confidence is a number between 0 and 1"""


def build_correction_prompt(original_prompt: str, rejected: str, allowed: list[str]) -> str:
    names = "\n".join(f"- {n}" for n in allowed)
    return (
        f"{original_prompt}\n\n"
        f'Your previous answer recommended "{rejected}", which is not in the list of similar games. '
        f"Choose exactly one of these names:\n{names}"
    )


# ===============================
# Answer parsing
# ===============================
class _LLMRecommendation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    recommendedGame: str = Field(min_length=1)
    reason: str
    confidence: float = Field(ge=0.0, le=1.0)
    gameType: str = ""
    similarity: str = ""


def _strip_fences(text: str) -> str:
    s = text.strip()
    m = _FENCE_RE.match(s)
    return m.group(1).strip() if m else s


def parse_recommendation(text: str) -> RecommendationAnswer:
    """Structured answer if the model returned the JSON object, raw-text fallback otherwise."""
    try:
        data = json.loads(_strip_fences(text))
        parsed = _LLMRecommendation.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning("LLM answer is not the expected JSON object, using raw text: %s", e)
        return RawTextFallback(raw_text=text)
    return ParsedRecommendation(
        recommended_game=parsed.recommendedGame,
        reason=parsed.reason,
        confidence=parsed.confidence,
        game_type=parsed.gameType,
        similarity=parsed.similarity,
    )


def names_a_candidate(answer: RecommendationAnswer, candidates: list[CandidateMatch]) -> bool:
    if not isinstance(answer, ParsedRecommendation):
        return False
    wanted = answer.recommended_game.strip().casefold()
    return any(c.name.strip().casefold() == wanted for c in candidates)


def top_candidate_answer(candidates: list[CandidateMatch]) -> ParsedRecommendation:
    top = candidates[0]
    return ParsedRecommendation(
        recommended_game=top.name,
        reason=(
            "The model did not pick one of the retrieved games, so the closest match "
            "by similarity is recommended."
        ),
        confidence=max(0.0, min(1.0, top.similarity)),
        game_type=", ".join(top.genres),
        similarity=f"{top.similarity * 100:.1f}% similar to the player's favourite games",
    )


# ===============================
# Engine
# ===============================
class RecommendationEngine:
    def __init__(
        self,
        history: PlayHistoryProvider,
        embedder: EmbeddingClient,
        store: QdrantItemStore,
        completion: CompletionFunction,
        *,
        top_n: int = DEFAULT_TOP_N,
        k: int = DEFAULT_K,
        timeout_s: float = 60.0,
        strict: bool = False,
    ):
        self.history = history
        self.embedder = embedder
        self.store = store
        self.completion = completion
        self.top_n = int(top_n)
        self.k = int(k)
        self.timeout_s = float(timeout_s)
        self.strict = strict

    @staticmethod
    def _check_cancelled(cancel_event: asyncio.Event | None, stage: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise RecommendationCancelled(f"Recommendation cancelled before {stage}", stage=stage)

    async def _generate(self, prompt: str) -> str:
        try:
            return await asyncio.wait_for(self.completion.complete(prompt), timeout=self.timeout_s)
        except Exception as e:
            raise GenerationUnavailable(f"Generation failed: {e!r}") from e

    async def _top_items(self, user_id: str) -> list[PlayRecord]:
        try:
            records = await self.history.get_top_played(user_id, self.top_n)
        except Exception as e:
            raise HistoryUnavailable(f"Could not load play history for user {user_id}: {e!r}", user_id=user_id) from e
        # stable sort: equal playtimes keep the provider's order
        return sorted(records, key=lambda r: r.playtime_minutes, reverse=True)[: self.top_n]

    async def recommend(self, user_id: str, cancel_event: asyncio.Event | None = None) -> RecommendationResult:
        self._check_cancelled(cancel_event, "history")
        top_items = await self._top_items(user_id)
        if not top_items:
            raise InsufficientHistory(f"User {user_id} has no played games", user_id=user_id)

        preference_text = build_preference_text(top_items)

        self._check_cancelled(cancel_event, "embedding")
        query_vector = await self.embedder.embed_one(preference_text)
        if is_zero_vector(query_vector):
            raise EmbeddingUnavailable("Preference text could not be embedded", user_id=user_id)

        self._check_cancelled(cancel_event, "search")
        candidates = await self.store.search(query_vector, self.k)
        if not candidates:
            raise NoCandidates("Vector search returned no candidates; is the catalog indexed?", user_id=user_id)

        context = build_candidate_context(candidates)
        prompt = build_recommendation_prompt(preference_text, context)

        self._check_cancelled(cancel_event, "generation")
        answer = parse_recommendation(await self._generate(prompt))

        if self.strict and not names_a_candidate(answer, candidates):
            logger.warning("Answer %r is not a retrieved candidate, asking again", answer.recommended_game)
            allowed = [c.name for c in candidates]
            self._check_cancelled(cancel_event, "correction")
            answer = parse_recommendation(
                await self._generate(build_correction_prompt(prompt, answer.recommended_game, allowed))
            )
            if not names_a_candidate(answer, candidates):
                logger.warning("Corrected answer still off-catalog, using top candidate")
                answer = top_candidate_answer(candidates)

        self._check_cancelled(cancel_event, "result")
        result = RecommendationResult(
            answer=answer,
            top_user_items=[
                TopUserItem(name=r.name, hours=round(r.playtime_minutes / 60)) for r in top_items
            ],
            candidate_count=len(candidates),
            max_similarity=candidates[0].similarity,
            generated_at=utc_now(),
            candidates=candidates,
        )
        logger.info(
            "Recommended %r for user %s (%d candidates, fallback=%s)",
            result.recommended_item_name, user_id, result.candidate_count, result.is_fallback,
        )
        return result
