"""
Typed failures of the recommendation pipeline.

The application shell maps `category` to a response class and shows
`remediation` to the user:

- data            : the user or the catalog has to do something first
- infrastructure  : a backing service (vector store, history source) is down
- ai_service      : the embedding or generation model is unavailable
- cancelled       : the caller aborted the request
"""

from __future__ import annotations

from typing import Any


class RecommenderError(Exception):
    category = "infrastructure"
    remediation = "Please try again later."

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


# --- structural / data ---
class InvalidVector(RecommenderError):
    category = "data"
    remediation = "Re-embed the item with the configured embedding model."


class InsufficientHistory(RecommenderError):
    category = "data"
    remediation = "Sync your Steam library and play a few games first."


class NoCandidates(RecommenderError):
    category = "data"
    remediation = "Sync your library details so the catalog gets indexed."


# --- infrastructure ---
class StoreUnavailable(RecommenderError):
    category = "infrastructure"
    remediation = "The game catalog is unreachable right now, please retry."


class HistoryUnavailable(RecommenderError):
    category = "infrastructure"
    remediation = "Your play history could not be loaded, please retry."

    def __init__(self, message: str, *, result: Any = None, **context: Any):
        super().__init__(message, **context)
        # zero-item SyncResult when raised from a library sync
        self.result = result


# --- AI services ---
class EmbeddingUnavailable(RecommenderError):
    category = "ai_service"
    remediation = "The AI service is temporarily unavailable, please retry."


class GenerationUnavailable(RecommenderError):
    category = "ai_service"
    remediation = "The AI service is temporarily unavailable, please retry."


class RecommendationCancelled(RecommenderError):
    category = "cancelled"
    remediation = ""
