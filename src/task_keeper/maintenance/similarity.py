"""Pairwise similarity scoring for duplicate detection."""

import logging
import re
from typing import Any, Protocol

import httpx

from task_keeper.errors import ExternalServiceError

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str, ignore_case: bool = True, ignore_whitespace: bool = True) -> str:
    """Fold case and collapse whitespace runs as configured."""
    if ignore_case:
        text = text.lower()
    if ignore_whitespace:
        text = _WHITESPACE.sub(" ", text).strip()
    return text


class SimilarityScorer(Protocol):
    """Scores every pair of texts; returns an n x n matrix of values in [0, 1]."""

    async def score(self, texts: list[str], threshold: float | None = None) -> list[list[float]]:
        ...


def jaccard(first: str, second: str) -> float:
    """Jaccard similarity of the word sets of two texts; 0.0 if either is empty."""
    words_a = set(first.split())
    words_b = set(second.split())
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


class LexicalSimilarityScorer:
    """Local word-set similarity."""

    async def score(self, texts: list[str], threshold: float | None = None) -> list[list[float]]:
        return self.matrix(texts)

    @staticmethod
    def matrix(texts: list[str]) -> list[list[float]]:
        size = len(texts)
        scores = [[0.0] * size for _ in range(size)]
        for i in range(size):
            scores[i][i] = 1.0 if texts[i].split() else 0.0
            for j in range(i + 1, size):
                scores[i][j] = scores[j][i] = jaccard(texts[i], texts[j])
        return scores


class OracleSimilarityScorer:
    """Delegates scoring to a remote similarity service.

    Posts ``{"texts": [...], "threshold": t}`` and expects ``{"scores": [[...]]}``
    with one row per text. Any transport or protocol failure is logged and the
    fallback scorer is used instead, so callers never see oracle errors.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        timeout: float = 5.0,
        fallback: SimilarityScorer | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize oracle scorer.

        Args:
            endpoint: URL of the similarity service
            api_key: Bearer token sent with each request
            timeout: Request timeout in seconds
            fallback: Scorer used when the oracle fails (default: lexical)
            client: Shared HTTP client; one is created per request when omitted
        """
        self.endpoint = endpoint
        self._api_key = api_key
        self._timeout = timeout
        self._fallback = fallback or LexicalSimilarityScorer()
        self._client = client

    async def score(self, texts: list[str], threshold: float | None = None) -> list[list[float]]:
        if len(texts) < 2:
            return await self._fallback.score(texts, threshold)
        try:
            return await self._request(texts, threshold)
        except ExternalServiceError as e:
            logger.warning(f"[Similarity] Oracle unavailable, using local scorer: {e}")
            return await self._fallback.score(texts, threshold)

    async def _request(self, texts: list[str], threshold: float | None) -> list[list[float]]:
        payload: dict[str, Any] = {"texts": texts}
        if threshold is not None:
            payload["threshold"] = threshold
        headers = {"Authorization": f"Bearer {self._api_key}"}

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.endpoint, json=payload, headers=headers, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self.endpoint, json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            raise ExternalServiceError(
                f"Similarity oracle timed out after {self._timeout}s",
                {"endpoint": self.endpoint},
            ) from e
        except httpx.HTTPError as e:
            raise ExternalServiceError(
                f"Similarity oracle request failed: {e}", {"endpoint": self.endpoint}
            ) from e
        except ValueError as e:
            raise ExternalServiceError(
                "Similarity oracle returned invalid JSON", {"endpoint": self.endpoint}
            ) from e

        return _parse_scores(data, len(texts), self.endpoint)


def _parse_scores(data: Any, size: int, endpoint: str) -> list[list[float]]:
    scores = data.get("scores") if isinstance(data, dict) else None
    if not isinstance(scores, list) or len(scores) != size:
        raise ExternalServiceError(
            "Similarity oracle response has no n x n scores matrix", {"endpoint": endpoint}
        )

    matrix: list[list[float]] = []
    for row in scores:
        if not isinstance(row, list) or len(row) != size:
            raise ExternalServiceError(
                "Similarity oracle response has a malformed row", {"endpoint": endpoint}
            )
        values = []
        for value in row:
            if isinstance(value, bool) or not isinstance(value, int | float):
                raise ExternalServiceError(
                    f"Similarity oracle returned non-numeric score {value!r}",
                    {"endpoint": endpoint},
                )
            values.append(float(value))
        matrix.append(values)
    return matrix
