"""Batched embedder over a fixed external embedding model.

Requests larger than ``batch_size`` are split internally; output order always
matches input order. Transient failures (timeouts, rate limits, dropped
connections, 5xx) are retried per batch with bounded exponential backoff via
tenacity. Anything else, or an exhausted retry budget, becomes EmbeddingError.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence

from loguru import logger
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from quarry.errors import EmbeddingError
from quarry.rag import llm_client

EmbedFn = Callable[[str, list[str]], list[list[float]]]

DEFAULT_BATCH_SIZE = 100


class Embedder:
    """Convert text into fixed-dimension vectors.

    Args:
        model: LiteLLM embedding model string.
        dimensions: Expected vector size; anything else is an EmbeddingError.
        batch_size: Maximum texts per model call.
        max_attempts: Attempts per batch, counting the first.
        backoff_min: Minimum wait between attempts (seconds).
        backoff_max: Maximum wait between attempts (seconds).
        embed_fn: ``(model, texts) -> vectors``; defaults to
            ``llm_client.embed_batch``. Substitute a fake in tests.
        transient_errors: Exception types that warrant another attempt.
    """

    def __init__(
        self,
        model: str,
        dimensions: int,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_attempts: int = 3,
        backoff_min: float = 1.0,
        backoff_max: float = 30.0,
        embed_fn: EmbedFn | None = None,
        transient_errors: tuple[type[BaseException], ...] = llm_client.TRANSIENT_ERRORS,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.model = model
        self.dimensions = dimensions
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.backoff_min = backoff_min
        self.backoff_max = backoff_max
        self._embed_fn = embed_fn or llm_client.embed_batch
        self._transient = transient_errors
        self.total_api_calls = 0

    def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts*; ``result[i]`` is the vector of ``texts[i]``.

        Raises:
            EmbeddingError: On a non-transient failure, an exhausted retry
                budget, or a response of the wrong size or dimensionality.
        """
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = list(texts[start : start + self.batch_size])
            vectors.extend(self._embed_batch(batch))
            logger.debug(
                f"[Embedder] Batch {start // self.batch_size + 1} | {len(batch)} texts | "
                f"{len(vectors)}/{len(texts)} embedded"
            )
        return vectors

    def embed_one(self, text: str) -> list[float]:
        return self.embed_many([text])[0]

    def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        # Empty strings are rejected by most providers
        safe = [t if t.strip() else " " for t in batch]
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_min, min=self.backoff_min, max=self.backoff_max),
            retry=retry_if_exception_type(self._transient),
            before_sleep=self._log_retry,
        )
        try:
            vectors = retrying(self._call, safe)
        except RetryError as exc:
            cause = exc.last_attempt.exception()
            raise EmbeddingError(
                f"Embedding failed after {self.max_attempts} attempts with '{self.model}': {cause}"
            ) from cause
        except EmbeddingError:
            raise
        except Exception as exc:
            raise EmbeddingError(f"Embedding failed with '{self.model}': {exc}") from exc

        if len(vectors) != len(batch):
            raise EmbeddingError(
                f"Embedding model returned {len(vectors)} vectors for {len(batch)} texts."
            )
        for vector in vectors:
            if len(vector) != self.dimensions:
                raise EmbeddingError(
                    f"Embedding model '{self.model}' returned {len(vector)} dimensions; "
                    f"expected {self.dimensions}."
                )
        return vectors

    def _call(self, batch: list[str]) -> list[list[float]]:
        self.total_api_calls += 1
        return self._embed_fn(self.model, batch)

    def _log_retry(self, retry_state) -> None:
        logger.warning(
            f"[Embedder] Transient failure (attempt {retry_state.attempt_number}/"
            f"{self.max_attempts}): {retry_state.outcome.exception()}"
        )
