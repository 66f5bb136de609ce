"""Answer synthesizer — a grounded answer from retrieved passages.

The prompt is the passages joined by an explicit separator, followed by the
question. An empty passage list still goes to the model (with an empty
context block). A failed generation raises SynthesisError; there is no retry
here, ordered fallbacks are the orchestrator's concern.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence

from loguru import logger

from quarry.errors import SynthesisError
from quarry.rag import llm_client

PASSAGE_SEPARATOR = "\n---\n"

_ANSWER_PROMPT = """\
Using the following context, answer the question.

Context:
{context}

Question: {question}

Answer:"""

CompleteFn = Callable[..., str]


def build_prompt(question: str, passages: Sequence[str]) -> str:
    return _ANSWER_PROMPT.format(
        context=PASSAGE_SEPARATOR.join(passages),
        question=question,
    )


class AnswerSynthesizer:
    """Generate an answer to a question conditioned on passages.

    Args:
        model: LiteLLM generation model string.
        max_tokens: Output length budget.
        temperature: Sampling temperature.
        complete_fn: ``complete(model, messages, max_tokens=, temperature=)``;
            defaults to ``llm_client.complete``.
    """

    def __init__(
        self,
        model: str,
        max_tokens: int = 500,
        temperature: float = 0.0,
        complete_fn: CompleteFn | None = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._complete = complete_fn or llm_client.complete

    def synthesize(self, question: str, passages: Sequence[str]) -> str:
        """Return the model's answer.

        Raises:
            SynthesisError: If the model call fails or returns no text.
        """
        prompt = build_prompt(question, passages)
        try:
            answer = self._complete(
                self.model,
                [{"role": "user", "content": prompt}],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except Exception as exc:
            raise SynthesisError(f"Generation with '{self.model}' failed: {exc}") from exc

        answer = answer.strip()
        if not answer:
            raise SynthesisError(f"Generation with '{self.model}' returned an empty answer.")
        logger.debug(f"[Synthesizer] {self.model}: {len(passages)} passages → {len(answer)} chars")
        return answer
