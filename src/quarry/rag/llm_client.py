"""LiteLLM client wrapper with API key validation.

All embedding and completion calls in the pipeline route through this module.
Retries are owned by the callers (the embedder retries transient failures with
its own backoff; the synthesizer does not retry), so litellm's built-in retry
is disabled by default here.
"""

from __future__ import annotations

import os

import litellm

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

# Failures worth another attempt: timeouts, throttling, dropped connections, 5xx.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    litellm.exceptions.Timeout,
    litellm.exceptions.RateLimitError,
    litellm.exceptions.APIConnectionError,
    litellm.exceptions.ServiceUnavailableError,
    litellm.exceptions.InternalServerError,
    TimeoutError,
    ConnectionError,
)


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "huggingface": "HUGGINGFACE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider)

    if env_var is None:
        return

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def complete(
    model: str,
    messages: list[dict],
    max_tokens: int = 500,
    temperature: float = 0.0,
    num_retries: int = 0,
) -> str:
    """Call litellm.completion(). Returns the content string.

    Args:
        model: LiteLLM model string (provider/model format).
        messages: OpenAI-style message list.
        max_tokens: Maximum output tokens.
        temperature: Sampling temperature (0 = deterministic).
        num_retries: litellm-level retries on transient errors.

    Returns:
        The text content of the first choice ("" if the model returned none).
    """
    response = litellm.completion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        num_retries=num_retries,
    )
    return response.choices[0].message.content or ""


def embed_batch(model: str, texts: list[str], num_retries: int = 0) -> list[list[float]]:
    """Call litellm.embedding() for *texts*. Returns vectors in input order.

    Providers may return items out of order; they are re-sorted by the
    ``index`` field each item carries.
    """
    response = litellm.embedding(
        model=model,
        input=texts,
        num_retries=num_retries,
    )
    items = sorted(
        enumerate(response.data),
        key=lambda pair: _item_get(pair[1], "index", pair[0]),
    )
    return [list(_item_get(item, "embedding")) for _, item in items]


def _item_get(item, key: str, default=None):
    # litellm returns dicts for some providers and pydantic objects for others
    if isinstance(item, dict):
        return item.get(key, default)
    return getattr(item, key, default)
