"""
LLM client — async wrapper around an OpenAI-compatible API for embeddings
and the one-shot internal-note completion.
"""

from numbers import Real

from openai import APIStatusError, AsyncOpenAI, OpenAIError
from structlog import get_logger

from app.core.config import IngestConfig
from app.core.errors import ProviderError

logger = get_logger()


class EmbeddedOk:
    """A provider response that decoded to a usable vector."""

    def __init__(self, vector: list[float]):
        self.vector = vector

    def __repr__(self) -> str:
        return f"EmbeddedOk(dims={len(self.vector)})"


class EmbeddedError:
    """A provider response that did not contain a usable vector."""

    def __init__(self, reason: str):
        self.reason = reason

    def __repr__(self) -> str:
        return f"EmbeddedError(reason={self.reason!r})"


def decode_embedding(response, expected_dims: int = 0) -> EmbeddedOk | EmbeddedError:
    """Pull the first embedding out of an ``embeddings.create`` response.

    Args:
        response: The SDK response object (anything with ``.data[0].embedding``).
        expected_dims: Required vector length, or 0 to accept any length.
    """
    data = getattr(response, "data", None)
    if not data:
        return EmbeddedError("No embedding returned from provider")

    vector = getattr(data[0], "embedding", None)
    if not isinstance(vector, list) or not vector:
        return EmbeddedError("No embedding returned from provider")
    if not all(isinstance(v, Real) and not isinstance(v, bool) for v in vector):
        return EmbeddedError("Embedding contains non-numeric values")
    if expected_dims and len(vector) != expected_dims:
        return EmbeddedError(
            f"Embedding has {len(vector)} dimensions, expected {expected_dims}"
        )

    return EmbeddedOk([float(v) for v in vector])


class EmbeddingClient:
    """Embeddings + note writer over a shared ``AsyncOpenAI`` transport."""

    def __init__(
        self,
        config: IngestConfig,
        client: AsyncOpenAI | None = None,
        api_key: str = "",
        note_model: str = "gpt-4o-mini",
    ) -> None:
        self._config = config
        self._note_model = note_model
        self._api_key = api_key
        self._client = client

    def _sdk(self) -> AsyncOpenAI:
        """The SDK client, built on first use.

        Raises:
            OpenAIError: No API key was given and none is set in the environment.
        """
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._api_key or None,
                base_url=self._config.provider_base_url,
            )
        return self._client

    async def embed(self, text: str, model: str | None = None) -> list[float]:
        """Embed ``text`` and return the vector.

        Raises:
            ProviderError: On transport failure or a malformed response.
        """
        chosen_model = model or self._config.provider_model
        logger.debug("embedding_call_start", model=chosen_model, text_len=len(text))

        try:
            response = await self._sdk().embeddings.create(
                model=chosen_model,
                input=text,
            )
        except OpenAIError as e:
            logger.warning("embedding_call_failed", model=chosen_model, error=str(e))
            raise ProviderError(str(e) or "Embedding failed", _error_details(e)) from e

        result = decode_embedding(response, self._config.embedding_dimensions)
        if isinstance(result, EmbeddedError):
            logger.warning("embedding_malformed", model=chosen_model, reason=result.reason)
            raise ProviderError(result.reason)

        logger.debug("embedding_call_complete", model=chosen_model, dims=len(result.vector))
        return result.vector

    async def write_note(self, messages: list[dict]) -> str:
        """Run a single chat completion and return its trimmed text."""
        logger.info(
            "note_call_start",
            model=self._note_model,
            messages_count=len(messages),
        )

        try:
            response = await self._sdk().chat.completions.create(
                model=self._note_model,
                messages=messages,
                temperature=0.3,
            )
        except OpenAIError as e:
            logger.warning("note_call_failed", model=self._note_model, error=str(e))
            raise ProviderError(str(e) or "Note generation failed", _error_details(e)) from e

        content = response.choices[0].message.content or ""

        logger.info(
            "note_call_complete",
            model=self._note_model,
            tokens_prompt=response.usage.prompt_tokens if response.usage else None,
            tokens_completion=response.usage.completion_tokens if response.usage else None,
        )

        return content.strip()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()


def _error_details(error: OpenAIError):
    """Response body of a failed API call, if the SDK kept one."""
    if isinstance(error, APIStatusError):
        return error.body
    return None
