"""Completion client for the diagnostic assistant (OpenAI Responses API)."""

import logging

from openai import AsyncOpenAI, OpenAIError

from app.config import settings
from app.exceptions import CompletionUnavailableError

logger = logging.getLogger(__name__)


class CompletionService:
    """Single-shot text completion.

    One request per call with no automatic retries; any provider failure or
    an empty reply raises CompletionUnavailableError.

    Example:
        service = CompletionService()
        reply = await service.complete(system_prompt, conversation_text)

        # Testing with mock client
        service = CompletionService(client=mock_client)
    """

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        model: str | None = None,
    ):
        if client is not None:
            self._client = client
        else:
            self._client = AsyncOpenAI(api_key=settings.openai_api_key, max_retries=0)

        self._model = model or settings.completion_model

    @property
    def model(self) -> str:
        return self._model

    async def close(self) -> None:
        """Close the OpenAI client connection."""
        await self._client.close()

    async def complete(
        self,
        system_prompt: str,
        conversation_text: str,
        *,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> str:
        """Generate a reply.

        Args:
            system_prompt: Instructions for the model.
            conversation_text: The user-side input.
            temperature: Sampling temperature. Defaults to COMPLETION_TEMPERATURE.
            max_output_tokens: Output cap. Defaults to COMPLETION_MAX_OUTPUT_TOKENS.

        Returns:
            The reply text, stripped.

        Raises:
            CompletionUnavailableError: On provider error or an empty reply.
        """
        if temperature is None:
            temperature = settings.completion_temperature
        if max_output_tokens is None:
            max_output_tokens = settings.completion_max_output_tokens

        try:
            response = await self._client.responses.create(
                model=self._model,
                instructions=system_prompt,
                input=conversation_text,
                temperature=temperature,
                max_output_tokens=max_output_tokens,
            )
        except OpenAIError as e:
            logger.error("Completion request failed (model=%s)", self._model, exc_info=True)
            raise CompletionUnavailableError(f"Completion provider error: {type(e).__name__}") from e

        text = getattr(response, "output_text", None)
        if not isinstance(text, str) or not text.strip():
            logger.error("Completion returned no text (model=%s)", self._model)
            raise CompletionUnavailableError("Completion provider returned an empty reply")

        return text.strip()
