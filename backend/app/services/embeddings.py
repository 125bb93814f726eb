"""Embedding service for visits using OpenAI text-embedding-3-small."""

import logging
import uuid

from openai import AsyncOpenAI, OpenAIError

from app.config import settings
from app.database import async_session_maker
from app.exceptions import EmbeddingUnavailableError
from app.models.visit import EMBEDDING_DIMENSION, Visit

logger = logging.getLogger(__name__)

# Default embedding model
DEFAULT_MODEL = "text-embedding-3-small"

# Maximum texts per batch (OpenAI limit is 2048, but we use a conservative default)
MAX_BATCH_SIZE = 100


# =============================================================================
# Visit Text Template
# =============================================================================


def _format_number(value: float) -> str:
    return f"{value:g}"


def _vital_signs(visit: Visit) -> list[str]:
    vitals = []
    if visit.systolic_bp is not None and visit.diastolic_bp is not None:
        vitals.append(f"Blood Pressure: {visit.systolic_bp}/{visit.diastolic_bp} mmHg")
    if visit.heart_rate is not None:
        vitals.append(f"Heart Rate: {visit.heart_rate} bpm")
    if visit.temperature is not None:
        vitals.append(f"Temperature: {_format_number(visit.temperature)}°C")
    if visit.blood_sugar is not None:
        vitals.append(f"Blood Sugar: {_format_number(visit.blood_sugar)} mg/dL")
    if visit.oxygen_saturation is not None:
        vitals.append(f"Oxygen Saturation: {_format_number(visit.oxygen_saturation)}%")
    if visit.respiratory_rate is not None:
        vitals.append(f"Respiratory Rate: {visit.respiratory_rate} breaths/min")
    if visit.weight is not None:
        vitals.append(f"Weight: {_format_number(visit.weight)} kg")
    if visit.height is not None:
        vitals.append(f"Height: {_format_number(visit.height)} cm")
    return vitals


def visit_to_text(visit: Visit) -> str:
    """
    Render the embeddable text for a visit.

    Sections: date, vital signs, symptoms, diagnosis, treatment notes,
    prescribed medications, follow-up instructions. Missing fields are
    omitted and sections are separated by blank lines.
    """
    parts = []
    if visit.visit_date is not None:
        parts.append(f"Visit Date: {visit.visit_date.strftime('%Y-%m-%d')}")

    vitals = _vital_signs(visit)
    if vitals:
        parts.append("Vital Signs: " + ", ".join(vitals))

    sections = (
        ("Symptoms", visit.symptoms),
        ("Diagnosis", visit.diagnosis),
        ("Treatment Notes", visit.treatment_notes),
        ("Prescribed Medications", visit.prescribed_medications),
        ("Follow-up Instructions", visit.follow_up_instructions),
    )
    for label, value in sections:
        if value and value.strip():
            parts.append(f"{label}: {value.strip()}")

    return "\n\n".join(parts)


# =============================================================================
# Embedding Service
# =============================================================================


class EmbeddingService:
    """
    Embedding service backed by the OpenAI embeddings API.

    Every provider failure surfaces as EmbeddingUnavailableError so callers
    can treat embeddings as best-effort.

    Example:
        service = EmbeddingService()
        vector = await service.embed_text("fatigue and frequent urination")

        # Testing with mock client
        service = EmbeddingService(client=mock_client)
    """

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        model: str | None = None,
    ):
        """
        Initialize EmbeddingService.

        Args:
            client: Optional pre-configured AsyncOpenAI client (for testing).
                   If not provided, creates one from settings.
            model: Embedding model to use. Defaults to EMBEDDING_MODEL.
        """
        if client is not None:
            self._client = client
        else:
            self._client = AsyncOpenAI(api_key=settings.openai_api_key)

        self._model = model or settings.embedding_model or DEFAULT_MODEL

    @property
    def model(self) -> str:
        return self._model

    async def close(self) -> None:
        """Close the OpenAI client connection."""
        await self._client.close()

    async def embed_texts(
        self,
        texts: list[str],
        batch_size: int = MAX_BATCH_SIZE,
    ) -> list[list[float]]:
        """
        Generate embeddings for a list of texts.

        Automatically batches requests to stay within API limits.

        Args:
            texts: List of non-blank text strings to embed.
            batch_size: Maximum texts per API call. Defaults to MAX_BATCH_SIZE.

        Returns:
            List of embedding vectors, one per input text.

        Raises:
            EmbeddingUnavailableError: On empty input, provider failure, or a
                vector of the wrong dimension.
        """
        if not texts or any(not text or not text.strip() for text in texts):
            raise EmbeddingUnavailableError("Cannot embed empty text")

        all_embeddings: list[list[float]] = []

        for i in range(0, len(texts), batch_size):
            batch = texts[i : i + batch_size]

            try:
                response = await self._client.embeddings.create(
                    model=self._model,
                    input=batch,
                )
            except OpenAIError as e:
                logger.error("Embedding request failed (model=%s)", self._model, exc_info=True)
                raise EmbeddingUnavailableError(f"Embedding provider error: {type(e).__name__}") from e

            batch_embeddings = [list(item.embedding) for item in response.data]
            if len(batch_embeddings) != len(batch):
                raise EmbeddingUnavailableError(
                    f"Expected {len(batch)} embeddings, got {len(batch_embeddings)}"
                )
            for vector in batch_embeddings:
                if len(vector) != EMBEDDING_DIMENSION:
                    raise EmbeddingUnavailableError(
                        f"Expected {EMBEDDING_DIMENSION}-dimensional embedding, got {len(vector)}"
                    )
            all_embeddings.extend(batch_embeddings)

        return all_embeddings

    async def embed_text(self, text: str) -> list[float]:
        """Generate the embedding for a single text."""
        embeddings = await self.embed_texts([text])
        return embeddings[0]

    async def embed_visit(self, visit: Visit) -> list[float]:
        """
        Embed a visit and store the vector on it.

        Sets ``embedding``, ``embedding_model`` and ``embedding_text``; the
        caller is responsible for committing.
        """
        text = visit_to_text(visit)
        vector = await self.embed_text(text)
        visit.embedding = vector
        visit.embedding_model = self._model
        visit.embedding_text = text
        return vector


async def generate_visit_embedding(visit_id: uuid.UUID) -> bool:
    """Best-effort background embedding for a single visit.

    Opens its own database session so it can run after the request that
    scheduled it has finished. Failures are logged, never raised.

    Returns:
        True if an embedding was stored.
    """
    service = EmbeddingService()
    try:
        async with async_session_maker() as session:
            visit = await session.get(Visit, visit_id)
            if visit is None:
                logger.warning("Visit %s vanished before it could be embedded", visit_id)
                return False
            await service.embed_visit(visit)
            await session.commit()
            logger.info("Stored embedding for visit %s", visit_id)
            return True
    except Exception:
        logger.warning("Background embedding failed for visit %s", visit_id, exc_info=True)
        return False
    finally:
        await service.close()
