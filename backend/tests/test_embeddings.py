"""Tests for embedding service.

Uses mock OpenAI client to avoid real API calls.
"""

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from openai import OpenAIError

from app.exceptions import EmbeddingUnavailableError
from app.models.visit import EMBEDDING_DIMENSION, Visit, VisitType
from app.services.embeddings import (
    EmbeddingService,
    generate_visit_embedding,
    visit_to_text,
)


# =============================================================================
# Mock OpenAI Client
# =============================================================================


def create_mock_embedding(dimension: int = EMBEDDING_DIMENSION) -> list[float]:
    """Create a mock embedding vector."""
    return [0.1] * dimension


def create_mock_openai_client(num_embeddings: int = 1, dimension: int = EMBEDDING_DIMENSION) -> AsyncMock:
    """Create a mock AsyncOpenAI client that returns fake embeddings."""
    mock_client = AsyncMock()

    mock_response = MagicMock()
    mock_response.data = [
        MagicMock(embedding=create_mock_embedding(dimension)) for _ in range(num_embeddings)
    ]

    mock_client.embeddings.create = AsyncMock(return_value=mock_response)

    return mock_client


def _visit(**fields) -> Visit:
    fields.setdefault("visit_date", datetime(2026, 3, 14, 10, 0, tzinfo=timezone.utc))
    return Visit(id=uuid.uuid4(), patient_id=uuid.uuid4(), visit_type=VisitType.IN_PERSON, **fields)


# =============================================================================
# Visit Text Template Tests
# =============================================================================


class TestVisitToText:
    """Tests for visit_to_text."""

    def test_full_visit(self):
        """All sections render in order, separated by blank lines."""
        visit = _visit(
            systolic_bp=138,
            diastolic_bp=88,
            heart_rate=74,
            temperature=36.8,
            blood_sugar=132.0,
            oxygen_saturation=98.0,
            respiratory_rate=16,
            weight=91.5,
            height=176.0,
            symptoms="Increased thirst",
            diagnosis="Impaired fasting glucose",
            treatment_notes="Dietary counselling",
            prescribed_medications="None",
            follow_up_instructions="HbA1c in 3 months",
        )

        result = visit_to_text(visit)
        sections = result.split("\n\n")

        assert sections[0] == "Visit Date: 2026-03-14"
        assert sections[1] == (
            "Vital Signs: Blood Pressure: 138/88 mmHg, Heart Rate: 74 bpm, "
            "Temperature: 36.8°C, Blood Sugar: 132 mg/dL, Oxygen Saturation: 98%, "
            "Respiratory Rate: 16 breaths/min, Weight: 91.5 kg, Height: 176 cm"
        )
        assert sections[2:] == [
            "Symptoms: Increased thirst",
            "Diagnosis: Impaired fasting glucose",
            "Treatment Notes: Dietary counselling",
            "Prescribed Medications: None",
            "Follow-up Instructions: HbA1c in 3 months",
        ]

    def test_missing_fields_omitted(self):
        """Absent vitals and empty notes produce no section."""
        visit = _visit(symptoms="Headache", diagnosis="   ")

        result = visit_to_text(visit)

        assert result == "Visit Date: 2026-03-14\n\nSymptoms: Headache"
        assert "Vital Signs" not in result
        assert "Diagnosis" not in result

    def test_blood_pressure_needs_both_values(self):
        """A lone systolic reading is not rendered."""
        visit = _visit(systolic_bp=140, heart_rate=80)

        result = visit_to_text(visit)

        assert "Blood Pressure" not in result
        assert "Heart Rate: 80 bpm" in result

    def test_empty_visit(self):
        """A visit without a date or any findings renders as empty text."""
        visit = Visit(id=uuid.uuid4(), patient_id=uuid.uuid4())

        assert visit_to_text(visit) == ""


# =============================================================================
# EmbeddingService Tests
# =============================================================================


class TestEmbeddingService:
    """Tests for EmbeddingService with mocked OpenAI client."""

    @pytest.mark.asyncio
    async def test_embed_text(self):
        """Test embedding a single text."""
        mock_client = create_mock_openai_client(num_embeddings=1)
        service = EmbeddingService(client=mock_client)

        result = await service.embed_text("Fatigue after meals")

        assert len(result) == EMBEDDING_DIMENSION
        mock_client.embeddings.create.assert_called_once_with(
            model=service.model,
            input=["Fatigue after meals"],
        )

    @pytest.mark.asyncio
    async def test_embed_texts_batches(self):
        """Texts are split into batches of batch_size."""
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(
            side_effect=[
                MagicMock(data=[MagicMock(embedding=create_mock_embedding()) for _ in range(2)]),
                MagicMock(data=[MagicMock(embedding=create_mock_embedding())]),
            ]
        )
        service = EmbeddingService(client=mock_client)

        result = await service.embed_texts(["a", "b", "c"], batch_size=2)

        assert len(result) == 3
        assert mock_client.embeddings.create.await_count == 2
        second_call = mock_client.embeddings.create.await_args_list[1]
        assert second_call.kwargs["input"] == ["c"]

    @pytest.mark.asyncio
    async def test_custom_model(self):
        """The configured model is sent to the provider."""
        mock_client = create_mock_openai_client()
        service = EmbeddingService(client=mock_client, model="text-embedding-3-large")

        await service.embed_text("chest pain")

        assert service.model == "text-embedding-3-large"
        assert mock_client.embeddings.create.call_args.kwargs["model"] == "text-embedding-3-large"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("texts", [[], [""], ["valid", "   "]])
    async def test_blank_input_rejected(self, texts):
        """Empty or blank input never reaches the provider."""
        mock_client = create_mock_openai_client()
        service = EmbeddingService(client=mock_client)

        with pytest.raises(EmbeddingUnavailableError):
            await service.embed_texts(texts)

        mock_client.embeddings.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_provider_error_wrapped(self):
        """OpenAI errors surface as EmbeddingUnavailableError."""
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(side_effect=OpenAIError("rate limited"))
        service = EmbeddingService(client=mock_client)

        with pytest.raises(EmbeddingUnavailableError) as exc_info:
            await service.embed_text("dizziness")

        assert isinstance(exc_info.value.__cause__, OpenAIError)

    @pytest.mark.asyncio
    async def test_wrong_dimension_rejected(self):
        """Vectors that do not match the column dimension are rejected."""
        mock_client = create_mock_openai_client(dimension=768)
        service = EmbeddingService(client=mock_client)

        with pytest.raises(EmbeddingUnavailableError, match="1536"):
            await service.embed_text("cough")

    @pytest.mark.asyncio
    async def test_count_mismatch_rejected(self):
        """A response with fewer vectors than inputs is rejected."""
        mock_client = create_mock_openai_client(num_embeddings=1)
        service = EmbeddingService(client=mock_client)

        with pytest.raises(EmbeddingUnavailableError):
            await service.embed_texts(["one", "two"])

    @pytest.mark.asyncio
    async def test_embed_visit_stores_vector(self):
        """embed_visit sets the embedding, its model and its source text."""
        mock_client = create_mock_openai_client()
        service = EmbeddingService(client=mock_client)
        visit = _visit(symptoms="Blurry vision", diagnosis="Type 2 Diabetes")

        vector = await service.embed_visit(visit)

        assert visit.embedding == vector
        assert visit.embedding_model == service.model
        assert visit.embedding_text == visit_to_text(visit)
        assert visit.has_embedding

    @pytest.mark.asyncio
    async def test_close(self):
        """close() closes the underlying client."""
        mock_client = create_mock_openai_client()
        service = EmbeddingService(client=mock_client)

        await service.close()

        mock_client.close.assert_awaited_once()


# =============================================================================
# Background Embedding Tests
# =============================================================================


class TestGenerateVisitEmbedding:
    """Tests for the fire-and-forget background embedding."""

    @staticmethod
    def _session_maker(session):
        context = MagicMock()
        context.__aenter__ = AsyncMock(return_value=session)
        context.__aexit__ = AsyncMock(return_value=False)
        return MagicMock(return_value=context)

    @pytest.mark.asyncio
    async def test_stores_embedding(self):
        """The visit is embedded and committed in its own session."""
        visit = _visit(symptoms="Thirst")
        session = AsyncMock()
        session.get = AsyncMock(return_value=visit)
        mock_client = create_mock_openai_client()

        with patch(
            "app.services.embeddings.async_session_maker", self._session_maker(session)
        ), patch("app.services.embeddings.AsyncOpenAI", return_value=mock_client):
            stored = await generate_visit_embedding(visit.id)

        assert stored is True
        assert visit.has_embedding
        session.commit.assert_awaited_once()
        mock_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_visit(self):
        """A visit deleted before embedding is skipped."""
        session = AsyncMock()
        session.get = AsyncMock(return_value=None)
        mock_client = create_mock_openai_client()

        with patch(
            "app.services.embeddings.async_session_maker", self._session_maker(session)
        ), patch("app.services.embeddings.AsyncOpenAI", return_value=mock_client):
            stored = await generate_visit_embedding(uuid.uuid4())

        assert stored is False
        session.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_provider_failure_is_swallowed(self):
        """Embedding failures are logged and reported as False, never raised."""
        visit = _visit(symptoms="Thirst")
        session = AsyncMock()
        session.get = AsyncMock(return_value=visit)
        mock_client = AsyncMock()
        mock_client.embeddings.create = AsyncMock(side_effect=OpenAIError("down"))

        with patch(
            "app.services.embeddings.async_session_maker", self._session_maker(session)
        ), patch("app.services.embeddings.AsyncOpenAI", return_value=mock_client):
            stored = await generate_visit_embedding(visit.id)

        assert stored is False
        assert visit.embedding is None
        session.commit.assert_not_called()
