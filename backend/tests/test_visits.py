"""Tests for the visit API routes.

Repositories, the embedding service and vector search are mocked.
"""

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio

from app.exceptions import EmbeddingUnavailableError
from app.main import app
from app.models import Visit, VisitType
from app.routes.visits import get_embedding_service
from app.services.vector_search import SearchResult

PATIENT_ID = uuid.uuid4()
VISIT_DATE = datetime(2026, 9, 1, 10, 0, tzinfo=timezone.utc)


def _visit(**fields) -> Visit:
    fields.setdefault("patient_id", PATIENT_ID)
    fields.setdefault("visit_date", VISIT_DATE)
    fields.setdefault("visit_type", VisitType.IN_PERSON)
    return Visit(id=uuid.uuid4(), **fields)


@pytest.fixture
def mock_embedding_service():
    service = MagicMock()
    service.model = "text-embedding-3-small"
    service.embed_text = AsyncMock(return_value=[0.1] * 1536)

    async def embed_visit(visit):
        visit.embedding = [0.1] * 1536
        visit.embedding_model = service.model
        return visit.embedding

    service.embed_visit = AsyncMock(side_effect=embed_visit)
    return service


@pytest_asyncio.fixture
async def visits_client(api_client, mock_embedding_service):
    """api_client whose visit routes use ``mock_embedding_service``."""

    async def override_get_embedding_service():
        yield mock_embedding_service

    app.dependency_overrides[get_embedding_service] = override_get_embedding_service
    yield api_client
    app.dependency_overrides.pop(get_embedding_service, None)


# =============================================================================
# POST /api/visits
# =============================================================================


class TestCreateVisit:
    """Tests for recording visits."""

    @pytest.mark.asyncio
    async def test_create_visit(self, visits_client, mock_db):
        with patch("app.routes.visits.ProfileRepository") as MockProfiles, \
             patch("app.routes.visits.VisitRepository") as MockVisits, \
             patch("app.routes.visits.generate_visit_embedding", new_callable=AsyncMock) as mock_embed:
            MockProfiles.return_value.get_patient = AsyncMock(return_value=MagicMock())
            MockVisits.return_value.create = AsyncMock(side_effect=lambda **f: _visit(**f))

            response = await visits_client.post(
                "/api/visits",
                json={
                    "patient_id": str(PATIENT_ID),
                    "visit_type": "self_recorded",
                    "blood_sugar": 168,
                    "symptoms": "Blurry vision in the evenings",
                },
            )

        assert response.status_code == 201
        data = response.json()
        assert data["visit_type"] == "self_recorded"
        assert data["blood_sugar"] == 168
        assert data["has_embedding"] is False
        create_kwargs = MockVisits.return_value.create.call_args.kwargs
        assert create_kwargs["patient_id"] == PATIENT_ID
        assert "diagnosis" not in create_kwargs
        mock_db.commit.assert_awaited_once()
        mock_embed.assert_awaited_once_with(uuid.UUID(data["id"]))

    @pytest.mark.asyncio
    async def test_unknown_patient(self, visits_client):
        with patch("app.routes.visits.ProfileRepository") as MockProfiles, \
             patch("app.routes.visits.VisitRepository") as MockVisits:
            MockProfiles.return_value.get_patient = AsyncMock(return_value=None)
            MockVisits.return_value.create = AsyncMock()

            response = await visits_client.post(
                "/api/visits", json={"patient_id": str(PATIENT_ID)}
            )

        assert response.status_code == 404
        MockVisits.return_value.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_doctor(self, visits_client):
        with patch("app.routes.visits.ProfileRepository") as MockProfiles:
            MockProfiles.return_value.get_patient = AsyncMock(return_value=MagicMock())
            MockProfiles.return_value.get_doctor = AsyncMock(return_value=None)

            response = await visits_client.post(
                "/api/visits",
                json={"patient_id": str(PATIENT_ID), "doctor_id": str(uuid.uuid4())},
            )

        assert response.status_code == 404
        assert response.json()["detail"] == "Doctor not found"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "field, value",
        [("systolic_bp", 0), ("temperature", 60), ("oxygen_saturation", 120), ("visit_type", "house_call")],
    )
    async def test_out_of_range_values(self, visits_client, field, value):
        response = await visits_client.post(
            "/api/visits", json={"patient_id": str(PATIENT_ID), field: value}
        )

        assert response.status_code == 422


# =============================================================================
# GET /api/visits
# =============================================================================


class TestReadVisits:
    """Tests for listing and fetching visits."""

    @pytest.mark.asyncio
    async def test_list_visits(self, visits_client):
        visits = [_visit(diagnosis="Migraine"), _visit(diagnosis="Sinusitis")]
        with patch("app.routes.visits.VisitRepository") as MockVisits:
            MockVisits.return_value.list_for_patient = AsyncMock(return_value=(visits, 7))

            response = await visits_client.get(
                "/api/visits", params={"patient_id": str(PATIENT_ID), "skip": 5, "limit": 2}
            )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 7
        assert data["skip"] == 5
        assert data["limit"] == 2
        assert [v["diagnosis"] for v in data["items"]] == ["Migraine", "Sinusitis"]
        MockVisits.return_value.list_for_patient.assert_awaited_once_with(
            PATIENT_ID, skip=5, limit=2
        )

    @pytest.mark.asyncio
    async def test_list_limit_bounds(self, visits_client):
        response = await visits_client.get(
            "/api/visits", params={"patient_id": str(PATIENT_ID), "limit": 101}
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_get_visit(self, visits_client):
        visit = _visit(diagnosis="Migraine", chat_session_id="session_abc")
        with patch("app.routes.visits.VisitRepository") as MockVisits:
            MockVisits.return_value.get = AsyncMock(return_value=visit)

            response = await visits_client.get(f"/api/visits/{visit.id}")

        assert response.status_code == 200
        assert response.json()["id"] == str(visit.id)
        assert response.json()["chat_session_id"] == "session_abc"

    @pytest.mark.asyncio
    async def test_get_missing_visit(self, visits_client):
        with patch("app.routes.visits.VisitRepository") as MockVisits:
            MockVisits.return_value.get = AsyncMock(return_value=None)

            response = await visits_client.get(f"/api/visits/{uuid.uuid4()}")

        assert response.status_code == 404


# =============================================================================
# POST /api/visits/{id}/embedding
# =============================================================================


class TestRegenerateEmbedding:
    """Tests for synchronous embedding generation."""

    @pytest.mark.asyncio
    async def test_regenerate(self, visits_client, mock_db, mock_embedding_service):
        visit = _visit(symptoms="Cough")
        with patch("app.routes.visits.VisitRepository") as MockVisits:
            MockVisits.return_value.get = AsyncMock(return_value=visit)

            response = await visits_client.post(f"/api/visits/{visit.id}/embedding")

        assert response.status_code == 200
        assert response.json()["has_embedding"] is True
        assert response.json()["embedding_model"] == "text-embedding-3-small"
        mock_embedding_service.embed_visit.assert_awaited_once_with(visit)
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_provider_unavailable(self, visits_client, mock_db, mock_embedding_service):
        mock_embedding_service.embed_visit.side_effect = EmbeddingUnavailableError("down")
        with patch("app.routes.visits.VisitRepository") as MockVisits:
            MockVisits.return_value.get = AsyncMock(return_value=_visit())

            response = await visits_client.post(f"/api/visits/{uuid.uuid4()}/embedding")

        assert response.status_code == 503
        mock_db.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_visit(self, visits_client):
        with patch("app.routes.visits.VisitRepository") as MockVisits:
            MockVisits.return_value.get = AsyncMock(return_value=None)

            response = await visits_client.post(f"/api/visits/{uuid.uuid4()}/embedding")

        assert response.status_code == 404


# =============================================================================
# POST /api/visits/search
# =============================================================================


class TestSimilaritySearch:
    """Tests for free-text similarity search."""

    @pytest.mark.asyncio
    async def test_search(self, visits_client, mock_embedding_service):
        results = [
            SearchResult(visit=_visit(diagnosis="Type 2 Diabetes"), score=0.9),
            SearchResult(visit=_visit(diagnosis="Prediabetes"), score=0.7),
        ]
        with patch("app.routes.visits.ProfileRepository") as MockProfiles, \
             patch("app.routes.visits.VectorSearchService") as MockSearch:
            MockProfiles.return_value.get_patient = AsyncMock(return_value=MagicMock())
            MockSearch.return_value.search_by_text = AsyncMock(return_value=results)

            response = await visits_client.post(
                "/api/visits/search",
                json={"patient_id": str(PATIENT_ID), "query": "always thirsty", "limit": 3},
            )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert data["limit"] == 3
        assert data["threshold"] == 0.7
        assert data["average_similarity"] == pytest.approx(0.8)
        assert [r["visit"]["diagnosis"] for r in data["results"]] == ["Type 2 Diabetes", "Prediabetes"]
        assert data["results"][0]["doctor_name"] is None
        kwargs = MockSearch.return_value.search_by_text.call_args.kwargs
        assert kwargs["query_text"] == "always thirsty"
        assert kwargs["embedding_model"] == mock_embedding_service.model

    @pytest.mark.asyncio
    async def test_no_results(self, visits_client):
        with patch("app.routes.visits.ProfileRepository") as MockProfiles, \
             patch("app.routes.visits.VectorSearchService") as MockSearch:
            MockProfiles.return_value.get_patient = AsyncMock(return_value=MagicMock())
            MockSearch.return_value.search_by_text = AsyncMock(return_value=[])

            response = await visits_client.post(
                "/api/visits/search", json={"patient_id": str(PATIENT_ID), "query": "rash"}
            )

        assert response.json()["results"] == []
        assert response.json()["average_similarity"] is None

    @pytest.mark.asyncio
    async def test_unknown_patient(self, visits_client):
        with patch("app.routes.visits.ProfileRepository") as MockProfiles:
            MockProfiles.return_value.get_patient = AsyncMock(return_value=None)

            response = await visits_client.post(
                "/api/visits/search", json={"patient_id": str(PATIENT_ID), "query": "rash"}
            )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_embedding_unavailable(self, visits_client):
        with patch("app.routes.visits.ProfileRepository") as MockProfiles, \
             patch("app.routes.visits.VectorSearchService") as MockSearch:
            MockProfiles.return_value.get_patient = AsyncMock(return_value=MagicMock())
            MockSearch.return_value.search_by_text = AsyncMock(
                side_effect=EmbeddingUnavailableError("down")
            )

            response = await visits_client.post(
                "/api/visits/search", json={"patient_id": str(PATIENT_ID), "query": "rash"}
            )

        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_invalid_search_parameters(self, visits_client):
        with patch("app.routes.visits.ProfileRepository") as MockProfiles, \
             patch("app.routes.visits.VectorSearchService") as MockSearch:
            MockProfiles.return_value.get_patient = AsyncMock(return_value=MagicMock())
            MockSearch.return_value.search_by_text = AsyncMock(
                side_effect=ValueError("query_text cannot be empty")
            )

            response = await visits_client.post(
                "/api/visits/search", json={"patient_id": str(PATIENT_ID), "query": " "}
            )

        assert response.status_code == 400

    @pytest.mark.asyncio
    @pytest.mark.parametrize("overrides", [{"limit": 0}, {"limit": 21}, {"threshold": 1.5}, {"query": ""}])
    async def test_request_validation(self, visits_client, overrides):
        payload = {"patient_id": str(PATIENT_ID), "query": "rash", **overrides}

        response = await visits_client.post("/api/visits/search", json=payload)

        assert response.status_code == 422
