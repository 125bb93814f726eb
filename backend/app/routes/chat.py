"""Chat API routes for diagnostic consultations."""

import logging
import uuid
from collections.abc import AsyncGenerator

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import verify_api_key
from app.constants import MAX_SESSION_ID_LENGTH, RECENT_SESSIONS_LIMIT, SESSION_ID_PATTERN
from app.database import get_db
from app.exceptions import (
    DuplicateTurnError,
    PatientNotFoundError,
    PersistenceError,
    TurnValidationError,
    UpstreamUnavailableError,
    VisitNotFoundError,
)
from app.repositories.chat import ChatRepository
from app.repositories.patient import ProfileRepository
from app.schemas.chat import (
    ChatHistoryResponse,
    ChatMessageResponse,
    ChatTurnRequest,
    ChatTurnResponse,
    DeletedResponse,
    NewSessionRequest,
    NewSessionResponse,
    SessionListResponse,
    SessionSummary,
    TurnAccepted,
)
from app.services.completion import CompletionService
from app.services.embeddings import EmbeddingService, generate_visit_embedding
from app.services.orchestrator import (
    DiagnosticSessionOrchestrator,
    build_orchestrator,
    run_turn_in_background,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 200


async def get_orchestrator(
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
) -> AsyncGenerator[DiagnosticSessionOrchestrator, None]:
    """Provide an orchestrator for one request.

    Embeddings for visits created by the turn are generated after the
    response is sent.
    """
    embedding_service = EmbeddingService()
    completion_service = CompletionService()
    try:
        yield build_orchestrator(
            db,
            embedding_service,
            completion_service,
            schedule_embedding=lambda visit_id: background_tasks.add_task(
                generate_visit_embedding, visit_id
            ),
        )
    finally:
        await embedding_service.close()
        await completion_service.close()


async def _require_patient(db: AsyncSession, patient_id: uuid.UUID) -> None:
    if await ProfileRepository(db).get_patient(patient_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Patient not found",
        )


@router.post("/turns", response_model=ChatTurnResponse)
async def submit_chat_turn(
    request: ChatTurnRequest,
    orchestrator: DiagnosticSessionOrchestrator = Depends(get_orchestrator),
    _api_key: str = Depends(verify_api_key),
) -> ChatTurnResponse:
    """Submit a patient message and wait for the assistant's reply.

    Persists both turns, records or updates a virtual-consultation visit
    when a diagnosis is detected, and links the turn to the visits it used.

    Raises:
        HTTPException: 400 invalid input, 404 unknown patient or visit,
            409 duplicate submission, 503 assistant unavailable,
            500 storage failure.
    """
    try:
        outcome = await orchestrator.submit_turn(request)
    except TurnValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except (PatientNotFoundError, VisitNotFoundError) as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except DuplicateTurnError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="This message was already submitted",
        )
    except UpstreamUnavailableError:
        logger.error("Assistant unavailable for chat turn", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="The assistant is unavailable right now. Please try again.",
        )
    except PersistenceError as e:
        logger.error("Chat turn persistence failed at %s", e.step, exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save the conversation. Please try again.",
        )
    except Exception:
        logger.exception("Unexpected error in chat turn endpoint")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred",
        )

    return ChatTurnResponse(
        response=outcome.response,
        diagnosis_detected=outcome.diagnosis_detected,
        diagnosis=outcome.diagnosis.diagnosis,
        urgency_level=outcome.diagnosis.urgency_level,
        visit_action=outcome.visit_action,
        visit_id=outcome.visit_id,
        new_visit_created=outcome.new_visit_created,
        context_visits=outcome.context_visits,
        similar_visits=outcome.similar_visits,
        context_degraded=outcome.context_degraded,
        user_message_id=outcome.user_message_id,
        ai_message_id=outcome.ai_message_id,
    )


@router.post("/turns/async", response_model=TurnAccepted, status_code=status.HTTP_202_ACCEPTED)
async def submit_chat_turn_async(
    request: ChatTurnRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
) -> TurnAccepted:
    """Accept a patient message and process it in the background.

    Clients poll ``GET /api/chat/history`` for the assistant's reply.
    """
    await _require_patient(db, request.patient_id)
    background_tasks.add_task(run_turn_in_background, request)
    return TurnAccepted(
        patient_id=request.patient_id,
        session_id=request.session_id,
        poll_url=f"/api/chat/history?patient_id={request.patient_id}&session_id={request.session_id}",
    )


@router.get("/history", response_model=ChatHistoryResponse)
async def get_chat_history(
    patient_id: uuid.UUID,
    session_id: str | None = Query(
        None, max_length=MAX_SESSION_ID_LENGTH, pattern=SESSION_ID_PATTERN
    ),
    limit: int = Query(DEFAULT_HISTORY_LIMIT, ge=1, le=MAX_HISTORY_LIMIT),
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
) -> ChatHistoryResponse:
    """Chronological chat history for a patient, optionally for one session.

    Each message carries the ids of the visits it is linked to.
    """
    repo = ChatRepository(db)
    messages = await repo.get_history(patient_id, session_id=session_id, limit=limit)
    sessions = await repo.list_sessions(patient_id, limit=RECENT_SESSIONS_LIMIT)

    return ChatHistoryResponse(
        patient_id=patient_id,
        session_id=session_id,
        messages=[ChatMessageResponse.from_message(m) for m in messages],
        total=len(messages),
        available_sessions=[s.session_id for s in sessions],
    )


@router.get("/sessions", response_model=SessionListResponse)
async def list_chat_sessions(
    patient_id: uuid.UUID,
    limit: int = Query(RECENT_SESSIONS_LIMIT, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
) -> SessionListResponse:
    """Most recently active chat sessions for a patient."""
    sessions = await ChatRepository(db).list_sessions(patient_id, limit=limit)
    return SessionListResponse(
        patient_id=patient_id,
        sessions=[
            SessionSummary(
                session_id=s.session_id,
                last_message=s.last_message,
                last_role=s.last_role,
                last_activity=s.last_activity,
                message_count=s.message_count,
            )
            for s in sessions
        ],
    )


@router.post("/sessions", response_model=NewSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_chat_session(
    request: NewSessionRequest,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
) -> NewSessionResponse:
    """Generate a fresh session id for a patient.

    Nothing is stored until the first turn is submitted with this id.
    """
    await _require_patient(db, request.patient_id)
    return NewSessionResponse(
        patient_id=request.patient_id,
        session_id=f"session_{uuid.uuid4().hex}",
    )


@router.delete("/sessions/{session_id}", response_model=DeletedResponse)
async def delete_chat_session(
    session_id: str,
    patient_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
) -> DeletedResponse:
    """Delete every message of a patient's session."""
    deleted = await ChatRepository(db).delete_session(patient_id, session_id)
    if deleted == 0:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )
    logger.info("Deleted %d messages from session %s of patient %s", deleted, session_id, patient_id)
    return DeletedResponse(deleted=deleted)


@router.delete("/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_chat_message(
    message_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _api_key: str = Depends(verify_api_key),
) -> Response:
    """Delete a single chat message."""
    if not await ChatRepository(db).delete_message(message_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Message not found",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
