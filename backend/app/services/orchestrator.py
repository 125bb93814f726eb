"""Diagnostic session orchestrator.

Runs one patient turn end to end:

    received -> context_built -> completed -> extracted -> persisted
             -> (visit_created | visit_updated) -> linked -> done

Any failure moves the turn to ``failed``. Each persistence step commits on
its own, so a failure late in the turn leaves earlier rows in place; nothing
is written before the completion succeeds.
"""

from __future__ import annotations

import enum
import logging
import re
import uuid
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.constants import SESSION_ID_PATTERN
from app.database import async_session_maker
from app.exceptions import (
    CompletionUnavailableError,
    DiagnosticChatError,
    DuplicateTurnError,
    PatientNotFoundError,
    PersistenceError,
    TurnValidationError,
    VisitNotFoundError,
)
from app.models.chat import ChatMessage, ChatRole
from app.models.patient import Patient
from app.models.visit import ConfidenceLevel, UrgencyLevel, Visit, VisitType
from app.repositories.chat import ChatRepository
from app.repositories.patient import ProfileRepository
from app.repositories.visit import VisitRepository
from app.schemas.chat import ChatTurnRequest, ConversationTurn, VisitAction
from app.schemas.diagnosis import DiagnosisResult
from app.services.completion import CompletionService
from app.services.context_engine import (
    ContextEngine,
    TurnContext,
    build_conversation_text,
    build_system_prompt,
)
from app.services.diagnosis import DiagnosisExtractor
from app.services.embeddings import EmbeddingService, generate_visit_embedding
from app.services.vector_search import VectorSearchService

logger = logging.getLogger(__name__)

_SESSION_ID_RE = re.compile(SESSION_ID_PATTERN)

SYMPTOM_SEPARATOR = "; "


class TurnState(str, enum.Enum):
    """Lifecycle of a single turn."""

    RECEIVED = "received"
    CONTEXT_BUILT = "context_built"
    COMPLETED = "completed"
    EXTRACTED = "extracted"
    PERSISTED = "persisted"
    VISIT_CREATED = "visit_created"
    VISIT_UPDATED = "visit_updated"
    LINKED = "linked"
    DONE = "done"
    FAILED = "failed"


@dataclass
class TurnOutcome:
    """Summary of a completed turn."""

    response: str
    diagnosis: DiagnosisResult
    visit_action: VisitAction
    visit_id: uuid.UUID | None
    context_visits: int
    similar_visits: int
    context_degraded: bool
    user_message_id: uuid.UUID
    ai_message_id: uuid.UUID
    linked_visit_ids: list[uuid.UUID] = field(default_factory=list)

    @property
    def diagnosis_detected(self) -> bool:
        return self.diagnosis.has_diagnosis

    @property
    def new_visit_created(self) -> bool:
        return self.visit_action is VisitAction.CREATED


def extract_symptoms(history: Sequence[ConversationTurn], message: str) -> str:
    """All prior patient turns plus the current message, joined by '; '."""
    messages = [turn.message for turn in history if turn.role == "user"]
    messages.append(message)
    return SYMPTOM_SEPARATOR.join(m.strip() for m in messages if m.strip())


def _append(existing: str | None, addition: str | None) -> str | None:
    if not addition:
        return existing
    if not existing:
        return addition
    return f"{existing}{SYMPTOM_SEPARATOR}{addition}"


class _Turn:
    """Per-turn state tracker used for logging transitions."""

    def __init__(self, request: ChatTurnRequest):
        self.patient_id = request.patient_id
        self.session_id = request.session_id
        self.state = TurnState.RECEIVED

    def advance(self, state: TurnState) -> None:
        logger.debug(
            "Turn %s/%s: %s -> %s", self.patient_id, self.session_id, self.state.value, state.value
        )
        self.state = state


class DiagnosticSessionOrchestrator:
    """Coordinates context, completion, extraction and persistence for a turn.

    Example:
        orchestrator = build_orchestrator(db, embedding_service, completion_service)
        outcome = await orchestrator.submit_turn(request)
        print(outcome.response, outcome.visit_action)
    """

    def __init__(
        self,
        db: AsyncSession,
        context_engine: ContextEngine,
        completion: CompletionService,
        extractor: DiagnosisExtractor,
        profiles: ProfileRepository,
        visits: VisitRepository,
        chats: ChatRepository,
        schedule_embedding: Callable[[uuid.UUID], None] | None = None,
        ai_attending_doctor_id: uuid.UUID | None = None,
    ):
        """
        Args:
            db: Session used for every write of the turn.
            context_engine: Builds the per-turn context.
            completion: Produces the assistant reply.
            extractor: Turns the reply into a DiagnosisResult.
            profiles, visits, chats: Repositories bound to ``db``.
            schedule_embedding: Called with a visit id after a visit is
                created or updated; must not block.
            ai_attending_doctor_id: Doctor recorded on AI-created visits when
                the request names none.
        """
        self._db = db
        self._context_engine = context_engine
        self._completion = completion
        self._extractor = extractor
        self._profiles = profiles
        self._visits = visits
        self._chats = chats
        self._schedule_embedding = schedule_embedding
        self._ai_attending_doctor_id = ai_attending_doctor_id

    # =========================================================================
    # Steps
    # =========================================================================

    async def _validate(self, request: ChatTurnRequest) -> tuple[Patient, Visit | None]:
        if request.patient_id is None:
            raise TurnValidationError("patient_id is required")
        if not request.message or not request.message.strip():
            raise TurnValidationError("message must not be blank")
        if not request.session_id or not _SESSION_ID_RE.fullmatch(request.session_id):
            raise TurnValidationError("session_id is malformed")

        if request.idempotency_key:
            existing = await self._chats.find_by_idempotency_key(
                request.patient_id, request.session_id, request.idempotency_key
            )
            if existing is not None:
                raise DuplicateTurnError("This turn has already been submitted")

        patient = await self._profiles.get_patient(request.patient_id)
        if patient is None:
            raise PatientNotFoundError(f"Patient {request.patient_id} not found")

        if request.doctor_id is not None:
            doctor = await self._profiles.get_doctor(request.doctor_id)
            if doctor is None:
                raise TurnValidationError(f"Doctor {request.doctor_id} not found")

        target_visit = None
        if request.visit_id is not None:
            target_visit = await self._visits.get_for_patient(request.visit_id, patient.id)
            if target_visit is None:
                raise VisitNotFoundError(f"Visit {request.visit_id} not found for this patient")

        return patient, target_visit

    @asynccontextmanager
    async def _persisting(self, step: str, duplicate_key: bool = False) -> AsyncIterator[None]:
        """Run one write step and commit it.

        Database errors roll the step back and surface as PersistenceError,
        or DuplicateTurnError when ``duplicate_key`` is set and the failure
        is a uniqueness violation.
        """
        try:
            yield
            await self._db.commit()
        except IntegrityError as e:
            await self._db.rollback()
            if duplicate_key:
                raise DuplicateTurnError("This turn has already been submitted") from e
            logger.error("Failed to persist %s", step, exc_info=True)
            raise PersistenceError(f"Failed to persist {step}", step=step) from e
        except SQLAlchemyError as e:
            await self._db.rollback()
            logger.error("Failed to persist %s", step, exc_info=True)
            raise PersistenceError(f"Failed to persist {step}", step=step) from e

    async def _persist_messages(
        self,
        request: ChatTurnRequest,
        reply: str,
        diagnosis: DiagnosisResult,
        received_at: datetime,
    ) -> tuple[ChatMessage, ChatMessage]:
        async with self._persisting("user message", duplicate_key=bool(request.idempotency_key)):
            user_message = await self._chats.add_message(
                patient_id=request.patient_id,
                session_id=request.session_id,
                role=ChatRole.USER,
                message=request.message,
                timestamp=received_at,
                idempotency_key=request.idempotency_key,
            )

        replied_at = datetime.now(timezone.utc)
        if replied_at <= received_at:
            replied_at = received_at + timedelta(microseconds=1)

        async with self._persisting("assistant message"):
            ai_message = await self._chats.add_message(
                patient_id=request.patient_id,
                session_id=request.session_id,
                role=ChatRole.AI,
                message=reply,
                timestamp=replied_at,
                has_diagnosis=diagnosis.has_diagnosis,
            )

        return user_message, ai_message

    def _attending_doctor_id(self, request: ChatTurnRequest) -> uuid.UUID | None:
        if request.doctor_id is not None:
            return request.doctor_id
        return self._ai_attending_doctor_id

    async def _create_visit(self, request: ChatTurnRequest, diagnosis: DiagnosisResult) -> Visit:
        async with self._persisting("virtual consultation visit"):
            visit = await self._visits.create(
                patient_id=request.patient_id,
                doctor_id=self._attending_doctor_id(request),
                visit_date=datetime.now(timezone.utc),
                visit_type=VisitType.VIRTUAL_CONSULTATION,
                symptoms=extract_symptoms(request.conversation_history, request.message),
                diagnosis=diagnosis.diagnosis,
                treatment_notes=diagnosis.recommended_treatment,
                follow_up_instructions=diagnosis.follow_up_instructions,
                confidence_level=diagnosis.confidence or ConfidenceLevel.MEDIUM,
                urgency_level=diagnosis.urgency_level or UrgencyLevel.LOW,
                chat_session_id=request.session_id,
            )
        return visit

    async def _update_visit(
        self, visit: Visit, request: ChatTurnRequest, diagnosis: DiagnosisResult
    ) -> Visit:
        async with self._persisting("visit update"):
            visit.symptoms = _append(
                visit.symptoms, extract_symptoms(request.conversation_history, request.message)
            )
            visit.diagnosis = _append(visit.diagnosis, diagnosis.diagnosis)
            visit.treatment_notes = _append(visit.treatment_notes, diagnosis.recommended_treatment)
            visit.follow_up_instructions = _append(
                visit.follow_up_instructions, diagnosis.follow_up_instructions
            )
            # Levels the extraction left out keep their recorded value
            if diagnosis.confidence is not None:
                visit.confidence_level = diagnosis.confidence
            if diagnosis.urgency_level is not None:
                visit.urgency_level = diagnosis.urgency_level
            visit.chat_session_id = request.session_id
            await self._db.flush()
        return visit

    def _schedule(self, visit_id: uuid.UUID) -> None:
        if self._schedule_embedding is None:
            return
        try:
            self._schedule_embedding(visit_id)
        except Exception:
            logger.warning("Could not schedule embedding for visit %s", visit_id, exc_info=True)

    async def _link(
        self,
        messages: Sequence[ChatMessage],
        context: TurnContext,
        visit: Visit | None,
    ) -> list[uuid.UUID]:
        visit_ids = context.linked_visit_ids()
        if visit is not None:
            visit_ids.append(visit.id)
        visit_ids = list(dict.fromkeys(visit_ids))
        if not visit_ids:
            return []

        async with self._persisting("visit links"):
            await self._chats.link_visits([message.id for message in messages], visit_ids)
        return visit_ids

    # =========================================================================
    # Entry point
    # =========================================================================

    async def submit_turn(self, request: ChatTurnRequest) -> TurnOutcome:
        """Process one patient turn.

        Raises:
            TurnValidationError: Malformed request or unknown doctor.
            PatientNotFoundError: Unknown patient.
            VisitNotFoundError: ``visit_id`` missing or owned by another patient.
            DuplicateTurnError: ``idempotency_key`` already used in this session.
            CompletionUnavailableError: The assistant reply could not be produced.
            PersistenceError: A write failed; earlier steps stay committed.
        """
        turn = _Turn(request)
        received_at = datetime.now(timezone.utc)

        try:
            patient, target_visit = await self._validate(request)

            context = await self._context_engine.build_context(patient, request.message)
            turn.advance(TurnState.CONTEXT_BUILT)
            if context.degraded:
                logger.warning(
                    "Turn %s/%s proceeding without similar cases", turn.patient_id, turn.session_id
                )

            system_prompt = build_system_prompt(
                patient, context.visit_history, context.similar_visits, context.recent_chats
            )
            conversation_text = build_conversation_text(
                request.conversation_history, request.message
            )
            reply = await self._completion.complete(system_prompt, conversation_text)
            turn.advance(TurnState.COMPLETED)

            diagnosis = await self._extractor.extract(reply)
            turn.advance(TurnState.EXTRACTED)

            user_message, ai_message = await self._persist_messages(
                request, reply, diagnosis, received_at
            )
            turn.advance(TurnState.PERSISTED)

            visit = None
            visit_action = VisitAction.NONE
            if diagnosis.has_diagnosis:
                if target_visit is not None:
                    visit = await self._update_visit(target_visit, request, diagnosis)
                    visit_action = VisitAction.UPDATED
                    turn.advance(TurnState.VISIT_UPDATED)
                else:
                    visit = await self._create_visit(request, diagnosis)
                    visit_action = VisitAction.CREATED
                    turn.advance(TurnState.VISIT_CREATED)
                self._schedule(visit.id)

            linked = await self._link([user_message, ai_message], context, visit)
            turn.advance(TurnState.LINKED)
        except CompletionUnavailableError:
            turn.advance(TurnState.FAILED)
            logger.error(
                "Turn %s/%s failed: assistant unavailable", turn.patient_id, turn.session_id
            )
            raise
        except DiagnosticChatError as e:
            failed_at = turn.state
            turn.advance(TurnState.FAILED)
            logger.warning(
                "Turn %s/%s failed after %s: %s",
                turn.patient_id,
                turn.session_id,
                failed_at.value,
                type(e).__name__,
            )
            raise

        turn.advance(TurnState.DONE)
        logger.info(
            "Turn %s/%s done: diagnosis=%s visit_action=%s",
            turn.patient_id,
            turn.session_id,
            diagnosis.has_diagnosis,
            visit_action.value,
        )

        return TurnOutcome(
            response=reply,
            diagnosis=diagnosis,
            visit_action=visit_action,
            visit_id=visit.id if visit is not None else None,
            context_visits=len(context.visit_history),
            similar_visits=len(context.similar_visits),
            context_degraded=context.degraded,
            user_message_id=user_message.id,
            ai_message_id=ai_message.id,
            linked_visit_ids=linked,
        )


# =============================================================================
# Wiring
# =============================================================================


def build_orchestrator(
    db: AsyncSession,
    embedding_service: EmbeddingService,
    completion_service: CompletionService,
    schedule_embedding: Callable[[uuid.UUID], None] | None = None,
) -> DiagnosticSessionOrchestrator:
    """Wire an orchestrator whose repositories and search share ``db``."""
    visits = VisitRepository(db)
    chats = ChatRepository(db)
    context_engine = ContextEngine(
        visits=visits,
        chats=chats,
        embedding_service=embedding_service,
        vector_search=VectorSearchService(db),
    )
    return DiagnosticSessionOrchestrator(
        db=db,
        context_engine=context_engine,
        completion=completion_service,
        extractor=DiagnosisExtractor(completion_service),
        profiles=ProfileRepository(db),
        visits=visits,
        chats=chats,
        schedule_embedding=schedule_embedding,
        ai_attending_doctor_id=settings.ai_attending_doctor_id,
    )


async def run_turn_in_background(request: ChatTurnRequest) -> None:
    """Process a turn outside the request that accepted it.

    Uses its own database session and OpenAI clients. Failures are logged;
    the client sees them as a missing assistant reply while polling.
    """
    pending_embeddings: list[uuid.UUID] = []
    embedding_service = EmbeddingService()
    completion_service = CompletionService()
    try:
        async with async_session_maker() as session:
            orchestrator = build_orchestrator(
                session,
                embedding_service,
                completion_service,
                schedule_embedding=pending_embeddings.append,
            )
            await orchestrator.submit_turn(request)
    except DiagnosticChatError as e:
        logger.error(
            "Background turn for %s/%s failed: %s",
            request.patient_id,
            request.session_id,
            type(e).__name__,
        )
        return
    except Exception:
        logger.exception(
            "Unexpected error in background turn for %s/%s", request.patient_id, request.session_id
        )
        return
    finally:
        await embedding_service.close()
        await completion_service.close()

    for visit_id in pending_embeddings:
        await generate_visit_embedding(visit_id)
