"""Context Engine for diagnostic conversations.

Assembles what the assistant needs to answer one patient turn:
1. Patient profile: demographics and standing medical background
2. Visit history: the most recent visits, newest first
3. Similar cases: semantically similar past visits via pgvector
4. Recent conversation: the patient's latest chat turns

Prompt rendering is kept in pure functions so the briefing for a given
context is deterministic and testable without a database.
"""

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field

from app.config import settings
from app.constants import LINKED_HISTORY_VISITS, RECENT_CHAT_LIMIT, VISIT_HISTORY_LIMIT
from app.models.chat import ChatMessage, ChatRole
from app.models.patient import Patient
from app.models.visit import Visit
from app.repositories.chat import ChatRepository
from app.repositories.visit import VisitRepository
from app.schemas.chat import ConversationTurn
from app.services.embeddings import EmbeddingService
from app.services.vector_search import SearchResult, VectorSearchService

logger = logging.getLogger(__name__)

PERSONA = (
    "You are Dr. AI, an experienced and empathetic medical assistant conducting a "
    "virtual consultation with {name}. You reason like a careful diagnostician: you "
    "gather information systematically, recognize emergencies and understand drug "
    "interactions, contraindications and treatment protocols."
)

SAFETY_PROTOCOL = """SAFETY PROTOCOL:
- Always advise emergency care for potentially life-threatening symptoms.
- Never recommend treatment without an adequate evaluation.
- Always recommend follow-up with a healthcare provider.
- Flag concerning symptoms for immediate medical attention."""

RESPONSE_PROTOCOL = """DIAGNOSTIC FRAMEWORK:
1. Listen to the patient's concerns.
2. Ask targeted questions, one at a time.
3. Weigh the patient's history, vitals and similar past cases.
4. Consider a differential diagnosis before settling on one.
5. Assess urgency and severity.
6. Give clear, actionable recommendations.

COMMUNICATION STYLE:
- Warm, professional and plain-spoken; explain medical terms simply.
- Ask one focused question at a time.

WHEN YOU HAVE ENOUGH INFORMATION, state the diagnosis explicitly as
"Diagnosis: <condition>", with your confidence level, an explanation of the
condition, the recommended treatment, follow-up instructions and red flags to
watch for."""

CLOSING_CUE = (
    "Dr. AI, respond to the patient: ask an appropriate follow-up question, or give "
    "a diagnosis if you have sufficient information."
)

SPEAKER_LABELS = {"user": "Patient", "ai": "Dr. AI"}


@dataclass
class TurnContext:
    """Everything retrieved for one turn.

    ``degraded`` is set when similar-case retrieval failed and the turn
    proceeds without it.
    """

    patient: Patient
    visit_history: list[Visit] = field(default_factory=list)
    similar_visits: list[SearchResult] = field(default_factory=list)
    recent_chats: list[ChatMessage] = field(default_factory=list)
    degraded: bool = False

    def linked_visit_ids(self) -> list[uuid.UUID]:
        """Visits a turn built on this context should be linked to.

        The first few history visits plus every similar visit, de-duplicated,
        in that order.
        """
        ids = [visit.id for visit in self.visit_history[:LINKED_HISTORY_VISITS]]
        ids.extend(result.visit.id for result in self.similar_visits)
        return list(dict.fromkeys(ids))


# =============================================================================
# Prompt rendering
# =============================================================================


def _format_date(visit: Visit) -> str:
    return visit.visit_date.strftime("%Y-%m-%d") if visit.visit_date else "Unknown date"


def _format_number(value: float) -> str:
    return f"{value:g}"


def _attending(visit: Visit) -> str:
    doctor = visit.doctor
    if doctor is None:
        return "Self-recorded"
    if doctor.specialization:
        return f"Dr. {doctor.name} ({doctor.specialization})"
    return f"Dr. {doctor.name}"


def _render_vitals(visit: Visit) -> str | None:
    vitals = []
    if visit.systolic_bp is not None and visit.diastolic_bp is not None:
        vitals.append(f"BP: {visit.systolic_bp}/{visit.diastolic_bp}")
    if visit.heart_rate is not None:
        vitals.append(f"HR: {visit.heart_rate}")
    if visit.temperature is not None:
        vitals.append(f"Temp: {_format_number(visit.temperature)}°C")
    if visit.blood_sugar is not None:
        vitals.append(f"Glucose: {_format_number(visit.blood_sugar)}")
    if visit.oxygen_saturation is not None:
        vitals.append(f"O2: {_format_number(visit.oxygen_saturation)}%")
    if visit.respiratory_rate is not None:
        vitals.append(f"RR: {visit.respiratory_rate}")
    if visit.weight is not None:
        vitals.append(f"Weight: {_format_number(visit.weight)}kg")
    if visit.height is not None:
        vitals.append(f"Height: {_format_number(visit.height)}cm")
    return ", ".join(vitals) if vitals else None


def _render_patient(patient: Patient) -> str:
    gender = patient.gender.value if hasattr(patient.gender, "value") else patient.gender
    lines = [
        "PATIENT PROFILE:",
        f"Name: {patient.name}",
        f"Age: {patient.age} years old",
        f"Gender: {gender or 'Not specified'}",
        f"Phone: {patient.phone or 'Not provided'}",
        f"Email: {patient.email or 'Not provided'}",
        f"Address: {patient.address or 'Not provided'}",
    ]
    if patient.medical_history:
        lines.append(f"Medical History: {patient.medical_history}")
    if patient.allergies:
        lines.append(f"Known Allergies: {patient.allergies}")
    if patient.current_medications:
        lines.append(f"Current Medications: {patient.current_medications}")
    if patient.emergency_contact_name:
        contact = patient.emergency_contact_name
        if patient.emergency_contact_phone:
            contact += f" ({patient.emergency_contact_phone})"
        lines.append(f"Emergency Contact: {contact}")
    return "\n".join(lines)


def _render_visit(index: int, visit: Visit) -> str:
    lines = [f"Visit {index}: {_format_date(visit)} - {_attending(visit)}"]
    details = (
        ("Symptoms", visit.symptoms),
        ("Diagnosis", visit.diagnosis),
        ("Treatment", visit.treatment_notes),
        ("Medications", visit.prescribed_medications),
        ("Follow-up", visit.follow_up_instructions),
        ("Vitals", _render_vitals(visit)),
    )
    lines.extend(f"   {label}: {value}" for label, value in details if value)
    return "\n".join(lines)


def _render_similar_case(index: int, result: SearchResult) -> str:
    visit = result.visit
    match = round(result.score * 100)
    lines = [f"Similar Case {index} ({match}% match) - {_format_date(visit)}:"]
    details = (
        ("Symptoms", visit.symptoms),
        ("Diagnosis", visit.diagnosis),
        ("Treatment", visit.treatment_notes),
    )
    lines.extend(f"   {label}: {value}" for label, value in details if value)
    return "\n".join(lines)


def _role_value(role: ChatRole | str) -> str:
    return role.value if isinstance(role, ChatRole) else str(role)


def build_system_prompt(
    patient: Patient,
    visit_history: Sequence[Visit],
    similar_visits: Sequence[SearchResult],
    recent_chats: Sequence[ChatMessage],
) -> str:
    """Render the assistant briefing for one turn.

    Args:
        patient: The patient being consulted.
        visit_history: Recent visits, newest first.
        similar_visits: Similar past cases, most similar first.
        recent_chats: Recent chat messages, oldest first.

    Returns:
        The system prompt. Identical inputs always give identical output.
    """
    sections = [
        PERSONA.format(name=patient.name),
        SAFETY_PROTOCOL,
        _render_patient(patient),
    ]

    if visit_history:
        rendered = [_render_visit(i, visit) for i, visit in enumerate(visit_history, start=1)]
        sections.append("MEDICAL HISTORY (most recent first):\n" + "\n\n".join(rendered))

    if similar_visits:
        rendered = [
            _render_similar_case(i, result) for i, result in enumerate(similar_visits, start=1)
        ]
        sections.append("MOST RELEVANT SIMILAR CASES:\n" + "\n\n".join(rendered))

    if recent_chats:
        rendered = [
            f"{SPEAKER_LABELS[_role_value(chat.role)]}: {chat.message}" for chat in recent_chats
        ]
        sections.append("RECENT CONVERSATION NOTES:\n" + "\n".join(rendered))

    sections.append(RESPONSE_PROTOCOL)
    return "\n\n".join(sections)


def build_conversation_text(history: Sequence[ConversationTurn], message: str) -> str:
    """Render the running consultation plus the current patient message."""
    parts = ["CONSULTATION SESSION:"]
    if history:
        parts.append("Previous conversation:")
        parts.extend(f"{SPEAKER_LABELS[turn.role]}: {turn.message}" for turn in history)
    parts.append(f"Patient (current): {message}")
    parts.append(CLOSING_CUE)
    return "\n\n".join(parts)


# =============================================================================
# Retrieval
# =============================================================================


class ContextEngine:
    """Retrieves the context for a diagnostic turn.

    Similar-case retrieval is best-effort: if the message cannot be embedded
    or the search fails, the context comes back with no similar cases and
    ``degraded=True``.

    Example:
        async with async_session_maker() as session:
            engine = ContextEngine(
                visits=VisitRepository(session),
                chats=ChatRepository(session),
                embedding_service=EmbeddingService(),
                vector_search=VectorSearchService(session),
            )
            context = await engine.build_context(patient, "I've been very thirsty")
    """

    def __init__(
        self,
        visits: VisitRepository,
        chats: ChatRepository,
        embedding_service: EmbeddingService,
        vector_search: VectorSearchService,
        similarity_threshold: float | None = None,
        similarity_limit: int | None = None,
    ):
        self._visits = visits
        self._chats = chats
        self._embedding_service = embedding_service
        self._vector_search = vector_search
        self._similarity_threshold = (
            settings.similarity_threshold if similarity_threshold is None else similarity_threshold
        )
        self._similarity_limit = (
            settings.similarity_limit if similarity_limit is None else similarity_limit
        )

    async def _find_similar_visits(
        self, patient: Patient, message: str
    ) -> tuple[list[SearchResult], bool]:
        """Returns (results, degraded).

        The search runs in a savepoint: a failed query is rolled back on its
        own and leaves the turn's session usable for the writes that follow.
        """
        try:
            async with self._vector_search.session.begin_nested():
                results = await self._vector_search.search_by_text(
                    patient_id=patient.id,
                    query_text=message,
                    embed_fn=self._embedding_service.embed_text,
                    limit=self._similarity_limit,
                    threshold=self._similarity_threshold,
                    embedding_model=self._embedding_service.model,
                )
        except Exception as e:
            logger.warning(
                "Similar-case retrieval failed for patient %s, continuing without it: %s",
                patient.id,
                e,
            )
            return [], True
        return results, False

    async def build_context(self, patient: Patient, message: str) -> TurnContext:
        """Build the context for one patient message.

        Args:
            patient: The patient sending the message.
            message: The current message text.

        Returns:
            TurnContext with history, similar cases and recent chats.
        """
        visit_history = await self._visits.list_recent(patient.id, limit=VISIT_HISTORY_LIMIT)
        recent_chats = await self._chats.get_history(patient.id, limit=RECENT_CHAT_LIMIT)
        similar_visits, degraded = await self._find_similar_visits(patient, message)

        logger.debug(
            "Context for patient %s: %d history visits, %d similar, %d recent chats%s",
            patient.id,
            len(visit_history),
            len(similar_visits),
            len(recent_chats),
            " (degraded)" if degraded else "",
        )

        return TurnContext(
            patient=patient,
            visit_history=visit_history,
            similar_visits=similar_visits,
            recent_chats=recent_chats,
            degraded=degraded,
        )
