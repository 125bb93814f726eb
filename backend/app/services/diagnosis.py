"""Diagnosis extraction from the assistant's free-text reply.

A second, low-temperature completion is asked to summarize the reply as a
JSON object. If that call fails or its output cannot be parsed, a keyword
heuristic over the reply itself takes over, so extraction never fails.
"""

import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from app.config import settings
from app.models.visit import ConfidenceLevel
from app.schemas.diagnosis import DiagnosisResult
from app.services.completion import CompletionService

logger = logging.getLogger(__name__)

EXTRACTION_INSTRUCTIONS = (
    "You analyze replies written by a medical assistant and report, as a single JSON "
    "object and nothing else, whether the reply states a specific medical diagnosis."
)

EXTRACTION_PROMPT = """Analyze this medical assistant reply and determine whether it contains a clear diagnosis.

REPLY TO ANALYZE:
\"\"\"{reply}\"\"\"

Return a JSON object with exactly these keys:
{{
  "hasDiagnosis": boolean,
  "diagnosis": "string or null",
  "confidence": "low" | "medium" | "high",
  "recommendedTreatment": "string or null",
  "followUpInstructions": "string or null",
  "urgencyLevel": "low" | "medium" | "high" | "urgent"
}}

Only set hasDiagnosis to true if a specific medical diagnosis is stated, not just general advice."""

DIAGNOSIS_KEYWORDS = (
    "diagnosis:",
    "diagnosed with",
    "condition is",
    "appears to be",
    "likely suffering from",
)

_SENTENCE_END = re.compile(r"[.!?\n]")
_PHRASE_STRIP = " \t:*-_\"'`"


def find_json_object(text: str) -> dict[str, Any] | None:
    """Return the first JSON object embedded in ``text``, or None."""
    decoder = json.JSONDecoder()
    for match in re.finditer(r"\{", text):
        try:
            value, _ = decoder.raw_decode(text, match.start())
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    return None


def _sentence_around(text: str, index: int) -> str:
    start = max(text.rfind(ch, 0, index) for ch in ".!?\n") + 1
    end_match = _SENTENCE_END.search(text, index)
    end = end_match.start() if end_match else len(text)
    return text[start:end].strip(_PHRASE_STRIP)


def keyword_fallback(reply: str) -> DiagnosisResult:
    """Heuristic extraction used when the structured pass is unavailable.

    The earliest diagnosis keyword in the reply wins; the diagnosis is the
    rest of its sentence, or the whole sentence when nothing follows it.
    """
    lowered = reply.lower()
    matches = [(lowered.find(keyword), keyword) for keyword in DIAGNOSIS_KEYWORDS]
    matches = [(index, keyword) for index, keyword in matches if index != -1]
    if not matches:
        return DiagnosisResult(has_diagnosis=False, confidence=ConfidenceLevel.MEDIUM)

    index, keyword = min(matches)
    tail = reply[index + len(keyword):]
    phrase = _SENTENCE_END.split(tail, maxsplit=1)[0].strip(_PHRASE_STRIP)
    if not phrase:
        phrase = _sentence_around(reply, index) or keyword.rstrip(":")

    return DiagnosisResult(
        has_diagnosis=True,
        diagnosis=phrase,
        confidence=ConfidenceLevel.MEDIUM,
    )


class DiagnosisExtractor:
    """Turns an assistant reply into a DiagnosisResult.

    Example:
        extractor = DiagnosisExtractor(CompletionService())
        result = await extractor.extract(reply_text)
        if result.has_diagnosis:
            print(result.diagnosis)
    """

    def __init__(self, completion: CompletionService):
        self._completion = completion

    async def _structured_pass(self, reply: str) -> DiagnosisResult | None:
        try:
            raw = await self._completion.complete(
                EXTRACTION_INSTRUCTIONS,
                EXTRACTION_PROMPT.format(reply=reply),
                temperature=settings.extraction_temperature,
                max_output_tokens=settings.extraction_max_output_tokens,
            )
        except Exception as e:
            logger.warning("Diagnosis extraction call failed, using keyword fallback: %s", e)
            return None

        parsed = find_json_object(raw)
        if parsed is None:
            logger.warning("Diagnosis extraction returned no JSON object, using keyword fallback")
            return None

        try:
            return DiagnosisResult.model_validate(parsed)
        except ValidationError as e:
            logger.warning(
                "Diagnosis extraction JSON was invalid (%d errors), using keyword fallback",
                e.error_count(),
            )
            return None

    async def extract(self, reply: str) -> DiagnosisResult:
        """Extract a diagnosis. Never raises.

        Args:
            reply: The assistant's reply text.

        Returns:
            DiagnosisResult from the structured pass, or from the keyword
            heuristic when the structured pass is unusable.
        """
        result = await self._structured_pass(reply)
        if result is None:
            result = keyword_fallback(reply)
        return result
