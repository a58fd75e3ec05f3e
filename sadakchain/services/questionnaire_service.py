"""
Road-condition questionnaire: the fixed question set, answer validation and
the report_id-keyed upsert into the confirmed/unconfirmed response tables.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..errors import DataStoreError, ValidationError
from ..gateway.base import Backend
from ..schemas import NOT_RATED, Answer, MultiAnswer, QuestionnaireResult, SingleAnswer
from .confirmation import report_table, resolve_confirmation, response_table
from .drafts import DraftStore, QuestionnaireCache
from .guard import BusyGuard

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Question:
    id: str
    text: str
    options: Tuple[str, ...]
    multi: bool = False


QUESTIONS: Tuple[Question, ...] = (
    Question("q1", "How frequently do you use this road?", ("Daily", "Weekly", "Monthly", "Rarely")),
    Question(
        "q2",
        "What type of vehicle do you use the MOST on this road?",
        ("Car", "Motorcycle", "Bicycle", "Bus", "Truck", "Scooter", "Auto Rickshaw", "Public Transport", "Walking", "Other"),
    ),
    Question(
        "q3",
        "What are the issues with this road?",
        ("Potholes", "Cracks", "Waterlogging", "Poor lighting", "Traffic congestion", "Unmarked speed bumps", "Rough surface", "Other"),
        multi=True,
    ),
    Question("q4", "How long has this issue existed?", ("Less than a month", "1-3 months", "3-6 months", "More than 6 months")),
    Question("q5", "Has this road been repaired in the past year?", ("Yes", "No", "Not sure")),
)

_answer_adapter = TypeAdapter(Answer)


def parse_answers(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Turn loose answer payloads into tagged answers, checked against the question set.

    Accepts tagged dicts, plain strings (single choice) and lists (multi select).
    Unanswered questions are left out.
    """
    by_id = {q.id: q for q in QUESTIONS}
    parsed: Dict[str, Any] = {}
    for qid, value in raw.items():
        question = by_id.get(qid)
        if question is None:
            raise ValidationError(f"Unknown question '{qid}'")
        if isinstance(value, str):
            value = {"kind": "single", "value": value} if value else None
        elif isinstance(value, (list, tuple)):
            value = {"kind": "multi", "values": list(value)}
        if value is None:
            continue
        try:
            answer = value if isinstance(value, (SingleAnswer, MultiAnswer)) else _answer_adapter.validate_python(value)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid answer for {qid}", detail=str(e)) from e
        if question.multi != isinstance(answer, MultiAnswer):
            raise ValidationError(f"Wrong answer kind for {qid}")
        chosen = answer.values if isinstance(answer, MultiAnswer) else [answer.value]
        unknown = [c for c in chosen if c not in question.options]
        if unknown:
            raise ValidationError(f"Unknown option(s) for {qid}: {', '.join(unknown)}")
        parsed[qid] = answer
    return parsed


def all_questions_answered(answers: Mapping[str, Any]) -> bool:
    for question in QUESTIONS:
        answer = answers.get(question.id)
        if isinstance(answer, MultiAnswer):
            if not answer.values:
                return False
        elif isinstance(answer, SingleAnswer):
            if not answer.value:
                return False
        else:
            return False
    return True


def answers_payload(answers: Mapping[str, Any]) -> Dict[str, Any]:
    """Stored shape: a string per single-choice question, a list per multi-select."""
    out: Dict[str, Any] = {}
    for qid, answer in answers.items():
        out[qid] = list(answer.values) if isinstance(answer, MultiAnswer) else answer.value
    return out


class QuestionnaireService:
    def __init__(self, backend: Backend, drafts: DraftStore, cache: QuestionnaireCache, guard: Optional[BusyGuard] = None):
        self.backend = backend
        self.drafts = drafts
        self.cache = cache
        self.guard = guard or BusyGuard()

    async def _create_stub(self, user_id: str, location: str, pincode: str, confirmed: bool) -> str:
        table = report_table(confirmed)
        stub = {
            "id": user_id,
            "user_pincode": self.drafts.user_pincode(),
            "report_pincode": pincode,
            "location": location,
            "qsn_answered": True,
            "vote": NOT_RATED,
            "files": [],
            "created_at": datetime.utcnow().isoformat(),
        }
        try:
            rows = await self.backend.store.upsert(table, [stub], on_conflict="id")
        except DataStoreError as e:
            logger.error(f"Failed to create report stub in {table}: {e.message}")
            raise DataStoreError(f"Failed to start report: {e.message}", detail=e.detail, status=e.status) from e
        report_id = str(rows[0]["id"]) if rows and rows[0].get("id") else None
        if not report_id:
            raise DataStoreError("Failed to establish a report record. Cannot save questionnaire.")
        logger.info(f"Report stub {report_id} created in {table}")
        return report_id

    async def submit(
        self,
        report_id: Optional[str],
        user_id: Optional[str],
        location: Optional[str],
        pincode: Optional[str],
        answers: Mapping[str, Any],
        comments: Optional[str] = None,
    ) -> QuestionnaireResult:
        answers = parse_answers(answers)
        if not all_questions_answered(answers):
            raise ValidationError("Please answer all questions before submitting.")
        if not location or not pincode:
            raise ValidationError("Location and pincode are required to save questionnaire responses.")
        if not user_id:
            raise ValidationError("You must be logged in to submit the questionnaire.")

        warnings: List[str] = []
        with self.guard.hold(("questionnaire", user_id)):
            confirmed = await resolve_confirmation(self.backend.store, user_id)

            created_stub = False
            if not report_id:
                report_id = await self._create_stub(user_id, location, pincode, confirmed)
                created_stub = True

            stored = answers_payload(answers)
            comments = comments or None
            payload = {
                "report_id": report_id,
                "user_id": user_id,
                "answers": {**stored, "comments": comments},
                "comments": comments,
                "created_at": datetime.utcnow().isoformat(),
            }
            table = response_table(confirmed)
            try:
                await self.backend.store.upsert(table, [payload], on_conflict="report_id")
            except DataStoreError as e:
                logger.error(f"Questionnaire upsert into {table} failed: {e.message}")
                raise DataStoreError(f"Failed to save questionnaire: {e.message}", detail=e.detail, status=e.status) from e

            reports = report_table(confirmed)
            try:
                await self.backend.store.update(reports, {"qsn_answered": True}, {"id": report_id})
            except DataStoreError as e:
                # the response row already records completion
                logger.warning(f"Failed to flag {reports}.{report_id} as answered: {e.message}")
                warnings.append("Questionnaire saved, but the report could not be flagged as answered.")

        if confirmed:
            self.cache.clear(report_id)
        else:
            self.cache.save(report_id, payload["answers"], comments)
        self.drafts.update(questionnaire_completed=True, report_id=report_id, location=location, report_pincode=pincode)

        return QuestionnaireResult(report_id=report_id, confirmed=confirmed, created_stub=created_stub, warnings=warnings)
