"""
Client-side persisted state: the single draft report slot and the
per-report questionnaire cache.

`storage` is any mutable mapping of JSON values; in the web client it is the
signed cookie session, so it survives reloads but not a logout.
"""
import logging
from datetime import datetime
from typing import Any, Dict, MutableMapping, Optional

from pydantic import ValidationError as PydanticValidationError

from ..schemas import DraftReport

logger = logging.getLogger(__name__)

DRAFT_KEY = "rr_draft_report"
QUESTIONNAIRE_PREFIX = "questionnaire_answers_"
LOCATION_PINCODE_KEY = "locationPincode"

ClientStorage = MutableMapping[str, Any]


class DraftStore:
    def __init__(self, storage: ClientStorage):
        self.storage = storage

    def load(self) -> Optional[DraftReport]:
        raw = self.storage.get(DRAFT_KEY)
        if not raw:
            return None
        try:
            return DraftReport.model_validate(raw)
        except PydanticValidationError as e:
            logger.warning(f"Discarding unreadable draft: {e}")
            self.storage.pop(DRAFT_KEY, None)
            return None

    def save(self, draft: DraftReport) -> DraftReport:
        draft = draft.model_copy(update={"timestamp": datetime.utcnow().isoformat()})
        self.storage[DRAFT_KEY] = draft.model_dump(mode="json", by_alias=True)
        return draft

    def update(self, **changes: Any) -> DraftReport:
        """Apply a local field change, creating the draft if none exists."""
        current = self.load() or DraftReport()
        return self.save(current.model_copy(update=changes))

    def clear(self) -> None:
        self.storage.pop(DRAFT_KEY, None)

    def user_pincode(self) -> Optional[str]:
        return self.storage.get(LOCATION_PINCODE_KEY) or None


class QuestionnaireCache:
    def __init__(self, storage: ClientStorage):
        self.storage = storage

    @staticmethod
    def key(report_id: str) -> str:
        return f"{QUESTIONNAIRE_PREFIX}{report_id}"

    def load(self, report_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not report_id:
            return None
        raw = self.storage.get(self.key(report_id))
        return raw if isinstance(raw, dict) else None

    def save(self, report_id: str, answers: Dict[str, Any], comments: Optional[str]) -> None:
        self.storage[self.key(report_id)] = {
            "answers": answers,
            "comments": comments,
            "saved_at": datetime.utcnow().isoformat(),
        }

    def clear(self, report_id: Optional[str]) -> None:
        if report_id:
            self.storage.pop(self.key(report_id), None)

    def clear_all(self) -> None:
        for key in [k for k in self.storage.keys() if k.startswith(QUESTIONNAIRE_PREFIX)]:
            self.storage.pop(key, None)
