from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


VOTES = ("excellent", "good", "fair", "poor", "very_poor")
NOT_RATED = "not_rated"


class SessionUser(BaseModel):
    id: str
    email: Optional[str] = None
    user_metadata: Dict[str, Any] = Field(default_factory=dict)
    email_confirmed_at: Optional[datetime] = None


class AuthSession(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None
    user: SessionUser


class SelectedLocation(BaseModel):
    location: str
    pincode: str = ""
    timestamp: Optional[str] = None


class DraftReport(BaseModel):
    files_names: List[str] = Field(default_factory=list, alias="filesNames")
    vote: str = ""
    questionnaire_completed: bool = Field(False, alias="questionnaireCompleted")
    location: Optional[str] = None
    report_pincode: Optional[str] = None
    user_pincode: Optional[str] = None
    timestamp: str = Field(default_factory=lambda: datetime.utcnow().isoformat())
    report_id: Optional[str] = Field(None, alias="reportId")

    class Config:
        populate_by_name = True


class SingleAnswer(BaseModel):
    kind: Literal["single"] = "single"
    value: str


class MultiAnswer(BaseModel):
    kind: Literal["multi"] = "multi"
    values: List[str]


Answer = Annotated[Union[SingleAnswer, MultiAnswer], Field(discriminator="kind")]


class PlaceSuggestion(BaseModel):
    place_id: Optional[str] = None
    formatted: str
    postcode: str = ""


class SearchOutcome(BaseModel):
    query: str
    results: List[PlaceSuggestion] = Field(default_factory=list)
    error: Optional[str] = None
    superseded: bool = False


class ReportResult(BaseModel):
    report_id: str
    table: str
    confirmed: bool
    pending: bool
    files: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    row: Dict[str, Any] = Field(default_factory=dict)


class QuestionnaireResult(BaseModel):
    report_id: str
    confirmed: bool
    created_stub: bool = False
    warnings: List[str] = Field(default_factory=list)

