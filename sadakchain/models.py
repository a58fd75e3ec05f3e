import uuid
from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Boolean, JSON

from .database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class AuthUser(Base):
    """Accounts of the local auth gateway."""

    __tablename__ = "auth_users"

    id = Column(String, primary_key=True, default=_uuid)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    user_metadata = Column(JSON, default=dict)
    email_confirmed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String, ForeignKey("auth_users.id"), primary_key=True)
    name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    pincode = Column(String, nullable=True)
    email_confirmed = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class _ReportColumns:
    # keyed by the reporting user's id: one report per user per bucket
    id = Column(String, primary_key=True)
    files = Column(JSON, default=list)
    vote = Column(String, nullable=True)
    qsn_answered = Column(Boolean, default=False, nullable=False)
    location = Column(Text, nullable=True)
    report_pincode = Column(String, nullable=True)
    user_pincode = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Report(_ReportColumns, Base):
    __tablename__ = "reports"


class ReportUnconfirmed(_ReportColumns, Base):
    __tablename__ = "reports_unconfirmed"


class _ResponseColumns:
    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(String, unique=True, index=True, nullable=False)
    user_id = Column(String, nullable=False)
    answers = Column(JSON, nullable=False)
    comments = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class QuestionnaireResponseConfirmed(_ResponseColumns, Base):
    __tablename__ = "questionnaire_responses_confirmed"


class QuestionnaireResponseUnconfirmed(_ResponseColumns, Base):
    __tablename__ = "questionnaire_responses_unconfirmed"


TABLES = {
    "profiles": Profile,
    "reports": Report,
    "reports_unconfirmed": ReportUnconfirmed,
    "questionnaire_responses_confirmed": QuestionnaireResponseConfirmed,
    "questionnaire_responses_unconfirmed": QuestionnaireResponseUnconfirmed,
}
