import logging

from ..errors import ConfirmationLookupError, DataStoreError, ProfileNotFound, ValidationError
from ..gateway.base import DataStore

logger = logging.getLogger(__name__)

REPORT_TABLES = {True: "reports", False: "reports_unconfirmed"}
RESPONSE_TABLES = {True: "questionnaire_responses_confirmed", False: "questionnaire_responses_unconfirmed"}


def report_table(confirmed: bool) -> str:
    return REPORT_TABLES[confirmed]


def response_table(confirmed: bool) -> str:
    return RESPONSE_TABLES[confirmed]


async def resolve_confirmation(store: DataStore, user_id: str) -> bool:
    """Read profiles.email_confirmed for the user.

    A missing profile is a lookup failure, never "unconfirmed": guessing would
    route the write to the wrong table.
    """
    if not user_id:
        raise ValidationError("Missing user id")
    try:
        profile = await store.select("profiles", "id, email_confirmed", {"id": user_id}, single=True)
    except DataStoreError as e:
        logger.error(f"Profile lookup failed for {user_id}: {e.message}")
        raise ConfirmationLookupError("Unable to verify user profile. Try again later.", detail=e.message) from e
    if profile is None:
        raise ProfileNotFound("Unable to verify user profile. Try again later.", detail=user_id)
    return profile.get("email_confirmed") is True
