from typing import Any, Optional


class SadakError(Exception):
    """Base for every failure scoped to a single user action."""

    code = "error"

    def __init__(self, message: str, detail: Any = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class ConfigError(SadakError):
    code = "config_error"


class ValidationError(SadakError):
    code = "validation_error"


class AuthError(SadakError):
    code = "auth_error"


class UploadError(SadakError):
    code = "upload_failed"


class DataStoreError(SadakError):
    code = "datastore_error"

    def __init__(self, message: str, detail: Any = None, status: Optional[int] = None):
        super().__init__(message, detail)
        self.status = status


class ConfirmationLookupError(SadakError):
    """The profile's confirmation flag could not be read."""

    code = "confirmation_lookup_failed"


class ProfileNotFound(ConfirmationLookupError):
    code = "profile_not_found"


class SubmissionInProgress(SadakError):
    code = "submission_in_progress"


class SearchError(SadakError):
    """Place autocomplete failed; the message is shown to the user as-is."""

    code = "search_failed"
