"""
Screen flow of the web client.

`AppState` is the one object that reads and writes the client's persisted
keys; everything else receives it as a parameter. `transition` is a pure
function from (state, event) to the next screen.
"""
import enum
import json
from dataclasses import dataclass
from typing import Any, MutableMapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .gateway.base import AuthEvent
from .schemas import SelectedLocation
from .services.drafts import LOCATION_PINCODE_KEY, DraftStore, QuestionnaireCache

SCREEN_KEY = "screen"
EPOCH_KEY = "epoch"
SELECTED_LOCATION_KEY = "selectedLocation"
LOCATION_GRANTED_KEY = "locationGranted"


class Screen(str, enum.Enum):
    LOGIN = "login"
    REGISTER = "register"
    LOCATION_PERMISSION = "locationPermission"
    LOCATION_SEARCH = "locationSearch"
    REPORT = "report"


class SwitchToRegister:
    pass


class SwitchToLogin:
    pass


class RegisterSucceeded:
    pass


class LoginSucceeded:
    pass


class LocationGranted:
    pass


class LocationConfirmed:
    pass


class EditLocation:
    pass


class LoggedOut:
    pass


@dataclass(frozen=True)
class AuthStateChanged:
    event: AuthEvent
    has_user: bool


Event = Union[
    SwitchToRegister, SwitchToLogin, RegisterSucceeded, LoginSucceeded, LocationGranted,
    LocationConfirmed, EditLocation, LoggedOut, AuthStateChanged,
]


def _parse_location(raw: Any) -> Optional[SelectedLocation]:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    if not isinstance(raw, dict):
        return None
    try:
        loc = SelectedLocation.model_validate(raw)
    except PydanticValidationError:
        return None
    return loc if loc.location else None


@dataclass
class AppState:
    screen: Screen = Screen.LOGIN
    user_id: Optional[str] = None
    email: Optional[str] = None
    selected_location: Optional[SelectedLocation] = None
    location_granted: bool = False
    location_pincode: Optional[str] = None
    epoch: int = 0

    @classmethod
    def load(cls, storage: MutableMapping[str, Any], user_id: Optional[str] = None, email: Optional[str] = None) -> "AppState":
        raw_location = storage.get(SELECTED_LOCATION_KEY)
        try:
            screen = Screen(storage.get(SCREEN_KEY, Screen.LOGIN.value))
        except ValueError:
            screen = Screen.LOGIN
        return cls(
            screen=screen,
            user_id=user_id,
            email=email,
            selected_location=_parse_location(raw_location),
            location_granted=storage.get(LOCATION_GRANTED_KEY) in (True, "true"),
            location_pincode=storage.get(LOCATION_PINCODE_KEY) or None,
            epoch=int(storage.get(EPOCH_KEY, 0)),
        )

    def dump(self, storage: MutableMapping[str, Any]) -> None:
        storage[SCREEN_KEY] = self.screen.value
        storage[EPOCH_KEY] = self.epoch
        storage[LOCATION_GRANTED_KEY] = self.location_granted
        if self.location_pincode is None:
            storage.pop(LOCATION_PINCODE_KEY, None)
        else:
            storage[LOCATION_PINCODE_KEY] = self.location_pincode
        if self.selected_location is None:
            storage.pop(SELECTED_LOCATION_KEY, None)
        else:
            storage[SELECTED_LOCATION_KEY] = self.selected_location.model_dump(mode="json")

    def is_current(self, epoch: int) -> bool:
        """Results produced before the last logout are stale."""
        return epoch == self.epoch

    def confirm_location(self, location: SelectedLocation) -> None:
        self.selected_location = location
        self.location_granted = True
        self.location_pincode = location.pincode or ""
        self.screen = transition(self, LocationConfirmed())

    def edit_location(self) -> None:
        self.selected_location = None
        self.location_pincode = None
        self.screen = transition(self, EditLocation())

    def grant_location(self, granted: bool, pincode: str) -> None:
        self.location_granted = granted
        self.location_pincode = pincode
        if self.selected_location is not None and pincode:
            self.selected_location = self.selected_location.model_copy(update={"pincode": pincode})
        self.screen = transition(self, LocationGranted())

    def logout(self, storage: MutableMapping[str, Any]) -> None:
        """Drop everything tied to the signed-in user and start a new epoch."""
        self.user_id = None
        self.email = None
        self.selected_location = None
        self.location_granted = False
        self.location_pincode = None
        self.epoch += 1
        self.screen = transition(self, LoggedOut())
        DraftStore(storage).clear()
        QuestionnaireCache(storage).clear_all()
        for key in (SELECTED_LOCATION_KEY, LOCATION_GRANTED_KEY, LOCATION_PINCODE_KEY):
            storage.pop(key, None)
        self.dump(storage)


def resume_screen(state: AppState, has_user: bool, current: Optional[Screen] = None) -> Screen:
    if not has_user:
        return Screen.LOGIN
    if state.location_granted:
        if state.selected_location is not None:
            return Screen.REPORT
        # nothing stored, or a stored value that did not parse: re-confirm
        return Screen.LOCATION_SEARCH
    current = current or state.screen
    if current in (Screen.LOGIN, Screen.REGISTER):
        return Screen.LOCATION_PERMISSION
    return current


def transition(state: AppState, event: Event) -> Screen:
    current = state.screen
    if isinstance(event, SwitchToRegister):
        return Screen.REGISTER if current in (Screen.LOGIN, Screen.REGISTER) else current
    if isinstance(event, (SwitchToLogin, RegisterSucceeded)):
        return Screen.LOGIN if current in (Screen.LOGIN, Screen.REGISTER) else current
    if isinstance(event, LoginSucceeded):
        # default landing; a persisted resume point promotes it further
        if state.location_granted:
            return resume_screen(state, True)
        return Screen.LOCATION_PERMISSION
    if isinstance(event, LocationGranted):
        return Screen.LOCATION_SEARCH
    if isinstance(event, EditLocation):
        return Screen.LOCATION_SEARCH
    if isinstance(event, LocationConfirmed):
        return Screen.REPORT if state.selected_location is not None else Screen.LOCATION_SEARCH
    if isinstance(event, LoggedOut):
        return Screen.LOGIN
    if isinstance(event, AuthStateChanged):
        if event.event == AuthEvent.SIGNED_OUT or not event.has_user:
            return Screen.LOGIN
        return resume_screen(state, True, current)
    raise ValueError(f"Unknown event {event!r}")
