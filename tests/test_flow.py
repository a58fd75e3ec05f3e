import pytest

from sadakchain.flow import (
    AppState,
    AuthStateChanged,
    EditLocation,
    LocationConfirmed,
    LocationGranted,
    LoggedOut,
    LoginSucceeded,
    RegisterSucceeded,
    Screen,
    SwitchToLogin,
    SwitchToRegister,
    resume_screen,
    transition,
)
from sadakchain.gateway.base import AuthEvent
from sadakchain.schemas import SelectedLocation

MG_ROAD = SelectedLocation(location="MG Road, Mumbai", pincode="400001")


def test_login_register_toggle():
    state = AppState()
    assert transition(state, SwitchToRegister()) == Screen.REGISTER
    state.screen = Screen.REGISTER
    assert transition(state, SwitchToLogin()) == Screen.LOGIN
    assert transition(state, RegisterSucceeded()) == Screen.LOGIN


def test_switch_ignored_outside_auth_screens():
    state = AppState(screen=Screen.REPORT, selected_location=MG_ROAD, location_granted=True)
    assert transition(state, SwitchToRegister()) == Screen.REPORT


def test_login_goes_to_permission_by_default():
    assert transition(AppState(), LoginSucceeded()) == Screen.LOCATION_PERMISSION


def test_login_resumes_report_with_stored_location():
    state = AppState(location_granted=True, selected_location=MG_ROAD)
    assert transition(state, LoginSucceeded()) == Screen.REPORT


def test_location_steps():
    state = AppState(screen=Screen.LOCATION_PERMISSION)
    assert transition(state, LocationGranted()) == Screen.LOCATION_SEARCH
    assert transition(state, LocationConfirmed()) == Screen.LOCATION_SEARCH
    state.selected_location = MG_ROAD
    assert transition(state, LocationConfirmed()) == Screen.REPORT
    assert transition(state, EditLocation()) == Screen.LOCATION_SEARCH


@pytest.mark.parametrize("screen", list(Screen))
def test_logout_always_lands_on_login(screen):
    assert transition(AppState(screen=screen), LoggedOut()) == Screen.LOGIN


def test_signed_out_event():
    state = AppState(screen=Screen.REPORT, selected_location=MG_ROAD, location_granted=True)
    assert transition(state, AuthStateChanged(AuthEvent.SIGNED_OUT, False)) == Screen.LOGIN


def test_token_refresh_keeps_screen():
    state = AppState(screen=Screen.LOCATION_SEARCH)
    assert transition(state, AuthStateChanged(AuthEvent.TOKEN_REFRESHED, True)) == Screen.LOCATION_SEARCH


def test_resume_with_unparseable_location_goes_to_search():
    storage = {"locationGranted": True, "selectedLocation": "{not json", "screen": "report"}
    state = AppState.load(storage, user_id="u-1")
    assert state.selected_location is None
    assert resume_screen(state, True) == Screen.LOCATION_SEARCH


def test_resume_without_user():
    assert resume_screen(AppState(location_granted=True, selected_location=MG_ROAD), False) == Screen.LOGIN


def test_confirm_location_updates_pincode():
    state = AppState(screen=Screen.LOCATION_SEARCH)
    state.confirm_location(MG_ROAD)
    assert state.screen == Screen.REPORT
    assert state.location_pincode == "400001"
    assert state.location_granted


def test_dump_and_load_round_trip_keys():
    storage = {}
    state = AppState(screen=Screen.REPORT, selected_location=MG_ROAD, location_granted=True, location_pincode="400050")
    state.dump(storage)
    assert storage["screen"] == "report"
    assert storage["locationPincode"] == "400050"
    loaded = AppState.load(storage)
    assert loaded.selected_location.location == "MG Road, Mumbai"
    assert loaded.screen == Screen.REPORT


def test_logout_clears_user_keys_and_bumps_epoch():
    storage = {
        "rr_draft_report": {"vote": "good"},
        "questionnaire_answers_u-1": {"answers": {}},
        "locationPincode": "400050",
        "client_id": "abc",
    }
    state = AppState(screen=Screen.REPORT, user_id="u-1", selected_location=MG_ROAD, location_granted=True, epoch=2)
    state.dump(storage)
    state.logout(storage)

    assert state.screen == Screen.LOGIN
    assert state.epoch == 3
    assert storage["epoch"] == 3
    assert storage["client_id"] == "abc"
    for key in ("rr_draft_report", "questionnaire_answers_u-1", "locationPincode", "selectedLocation"):
        assert key not in storage
    assert storage["locationGranted"] is False
    assert state.is_current(3) and not state.is_current(2)
