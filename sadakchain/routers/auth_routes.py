import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from ..auth import store_session
from ..deps import TEMPLATES_DIR, client_id, get_backend, get_registry, load_state, redirect_to
from ..errors import AuthError, DataStoreError
from ..flow import (
    AppState,
    AuthStateChanged,
    LoginSucceeded,
    RegisterSucceeded,
    Screen,
    SwitchToLogin,
    SwitchToRegister,
    resume_screen,
    transition,
)
from ..gateway.base import AuthEvent, Backend

logger = logging.getLogger(__name__)

router = APIRouter()
templates = Jinja2Templates(directory=TEMPLATES_DIR)

LOGIN_FAILED = "Login Failed: Invalid email or password"


def _follow_auth_events(backend: Backend, state: AppState):
    def on_change(event: AuthEvent, session) -> None:
        state.user_id = session.user.id if session else None
        state.email = session.user.email if session else None
        state.screen = transition(state, AuthStateChanged(event=event, has_user=session is not None))

    return backend.auth.on_auth_state_change(on_change)


@router.get("/login", response_class=HTMLResponse)
async def login_page(request: Request):
    state = load_state(request)
    if state.user_id:
        return redirect_to(resume_screen(state, True))
    state.screen = transition(AppState(screen=resume_screen(state, False)), SwitchToLogin())
    state.dump(request.session)
    return templates.TemplateResponse(
        "login.html",
        {
            "request": request,
            "registered": request.query_params.get("registered") == "1",
            "logged_out": request.query_params.get("logged_out") == "1",
        },
    )


@router.post("/login")
async def login(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    backend: Backend = Depends(get_backend),
):
    email = email.strip()
    if not email or not password:
        return templates.TemplateResponse("login.html", {"request": request, "email": email, "error": LOGIN_FAILED})

    state = load_state(request)
    subscription = _follow_auth_events(backend, state)
    try:
        session = await backend.auth.sign_in_with_password(email, password)
    except AuthError as e:
        logger.info(f"Sign-in rejected for {email}: {e.message}")
        message = "Login Failed: Email not confirmed" if "not confirmed" in e.message.lower() else LOGIN_FAILED
        return templates.TemplateResponse("login.html", {"request": request, "email": email, "error": message})
    finally:
        subscription.unsubscribe()

    store_session(request, session)
    state.screen = transition(state, LoginSucceeded())
    state.dump(request.session)
    return redirect_to(state.screen)


@router.get("/register", response_class=HTMLResponse)
async def register_page(request: Request):
    state = load_state(request)
    if state.user_id:
        return redirect_to(resume_screen(state, True))
    state.screen = transition(AppState(screen=resume_screen(state, False)), SwitchToRegister())
    state.dump(request.session)
    return templates.TemplateResponse("register.html", {"request": request})


@router.post("/register")
async def register(
    request: Request,
    name: str = Form(""),
    email: str = Form(""),
    password: str = Form(""),
    confirm_password: str = Form(""),
    backend: Backend = Depends(get_backend),
):
    context = {"request": request, "name": name, "email": email}
    if not email or not password or not name:
        return templates.TemplateResponse("register.html", {**context, "error": "Please fill in all fields"})
    if len(password) < 6:
        return templates.TemplateResponse("register.html", {**context, "error": "Password must be at least 6 characters"})
    if password != confirm_password:
        return templates.TemplateResponse("register.html", {**context, "error": "Passwords do not match"})

    try:
        user = await backend.auth.sign_up(email, password, {"name": name})
    except AuthError as e:
        logger.error(f"Sign-up failed for {email}: {e.message}")
        return templates.TemplateResponse("register.html", {**context, "error": e.message})

    try:
        await backend.store.insert(
            "profiles",
            [{"id": user.id, "name": name, "email": email, "created_at": datetime.utcnow().isoformat()}],
        )
    except DataStoreError as e:
        # a database trigger may already have created it
        logger.warning(f"Profile creation error for {user.id}: {e.message}")

    state = load_state(request)
    state.screen = transition(state, RegisterSucceeded())
    subscription = _follow_auth_events(backend, state)
    try:
        session = await backend.auth.sign_in_with_password(email, password)
    except AuthError as e:
        logger.warning(f"Auto-login after registration failed for {email}: {e.message}")
        state.dump(request.session)
        return redirect_to(Screen.LOGIN, "registered=1")
    finally:
        subscription.unsubscribe()

    store_session(request, session)
    state.dump(request.session)
    return redirect_to(state.screen)


@router.post("/logout")
async def logout(request: Request, backend: Backend = Depends(get_backend)):
    state = load_state(request)
    subscription = _follow_auth_events(backend, state)
    try:
        await backend.auth.sign_out()
    except AuthError as e:
        logger.error(f"Logout error: {e.message}")
    finally:
        subscription.unsubscribe()

    cid = client_id(request)
    registry = get_registry(request)
    store_session(request, None)
    state.logout(request.session)
    registry.set_epoch(cid, state.epoch)
    registry.forget(cid)
    return redirect_to(Screen.LOGIN, "logged_out=1")
