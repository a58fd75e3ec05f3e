import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from .. import config
from ..auth import get_current_user, store_session
from ..deps import (
    TEMPLATES_DIR,
    client_id,
    get_backend,
    get_drafts,
    get_questionnaire_cache,
    get_registry,
    load_state,
    redirect_to,
)
from ..errors import ConfirmationLookupError, DataStoreError, SubmissionInProgress, ValidationError
from ..flow import AppState, Screen, resume_screen
from ..gateway.base import Backend
from ..schemas import VOTES, SessionUser
from ..services.drafts import DraftStore, QuestionnaireCache
from ..services.questionnaire_service import QUESTIONS, QuestionnaireService
from ..services.report_service import MediaFile, ReportService

logger = logging.getLogger(__name__)

router = APIRouter()
templates = Jinja2Templates(directory=TEMPLATES_DIR)

CONFIRM_EMAIL = "Kindly Confirm E-mail - Necessary for Report Submission"

VOTE_OPTIONS = [
    {"value": "excellent", "label": "Excellent", "desc": "Well-maintained, smooth surface"},
    {"value": "good", "label": "Good", "desc": "Minor issues, mostly driveable"},
    {"value": "fair", "label": "Fair", "desc": "Some potholes and cracks present"},
    {"value": "poor", "label": "Poor", "desc": "Many potholes, difficult to drive"},
    {"value": "very_poor", "label": "Very Poor", "desc": "Severely damaged, unsafe"},
]


def _render(
    request: Request,
    user: SessionUser,
    state: AppState,
    drafts: DraftStore,
    cache: QuestionnaireCache,
    error: Optional[str] = None,
    notices: Optional[List[str]] = None,
    status_code: int = 200,
):
    draft = drafts.load()
    cached = cache.load(draft.report_id if draft else None) or {}
    return templates.TemplateResponse(
        "report.html",
        {
            "request": request,
            "user": user,
            "location": state.selected_location,
            "draft": draft,
            "votes": VOTE_OPTIONS,
            "questions": QUESTIONS,
            "answers": cached.get("answers") or {},
            "comments": cached.get("comments") or "",
            "error": error,
            "notices": notices or [],
        },
        status_code=status_code,
    )


def _stale(request: Request, state: AppState, started_epoch: int) -> Optional[RedirectResponse]:
    """Drop a result that finished after the user logged out."""
    fresh = AppState(epoch=get_registry(request).epoch(client_id(request), state.epoch))
    if fresh.is_current(started_epoch):
        return None
    logger.info("Discarding result that completed after logout")
    store_session(request, None)
    current = fresh.epoch
    fresh.logout(request.session)
    fresh.epoch = current
    fresh.dump(request.session)
    return redirect_to(Screen.LOGIN)


@router.get("", response_class=HTMLResponse)
async def report_page(
    request: Request,
    user: SessionUser = Depends(get_current_user),
    drafts: DraftStore = Depends(get_drafts),
    cache: QuestionnaireCache = Depends(get_questionnaire_cache),
):
    state = load_state(request)
    if state.selected_location is None:
        return redirect_to(resume_screen(state, True))
    notices = []
    if request.query_params.get("submitted") == "1":
        notices.append("Report submitted successfully! Files and data saved.")
    if request.query_params.get("questionnaire") == "1":
        notices.append("Questionnaire Submitted Successfully")
    return _render(request, user, state, drafts, cache, notices=notices)


@router.post("/draft")
async def save_draft(
    request: Request,
    vote: str = Form(""),
    files_names: List[str] = Form([]),
    user: SessionUser = Depends(get_current_user),
    drafts: DraftStore = Depends(get_drafts),
):
    state = load_state(request)
    if vote and vote not in VOTES:
        vote = ""
    location = state.selected_location
    drafts.update(
        vote=vote,
        files_names=[n for n in files_names if n],
        location=location.location if location else None,
        report_pincode=location.pincode if location else None,
        user_pincode=state.location_pincode,
    )
    return RedirectResponse(url="/report", status_code=303)


@router.post("/submit")
async def submit_report(
    request: Request,
    vote: str = Form(""),
    files: List[UploadFile] = File([]),
    user: SessionUser = Depends(get_current_user),
    backend: Backend = Depends(get_backend),
    drafts: DraftStore = Depends(get_drafts),
    cache: QuestionnaireCache = Depends(get_questionnaire_cache),
):
    state = load_state(request)
    if state.selected_location is None:
        return redirect_to(resume_screen(state, True))
    started_epoch = state.epoch
    draft = drafts.load()

    media = []
    for upload in files:
        if not upload.filename:
            continue
        media.append(MediaFile(name=upload.filename, data=await upload.read(), content_type=upload.content_type))

    service = ReportService(backend, drafts, guard=get_registry(request).guard, bucket=config.storage_config()["bucket"])
    try:
        result = await service.submit_report(
            user.id,
            state.selected_location.location,
            state.selected_location.pincode,
            vote,
            media,
            questionnaire_completed=bool(draft and draft.questionnaire_completed),
            report_id=draft.report_id if draft else None,
        )
    except (ValidationError, SubmissionInProgress) as e:
        return _render(request, user, state, drafts, cache, error=e.message, status_code=400)
    except ConfirmationLookupError as e:
        return _render(request, user, state, drafts, cache, error=e.message, status_code=503)
    except DataStoreError as e:
        logger.error(f"Submit report failed for {user.id}: {e.message}")
        return _render(request, user, state, drafts, cache, error=f"Failed to submit report: {e.message}", status_code=502)

    stale = _stale(request, state, started_epoch)
    if stale is not None:
        return stale
    if result.pending:
        return _render(request, user, state, drafts, cache, notices=result.warnings + [CONFIRM_EMAIL])
    if result.warnings:
        return _render(request, user, state, drafts, cache, notices=result.warnings + ["Report submitted successfully! Files and data saved."])
    return RedirectResponse(url="/report?submitted=1", status_code=303)


def _form_answers(form) -> Dict[str, Any]:
    answers: Dict[str, Any] = {}
    for question in QUESTIONS:
        if question.multi:
            values = [v for v in form.getlist(question.id) if v]
            if values:
                answers[question.id] = values
        else:
            value = form.get(question.id)
            if value:
                answers[question.id] = value
    return answers


@router.post("/questionnaire")
async def submit_questionnaire(
    request: Request,
    user: SessionUser = Depends(get_current_user),
    backend: Backend = Depends(get_backend),
    drafts: DraftStore = Depends(get_drafts),
    cache: QuestionnaireCache = Depends(get_questionnaire_cache),
):
    state = load_state(request)
    started_epoch = state.epoch
    form = await request.form()
    draft = drafts.load()
    location = state.selected_location

    service = QuestionnaireService(backend, drafts, cache, guard=get_registry(request).guard)
    try:
        result = await service.submit(
            draft.report_id if draft else None,
            user.id,
            location.location if location else None,
            location.pincode if location else None,
            _form_answers(form),
            form.get("comments") or None,
        )
    except (ValidationError, SubmissionInProgress) as e:
        return _render(request, user, state, drafts, cache, error=e.message, status_code=400)
    except ConfirmationLookupError as e:
        return _render(request, user, state, drafts, cache, error=e.message, status_code=503)
    except DataStoreError as e:
        return _render(request, user, state, drafts, cache, error=e.message, status_code=502)

    stale = _stale(request, state, started_epoch)
    if stale is not None:
        return stale
    if not result.confirmed:
        return _render(request, user, state, drafts, cache, notices=result.warnings + [CONFIRM_EMAIL])
    return RedirectResponse(url="/report?questionnaire=1", status_code=303)
