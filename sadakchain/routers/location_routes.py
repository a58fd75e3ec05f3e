import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates

from ..auth import get_current_user
from ..deps import TEMPLATES_DIR, client_id, get_backend, get_geocoder, get_registry, load_state, redirect_to
from ..flow import Screen
from ..gateway.base import Backend
from ..schemas import SessionUser
from ..services.location import GeocodingClient, resolve_user_pincode, save_profile_pincode, selected_location

logger = logging.getLogger(__name__)

router = APIRouter()
templates = Jinja2Templates(directory=TEMPLATES_DIR)


def _optional_float(value: Optional[str]) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except ValueError:
        return None


@router.get("/permission", response_class=HTMLResponse)
async def permission_page(request: Request, user: SessionUser = Depends(get_current_user)):
    return templates.TemplateResponse("location_permission.html", {"request": request, "user": user})


@router.post("/permission")
async def permission_submit(
    request: Request,
    lat: Optional[str] = Form(None),
    lon: Optional[str] = Form(None),
    denied: Optional[str] = Form(None),
    user: SessionUser = Depends(get_current_user),
    backend: Backend = Depends(get_backend),
    geocoder: GeocodingClient = Depends(get_geocoder),
):
    latitude, longitude = _optional_float(lat), _optional_float(lon)
    granted = not denied and latitude is not None and longitude is not None
    if granted:
        pincode = await resolve_user_pincode(geocoder, latitude, longitude)
        await save_profile_pincode(backend.store, user.id, pincode)
    else:
        logger.info(f"Location denied or unavailable for {user.id}; using fallback pincode")
        pincode = await resolve_user_pincode(None, None, None)

    state = load_state(request)
    state.grant_location(granted, pincode)
    state.dump(request.session)
    return redirect_to(state.screen)


@router.get("/search", response_class=HTMLResponse)
async def search_page(request: Request, user: SessionUser = Depends(get_current_user)):
    return templates.TemplateResponse("location_search.html", {"request": request, "user": user})


@router.get("/search/results")
async def search_results(
    request: Request,
    q: str = "",
    immediate: int = 0,
    user: SessionUser = Depends(get_current_user),
    geocoder: GeocodingClient = Depends(get_geocoder),
):
    searcher = get_registry(request).searcher(client_id(request), geocoder)
    outcome = await (searcher.search_now(q) if immediate else searcher.schedule(q))
    return JSONResponse(outcome.model_dump())


@router.post("/confirm")
async def confirm_location(
    request: Request,
    location: str = Form(""),
    pincode: str = Form(""),
    user: SessionUser = Depends(get_current_user),
):
    if not location.strip():
        return templates.TemplateResponse(
            "location_search.html", {"request": request, "user": user, "error": "No location selected!"}
        )
    state = load_state(request)
    state.confirm_location(selected_location(location.strip(), pincode.strip()))
    state.dump(request.session)
    return redirect_to(state.screen)


@router.post("/edit")
async def edit_location(request: Request, user: SessionUser = Depends(get_current_user)):
    state = load_state(request)
    state.edit_location()
    state.dump(request.session)
    return redirect_to(Screen.LOCATION_SEARCH)
