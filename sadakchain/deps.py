import logging
import uuid
from collections import OrderedDict
from pathlib import Path
from typing import Optional

from fastapi import Request
from fastapi.responses import RedirectResponse

from . import config
from .auth import LoginRequired, store_session, stored_session
from .errors import AuthError
from .flow import AppState, Screen
from .gateway.base import Backend
from .services.drafts import DraftStore, QuestionnaireCache
from .services.guard import BusyGuard
from .services.location import GeocodingClient, LocationSearcher

logger = logging.getLogger(__name__)

TEMPLATES_DIR = str(Path(__file__).resolve().parent / "templates")
CLIENT_KEY = "client_id"

SCREEN_URLS = {
    Screen.LOGIN: "/auth/login",
    Screen.REGISTER: "/auth/register",
    Screen.LOCATION_PERMISSION: "/location/permission",
    Screen.LOCATION_SEARCH: "/location/search",
    Screen.REPORT: "/report",
}


class ClientRegistry:
    """In-process per-browser bookkeeping: logout epochs, busy flags, searchers.

    Epochs and searchers are kept for the `max_clients` most recently seen
    clients; the least recently used entry is evicted (its search cancelled).
    """

    def __init__(self, max_clients: Optional[int] = None):
        self.guard = BusyGuard()
        self.max_clients = max_clients or config.max_tracked_clients()
        self._epochs: "OrderedDict[str, int]" = OrderedDict()
        self._searchers: "OrderedDict[str, LocationSearcher]" = OrderedDict()

    def _trim(self, entries: OrderedDict) -> None:
        while len(entries) > self.max_clients:
            cid, evicted = entries.popitem(last=False)
            if isinstance(evicted, LocationSearcher):
                evicted.cancel()
                logger.debug(f"Evicted idle searcher for client {cid}")

    def epoch(self, client_id: str, default: int = 0) -> int:
        if client_id in self._epochs:
            self._epochs.move_to_end(client_id)
            return self._epochs[client_id]
        self.set_epoch(client_id, default)
        return default

    def set_epoch(self, client_id: str, epoch: int) -> None:
        self._epochs[client_id] = epoch
        self._epochs.move_to_end(client_id)
        self._trim(self._epochs)

    def searcher(self, client_id: str, geocoder: GeocodingClient) -> LocationSearcher:
        searcher = self._searchers.get(client_id)
        if searcher is None:
            searcher = self._searchers[client_id] = LocationSearcher(geocoder)
            self._trim(self._searchers)
        else:
            self._searchers.move_to_end(client_id)
        return searcher

    def forget(self, client_id: str) -> None:
        searcher = self._searchers.pop(client_id, None)
        if searcher is not None:
            searcher.cancel()


def client_id(request: Request) -> str:
    cid = request.session.get(CLIENT_KEY)
    if not cid:
        cid = uuid.uuid4().hex
        request.session[CLIENT_KEY] = cid
    return cid


async def get_backend(request: Request) -> Backend:
    session = stored_session(request)
    backend = request.app.state.backends.client_backend(session)
    try:
        fresh = await backend.auth.ensure_fresh(config.session_refresh_leeway())
    except AuthError as e:
        logger.warning(f"Session refresh failed, signing out: {e.message}")
        store_session(request, None)
        raise LoginRequired()
    if fresh is not session:
        store_session(request, fresh)
    return backend


def get_registry(request: Request) -> ClientRegistry:
    return request.app.state.clients


def get_geocoder(request: Request) -> GeocodingClient:
    if getattr(request.app.state, "geocoder", None) is None:
        request.app.state.geocoder = GeocodingClient()
    return request.app.state.geocoder


def load_state(request: Request) -> AppState:
    session = stored_session(request)
    user = session.user if session else None
    state = AppState.load(request.session, user_id=user.id if user else None, email=user.email if user else None)
    state.epoch = get_registry(request).epoch(client_id(request), state.epoch)
    return state


def get_drafts(request: Request) -> DraftStore:
    return DraftStore(request.session)


def get_questionnaire_cache(request: Request) -> QuestionnaireCache:
    return QuestionnaireCache(request.session)


def redirect_to(screen: Screen, query: Optional[str] = None) -> RedirectResponse:
    url = SCREEN_URLS[screen]
    if query:
        url = f"{url}?{query}"
    return RedirectResponse(url=url, status_code=303)
