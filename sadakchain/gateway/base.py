"""
Interfaces of the hosted services the app talks to.

Only the request/response shapes matter here: the auth gateway, the
table-scoped data store, the object storage and the service-role admin API.
`rest.py` speaks to the hosted backend over HTTP, `local.py` keeps the same
contracts on top of SQLAlchemy and a local upload directory.
"""
import enum
import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..schemas import AuthSession, SessionUser

logger = logging.getLogger(__name__)


class AuthEvent(str, enum.Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"


AuthListener = Callable[[AuthEvent, Optional[AuthSession]], None]


class Subscription:
    def __init__(self, listeners: List[AuthListener], callback: AuthListener):
        self._listeners = listeners
        self._callback = callback

    def unsubscribe(self) -> None:
        if self._callback in self._listeners:
            self._listeners.remove(self._callback)


class AuthGateway:
    """Sign-up, sign-in, session lookup and the auth-state-change stream."""

    def __init__(self):
        self._listeners: List[AuthListener] = []
        self.session: Optional[AuthSession] = None

    def on_auth_state_change(self, callback: AuthListener) -> Subscription:
        self._listeners.append(callback)
        return Subscription(self._listeners, callback)

    def _emit(self, event: AuthEvent, session: Optional[AuthSession]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, session)
            except Exception as e:
                logger.error(f"Auth listener failed on {event.value}: {e}")

    async def get_session(self) -> Optional[AuthSession]:
        return self.session

    def set_session(self, session: Optional[AuthSession]) -> None:
        """Restore a session persisted by the client without emitting events."""
        self.session = session

    async def ensure_fresh(self, leeway: int = 60, now: Optional[float] = None) -> Optional[AuthSession]:
        """Refresh the session when its access token expires within `leeway` seconds."""
        session = self.session
        if session is None or session.expires_at is None or not session.refresh_token:
            return session
        if session.expires_at - leeway > (time.time() if now is None else now):
            return session
        logger.info(f"Access token for {session.user.id} expiring, refreshing")
        return await self.refresh_session()

    async def sign_up(self, email: str, password: str, metadata: Optional[Dict[str, Any]] = None) -> SessionUser:
        raise NotImplementedError

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        raise NotImplementedError

    async def refresh_session(self) -> AuthSession:
        raise NotImplementedError

    async def sign_out(self) -> None:
        raise NotImplementedError


class DataStore:
    """Table-scoped access: select, insert, update and upsert-on-conflict."""

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: Optional[Dict[str, Any]] = None,
        single: bool = False,
    ) -> Any:
        raise NotImplementedError

    async def insert(self, table: str, rows: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def update(self, table: str, values: Dict[str, Any], filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def upsert(self, table: str, rows: Iterable[Dict[str, Any]], on_conflict: str) -> List[Dict[str, Any]]:
        raise NotImplementedError


class ObjectStorage:
    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: Optional[str] = None,
        cache_control: str = "3600",
        upsert: bool = False,
    ) -> str:
        raise NotImplementedError

    def get_public_url(self, bucket: str, path: str) -> str:
        raise NotImplementedError


class AdminAuth:
    """Service-role user administration used by the admin shim."""

    async def create_user(self, email: str, password: str, user_metadata: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    async def delete_user(self, user_id: str) -> None:
        raise NotImplementedError


class Backend:
    """Bundle of gateways bound to one client context."""

    def __init__(self, auth: AuthGateway, store: DataStore, storage: ObjectStorage, admin: Optional[AdminAuth] = None):
        self.auth = auth
        self.store = store
        self.storage = storage
        self.admin = admin
