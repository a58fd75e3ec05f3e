"""
Hosted backend over HTTP: auth (/auth/v1), tables (/rest/v1) and
object storage (/storage/v1).
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import quote

import httpx

from ..errors import AuthError, DataStoreError, UploadError
from ..schemas import AuthSession, SessionUser
from .base import AdminAuth, AuthEvent, AuthGateway, Backend, DataStore, ObjectStorage

logger = logging.getLogger(__name__)


def _error_message(resp: httpx.Response) -> Tuple[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}", None
    if isinstance(body, dict):
        for key in ("message", "msg", "error_description", "error"):
            if body.get(key):
                return str(body[key]), body
    return f"HTTP {resp.status_code}", body


def _filter_params(filters: Optional[Dict[str, Any]]) -> Dict[str, str]:
    params = {}
    for key, value in (filters or {}).items():
        if value is None:
            params[key] = "is.null"
        elif isinstance(value, bool):
            params[key] = f"eq.{str(value).lower()}"
        else:
            params[key] = f"eq.{value}"
    return params


class RestClient:
    def __init__(self, client: httpx.AsyncClient, base_url: str, api_key: str, access_token: Optional[str] = None):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token

    def headers(self, **extra: str) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
        }
        headers.update(extra)
        return headers

    async def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        extra = kwargs.pop("headers", {})
        return await self.client.request(method, f"{self.base_url}{path}", headers=self.headers(**extra), **kwargs)


def _session_from(body: Dict[str, Any]) -> AuthSession:
    return AuthSession(
        access_token=body["access_token"],
        refresh_token=body.get("refresh_token"),
        expires_at=body.get("expires_at"),
        user=SessionUser.model_validate(body["user"]),
    )


class RestAuthGateway(AuthGateway):
    def __init__(self, rest: RestClient):
        super().__init__()
        self.rest = rest

    def set_session(self, session: Optional[AuthSession]) -> None:
        super().set_session(session)
        self.rest.access_token = session.access_token if session else None

    async def _token(self, grant_type: str, payload: Dict[str, Any]) -> AuthSession:
        try:
            resp = await self.rest.request("POST", f"/auth/v1/token?grant_type={grant_type}", json=payload)
        except httpx.HTTPError as e:
            raise AuthError(f"Auth service unreachable: {e}") from e
        if resp.is_error:
            message, body = _error_message(resp)
            raise AuthError(message, detail=body)
        session = _session_from(resp.json())
        self.set_session(session)
        return session

    async def sign_up(self, email: str, password: str, metadata: Optional[Dict[str, Any]] = None) -> SessionUser:
        try:
            resp = await self.rest.request("POST", "/auth/v1/signup", json={"email": email, "password": password, "data": metadata or {}})
        except httpx.HTTPError as e:
            raise AuthError(f"Auth service unreachable: {e}") from e
        if resp.is_error:
            message, body = _error_message(resp)
            raise AuthError(message, detail=body)
        body = resp.json()
        # with email confirmation on, the user object comes back bare
        return SessionUser.model_validate(body.get("user") or body)

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        session = await self._token("password", {"email": email, "password": password})
        logger.info(f"Signed in {email}")
        self._emit(AuthEvent.SIGNED_IN, session)
        return session

    async def refresh_session(self) -> AuthSession:
        if not self.session or not self.session.refresh_token:
            raise AuthError("No session to refresh")
        session = await self._token("refresh_token", {"refresh_token": self.session.refresh_token})
        self._emit(AuthEvent.TOKEN_REFRESHED, session)
        return session

    async def update_user(self, metadata: Dict[str, Any]) -> SessionUser:
        if not self.session:
            raise AuthError("Not signed in")
        resp = await self.rest.request("PUT", "/auth/v1/user", json={"data": metadata})
        if resp.is_error:
            message, body = _error_message(resp)
            raise AuthError(message, detail=body)
        user = SessionUser.model_validate(resp.json())
        self.session = self.session.model_copy(update={"user": user})
        self._emit(AuthEvent.USER_UPDATED, self.session)
        return user

    async def sign_out(self) -> None:
        if self.session:
            try:
                resp = await self.rest.request("POST", "/auth/v1/logout")
                if resp.is_error:
                    logger.warning(f"Remote sign-out failed: {_error_message(resp)[0]}")
            except httpx.HTTPError as e:
                logger.warning(f"Remote sign-out failed: {e}")
        self.set_session(None)
        self._emit(AuthEvent.SIGNED_OUT, None)


class RestDataStore(DataStore):
    def __init__(self, rest: RestClient):
        self.rest = rest

    async def _send(self, method: str, table: str, **kwargs) -> Any:
        try:
            resp = await self.rest.request(method, f"/rest/v1/{table}", **kwargs)
        except httpx.HTTPError as e:
            raise DataStoreError(f"Data service unreachable: {e}") from e
        if resp.is_error:
            message, body = _error_message(resp)
            raise DataStoreError(message, detail=body, status=resp.status_code)
        if not resp.content:
            return []
        return resp.json()

    async def select(self, table: str, columns: str = "*", filters: Optional[Dict[str, Any]] = None, single: bool = False) -> Any:
        params = {"select": columns, **_filter_params(filters)}
        rows = await self._send("GET", table, params=params)
        if single:
            if len(rows) > 1:
                raise DataStoreError("JSON object requested, multiple rows returned", status=406)
            return rows[0] if rows else None
        return rows

    async def insert(self, table: str, rows: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return await self._send("POST", table, json=list(rows), headers={"Prefer": "return=representation"})

    async def update(self, table: str, values: Dict[str, Any], filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        return await self._send(
            "PATCH",
            table,
            params=_filter_params(filters),
            json=values,
            headers={"Prefer": "return=representation"},
        )

    async def upsert(self, table: str, rows: Iterable[Dict[str, Any]], on_conflict: str) -> List[Dict[str, Any]]:
        return await self._send(
            "POST",
            table,
            params={"on_conflict": on_conflict},
            json=list(rows),
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        )


class RestStorage(ObjectStorage):
    def __init__(self, rest: RestClient):
        self.rest = rest

    async def upload(self, bucket: str, path: str, data: bytes, content_type: Optional[str] = None, cache_control: str = "3600", upsert: bool = False) -> str:
        headers = {
            "Content-Type": content_type or "application/octet-stream",
            "cache-control": f"max-age={cache_control}",
            "x-upsert": "true" if upsert else "false",
        }
        try:
            resp = await self.rest.request("POST", f"/storage/v1/object/{bucket}/{quote(path)}", content=data, headers=headers)
        except httpx.HTTPError as e:
            raise UploadError(f"Storage unreachable: {e}") from e
        if resp.is_error:
            message, body = _error_message(resp)
            raise UploadError(message, detail=body)
        return path

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.rest.base_url}/storage/v1/object/public/{bucket}/{quote(path)}"


class RestAdminAuth(AdminAuth):
    def __init__(self, rest: RestClient):
        self.rest = rest

    async def create_user(self, email: str, password: str, user_metadata: Dict[str, Any]) -> Dict[str, Any]:
        resp = await self.rest.request(
            "POST",
            "/auth/v1/admin/users",
            json={"email": email, "password": password, "user_metadata": user_metadata},
        )
        body = resp.json() if resp.content else {}
        if resp.is_error:
            raise AuthError(_error_message(resp)[0], detail=body)
        return body

    async def delete_user(self, user_id: str) -> None:
        resp = await self.rest.request("DELETE", f"/auth/v1/admin/users/{user_id}")
        if resp.is_error:
            message, body = _error_message(resp)
            raise AuthError(message, detail=body)


def make_rest_backend(client: httpx.AsyncClient, cfg: Dict[str, Any], session: Optional[AuthSession] = None) -> Backend:
    """Client backend acting with the anon key and, when given, the user's session."""
    rest = RestClient(client, cfg["url"], cfg["anon_key"])
    auth = RestAuthGateway(rest)
    auth.set_session(session)
    return Backend(auth=auth, store=RestDataStore(rest), storage=RestStorage(rest))


def make_admin_backend(client: httpx.AsyncClient, cfg: Dict[str, Any]) -> Backend:
    """Service-role backend for the admin shim."""
    rest = RestClient(client, cfg["url"], cfg["service_role_key"])
    return Backend(
        auth=RestAuthGateway(rest),
        store=RestDataStore(rest),
        storage=RestStorage(rest),
        admin=RestAdminAuth(rest),
    )
