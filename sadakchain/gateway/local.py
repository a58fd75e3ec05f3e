"""
SQLAlchemy and filesystem stand-ins for the hosted services.

Used for local development and tests; they keep the contracts of the hosted
backend (upsert on a conflict column, public media URLs, auth events).
"""
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import DateTime
from sqlalchemy.exc import SQLAlchemyError

from ..auth import create_access_token, decode_access_token, get_password_hash, verify_password
from ..config import token_config
from ..errors import AuthError, DataStoreError, UploadError
from ..models import TABLES, AuthUser
from ..schemas import AuthSession, SessionUser
from .base import AdminAuth, AuthEvent, AuthGateway, Backend, DataStore, ObjectStorage

logger = logging.getLogger(__name__)


def _as_user(row: AuthUser) -> SessionUser:
    return SessionUser(
        id=row.id,
        email=row.email,
        user_metadata=row.user_metadata or {},
        email_confirmed_at=row.email_confirmed_at,
    )


def _parse_datetime(value: Any) -> Any:
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    return value


class LocalAuthGateway(AuthGateway):
    def __init__(self, session_factory, require_confirmed_email: bool = False):
        super().__init__()
        self._session_factory = session_factory
        self.require_confirmed_email = require_confirmed_email

    def _issue(self, user: SessionUser) -> AuthSession:
        minutes = token_config()["minutes"]
        token = create_access_token(subject=user.id, expires_delta=timedelta(minutes=minutes), claims={"email": user.email})
        refresh = create_access_token(subject=user.id, expires_delta=timedelta(days=30), claims={"purpose": "refresh"})
        expires_at = int((datetime.utcnow() + timedelta(minutes=minutes)).timestamp())
        return AuthSession(access_token=token, refresh_token=refresh, expires_at=expires_at, user=user)

    async def sign_up(self, email: str, password: str, metadata: Optional[Dict[str, Any]] = None) -> SessionUser:
        with self._session_factory() as db:
            if db.query(AuthUser).filter(AuthUser.email == email).first():
                raise AuthError("User already registered")
            row = AuthUser(email=email, hashed_password=get_password_hash(password), user_metadata=metadata or {})
            db.add(row)
            db.commit()
            db.refresh(row)
            return _as_user(row)

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        with self._session_factory() as db:
            row = db.query(AuthUser).filter(AuthUser.email == email).first()
            if not row or not verify_password(password, row.hashed_password):
                raise AuthError("Invalid login credentials")
            if self.require_confirmed_email and not row.email_confirmed_at:
                raise AuthError("Email not confirmed")
            user = _as_user(row)
        self.session = self._issue(user)
        logger.info(f"Signed in {email}")
        self._emit(AuthEvent.SIGNED_IN, self.session)
        return self.session

    async def refresh_session(self) -> AuthSession:
        if not self.session or not self.session.refresh_token:
            raise AuthError("No session to refresh")
        claims = decode_access_token(self.session.refresh_token)
        if not claims or claims.get("purpose") != "refresh" or claims.get("sub") != self.session.user.id:
            raise AuthError("Invalid Refresh Token")
        self.session = self._issue(self.session.user)
        self._emit(AuthEvent.TOKEN_REFRESHED, self.session)
        return self.session

    async def update_user(self, metadata: Dict[str, Any]) -> SessionUser:
        if not self.session:
            raise AuthError("Not signed in")
        with self._session_factory() as db:
            row = db.get(AuthUser, self.session.user.id)
            if not row:
                raise AuthError("User not found")
            row.user_metadata = {**(row.user_metadata or {}), **metadata}
            db.commit()
            db.refresh(row)
            user = _as_user(row)
        self.session = self.session.model_copy(update={"user": user})
        self._emit(AuthEvent.USER_UPDATED, self.session)
        return user

    async def sign_out(self) -> None:
        self.session = None
        self._emit(AuthEvent.SIGNED_OUT, None)


class LocalDataStore(DataStore):
    def __init__(self, session_factory):
        self._session_factory = session_factory

    def _model(self, table: str):
        model = TABLES.get(table)
        if model is None:
            raise DataStoreError(f'relation "{table}" does not exist', status=404)
        return model

    def _values(self, model, row: Dict[str, Any]) -> Dict[str, Any]:
        columns = model.__table__.columns
        values = {}
        for key, value in row.items():
            if key not in columns:
                raise DataStoreError(f"Could not find the '{key}' column of '{model.__tablename__}'", status=400)
            if isinstance(columns[key].type, DateTime):
                value = _parse_datetime(value)
            values[key] = value
        return values

    @staticmethod
    def _to_dict(obj, columns: str = "*") -> Dict[str, Any]:
        names = [c.name for c in obj.__table__.columns]
        if columns != "*":
            wanted = [c.strip() for c in columns.split(",")]
            names = [n for n in names if n in wanted]
        out = {}
        for name in names:
            value = getattr(obj, name)
            out[name] = value.isoformat() if isinstance(value, datetime) else value
        return out

    async def select(self, table: str, columns: str = "*", filters: Optional[Dict[str, Any]] = None, single: bool = False) -> Any:
        model = self._model(table)
        try:
            with self._session_factory() as db:
                rows = db.query(model).filter_by(**(filters or {})).all()
                result = [self._to_dict(r, columns) for r in rows]
        except SQLAlchemyError as e:
            raise DataStoreError(str(e)) from e
        if single:
            if len(result) > 1:
                raise DataStoreError("JSON object requested, multiple rows returned", status=406)
            return result[0] if result else None
        return result

    async def insert(self, table: str, rows: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        model = self._model(table)
        try:
            with self._session_factory() as db:
                objs = [model(**self._values(model, row)) for row in rows]
                db.add_all(objs)
                db.commit()
                for obj in objs:
                    db.refresh(obj)
                return [self._to_dict(o) for o in objs]
        except SQLAlchemyError as e:
            raise DataStoreError(str(getattr(e, "orig", e))) from e

    async def update(self, table: str, values: Dict[str, Any], filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        model = self._model(table)
        values = self._values(model, values)
        try:
            with self._session_factory() as db:
                objs = db.query(model).filter_by(**filters).all()
                for obj in objs:
                    for key, value in values.items():
                        setattr(obj, key, value)
                db.commit()
                return [self._to_dict(o) for o in objs]
        except SQLAlchemyError as e:
            raise DataStoreError(str(getattr(e, "orig", e))) from e

    async def upsert(self, table: str, rows: Iterable[Dict[str, Any]], on_conflict: str) -> List[Dict[str, Any]]:
        model = self._model(table)
        try:
            with self._session_factory() as db:
                objs = []
                for row in rows:
                    values = self._values(model, row)
                    if on_conflict not in values:
                        raise DataStoreError(f"Missing conflict column '{on_conflict}'", status=400)
                    obj = db.query(model).filter_by(**{on_conflict: values[on_conflict]}).first()
                    if obj is None:
                        obj = model(**values)
                        db.add(obj)
                    else:
                        for key, value in values.items():
                            setattr(obj, key, value)
                    objs.append(obj)
                db.commit()
                for obj in objs:
                    db.refresh(obj)
                return [self._to_dict(o) for o in objs]
        except SQLAlchemyError as e:
            raise DataStoreError(str(getattr(e, "orig", e))) from e


class LocalStorage(ObjectStorage):
    def __init__(self, upload_dir: str, public_base_url: str):
        self.root = Path(upload_dir)
        self.public_base_url = public_base_url.rstrip("/")

    async def upload(self, bucket: str, path: str, data: bytes, content_type: Optional[str] = None, cache_control: str = "3600", upsert: bool = False) -> str:
        target = (self.root / bucket / path).resolve()
        if self.root.resolve() not in target.parents:
            raise UploadError(f"Invalid object path: {path}")
        if target.exists() and not upsert:
            raise UploadError("The resource already exists")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("wb") as f:
                f.write(data)
        except OSError as e:
            raise UploadError(str(e)) from e
        return path

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url}/media/{bucket}/{path}"


class LocalAdminAuth(AdminAuth):
    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def create_user(self, email: str, password: str, user_metadata: Dict[str, Any]) -> Dict[str, Any]:
        with self._session_factory() as db:
            if db.query(AuthUser).filter(AuthUser.email == email).first():
                raise AuthError("User already registered", detail={"msg": "A user with this email address has already been registered"})
            row = AuthUser(email=email, hashed_password=get_password_hash(password), user_metadata=user_metadata or {})
            db.add(row)
            db.commit()
            db.refresh(row)
            return {
                "id": row.id,
                "email": row.email,
                "user_metadata": row.user_metadata,
                "created_at": row.created_at.isoformat(),
            }

    async def delete_user(self, user_id: str) -> None:
        with self._session_factory() as db:
            row = db.get(AuthUser, user_id)
            if not row:
                raise AuthError("User not found", detail={"msg": "User not found"})
            db.delete(row)
            db.commit()


def make_local_backend(session_factory, upload_dir: str, public_base_url: str, require_confirmed_email: bool = False) -> Backend:
    return Backend(
        auth=LocalAuthGateway(session_factory, require_confirmed_email=require_confirmed_email),
        store=LocalDataStore(session_factory),
        storage=LocalStorage(upload_dir, public_base_url),
        admin=LocalAdminAuth(session_factory),
    )
