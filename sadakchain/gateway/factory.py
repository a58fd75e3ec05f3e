import os
import logging
from typing import Optional

import httpx

from .. import config
from ..database import SessionLocal, init_db, make_session_factory
from ..errors import ConfigError
from ..schemas import AuthSession
from .base import Backend
from .local import make_local_backend
from .rest import make_admin_backend, make_rest_backend

logger = logging.getLogger(__name__)


class BackendFactory:
    """Holds the shared connection resources and hands out per-client backends."""

    def __init__(self, kind: Optional[str] = None, session_factory=None, http_client: Optional[httpx.AsyncClient] = None):
        self.kind = kind or config.backend_name()
        if self.kind not in ("local", "rest"):
            raise ConfigError(f"Unknown SADAK_BACKEND '{self.kind}'")
        self.session_factory = session_factory
        self.http_client = http_client
        self.storage_cfg = config.storage_config()

    @classmethod
    def for_url(cls, database_url: str) -> "BackendFactory":
        factory = make_session_factory(database_url)
        init_db(bind=factory.kw["bind"])
        return cls(kind="local", session_factory=factory)

    def _local(self, session: Optional[AuthSession]) -> Backend:
        backend = make_local_backend(
            self.session_factory or SessionLocal,
            self.storage_cfg["upload_dir"],
            self.storage_cfg["public_base_url"],
        )
        backend.auth.set_session(session)
        return backend

    def _client(self) -> httpx.AsyncClient:
        if self.http_client is None:
            self.http_client = httpx.AsyncClient(timeout=config.supabase_config()["timeout"])
        return self.http_client

    def client_backend(self, session: Optional[AuthSession] = None) -> Backend:
        if self.kind == "local":
            return self._local(session)
        cfg = config.supabase_config()
        if not cfg["url"] or not cfg["anon_key"]:
            raise ConfigError("Missing SUPABASE_URL or SUPABASE_ANON_KEY")
        return make_rest_backend(self._client(), cfg, session)

    def admin_backend(self) -> Backend:
        if self.kind == "local":
            return self._local(None)
        return make_admin_backend(self._client(), config.require_admin_config())

    def init_storage(self) -> None:
        """Create tables and the upload directory for the local backend."""
        if self.session_factory is not None:
            init_db(bind=self.session_factory.kw["bind"])
        else:
            init_db()
        os.makedirs(self.storage_cfg["upload_dir"], exist_ok=True)

    async def aclose(self) -> None:
        if self.http_client is not None:
            await self.http_client.aclose()
            self.http_client = None
