import asyncio
import os
import tempfile

# keep module-level app construction away from the working tree
os.environ.setdefault("SADAK_BACKEND", "local")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("UPLOAD_DIR", os.path.join(tempfile.gettempdir(), "sadakchain-test-uploads"))

import pytest

from sadakchain.gateway.factory import BackendFactory
from sadakchain.services.drafts import DraftStore, QuestionnaireCache


@pytest.fixture
def factory(tmp_path, monkeypatch):
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("PUBLIC_BASE_URL", "http://testserver")
    return BackendFactory.for_url("sqlite://")


@pytest.fixture
def backend(factory):
    return factory.client_backend()


@pytest.fixture
def storage():
    return {}


@pytest.fixture
def drafts(storage):
    return DraftStore(storage)


@pytest.fixture
def cache(storage):
    return QuestionnaireCache(storage)


@pytest.fixture
def make_user(backend):
    def _make(email="driver@example.com", confirmed=True, name="Driver", with_profile=True):
        async def go():
            user = await backend.auth.sign_up(email, "secret123", {"name": name})
            if with_profile:
                await backend.store.insert(
                    "profiles", [{"id": user.id, "email": email, "name": name, "email_confirmed": confirmed}]
                )
            return user.id

        return asyncio.run(go())

    return _make
