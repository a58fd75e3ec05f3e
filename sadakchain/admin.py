"""
Admin shim: a separate process that performs service-role operations
(user admin-creation, report insertion) against the hosted backend.

Run with `python -m sadakchain.admin` (ADMIN_PORT, default 8787).
"""
import logging
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import config
from .gateway.factory import BackendFactory
from .routers import admin_routes

load_dotenv(".env.local.admin")
load_dotenv()

logging.basicConfig(level=config.log_level(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def create_admin_app(backends: Optional[BackendFactory] = None) -> FastAPI:
    backends = backends or BackendFactory()
    if backends.kind == "rest":
        # fail fast, the shim is useless without the service-role key
        config.require_admin_config()

    app = FastAPI(title="SadakChainAI admin")
    app.state.backends = backends

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(admin_routes.router, prefix="/api", tags=["admin"])

    @app.on_event("startup")
    async def on_startup():
        if app.state.backends.kind == "local":
            app.state.backends.init_storage()
        logger.info(f"Admin shim ready ({app.state.backends.kind} backend)")

    @app.on_event("shutdown")
    async def on_shutdown():
        await app.state.backends.aclose()

    return app


app = create_admin_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.admin_port())
