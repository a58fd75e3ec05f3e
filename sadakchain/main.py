import logging
import os
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from fastapi.staticfiles import StaticFiles
from starlette.middleware.sessions import SessionMiddleware

from . import config
from .auth import LoginRequired
from .deps import ClientRegistry, load_state, redirect_to
from .flow import resume_screen
from .gateway.factory import BackendFactory
from .routers import auth_routes, location_routes, report_routes
from .services.location import GeocodingClient

# Load .env from project root
load_dotenv()

logging.basicConfig(level=config.log_level(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def create_app(backends: Optional[BackendFactory] = None, geocoder: Optional[GeocodingClient] = None) -> FastAPI:
    app = FastAPI(title="SadakChainAI")

    app.state.backends = backends or BackendFactory()
    app.state.geocoder = geocoder
    app.state.clients = ClientRegistry()

    app.add_middleware(
        SessionMiddleware,
        secret_key=config.token_config()["secret"],
        session_cookie="sadak_session",
        max_age=60 * 60 * 24 * 365,
        same_site="lax",
        https_only=config.session_https_only(),
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if app.state.backends.kind == "local":
        upload_dir = config.storage_config()["upload_dir"]
        os.makedirs(upload_dir, exist_ok=True)
        app.mount("/media", StaticFiles(directory=upload_dir, check_dir=False), name="media")

    app.include_router(auth_routes.router, prefix="/auth", tags=["auth"])
    app.include_router(location_routes.router, prefix="/location", tags=["location"])
    app.include_router(report_routes.router, prefix="/report", tags=["report"])

    @app.exception_handler(LoginRequired)
    async def login_required(request: Request, exc: LoginRequired):
        return RedirectResponse(url="/auth/login", status_code=303)

    @app.on_event("startup")
    async def on_startup():
        if app.state.backends.kind == "local":
            app.state.backends.init_storage()

    @app.on_event("shutdown")
    async def on_shutdown():
        await app.state.backends.aclose()
        if app.state.geocoder is not None:
            await app.state.geocoder.aclose()

    @app.get("/")
    async def index(request: Request):
        state = load_state(request)
        return redirect_to(resume_screen(state, state.user_id is not None))

    return app


app = create_app()
