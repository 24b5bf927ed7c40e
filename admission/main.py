from __future__ import annotations

import logging
import sys
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pythonjsonlogger import jsonlogger

from . import __version__
from .api import routes_auth, routes_security
from .auth.core import TokenIssuer
from .auth.principals import InMemoryPrincipalDirectory, PrincipalDirectory
from .config import Settings, get_settings, load_security_config
from .errors import StoreUnavailable
from .facade import AdmissionFacade
from .policies import load_endpoint_policies
from .store import KeyedStore, create_store

logger = logging.getLogger("admission.main")

# ---------------------------------------------------------------------------
# Structured logging
# ---------------------------------------------------------------------------

_HANDLER_NAME = "admission-stdout"


def _configure_logging(settings: Settings) -> None:
    """Configure structured JSON logging when log_format=json (default)."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    if any(h.get_name() == _HANDLER_NAME for h in root.handlers):
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    if settings.log_format == "json":
        handler.setFormatter(
            jsonlogger.JsonFormatter(
                "%(asctime)s %(name)s %(levelname)s %(message)s",
                rename_fields={"asctime": "timestamp", "levelname": "level"},
            )
        )
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(
    settings: Optional[Settings] = None,
    store: Optional[KeyedStore] = None,
    principals: Optional[PrincipalDirectory] = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    settings = settings or get_settings()
    _configure_logging(settings)

    config = load_security_config(settings)
    if store is None:
        store = create_store(settings.store_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await store.close()

    app = FastAPI(
        title="Admission Governor",
        version=__version__,
        description=(
            "Request admission control: IP allow/deny evaluation, fixed-window "
            "rate limiting, progressive account lockout with cross-account IP "
            "escalation, and a security audit trail."
        ),
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.facade = AdmissionFacade(config, store, clock)
    app.state.endpoint_policies = load_endpoint_policies(config, settings.endpoint_policies_path or None)
    app.state.principals = principals if principals is not None else InMemoryPrincipalDirectory()
    app.state.token_issuer = TokenIssuer(settings.jwt_secret, config.session_timeout_minutes)

    @app.exception_handler(StoreUnavailable)
    async def _store_unavailable(request: Request, exc: StoreUnavailable) -> JSONResponse:
        logger.error("Store unavailable while serving %s: %s", request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": "Security state unavailable."})

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allow_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(routes_auth.router)
    app.include_router(routes_security.router)

    @app.get("/health", tags=["meta"])
    def health() -> dict:
        return {"status": "healthy", "service": "admission-governor", "version": __version__}

    logger.info(
        "Admission governor ready (store=%s, max_login_attempts=%d, lockout=%dm)",
        type(store).__name__,
        config.max_login_attempts,
        config.lockout_minutes,
    )
    return app


app = create_app()
