from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from lawcms.db.init_db import init_db
from lawcms.logging_config import configure_app_logging
from lawcms.routers import (
    audit,
    auth,
    cases,
    documents,
    exports,
    foil,
    health,
    messages,
    mfa,
    security_config,
    tasks,
    templates,
    users,
)
from lawcms.security.config import load_security_config
from lawcms.settings import get_settings

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        settings = get_settings()
        configure_app_logging(settings.log_level)
        logger.info("App startup beginning")

        app.state.security_config = load_security_config(settings.resolved_security_config_path())
        logger.info("Loaded security config: %s", settings.resolved_security_config_path())
        init_db()
        logger.info("Database initialized (tables ensured + seed if enabled)")

        yield

    app = FastAPI(title="lawcms", lifespan=lifespan)

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(mfa.router)
    app.include_router(users.router)
    app.include_router(security_config.router)
    app.include_router(cases.router)
    app.include_router(documents.router)
    app.include_router(tasks.router)
    app.include_router(templates.router)
    app.include_router(messages.router)
    app.include_router(foil.router)
    app.include_router(audit.router)
    app.include_router(exports.router)

    return app


app = create_app()
