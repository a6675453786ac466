"""
Link Web - FastAPI application.

Mounts the profile router and tears down every live coordinator's
change subscription on shutdown.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from link import __version__
from link.config import get_core_settings
from link.web import api

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await api.get_registry().close_all()
    logger.info("Closed all profile coordinators")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Link Profile",
        version=__version__,
        debug=get_core_settings().is_development,
        lifespan=lifespan,
    )
    app.include_router(api.router)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    return app
