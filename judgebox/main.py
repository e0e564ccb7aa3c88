from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Final

from fastapi import FastAPI

from judgebox.api.routes import get_sandbox, router as api_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    sandbox = get_sandbox()
    sandbox.settings.scratch_root.mkdir(parents=True, exist_ok=True)
    logger.info(
        "Sandbox ready: scratch_root=%s time_limit_ms=%s memory_limit_mb=%s languages=%s",
        sandbox.settings.scratch_root,
        sandbox.settings.time_limit_ms,
        sandbox.settings.memory_limit_mb,
        ",".join(sandbox.languages.names()),
    )
    yield


def create_app() -> FastAPI:
    app = FastAPI(
        title="Judgebox Sandbox API",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=_lifespan,
    )

    @app.get("/healthz")
    def healthz() -> dict[str, object]:
        return {"status": "ok", "languages": get_sandbox().languages.names()}

    app.include_router(api_router, prefix="/v1")
    return app


app: Final[FastAPI] = create_app()


def run() -> None:
    """Run the API using Uvicorn.

    This is for local/dev usage. Production deployments should use a process manager
    and configure workers according to their environment.
    """
    import uvicorn

    host: str = os.environ.get("HOST", "127.0.0.1")
    port_str: str | None = os.environ.get("PORT")
    port: int = int(port_str) if port_str else 8000
    log_level: str = os.environ.get("LOG_LEVEL", "info")
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("judgebox.main:app", host=host, port=port, log_level=log_level)
