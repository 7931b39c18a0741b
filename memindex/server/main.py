"""memindex-server: HTTP API for the memindex memory engine."""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from memindex.errors import InvalidRequestError
from memindex.server.auth import require_auth
from memindex.server.config import settings

logger = logging.getLogger("memindex_server")


def _init_memindex():
    """Initialize memindex with configured providers."""
    import memindex
    from memindex.server.providers import create_embed

    config = settings.to_config()
    embed = create_embed(
        settings.embed_provider,
        api_key=settings.embed_api_key,
        model=settings.embed_model,
        base_url=settings.embed_base_url,
        dims=settings.embed_dims,
    )

    memindex.init(config=config, embed=embed)
    logger.info(
        "memindex initialized: db=%s, embed_dims=%d, embed=%s/%s",
        config.db_path or "(in-memory)", config.embed_dims,
        settings.embed_provider, settings.embed_model,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    _init_memindex()
    logger.info("memindex-server ready on %s:%d", settings.host, settings.port)
    yield
    logger.info("memindex-server shutting down")


app = FastAPI(
    title="memindex-server",
    description="HTTP API for the memindex memory ranking and retrieval engine",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if not settings.api_key else None,
    openapi_url="/openapi.json" if not settings.api_key else None,
)


@app.exception_handler(InvalidRequestError)
async def invalid_request_handler(request: Request, exc: InvalidRequestError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# --- Register routers ---

from memindex.server.routers import memory, health  # noqa: E402

app.include_router(
    memory.router, prefix="/v1/memory", tags=["memory"],
    dependencies=[Depends(require_auth)],
)

# Health router: /health is public, /stats is protected at the route level
app.include_router(health.router, prefix="/v1", tags=["health"])


def run():
    """Entry point for `memindex-server` CLI command."""
    import uvicorn

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    uvicorn.run(
        "memindex.server.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    run()
