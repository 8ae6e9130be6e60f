# Run from project root: uvicorn workspace_rag.main:app --reload

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from workspace_rag.api.routes import router
from workspace_rag.api.state import AppState, build_default_state
from workspace_rag.core.config import INDEX_REFRESH_SECONDS
from workspace_rag.core.errors import IndexBuildError, NoIndexError, ServiceUnavailableError, WorkspaceRAGError
from workspace_rag.mcp.server import mcp_router
from workspace_rag.services.retrieval_service import TwoStageRetrieval

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def refresh_periodically(retrieval: TwoStageRetrieval, interval: float) -> None:
    """Rebuild the index every interval seconds until cancelled; a failed rebuild keeps the previous index."""
    while True:
        await asyncio.sleep(interval)
        try:
            await retrieval.refresh()
        except WorkspaceRAGError as e:
            logger.warning("[refresh] scheduled rebuild failed, previous index kept: %s", e.message)
        else:
            logger.info("[refresh] scheduled rebuild done version=%d", retrieval.index.version)


def create_app(state: AppState | None = None, *, refresh_interval: float = INDEX_REFRESH_SECONDS) -> FastAPI:
    """Build the app; pass a pre-wired state to serve fakes instead of Notion."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services = state if state is not None else build_default_state()
        app.state.services = services
        try:
            await services.retrieval.initialize()
        except IndexBuildError as e:
            logger.warning("[startup] initial index build failed; POST /index/refresh to retry: %s", e.message)
        refresher = None
        if refresh_interval > 0:
            refresher = asyncio.create_task(refresh_periodically(services.retrieval, refresh_interval))
            logger.info("[startup] scheduled index refresh every %gs", refresh_interval)
        app.state.refresher = refresher
        try:
            yield
        finally:
            if refresher is not None:
                refresher.cancel()
                with suppress(asyncio.CancelledError):
                    await refresher
            await services.aclose()

    app = FastAPI(title="Workspace RAG Backend", lifespan=lifespan)
    app.include_router(router)
    app.include_router(mcp_router, prefix="/mcp")

    @app.exception_handler(ServiceUnavailableError)
    async def service_unavailable(request: Request, exc: ServiceUnavailableError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": exc.message})

    @app.exception_handler(NoIndexError)
    async def no_index(request: Request, exc: NoIndexError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": exc.message})

    @app.exception_handler(IndexBuildError)
    async def index_build_failed(request: Request, exc: IndexBuildError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": exc.message})

    return app


app = create_app()


if __name__ == "__main__":
    print("Workspace RAG system booting...")
