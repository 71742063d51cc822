import asyncio
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.artworks import router as artworks_router
from app.api.plans import router as plans_router
from app.api.sales import router as sales_router
from app.core.config import settings
from app.core.database import async_session_factory
from app.services.distribution_service import build_distribution_service
from app.workers.dispatch_resumer import resume_loop

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app):
    if not hasattr(app.state, "distribution"):
        app.state.distribution = build_distribution_service(settings, async_session_factory)
    task = asyncio.create_task(resume_loop(app.state.distribution, settings.resume_interval_seconds))
    yield
    task.cancel()
    transfer = app.state.distribution.dispatcher.transfer
    if hasattr(transfer, "aclose"):
        await transfer.aclose()


app = FastAPI(title="Vortex Royalty Ledger", version="0.1.0", lifespan=lifespan)

cors_origins = settings.cors_origins.split(",")

from starlette.types import ASGIApp, Receive, Scope, Send

class TimingMiddleware:
    """Logs method, path, status and latency of every HTTP request."""
    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http":
            return await self.app(scope, receive, send)

        t0 = time.perf_counter()
        status_code = 0

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        await self.app(scope, receive, send_wrapper)
        ms = int((time.perf_counter() - t0) * 1000)
        method = scope.get("method", "?")
        path = scope.get("path", "?")
        logger.info(f"{method} {path} -> {status_code} in {ms}ms")


app.add_middleware(TimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(sales_router)
app.include_router(plans_router)
app.include_router(artworks_router)


@app.get("/api/health")
async def health():
    return {"status": "ok"}
