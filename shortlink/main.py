"""FastAPI application entry point for the shortlink service.

Startup and Shutdown
====================
::
    startup                                   shutdown
    ───────                                   ────────
    init_db()          create tables          manager.cleanup()
        │                                         │
        ▼                                         ├─ dispatcher.stop(grace)
    manager.initialize()                          │    queued accesses reach
        │  cache, store, aggregator,              │    the aggregator
        │  dispatcher workers, resolver           ├─ aggregator.stop(grace)
        ▼                                         │    final click flush
    manager.warmup()   popular links → Redis      ▼
        │                                     close_db()
        ▼
    serve requests

How to Use
===========
**Step 1 — Run**::
    uvicorn shortlink.main:app --host 0.0.0.0 --port 8000

**Step 2 — Shorten and follow a link**::
    curl -X POST http://localhost:8000/api/shorten \
         -H "Content-Type: application/json" \
         -d '{"url": "https://example.com", "alias": "example"}'
    curl -i http://localhost:8000/example

Key Behaviours
===============
- Tables are created on startup; there is no migration step.
- Shutdown is bounded by SHUTDOWN_GRACE_SECONDS per stage; clicks still
  buffered after that are lost.
- Prometheus metrics are exposed at /metrics.
"""

__all__ = ["app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from shortlink.config import get_settings
from shortlink.database import close_db, init_db
from shortlink.dependencies import _service_manager
from shortlink.routes import router

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    await _service_manager.initialize()
    await _service_manager.warmup()
    yield
    # Shutdown
    await _service_manager.cleanup()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Short link resolution with read-through caching and batched click analytics",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)

app.include_router(router)
