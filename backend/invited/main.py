import logging
from contextlib import asynccontextmanager

import psycopg
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import settings
from .core.invalidation import StatsInvalidationBus
from .core.permissions import AuthorizationDenied, build_policy
from .core.workflow import IllegalTransition
from .db.pool import init_pool, close_pool
from .routers import auth as auth_router
from .routers import events as events_router
from .routers import tasks as tasks_router
from .routers import polls as polls_router
from .routers import admin as admin_router
from .routers import invites as invites_router

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_pool()
    yield
    await close_pool()

app = FastAPI(title="Invited+ API", version="0.1.0", lifespan=lifespan)

# Built once per process, handed to requests through dependencies
app.state.policy = build_policy()
app.state.stats_bus = StatsInvalidationBus()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AuthorizationDenied)
async def authorization_denied_handler(request: Request, exc: AuthorizationDenied):
    return JSONResponse(status_code=403, content={"detail": str(exc)})

@app.exception_handler(IllegalTransition)
async def illegal_transition_handler(request: Request, exc: IllegalTransition):
    return JSONResponse(
        status_code=400,
        content={"detail": str(exc), "current": exc.current.value, "target": exc.target.value},
    )

@app.exception_handler(psycopg.Error)
async def database_error_handler(request: Request, exc: psycopg.Error):
    logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Database error"})


app.include_router(auth_router.router)
app.include_router(events_router.router)
app.include_router(tasks_router.router)
app.include_router(polls_router.router)
app.include_router(admin_router.router)
app.include_router(invites_router.router)


@app.get("/health")
async def health():
    return {"status": "ok"}
