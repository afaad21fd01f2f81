import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from teacher_auth.core.config import CORS_ORIGINS, ENV
from teacher_auth.core.database import Base, SessionLocal, engine
from teacher_auth.core.logging_setup import configure_logging
from teacher_auth.middleware.observability import ObservabilityMiddleware
import teacher_auth.models  # noqa: F401  models must be registered before create_all
from teacher_auth.routers.audit import router as audit_router
from teacher_auth.routers.teachers import router as teachers_router
from teacher_auth.services.audit import DatabaseAuditSink
from teacher_auth.services.errors import PinAuthError
from teacher_auth.services.pin_authenticator import PinAuthenticator
from teacher_auth.services.teacher_registry import TeacherRegistry

configure_logging()

logger = logging.getLogger(__name__)


def _startup_tasks() -> None:
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ensured (env=%s)", ENV)


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield


async def pin_auth_error_handler(request: Request, exc: PinAuthError) -> JSONResponse:
    logger.error("PIN operation aborted on %s: %s", request.url.path, exc, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal error while processing the PIN operation"},
    )


app = FastAPI(
    title="Teacher PIN Authentication API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.state.pin_authenticator = PinAuthenticator(
    TeacherRegistry(SessionLocal),
    DatabaseAuditSink(SessionLocal),
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ObservabilityMiddleware)
app.add_exception_handler(PinAuthError, pin_auth_error_handler)

app.include_router(teachers_router)
app.include_router(audit_router)


@app.get("/health")
def health():
    return {"status": "ok"}
