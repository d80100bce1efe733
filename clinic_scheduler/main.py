# clinic_scheduler/main.py
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder

from .config import settings
from .database import init_db
from .errors import ClinicError
from .jobs.scheduler import start_scheduler
from .services.events import bus, log_event

# Routers
from .routers.appointments import router as appointments_router
from .routers.admin import router as admin_router

# ──────────────────────────────────────────────────────────────────────────────
# LOGGING
# Levels come from settings: LOG_LEVEL, SQLA_LOG_LEVEL, UVICORN_LOG_LEVEL
# ──────────────────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logging.getLogger("sqlalchemy.engine").setLevel(
    getattr(logging, settings.SQLA_LOG_LEVEL.upper(), logging.WARNING)
)
logging.getLogger("uvicorn.error").setLevel(
    getattr(logging, settings.UVICORN_LOG_LEVEL.upper(), logging.INFO)
)
logging.getLogger("apscheduler").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

# ──────────────────────────────────────────────────────────────────────────────
# FastAPI App
# ──────────────────────────────────────────────────────────────────────────────
app = FastAPI(title=settings.APP_NAME)

app.include_router(appointments_router)
app.include_router(admin_router, prefix="/admin")  # admin.py does not repeat /admin

# ──────────────────────────────────────────────────────────────────────────────
# Error mapping
# ──────────────────────────────────────────────────────────────────────────────
@app.exception_handler(ClinicError)
def clinic_error_handler(request: Request, exc: ClinicError):
    logger.info("%s %s -> %s/%s", request.method, request.url.path, exc.kind, exc.code)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "ok": False,
            "kind": "validation",
            "code": "invalid_request",
            "reason": "Request validation failed.",
            "context": {"errors": jsonable_encoder(exc.errors())},
        },
    )

# ──────────────────────────────────────────────────────────────────────────────
# Lifecycle
# ──────────────────────────────────────────────────────────────────────────────
@app.on_event("startup")
def on_startup():
    init_db()
    bus.subscribe(log_event)
    if settings.REMINDER_SWEEP_ENABLED:
        start_scheduler()
    logger.info("Startup complete: %s (%s)", settings.APP_NAME, settings.ENV)


@app.get("/")
def root():
    return {"ok": True, "app": settings.APP_NAME, "env": settings.ENV}
