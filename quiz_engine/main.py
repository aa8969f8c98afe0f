"""
Quiz attempt engine API.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from quiz_engine.api.admin import router as admin_router
from quiz_engine.api.auth import router as auth_router
from quiz_engine.api.quiz import router as quiz_router
from quiz_engine.core.config import settings
from quiz_engine.core.database import init_db
from quiz_engine.core.errors import QuizError
from quiz_engine.core.logging_config import configure_logging

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s %s (%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT)
    # production schemas come from migrations
    if settings.is_sqlite() or not settings.is_production():
        init_db()
    yield
    logger.info("Shutting down %s", settings.APP_NAME)


app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, message, kind: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"message": message, "type": kind, "status_code": status_code, **extra}},
    )


@app.exception_handler(QuizError)
async def quiz_error_handler(request: Request, exc: QuizError):
    logger.info("%s on %s %s: %s", exc.kind, request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.message, exc.kind)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, exc.detail, "http_error")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return _error(
        status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation error", "validation_error",
        details=jsonable_errors(exc),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    if settings.is_production():
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "An internal error occurred", "internal_error")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc), "internal_error", debug=True)


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may carry the raw exception object, which is not JSON serializable
    return [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()]


app.include_router(auth_router, prefix=f"{settings.API_V1_PREFIX}/auth", tags=["auth"])
app.include_router(quiz_router, prefix=f"{settings.API_V1_PREFIX}/quiz", tags=["quiz"])
app.include_router(admin_router, prefix=f"{settings.API_V1_PREFIX}/admin", tags=["admin"])


@app.get("/health")
def health():
    return {"status": "ok", "version": settings.APP_VERSION}
