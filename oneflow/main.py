from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.config import CORS_ORIGINS, DATABASE_URL, SQL_ECHO
from .core.errors import InternalError, OneflowError
from .core.limits import limiter
from .core.log import configure_logging, get_logger
from .database import build_engine, build_session_factory, create_schema
from .routers import academy, accounting, auth, loans, shopping, tasks, users

logger = get_logger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid value")
    return f"{field}: {message}" if field else message


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(OneflowError)
    async def oneflow_error_handler(request: Request, exc: OneflowError):
        if exc.status_code >= 500:
            logger.error("request_failed", path=request.url.path, error=exc.message)
        return _error(exc.status_code, exc.message)

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error("database_error", path=request.url.path, error=str(exc))
        return await oneflow_error_handler(request, InternalError("Database error"))

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        logger.warning("rate_limited", path=request.url.path)
        return _error(429, str(exc.detail))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _error(400, _validation_message(exc))

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled_error", path=request.url.path)
        return _error(500, "Internal server error")


def create_app(database_url: Optional[str] = None, *, echo: Optional[bool] = None) -> FastAPI:
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = build_engine(database_url or DATABASE_URL, SQL_ECHO if echo is None else echo)
        app.state.engine = engine
        app.state.session_factory = build_session_factory(engine)
        await create_schema(engine)
        logger.info("app_started")
        yield
        await engine.dispose()

    app = FastAPI(
        title="Oneflow Life API",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.limiter = limiter
    register_error_handlers(app)

    app.include_router(auth.router)
    app.include_router(users.router)
    app.include_router(accounting.router)
    app.include_router(tasks.router)
    app.include_router(shopping.router)
    app.include_router(loans.router)
    app.include_router(academy.router)

    @app.get("/api/ping")
    async def ping():
        return {"success": True, "ok": True}

    return app


app = create_app()
