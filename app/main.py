import logging
from typing import Any

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.routing import APIRoute
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from app.api.main import api_router
from app.core.config import settings
from app.core.errors import UpstreamError, ValidationError, WorkflowError

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

_HTTP_ERROR_CODES = {
    401: "NOT_AUTHENTICATED",
    403: "ACCESS_DENIED",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}
_REQUEST_SOURCES = {"body", "query", "path", "header", "cookie"}


def custom_generate_unique_id(route: APIRoute) -> str:
    primary_tag = route.tags[0] if route.tags else "system"
    return f"{primary_tag}-{route.name}"


if settings.SENTRY_DSN and settings.ENVIRONMENT != "local":
    sentry_sdk.init(dsn=str(settings.SENTRY_DSN), enable_tracing=True)

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    generate_unique_id_function=custom_generate_unique_id,
)

# Set all CORS enabled origins
if settings.all_cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.all_cors_origins,
        allow_origin_regex=(
            r"https?://localhost(:\d+)?$"
            if settings.ENVIRONMENT == "local"
            else None
        ),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    if isinstance(exc, UpstreamError):
        logger.error(
            "%s %s failed upstream: %s (%s)",
            request.method,
            request.url.path,
            exc.message,
            exc.outcome,
        )
    else:
        logger.info(
            "%s %s rejected with %s: %s",
            request.method,
            request.url.path,
            exc.code,
            exc.message,
        )
    return JSONResponse(
        status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    error = WorkflowError(
        str(exc.detail),
        code=_HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
        status_code=exc.status_code,
    )
    return JSONResponse(
        status_code=error.status_code, content=error.to_dict(), headers=exc.headers
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors: list[dict[str, Any]] = [
        {"field": _error_field(item["loc"]), "message": item["msg"], "type": item["type"]}
        for item in exc.errors()
    ]
    first = errors[0] if errors else {"field": None, "message": "Invalid request"}
    error = ValidationError(
        f"Invalid request: {first['message']}",
        field=first["field"],
        details={"errors": errors},
    )
    logger.info("%s %s rejected: %s", request.method, request.url.path, error.message)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def _error_field(loc: tuple[int | str, ...]) -> str | None:
    parts = loc[1:] if loc and loc[0] in _REQUEST_SOURCES else loc
    return ".".join(str(part) for part in parts) or None


app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/")
def root() -> dict[str, str]:
    return {
        "message": settings.PROJECT_NAME,
        "docs": "/docs",
        "redoc": "/redoc",
        "openapi": f"{settings.API_V1_STR}/openapi.json",
    }


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/openapi.json", include_in_schema=False)
def openapi_compat() -> RedirectResponse:
    return RedirectResponse(url=f"{settings.API_V1_STR}/openapi.json")


@app.get(f"{settings.API_V1_STR}/docs", include_in_schema=False)
def docs_compat() -> RedirectResponse:
    return RedirectResponse(url="/docs")


@app.get(f"{settings.API_V1_STR}/redoc", include_in_schema=False)
def redoc_compat() -> RedirectResponse:
    return RedirectResponse(url="/redoc")
