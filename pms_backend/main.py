"""
Property management backend - FastAPI application
"""
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .admin_routes import router as admin_router
from .config import Settings
from .dependencies import ServiceContainer
from .otp_routes import router as otp_router
from .schemas.api_response import error_payload
from .signup_routes import router as signup_router
from .utils.firestore_client import get_firebase_config_status


logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _request_id_from_request(request: Request) -> Optional[str]:
    from_state = getattr(request.state, "request_id", None)
    if isinstance(from_state, str) and from_state.strip():
        return from_state.strip()
    from_header = (request.headers.get("x-request-id") or "").strip()
    return from_header or None


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.container.settings
    logger.info(json.dumps({"event": "startup_checklist", **settings.snapshot()}))

    firebase_status = get_firebase_config_status()
    if firebase_status["credential_source"] == "none":
        logger.warning("[Firebase] No explicit credentials; falling back to application default.")
    else:
        logger.info("[Firebase] Credential source: %s", firebase_status["credential_source"])

    if settings.admin_api_key:
        logger.info("[init] /api/admin mounted with x-admin-key guard")
    else:
        logger.warning("[init] /api/admin mounted without guard (no ADMIN_API_KEY set)")
    if not settings.protected_admin_email:
        logger.warning("[init] No protected admin email configured")
    if not settings.admin_notification_email:
        logger.warning("[init] No admin notification email; signup codes cannot be sent")

    yield

    logger.info("[Shutdown] complete")


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail
    if isinstance(detail, dict):
        content = detail
    else:
        message = detail if isinstance(detail, str) and detail.strip() else "Request failed"
        content = error_payload(message=message)
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content=error_payload(message="Invalid request body"))


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(
        "[UnhandledError] request_id=%s path=%s error=%s: %s",
        _request_id_from_request(request),
        request.url.path,
        type(exc).__name__,
        exc,
    )
    return JSONResponse(status_code=500, content=error_payload(message="Internal server error"))


async def request_id_middleware(request: Request, call_next):
    request_id = (request.headers.get("x-request-id") or "").strip() or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


async def health():
    return PlainTextResponse("OK")


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    container = container or ServiceContainer()

    app = FastAPI(
        title="Property Management API",
        description="Signup codes, OTP verification and user administration",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.container = container

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.middleware("http")(request_id_middleware)

    cors_origins = container.settings.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials="*" not in cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_api_route("/health", health, methods=["GET"], include_in_schema=False)
    app.include_router(otp_router)
    app.include_router(signup_router)
    app.include_router(admin_router)
    return app


_settings = Settings()
configure_logging(_settings.log_level)
app = create_app(ServiceContainer(_settings))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=_settings.port,
        log_level=_settings.log_level.lower(),
    )
