from __future__ import annotations

from contextlib import asynccontextmanager
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

try:
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    sentry_sdk = None


from orgauthority.api import invitations_router, org_router
from orgauthority.core.errors import AuthorityError
from orgauthority.core.i18n import get_locale_from_request, translate, translate_error
from orgauthority.core.logging import bind_request_context, clear_request_context, configure_logging
from orgauthority.core.sessions import close_binding_store
from orgauthority.core.settings import settings

configure_logging()

if settings.sentry_dsn and sentry_sdk:
    sentry_sdk.init(  # type: ignore[call-arg]
        dsn=str(settings.sentry_dsn),
        environment=settings.environment,
        integrations=[FastApiIntegration()],
        traces_sample_rate=0.1,
    )


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    await close_binding_store()


app = FastAPI(title=settings.app_name, lifespan=lifespan)


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("x-request-id") or uuid4().hex
        bind_request_context(request_id=request_id, locale=getattr(request.state, "locale", None))
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers.setdefault("X-Request-ID", request_id)
        return response


class LocalizationMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        locale = get_locale_from_request(request)
        request.state.locale = locale
        response = await call_next(request)
        response.headers.setdefault("Content-Language", locale)
        return response


app.add_middleware(RequestContextMiddleware)
app.add_middleware(LocalizationMiddleware)
if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin).rstrip("/") for origin in settings.cors_allow_origins],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(org_router.router)
app.include_router(invitations_router.router)


@app.get("/healthz", tags=["system"])
async def health() -> dict:
    return {"status": "ok"}


def _locale(request: Request) -> str:
    return getattr(request.state, "locale", settings.default_locale)


@app.exception_handler(AuthorityError)
async def authority_error_handler(request: Request, exc: AuthorityError):
    message = translate_error(_locale(request), exc.code, exc.reason, **exc.params)
    logger = structlog.get_logger()
    log = logger.warning if exc.status_code >= 500 else logger.info
    log(
        "authority_error",
        status=exc.status_code,
        code=exc.code,
        reason=exc.reason,
        path=str(request.url.path),
    )
    return JSONResponse(status_code=exc.status_code, content={"code": exc.code, "detail": message})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    locale = _locale(request)
    detail = exc.detail
    code = None
    message = None
    if isinstance(detail, dict):
        code = detail.get("code")
        params = detail.get("params", {})
        if code:
            message = translate(locale, code, **params)
    elif exc.status_code == status.HTTP_404_NOT_FOUND:
        code = "not_found"
        message = translate_error(locale, code, "route")
    elif exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        code = "method_not_allowed"
        message = translate(locale, code)
    elif isinstance(detail, str):
        message = detail
    else:
        message = str(detail)
    body = {"detail": message}
    if code:
        body["code"] = code
    logger = structlog.get_logger()
    logger.info(
        "http_exception",
        status=exc.status_code,
        code=code,
        detail=body.get("detail"),
        path=str(request.url.path),
    )
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger = structlog.get_logger()
    logger.info("request_invalid", path=str(request.url.path), errors=len(exc.errors()))
    return JSONResponse(
        status_code=422,
        content={
            "code": "validation_error",
            "detail": translate_error(_locale(request), "validation_error", "request"),
        },
    )
