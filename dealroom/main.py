from __future__ import annotations

import logging
import os
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from dealroom.errors import ApiError, DataAccessError
from dealroom.notifications import create_publisher_from_env
from dealroom.routes import closure_requests, complaints, documents, internal, tasks, transactions
from dealroom.routes._deps import error_response, request_id_from_request, trace_id_from_request
from dealroom.schemas import success_envelope
from dealroom.security import (
    JwtSecurityConfig,
    auth_context_from_headers,
    parse_and_validate_bearer_token,
    redact_sensitive,
)
from dealroom.store import InMemoryStore, create_store_from_env

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    level_name = os.environ.get("DEALROOM_LOG_LEVEL", "INFO").strip().upper() or "INFO"
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    logging.getLogger("dealroom").setLevel(level)


def create_app(store: InMemoryStore | None = None, publisher: Any | None = None) -> FastAPI:
    _configure_logging()
    if store is None:
        store = create_store_from_env(publisher=publisher or create_publisher_from_env())
    security_cfg = JwtSecurityConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        app.state.store.close()
        logger.info("dealroom_shutdown store=%s", type(app.state.store).__name__)

    app = FastAPI(title="Dealroom Transactions API", version="0.1.0", lifespan=lifespan)
    app.state.store = store
    app.state.security_cfg = security_cfg

    cors_origins = os.environ.get("CORS_ALLOW_ORIGINS", "http://127.0.0.1:5173,http://localhost:5173")
    allow_origins = [x.strip() for x in cors_origins.split(",") if x.strip()]
    if allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _log_security_block(request: Request, *, code: str, detail: str) -> None:
        headers_obj = dict(request.headers.items())
        headers_payload = redact_sensitive(headers_obj) if security_cfg.log_redaction_enabled else headers_obj
        logger.warning(
            "security_blocked code=%s path=%s detail=%s trace_id=%s headers=%s",
            code,
            request.url.path,
            detail,
            trace_id_from_request(request),
            headers_payload,
        )

    @app.middleware("http")
    async def add_trace_id(request: Request, call_next):
        incoming_trace_id = request.headers.get("x-trace-id", "").strip()
        request.state.trace_id = incoming_trace_id or uuid.uuid4().hex
        request.state.request_id = request.headers.get("x-request-id", f"req_{uuid.uuid4().hex[:12]}")
        try:
            path = request.url.path
            if path.startswith("/api/v1/") and not path.startswith("/api/v1/internal/"):
                if security_cfg.enabled:
                    auth = parse_and_validate_bearer_token(
                        authorization=request.headers.get("Authorization"),
                        cfg=security_cfg,
                    )
                    header_role = request.headers.get("x-user-role")
                    if header_role and header_role.strip().lower() != auth.role:
                        raise ApiError(
                            code="AUTH_FORBIDDEN",
                            message="role header does not match token",
                            error_class="security_sensitive",
                            retryable=False,
                            http_status=403,
                        )
                else:
                    auth = auth_context_from_headers(
                        role_header=request.headers.get("x-user-role"),
                        subject_header=request.headers.get("x-user-id"),
                    )
                request.state.auth = auth
            response = await call_next(request)
        except ApiError as exc:
            _log_security_block(request, code=exc.code, detail=exc.message)
            response = error_response(
                request,
                code=exc.code,
                message=exc.message,
                error_class=exc.error_class,
                retryable=exc.retryable,
                status_code=exc.http_status,
            )
        response.headers["x-trace-id"] = trace_id_from_request(request)
        response.headers["x-request-id"] = request_id_from_request(request)
        return response

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        if exc.code in {"AUTH_UNAUTHORIZED", "AUTH_FORBIDDEN"}:
            _log_security_block(request, code=exc.code, detail=exc.message)
        return error_response(
            request,
            code=exc.code,
            message=exc.message,
            error_class=exc.error_class,
            retryable=exc.retryable,
            status_code=exc.http_status,
        )

    @app.exception_handler(DataAccessError)
    async def handle_data_access_error(request: Request, exc: DataAccessError):
        logger.error(
            "store_unavailable path=%s operation=%s error=%s trace_id=%s",
            request.url.path,
            exc.operation,
            exc,
            trace_id_from_request(request),
        )
        return error_response(
            request,
            code="STORE_UNAVAILABLE",
            message="data store unavailable",
            error_class="transient",
            retryable=True,
            status_code=503,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        fields = sorted({str(err.get("loc", ())[-1]) for err in exc.errors() if err.get("loc")})
        message = f"invalid payload: {', '.join(fields)}" if fields else "invalid payload"
        return error_response(
            request,
            code="REQ_VALIDATION_FAILED",
            message=message,
            error_class="validation",
            retryable=False,
            status_code=400,
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_response(
                request,
                code="REQ_NOT_FOUND",
                message="resource not found",
                error_class="validation",
                retryable=False,
                status_code=404,
            )
        return error_response(
            request,
            code="REQ_HTTP_ERROR",
            message=str(exc.detail),
            error_class="validation",
            retryable=False,
            status_code=exc.status_code,
        )

    @app.get("/healthz")
    def healthz(request: Request) -> dict[str, object]:
        return success_envelope({"status": "ok"}, trace_id_from_request(request))

    @app.get("/api/v1/health")
    def health_api(request: Request) -> dict[str, object]:
        return success_envelope({"status": "ok"}, trace_id_from_request(request))

    app.include_router(transactions.router)
    app.include_router(tasks.router)
    app.include_router(documents.router)
    app.include_router(complaints.router)
    app.include_router(closure_requests.router)
    app.include_router(internal.router)
    return app
