"""
HTTP middleware: security headers, request logging, body size limit and
session-based page access control.
"""
import time
import uuid

import structlog
from fastapi import Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from core.exceptions import APIException, error_body

logger = structlog.get_logger("middleware")

PUBLIC_PATHS = {"/", "/login", "/signup", "/health", "/docs", "/redoc", "/openapi.json"}
UNGUARDED_PREFIXES = ("/api/", "/_next/", "/docs/")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds security headers to all responses."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(), camera=()"
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request with a request id and its processing time."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        start_time = time.time()

        client_host = request.client.host if request.client else "unknown"
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            client_host = forwarded_for.split(",")[0].strip()

        logger.info(
            "Request started",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            client_host=client_host,
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                request_id=request_id,
                exception=str(e),
                process_time_ms=round((time.time() - start_time) * 1000, 2),
            )
            raise

        process_time_ms = round((time.time() - start_time) * 1000, 2)
        logger.info(
            "Request completed",
            request_id=request_id,
            status_code=response.status_code,
            process_time_ms=process_time_ms,
        )
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(process_time_ms)
        return response


class RequestSizeMiddleware(BaseHTTPMiddleware):
    """
    Rejects requests whose declared Content-Length exceeds the limit.

    Upload paths answer like the upload route itself: 400 with the file size
    limit in the message.
    """

    def __init__(
        self,
        app,
        max_size: int = 55 * 1024 * 1024,
        upload_paths: tuple = ("/api/audio/upload",),
        upload_limit_mb: int = 50,
    ):
        super().__init__(app)
        self.max_size = max_size
        self.upload_paths = upload_paths
        self.upload_limit_mb = upload_limit_mb

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        content_length = request.headers.get("Content-Length")
        if content_length and content_length.isdigit() and int(content_length) > self.max_size:
            logger.warning(
                "Request body too large",
                content_length=int(content_length),
                max_size=self.max_size,
                path=request.url.path,
            )
            # Exceptions raised in middleware bypass the app's handlers
            if request.url.path in self.upload_paths:
                return JSONResponse(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    content=error_body(f"File too large. Maximum size is {self.upload_limit_mb}MB."),
                )
            return JSONResponse(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                content=error_body(f"Request body too large. Maximum size: {self.max_size} bytes"),
            )

        return await call_next(request)


def requires_session(path: str) -> bool:
    """Page routes need a session; API routes, static assets and public pages do not."""
    if path in PUBLIC_PATHS:
        return False
    if path.startswith(UNGUARDED_PREFIXES):
        return False
    return "." not in path


class SessionRedirectMiddleware(BaseHTTPMiddleware):
    """
    Sends page requests without a valid session cookie to ``/login``.

    The cookie is cleared on the redirect response.
    """

    def __init__(self, app, cookie_name: str = "session"):
        super().__init__(app)
        self.cookie_name = cookie_name

    def _redirect_to_login(self) -> Response:
        response = RedirectResponse("/login", status_code=status.HTTP_307_TEMPORARY_REDIRECT)
        response.delete_cookie(self.cookie_name, path="/")
        return response

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if not requires_session(path):
            return await call_next(request)

        cookie = request.cookies.get(self.cookie_name)
        if not cookie:
            logger.info("No session cookie, redirecting to login", path=path)
            return self._redirect_to_login()

        identity = request.app.state.services.identity
        async with request.app.state.session_factory() as db:
            try:
                claims = await identity.verify_session_cookie(db, cookie)
            except APIException as e:
                logger.info("Invalid session, redirecting to login", path=path, reason=e.detail)
                return self._redirect_to_login()

        request.state.session_uid = claims.uid
        return await call_next(request)


def setup_middleware(app, settings):
    """Register middleware; the last one added runs first."""
    if settings.enable_session_redirect:
        app.add_middleware(SessionRedirectMiddleware, cookie_name=settings.session_cookie_name)

    if settings.enable_request_size_limit:
        app.add_middleware(
            RequestSizeMiddleware,
            max_size=settings.max_request_size_bytes,
            upload_limit_mb=settings.max_upload_size_mb,
        )

    if settings.enable_request_logging:
        app.add_middleware(RequestLoggingMiddleware)

    if settings.enable_security_headers:
        app.add_middleware(SecurityHeadersMiddleware)
