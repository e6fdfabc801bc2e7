from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

# Headers applied to every response. The service only serves JSON, so the
# content policy forbids everything.
_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Cache-Control": "no-store",
}

_DOCS_PATHS = {"/docs", "/redoc"}

_HSTS_VALUE = "max-age=31536000; includeSubDomains"


def _apply_security_headers(response: Response, is_https: bool, path: str) -> None:
    """Set standard security headers on a response."""
    for name, value in _SECURITY_HEADERS.items():
        if name == "Content-Security-Policy" and path in _DOCS_PATHS:
            # Swagger UI and ReDoc load scripts and styles from a CDN
            continue
        response.headers[name] = value
    if is_https:
        response.headers["Strict-Transport-Security"] = _HSTS_VALUE


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds standard security headers to every HTTP response."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        _apply_security_headers(
            response,
            is_https=request.url.scheme == "https",
            path=request.url.path,
        )
        return response
