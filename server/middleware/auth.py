"""Bearer token middleware for the form API."""

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.container import container
from core.logging import bind_request_context, get_logger

logger = get_logger(__name__)

# Path prefixes that require a bearer token. Everything else (token endpoint,
# health, docs, the SPA and its assets) is public.
PROTECTED_PREFIXES = (
    "/marketingforms",
)


def _unauthorized(detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"detail": detail},
        headers={"WWW-Authenticate": "Bearer"}
    )


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware to protect routes requiring a bearer token."""

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if not self._is_protected_path(path) or request.method == "OPTIONS":
            return await call_next(request)

        token = self._bearer_token(request)
        if not token:
            return _unauthorized("Not authenticated")

        token_service = container.token_service()
        payload = token_service.verify_token(token)

        if not payload:
            logger.info("Rejected bearer token", path=path)
            return _unauthorized("Invalid or expired token")

        # Every later event of this request carries the caller's role
        bind_request_context(role=payload.get("role"))

        return await call_next(request)

    @staticmethod
    def _bearer_token(request: Request):
        header = request.headers.get("Authorization", "")
        scheme, _, credentials = header.partition(" ")
        if scheme.lower() != "bearer" or not credentials.strip():
            return None
        return credentials.strip()

    @staticmethod
    def _is_protected_path(path: str) -> bool:
        """Check if path needs a bearer token."""
        for prefix in PROTECTED_PREFIXES:
            if path == prefix or path.startswith(prefix + "/"):
                return True
        return False
