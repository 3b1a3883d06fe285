import logging

from fastapi import Request
from fastapi.responses import JSONResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .errors import INTERNAL_ERROR_REASON

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Credentials": "true",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type",
}


class CORSHeadersMiddleware(BaseHTTPMiddleware):
    """
    Attach fixed permissive CORS headers to every response.

    Any OPTIONS request is answered with 204 before routing. Exceptions that
    escape the app are logged and turned into the generic 500 body here, so
    that error responses carry the CORS headers too.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=CORS_HEADERS)

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"Unhandled error on {request.method} {request.url.path}")
            response = JSONResponse(
                status_code=500,
                content={"success": False, "reason": INTERNAL_ERROR_REASON},
            )

        for name, value in CORS_HEADERS.items():
            response.headers[name] = value
        return response
