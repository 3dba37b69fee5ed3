from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from meeting_backend.config.config import settings


class MaxContentLengthMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, max_content_length: int | None = None):
        super().__init__(app)
        self.max_content_length = max_content_length or settings.MAX_CONTENT_LENGTH

    async def dispatch(self, request: Request, call_next):
        content_length = request.headers.get("content-length")

        if content_length and content_length.isdigit() and int(content_length) > self.max_content_length:
            return JSONResponse(
                status_code=413,
                content={"status_code": 413, "detail": "Request payload too large"}
            )

        return await call_next(request)
