from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

from meeting_backend.config.config import settings
from meeting_backend.config.logging_config import setup_logging
from meeting_backend.middleware.middleware import MaxContentLengthMiddleware
from meeting_backend.app.models.messages import UnsuccessfulResponse
from meeting_backend.app.routes.chunked_upload_route import route as chunked_upload_route
from meeting_backend.app.routes.dependencies import get_redis_client

logger = logging.getLogger(__name__)


def _error_response(status_code: int, detail: str, payload: dict | None = None) -> JSONResponse:
    body = UnsuccessfulResponse(status_code=status_code, detail=detail, payload=payload)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def create_app() -> FastAPI:
    setup_logging()

    app = FastAPI(
        title="backend for meeting audio transcription",
        description="Handles resumable chunked audio uploads and hands finished files to transcription",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(MaxContentLengthMiddleware)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _error_response(exc.status_code, str(exc.detail), getattr(exc, "payload", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        return _error_response(400, "Validation failed", {"errors": errors})

    @app.get("/")
    def home():
        return {"message": "welcome to meeting transcripts backend"}

    @app.get("/health")
    async def get_health(redis_client=Depends(get_redis_client)):
        try:
            redis_ok = bool(await redis_client.ping())
        except Exception as e:
            logger.warning(f"Redis health check failed: {e}")
            redis_ok = False
        return {
            "message": "backend running",
            "redis": "running" if redis_ok else "not running",
        }

    app.include_router(chunked_upload_route)

    return app


app = create_app()
