from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse

from ..config import Settings
from ..logging_conf import get_logger
from ..service import upload_service
from .models import HealthResponse

router = APIRouter()
logger = get_logger("api")


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


@router.get("/health", response_model=HealthResponse, summary="Liveness check")
async def health() -> HealthResponse:
    return HealthResponse()


@router.post(
    "/uploadFile",
    response_class=PlainTextResponse,
    summary="Upload one file into the uploads directory",
)
async def upload_file(request: Request, settings: Settings = Depends(get_settings)) -> PlainTextResponse:
    """Store the multipart file field under the uploads root.

    Failures are answered as a single plain-text line with a 4xx/5xx status;
    they never reach the JSON exception handlers.
    """
    try:
        await upload_service.receive(
            request,
            upload_dir=settings.upload_dir,
            field_name=settings.upload_field,
            max_bytes=settings.max_upload_bytes,
        )
    except upload_service.UploadError as e:
        logger.info(
            "upload.failed",
            extra={"event": "upload_failed", "error_code": e.code, "error_message": str(e)},
        )
        return PlainTextResponse(f"{e}\n", status_code=e.status_code)
    return PlainTextResponse("Successfully Uploaded Original File\n")
