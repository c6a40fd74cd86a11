"""Router – image upload."""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from src.app.schemas.upload import ErrorResponse, UploadRequest, UploadResponse
from src.app.services.upload_service import UploadError, UploadGateway

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Upload"])

UPLOAD_PATH = "/api/upload"


def get_gateway(request: Request) -> UploadGateway:
    """The gateway built once at startup (see ``main.lifespan``)."""
    return request.app.state.gateway


def error_response(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message).model_dump(),
        headers=headers,
    )


@router.post(
    UPLOAD_PATH,
    response_model=UploadResponse,
    responses={400: {"model": ErrorResponse}, 405: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def upload_image(
    body: UploadRequest,
    gateway: UploadGateway = Depends(get_gateway),
) -> UploadResponse | JSONResponse:
    """
    Upload a base64 data-URI image and return its public URL.

    Parameters
    ----------
    body.image    : str – ``data:image/<type>;base64,<data>``
                          (jpeg, jpg, png, gif or webp; at most 10 MB decoded).
    body.filename : str – optional client-side name, never used for storage.

    Returns
    -------
    UploadResponse with:
        - url      : public URL returned by the storage provider
        - filename : generated storage filename
    """
    try:
        result = await gateway.handle(body.image, body.filename)
    except UploadError as exc:
        return error_response(exc.status_code, exc.message)
    except Exception:
        logger.exception("Unexpected error during upload")
        return error_response(500, "Internal server error during upload")

    return UploadResponse(url=result.url, filename=result.filename)
