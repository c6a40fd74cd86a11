from pydantic import BaseModel


class UploadRequest(BaseModel):
    """Body schema for POST /api/upload."""
    image: str | None = None
    filename: str | None = None


class UploadResponse(BaseModel):
    """Response schema for POST /api/upload."""
    success: bool = True
    url: str
    filename: str
    message: str = "Image uploaded successfully"


class ErrorResponse(BaseModel):
    """Body returned for every rejected or failed request."""
    success: bool = False
    error: str
