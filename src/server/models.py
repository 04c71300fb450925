"""Pydantic models for the web server API."""

from pydantic import BaseModel, Field


# API Request Models

class ImagePayload(BaseModel):
    """A base64 encoded image (a data: URL is accepted too)."""
    data: str = Field(..., min_length=1)
    media_type: str | None = None


class ModelImagesRequest(BaseModel):
    """Replace the model image selection."""
    images: list[ImagePayload] = Field(default_factory=list, max_length=20)


class OutfitImageRequest(BaseModel):
    """Set or clear the image of an outfit slot."""
    image: ImagePayload | None = None


class OutfitDescriptionRequest(BaseModel):
    """Update the description of an outfit slot."""
    description: str = Field("", max_length=5000)


class VariationRequest(BaseModel):
    """Request a variation of one result."""
    instruction: str = Field(..., max_length=5000)


# API Response Models

class ProgressInfo(BaseModel):
    """Progress readout for the current operation."""
    percent: int = 0
    message: str = ""
    seconds_remaining: int = 0


class ModelImageInfo(BaseModel):
    """A selected model image."""
    index: int
    media_type: str
    preview_url: str


class OutfitInfo(BaseModel):
    """One outfit slot."""
    slot: int
    id: str
    description: str
    has_image: bool
    preview_url: str | None
    valid: bool


class ResultInfo(BaseModel):
    """One generated result."""
    index: int
    instruction: str
    upscaled: bool
    pending: bool
    image_url: str
    original_url: str
    download_url: str
    download_name: str


class SessionResponse(BaseModel):
    """Snapshot of the session state."""
    status: str
    batch_id: str | None = None
    message: str = ""
    error: str | None = None
    progress: ProgressInfo = Field(default_factory=ProgressInfo)
    models: list[ModelImageInfo] = Field(default_factory=list)
    outfits: list[OutfitInfo] = Field(default_factory=list)
    results: list[ResultInfo] = Field(default_factory=list)
    job_count: int = 0
    failure_count: int = 0


class MessageResponse(BaseModel):
    """Generic acknowledgement."""
    message: str
