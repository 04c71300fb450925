"""Data model for outfit specs, generation jobs and batch runs."""

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum

from image_codec import ImageResource


def _new_token() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True)
class OutfitSpec:
    """An outfit described by an image, a text description, or both.

    The id only keys the editing UI for this slot.
    """
    image: ImageResource | None = None
    description: str = ""
    id: str = field(default_factory=_new_token)

    @property
    def is_valid(self) -> bool:
        return self.image is not None or bool(self.description.strip())

    def with_image(self, image: ImageResource | None) -> "OutfitSpec":
        return replace(self, image=image)

    def with_description(self, description: str) -> "OutfitSpec":
        return replace(self, description=description)


@dataclass(frozen=True)
class GenerationJob:
    """One unit of remote work.

    Attributes:
        base: The model image
        reference: Optional outfit image
        instruction: Outfit description (may be empty when a reference is given)
        variation: Ask the service for a creative reinterpretation
        model_index: Position of the base image in the selection
        outfit_index: Position of the outfit in the selection
    """
    base: ImageResource
    reference: ImageResource | None = None
    instruction: str = ""
    variation: bool = False
    model_index: int = 0
    outfit_index: int = 0

    @property
    def is_well_formed(self) -> bool:
        if self.base is None or not self.base.is_supported:
            return False
        return self.reference is not None or bool(self.instruction.strip())


@dataclass(frozen=True)
class GenerationResult:
    """A job's base image paired with either its generated image or a failure reason."""
    base: ImageResource
    reference: ImageResource | None = None
    instruction: str = ""
    image: bytes | None = None
    error: str | None = None
    upscaled: bool = False
    job_index: int = 0

    @property
    def succeeded(self) -> bool:
        return self.image is not None

    @classmethod
    def from_job(cls, job: GenerationJob, job_index: int, image: bytes | None = None,
                 error: str | None = None) -> "GenerationResult":
        return cls(
            base=job.base,
            reference=job.reference,
            instruction=job.instruction,
            image=image,
            error=error,
            job_index=job_index,
        )


@dataclass(frozen=True)
class JobFailure:
    """Diagnostics for a job that produced no image."""
    job_index: int
    reason: str


class BatchStatus(str, Enum):
    """Lifecycle of a batch run."""
    PLANNING = "planning"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class BatchRun:
    """The aggregate produced by one generate request."""
    id: str = field(default_factory=_new_token)
    jobs: tuple[GenerationJob, ...] = ()
    status: BatchStatus = BatchStatus.PLANNING
    results: tuple[GenerationResult, ...] = ()
    failures: tuple[JobFailure, ...] = ()
    message: str = ""

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    @property
    def is_running(self) -> bool:
        return self.status in (BatchStatus.PLANNING, BatchStatus.RUNNING)
