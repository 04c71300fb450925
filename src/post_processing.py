"""Follow-up operations on a single result of a finished batch.

Both operations are scoped to exactly one index. They return the new
result for that slot; the caller swaps it in with replace_at so that
readers never observe a half-updated sequence.
"""

import logging
from dataclasses import replace
from typing import Sequence

from errors import PostProcessError, TryOnError
from gemini_client import RemoteGenerationClient
from image_codec import PNG, ImageResource, sniff_media_type, to_image_input
from tryon_types import GenerationJob, GenerationResult

logger = logging.getLogger(__name__)


def replace_at(results: Sequence[GenerationResult], index: int,
               result: GenerationResult) -> tuple[GenerationResult, ...]:
    """Return a copy of results with one slot replaced.

    Raises:
        IndexError: If index is out of range
    """
    if not 0 <= index < len(results):
        raise IndexError(f"result index {index} out of range")
    updated = list(results)
    updated[index] = result
    return tuple(updated)


def _result_at(results: Sequence[GenerationResult], index: int) -> GenerationResult:
    if not 0 <= index < len(results):
        raise PostProcessError(f"No result at position {index + 1}")
    result = results[index]
    if not result.succeeded:
        raise PostProcessError(f"Result {index + 1} has no generated image")
    return result


class PostProcessor:
    """Variation and upscale of one already generated result."""

    def __init__(self, client: RemoteGenerationClient):
        self.client = client

    async def variation(self, results: Sequence[GenerationResult], index: int,
                        instruction: str) -> GenerationResult:
        """
        Regenerate one result from its original images with a new instruction.

        Args:
            results: Current result sequence (not modified)
            index: Slot to regenerate
            instruction: Replaces the slot's stored instruction

        Returns:
            The replacement result for the slot

        Raises:
            PostProcessError: If the slot is unusable or the remote call fails
        """
        current = _result_at(results, index)
        job = GenerationJob(
            base=current.base,
            reference=current.reference,
            instruction=instruction.strip(),
            variation=True,
        )
        if not job.is_well_formed:
            raise PostProcessError("Describe the variation you want to see")

        try:
            image = await self.client.generate(
                to_image_input(job.base),
                to_image_input(job.reference) if job.reference is not None else None,
                job.instruction,
                True,
            )
        except TryOnError as e:
            logger.warning(f"Variation of result {index + 1} failed: {e}")
            raise PostProcessError(f"Variation failed: {e}") from e

        return replace(current, image=image, instruction=job.instruction, upscaled=False)

    async def upscale(self, results: Sequence[GenerationResult], index: int) -> GenerationResult:
        """
        Enhance the currently displayed image of one result.

        Raises:
            PostProcessError: If the slot is unusable, already upscaled,
                or the remote call fails
        """
        current = _result_at(results, index)
        if current.upscaled:
            raise PostProcessError(f"Result {index + 1} is already upscaled")

        displayed = ImageResource(
            data=current.image,
            media_type=sniff_media_type(current.image) or PNG,
        )
        try:
            image = await self.client.enhance(to_image_input(displayed))
        except TryOnError as e:
            logger.warning(f"Upscale of result {index + 1} failed: {e}")
            raise PostProcessError(f"Upscale failed: {e}") from e

        return replace(current, image=image, upscaled=True)
