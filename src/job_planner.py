"""Expands a model/outfit selection into independent generation jobs."""

import logging
from typing import Sequence

from errors import ValidationError
from image_codec import ImageResource
from tryon_types import GenerationJob, OutfitSpec

logger = logging.getLogger(__name__)


def plan(model_images: Sequence[ImageResource], outfits: Sequence[OutfitSpec]) -> list[GenerationJob]:
    """
    Build the cross product of model images and usable outfits.

    Jobs are ordered model-major: every outfit for model 0, then every
    outfit for model 1, and so on. Outfits with neither an image nor a
    description are skipped, as are model images of an unsupported
    media type (with a warning).

    Args:
        model_images: Selected model photos
        outfits: Outfit specs in slot order

    Returns:
        The planned jobs

    Raises:
        ValidationError: If there is no model image, no usable outfit,
            or nothing left to generate after skipping unsupported images
    """
    if not model_images:
        raise ValidationError("no model image")

    usable = [(idx, outfit) for idx, outfit in enumerate(outfits) if outfit.is_valid]
    if not usable:
        raise ValidationError("no usable outfit")

    jobs = []
    for model_idx, model in enumerate(model_images):
        if model is None or not model.is_supported:
            media_type = model.media_type if model is not None else None
            logger.warning(f"Skipping model image {model_idx + 1}: unsupported type {media_type}")
            continue

        for outfit_idx, outfit in usable:
            jobs.append(GenerationJob(
                base=model,
                reference=outfit.image,
                instruction=outfit.description.strip(),
                model_index=model_idx,
                outfit_index=outfit_idx,
            ))

    if not jobs:
        raise ValidationError("no valid jobs")

    skipped = len(outfits) - len(usable)
    if skipped:
        logger.debug(f"Skipped {skipped} empty outfit slot(s)")
    logger.info(f"Planned {len(jobs)} job(s) from {len(model_images)} model image(s) x {len(usable)} outfit(s)")
    return jobs
