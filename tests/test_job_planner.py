"""Tests for job_planner.py - expanding selections into jobs."""

import logging

import pytest

from errors import ValidationError
from image_codec import ImageResource
from job_planner import plan
from tryon_types import OutfitSpec


class TestPlanValidation:
    """Tests for inputs that cannot form any job."""

    def test_no_model_images(self):
        """Test that an empty model selection is rejected."""
        with pytest.raises(ValidationError, match="no model image"):
            plan([], [OutfitSpec(description="a red dress")])

    def test_no_usable_outfit(self, model_a):
        """Test that outfits with neither image nor text are rejected."""
        outfits = [OutfitSpec(), OutfitSpec(description="   ")]
        with pytest.raises(ValidationError, match="no usable outfit"):
            plan([model_a], outfits)

    def test_no_outfits_at_all(self, model_a):
        """Test that an empty outfit list is rejected."""
        with pytest.raises(ValidationError, match="no usable outfit"):
            plan([model_a], [])

    def test_all_models_unsupported(self):
        """Test that skipping every model image fails the batch."""
        gif = ImageResource(data=b"GIF89a", media_type="image/gif")
        with pytest.raises(ValidationError, match="no valid jobs"):
            plan([gif], [OutfitSpec(description="a coat")])


class TestPlanCrossProduct:
    """Tests for job expansion and ordering."""

    def test_model_major_order(self, model_a, model_b, outfit_image):
        """Test that jobs are ordered model-major, outfit-minor."""
        outfits = [
            OutfitSpec(description="a suit"),
            OutfitSpec(image=outfit_image),
        ]
        jobs = plan([model_a, model_b], outfits)

        assert len(jobs) == 4
        assert [(j.model_index, j.outfit_index) for j in jobs] == [(0, 0), (0, 1), (1, 0), (1, 1)]
        assert jobs[0].base is model_a
        assert jobs[2].base is model_b
        assert jobs[1].reference is outfit_image
        assert jobs[0].reference is None

    def test_two_models_one_text_outfit(self, model_a, model_b):
        """Test that two models and one described outfit give two jobs."""
        jobs = plan([model_a, model_b], [OutfitSpec(description="a trench coat")])

        assert len(jobs) == 2
        assert all(job.instruction == "a trench coat" for job in jobs)

    def test_invalid_outfit_skipped(self, model_a):
        """Test that an empty outfit is skipped when another is usable."""
        outfits = [OutfitSpec(), OutfitSpec(description="a denim jacket")]
        jobs = plan([model_a], outfits)

        assert len(jobs) == 1
        assert jobs[0].outfit_index == 1
        assert jobs[0].instruction == "a denim jacket"

    def test_instruction_is_trimmed(self, model_a):
        """Test that descriptions are stripped of surrounding whitespace."""
        jobs = plan([model_a], [OutfitSpec(description="  a hat \n")])
        assert jobs[0].instruction == "a hat"

    def test_image_only_outfit(self, model_a, outfit_image):
        """Test that an outfit with only an image forms a job."""
        jobs = plan([model_a], [OutfitSpec(image=outfit_image)])

        assert len(jobs) == 1
        assert jobs[0].instruction == ""
        assert jobs[0].is_well_formed

    def test_jobs_are_not_variations(self, model_a):
        """Test that planned jobs are plain generations."""
        jobs = plan([model_a], [OutfitSpec(description="a scarf")])
        assert jobs[0].variation is False

    def test_unsupported_model_skipped_with_warning(self, model_a, caplog):
        """Test that an unsupported model image is skipped, not fatal."""
        webp = ImageResource(data=b"RIFF", media_type="image/webp")
        outfits = [OutfitSpec(description="a kimono"), OutfitSpec(description="a poncho")]

        with caplog.at_level(logging.WARNING, logger="job_planner"):
            jobs = plan([webp, model_a], outfits)

        assert len(jobs) == 2
        assert all(job.base is model_a for job in jobs)
        assert all(job.model_index == 1 for job in jobs)
        assert "Skipping model image 1" in caplog.text
