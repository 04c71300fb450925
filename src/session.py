"""Session state: the single owner of inputs, batch results and errors.

The planner, executor, estimator and post-processor act on snapshots
passed in and hand back new values. This module is the only place those
values are stored, and it only stores them once a unit of work has
settled.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Callable, Sequence

from batch_executor import BatchExecutor
from config import Settings, settings as default_settings
from errors import BatchError, PostProcessError, TryOnError, ValidationError
from gemini_client import RemoteGenerationClient
from image_codec import ImageResource, PreviewStore
from job_planner import plan
from post_processing import PostProcessor, replace_at
from progress import ProgressReadout, track_progress
from tryon_types import BatchRun, BatchStatus, GenerationResult, OutfitSpec

logger = logging.getLogger(__name__)

Listener = Callable[[str, dict], None]


class TryOnSession:
    """Holds one user's selection, current batch and follow-up operations."""

    def __init__(self, client: RemoteGenerationClient, settings: Settings | None = None):
        """Initialize the session.

        Args:
            client: Remote generation client shared by every job
            settings: Application settings (defaults to environment settings)
        """
        settings = settings or default_settings
        self.client = client
        self.progress_config = settings.progress
        self.max_concurrency = settings.batch.max_concurrency
        self.previews = PreviewStore()
        self._post = PostProcessor(client)
        self._listeners: list[Listener] = []
        # Bumped whenever results are superseded; stale work checks it before storing
        self._epoch = 0
        self._init_state()

    def _init_state(self) -> None:
        self.model_images: tuple[ImageResource, ...] = ()
        self.model_previews: tuple[str, ...] = ()
        self.outfits: tuple[OutfitSpec, ...] = (OutfitSpec(),)
        self.outfit_previews: dict[str, str] = {}
        self.batch: BatchRun | None = None
        self.error: str | None = None
        self.progress = ProgressReadout()
        self._pending: set[int] = set()

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, event: str, data: dict) -> None:
        """Notify all listeners of an event.

        Iterates a snapshot so listeners may unsubscribe while handling.
        """
        for listener in list(self._listeners):
            try:
                listener(event, data)
            except Exception as e:
                logger.exception(f"Error in session listener for event {event}: {e}")

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def results(self) -> tuple[GenerationResult, ...]:
        return self.batch.results if self.batch else ()

    @property
    def is_generating(self) -> bool:
        return self.batch is not None and self.batch.is_running

    @property
    def status(self) -> str:
        return self.batch.status.value if self.batch else "idle"

    def is_pending(self, index: int) -> bool:
        return index in self._pending

    def preview_for_outfit(self, outfit: OutfitSpec) -> str | None:
        return self.outfit_previews.get(outfit.id)

    # ------------------------------------------------------------------
    # Selection editing
    # ------------------------------------------------------------------

    def on_selection_changed(self, files: Sequence[ImageResource]) -> None:
        """Replace the model image selection."""
        old_previews = self.model_previews
        self.model_previews = tuple(self.previews.create(f) for f in files)
        self.model_images = tuple(files)
        for handle in old_previews:
            self.previews.revoke(handle)
        self._notify("selection_changed", {"target": "models", "count": len(files)})

    def _outfit_at(self, slot: int) -> OutfitSpec:
        if not 0 <= slot < len(self.outfits):
            raise ValidationError(f"No outfit at position {slot + 1}")
        return self.outfits[slot]

    def _replace_outfit(self, slot: int, outfit: OutfitSpec) -> None:
        outfits = list(self.outfits)
        outfits[slot] = outfit
        self.outfits = tuple(outfits)

    def on_outfit_selection_changed(self, slot: int, files: Sequence[ImageResource]) -> None:
        """Set (or clear, with no files) the image of one outfit slot."""
        outfit = self._outfit_at(slot)
        image = files[0] if files else None

        self.previews.revoke(self.outfit_previews.pop(outfit.id, None))
        if image is not None:
            self.outfit_previews[outfit.id] = self.previews.create(image)

        self._replace_outfit(slot, outfit.with_image(image))
        self._notify("selection_changed", {"target": "outfit", "slot": slot})

    def on_text_changed(self, slot: int, text: str) -> None:
        """Update the description of one outfit slot."""
        outfit = self._outfit_at(slot)
        self._replace_outfit(slot, outfit.with_description(text))

    def add_outfit(self) -> OutfitSpec:
        """Append an empty outfit slot."""
        outfit = OutfitSpec()
        self.outfits = self.outfits + (outfit,)
        self._notify("selection_changed", {"target": "outfit", "slot": len(self.outfits) - 1})
        return outfit

    def remove_outfit(self, slot: int) -> None:
        """Remove an outfit slot; the last remaining slot cannot be removed."""
        outfit = self._outfit_at(slot)
        if len(self.outfits) == 1:
            raise ValidationError("At least one outfit is required")
        self.previews.revoke(self.outfit_previews.pop(outfit.id, None))
        self.outfits = self.outfits[:slot] + self.outfits[slot + 1:]
        self._notify("selection_changed", {"target": "outfit", "removed": slot})

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def _start_progress(self, epoch: int, readout: ProgressReadout) -> None:
        """Replace the readout for a new operation and announce it."""
        if epoch != self._epoch:
            return
        self.progress = readout
        self._emit_progress()

    def _set_progress(self, epoch: int, **changes) -> None:
        if epoch != self._epoch:
            return
        # Overlapping post-processes share the readout; it must not move backwards
        percent = changes.get("percent")
        if percent is not None and self._pending and percent < self.progress.percent:
            changes["percent"] = self.progress.percent
        self.progress = replace(self.progress, **changes)
        self._emit_progress()

    def _emit_progress(self) -> None:
        self._notify("progress", {
            "percent": self.progress.percent,
            "message": self.progress.message,
            "seconds_remaining": self.progress.seconds_remaining,
        })

    def _on_batch_message(self, epoch: int) -> Callable[[str], None]:
        def on_message(message: str) -> None:
            if epoch == self._epoch and self.batch is not None:
                self.batch = replace(self.batch, message=message)
            self._set_progress(epoch, message=message)
        return on_message

    def _on_tick(self, epoch: int) -> Callable[[int], None]:
        return lambda percent: self._set_progress(epoch, percent=percent)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def _fail_batch(self, epoch: int, batch: BatchRun, error: str, failures=()) -> None:
        if epoch != self._epoch:
            return
        self.batch = replace(batch, status=BatchStatus.FAILED, failures=tuple(failures), message=error)
        self.error = error
        self._set_progress(epoch, message=error)
        self._notify("batch_failed", {"batch_id": batch.id, "error": error})

    async def request_generate(self) -> BatchRun:
        """
        Plan and run a batch for the current selection.

        Returns:
            The completed batch run

        Raises:
            ValidationError: If no job can be formed or a batch is in flight
            BatchError: If every job failed
        """
        if self.is_generating:
            raise ValidationError("generation already in progress")

        self._epoch += 1
        epoch = self._epoch
        self._pending.clear()
        self.error = None

        model_images, outfits = self.model_images, self.outfits
        batch = BatchRun(status=BatchStatus.PLANNING, message="Preparing jobs...")
        self.batch = batch

        try:
            jobs = plan(model_images, outfits)
        except ValidationError as e:
            self._fail_batch(epoch, batch, f"Generation failed: {e}")
            raise

        estimated = self.progress_config.seconds_per_job * len(jobs)
        message = f"Generating {len(jobs)} image(s)..."
        batch = replace(batch, jobs=tuple(jobs), status=BatchStatus.RUNNING, message=message)
        self.batch = batch
        self._start_progress(epoch, ProgressReadout(percent=0, message=message, estimated_seconds=estimated))
        self._notify("batch_started", {"batch_id": batch.id, "jobs": len(jobs)})

        executor = BatchExecutor(
            self.client,
            on_message=self._on_batch_message(epoch),
            max_concurrency=self.max_concurrency,
        )
        try:
            async with track_progress(estimated, self.progress_config.interval_ms, self._on_tick(epoch)):
                outcome = await executor.run(jobs)
        except BatchError as e:
            self._fail_batch(epoch, self.batch or batch, f"Generation failed: {e}", e.failures)
            raise
        except asyncio.CancelledError:
            self._fail_batch(epoch, self.batch or batch, "Generation was interrupted")
            raise
        except Exception as e:
            logger.exception("Batch execution raised unexpectedly")
            self._fail_batch(epoch, self.batch or batch, f"Generation failed: {e}")
            raise BatchError(str(e)) from e

        message = f"Generated {len(outcome.results)} of {len(jobs)} image(s)"
        if outcome.failure_count:
            message += f" ({outcome.failure_count} failed)"
        completed = replace(
            batch,
            status=BatchStatus.COMPLETED,
            results=tuple(outcome.results),
            failures=tuple(outcome.failures),
            message=message,
        )
        if epoch != self._epoch:
            logger.info(f"Batch {batch.id} finished after being superseded, discarding results")
            return completed

        self.batch = completed
        self._set_progress(epoch, percent=100, message=message)
        self._notify("batch_completed", {
            "batch_id": completed.id,
            "results": len(completed.results),
            "failure_count": completed.failure_count,
        })
        return completed

    # ------------------------------------------------------------------
    # Post-processing
    # ------------------------------------------------------------------

    def _begin_post_process(self, index: int) -> int:
        if self.batch is None or self.batch.status != BatchStatus.COMPLETED:
            raise PostProcessError("There are no results to work on")
        if not 0 <= index < len(self.batch.results):
            raise PostProcessError(f"No result at position {index + 1}")
        if index in self._pending:
            raise PostProcessError(f"Result {index + 1} is already being processed")
        self._pending.add(index)
        self.error = None
        return self._epoch

    def _progress_for_post_process(self, epoch: int, message: str, estimated: float) -> None:
        if len(self._pending) == 1:
            self._start_progress(epoch, ProgressReadout(message=message, estimated_seconds=estimated))
        else:
            # Join the readout of the operations already running
            self._set_progress(epoch, message=message)

    def _end_post_process(self, epoch: int, index: int) -> None:
        if epoch == self._epoch:
            self._pending.discard(index)

    def _fail_post_process(self, epoch: int, error: TryOnError) -> None:
        if epoch != self._epoch:
            return
        self.error = str(error)
        self._set_progress(epoch, message=str(error))
        self._notify("error", {"error": str(error)})

    def _store_result(self, epoch: int, index: int, result: GenerationResult, operation: str) -> GenerationResult:
        if epoch != self._epoch or self.batch is None:
            raise PostProcessError("Results were replaced while this request was running")
        self.batch = replace(self.batch, results=replace_at(self.batch.results, index, result))
        message = f"Result {index + 1} updated"
        if self._pending:
            # Others still in flight; only the last to settle finalizes
            self._set_progress(epoch, message=message)
        else:
            self._set_progress(epoch, percent=100, message=message)
        self._notify("result_replaced", {
            "index": index,
            "operation": operation,
            "upscaled": result.upscaled,
        })
        return result

    async def request_variation(self, index: int, instruction: str) -> GenerationResult:
        """
        Regenerate one result with a new instruction.

        Raises:
            PostProcessError: If the slot cannot be varied or the call fails;
                the slot keeps its previous image
        """
        epoch = self._begin_post_process(index)
        estimated = self.progress_config.seconds_per_job
        self._progress_for_post_process(epoch, f"Creating a variation of result {index + 1}...", estimated)
        try:
            async with track_progress(estimated, self.progress_config.interval_ms, self._on_tick(epoch)):
                result = await self._post.variation(self.results, index, instruction)
        except PostProcessError as e:
            self._fail_post_process(epoch, e)
            raise
        finally:
            self._end_post_process(epoch, index)

        return self._store_result(epoch, index, result, "variation")

    async def request_upscale(self, index: int) -> GenerationResult:
        """
        Upscale the displayed image of one result.

        Raises:
            PostProcessError: If the slot is already upscaled, busy, or the call fails
        """
        epoch = self._begin_post_process(index)
        if self.results[index].upscaled:
            self._end_post_process(epoch, index)
            raise PostProcessError(f"Result {index + 1} is already upscaled")

        estimated = self.progress_config.seconds_per_job
        self._progress_for_post_process(epoch, f"Upscaling result {index + 1}...", estimated)
        try:
            async with track_progress(estimated, self.progress_config.interval_ms, self._on_tick(epoch)):
                result = await self._post.upscale(self.results, index)
        except PostProcessError as e:
            self._fail_post_process(epoch, e)
            raise
        finally:
            self._end_post_process(epoch, index)

        return self._store_result(epoch, index, result, "upscale")

    # ------------------------------------------------------------------
    # Clearing
    # ------------------------------------------------------------------

    def clear_results(self) -> None:
        """Drop results and errors but keep the selection (try another outfit)."""
        self._epoch += 1
        self.batch = None
        self.error = None
        self.progress = ProgressReadout()
        self._pending.clear()
        self._notify("results_cleared", {})

    def reset(self) -> None:
        """Discard all session state and release every preview handle."""
        self._epoch += 1
        released = self.previews.revoke_all()
        self._init_state()
        logger.debug(f"Session reset, released {released} preview(s)")
        self._notify("reset", {})
