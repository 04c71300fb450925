"""Concurrent execution of a planned batch of generation jobs.

Every job is issued without waiting for the others and the executor only
returns once all of them have settled. One job failing never cancels or
affects another.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Sequence

from errors import BatchError, TryOnError
from gemini_client import RemoteGenerationClient
from image_codec import to_image_input
from tryon_types import GenerationJob, GenerationResult, JobFailure

logger = logging.getLogger(__name__)


@dataclass
class BatchOutcome:
    """Result of a batch in which at least one job succeeded."""
    results: list[GenerationResult] = field(default_factory=list)
    failures: list[JobFailure] = field(default_factory=list)

    @property
    def failure_count(self) -> int:
        return len(self.failures)


class BatchExecutor:
    """Fans a batch out to the remote client and collects every outcome."""

    def __init__(
        self,
        client: RemoteGenerationClient,
        on_message: Callable[[str], None] | None = None,
        max_concurrency: int | None = None,
    ):
        """Initialize the executor.

        Args:
            client: Remote generation client
            on_message: Receives advisory progress messages
            max_concurrency: Optional cap on simultaneous remote calls
                (None issues every job at once)
        """
        self.client = client
        self.on_message = on_message
        self.max_concurrency = max_concurrency

    def _report(self, message: str) -> None:
        if self.on_message:
            try:
                self.on_message(message)
            except Exception as e:
                logger.exception(f"Error in progress listener: {e}")

    async def _run_job(
        self,
        idx: int,
        job: GenerationJob,
        total: int,
        semaphore: asyncio.Semaphore | None,
    ) -> GenerationResult:
        if semaphore is not None:
            async with semaphore:
                return await self._call(idx, job, total)
        return await self._call(idx, job, total)

    async def _call(self, idx: int, job: GenerationJob, total: int) -> GenerationResult:
        self._report(f"Processing job {idx + 1} of {total}...")
        try:
            image = await self.client.generate(
                to_image_input(job.base),
                to_image_input(job.reference) if job.reference is not None else None,
                job.instruction,
                job.variation,
            )
        except TryOnError as e:
            logger.warning(f"Job {idx + 1}/{total} failed: {e}")
            return GenerationResult.from_job(job, idx, error=str(e))
        return GenerationResult.from_job(job, idx, image=image)

    async def run(self, jobs: Sequence[GenerationJob]) -> BatchOutcome:
        """
        Run all jobs concurrently and wait for every one to settle.

        Args:
            jobs: Planned jobs, in display order

        Returns:
            Successful results in job order, plus failure diagnostics

        Raises:
            BatchError: If no job produced an image
        """
        total = len(jobs)
        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None

        settled = await asyncio.gather(
            *(self._run_job(idx, job, total, semaphore) for idx, job in enumerate(jobs)),
            return_exceptions=True,
        )

        outcome = BatchOutcome()
        for idx, item in enumerate(settled):
            if isinstance(item, BaseException):
                # Not a remote failure; still isolated to this job
                logger.error(f"Job {idx + 1}/{total} raised unexpectedly: {item!r}")
                outcome.failures.append(JobFailure(idx, str(item) or type(item).__name__))
            elif item.succeeded:
                outcome.results.append(item)
            else:
                outcome.failures.append(JobFailure(idx, item.error or "unknown error"))

        if not outcome.results:
            raise BatchError("no images could be generated", failures=outcome.failures)

        self._report(f"Generated {len(outcome.results)} of {total} images")
        if outcome.failures:
            logger.warning(f"{outcome.failure_count} of {total} jobs failed")
        return outcome
