"""
Cat-Scale Collection Orchestrator

Runs every catalogued job, isolating failures so that one broken tool never
stops the rest of the collection. Jobs run sequentially by default or on a
bounded thread pool. Each job's stderr is appended to the shared error log as
one tagged block.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, List, Optional

import psutil

from catscale.collectors.catalogue import Catalogue
from catscale.collectors.job import Job, JobCancelled, JobContext, JobError, JobTimeout
from catscale.core.config import CollectionConfig
from catscale.core.schema import Category, JobResult, JobStatus, RunManifest
from catscale.core.utils import Timer, utc_now_iso
from catscale.core.workspace import OutputWorkspace

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"


class Orchestrator:
    """
    Executes a job catalogue against an output workspace.

    Usage:
        orchestrator = Orchestrator(config, on_status=click.echo)
        manifest = orchestrator.run(catalogue, workspace)
    """

    def __init__(
        self,
        config: CollectionConfig,
        on_status: Optional[Callable[[str], None]] = None,
    ):
        self.config = config
        self._on_status = on_status or (lambda msg: None)
        self._cancel_event = threading.Event()
        self._announce_lock = threading.Lock()
        self._announced = set()

    def cancel(self) -> None:
        """Stop starting new jobs and kill in-flight commands."""
        if not self._cancel_event.is_set():
            logger.warning("Cancellation requested; stopping remaining jobs")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def run(
        self,
        catalogue: Catalogue,
        workspace: OutputWorkspace,
        date_line: str = "",
    ) -> RunManifest:
        """
        Run every job and return the manifest in catalogue order.
        Returns only after all jobs have finished.
        """
        manifest = RunManifest(
            hostname=self.config.hostname,
            platform_id=catalogue.platform_id,
            outfile=self.config.outfile_name,
            started_utc=utc_now_iso(),
            date_line=date_line,
        )
        results: Dict[str, JobResult] = {}

        logger.info(
            f"Running {len(catalogue.runnable())} of {len(catalogue)} jobs "
            f"with {self.config.workers} worker(s)"
        )

        if self.config.workers > 1:
            self._run_pool(catalogue, workspace, results)
        else:
            self._run_sequential(catalogue, workspace, results)

        for job in catalogue:
            result = results.get(job.name)
            if result is None:
                result = self._skipped(job, CANCELLED)
            manifest.add(result)

        manifest.cancelled = self.cancelled
        manifest.finished_utc = utc_now_iso()

        logger.info(
            f"Collection finished: {manifest.succeeded} succeeded, "
            f"{manifest.failed} failed, {manifest.skipped} skipped"
        )
        return manifest

    def _run_sequential(
        self,
        catalogue: Catalogue,
        workspace: OutputWorkspace,
        results: Dict[str, JobResult],
    ) -> None:
        for job in catalogue:
            try:
                results[job.name] = self._execute(job, catalogue, workspace)
            except KeyboardInterrupt:
                self.cancel()

    def _run_pool(
        self,
        catalogue: Catalogue,
        workspace: OutputWorkspace,
        results: Dict[str, JobResult],
    ) -> None:
        executor = ThreadPoolExecutor(
            max_workers=self.config.workers,
            thread_name_prefix="catscale-job",
        )
        futures = {
            executor.submit(self._execute, job, catalogue, workspace): job
            for job in catalogue
        }

        try:
            for future in as_completed(futures):
                job = futures[future]
                results[job.name] = future.result()
        except KeyboardInterrupt:
            self.cancel()
            # Pending jobs see the event and skip; running ones are killed.
            for future, job in futures.items():
                results[job.name] = future.result()
        finally:
            executor.shutdown(wait=True)

    def _announce(self, category: Category) -> None:
        with self._announce_lock:
            if category in self._announced:
                return
            self._announced.add(category)
        self._on_status(f"Collecting {category.label}...")

    def _skipped(self, job: Job, reason: str) -> JobResult:
        return JobResult(
            job_name=job.name,
            category=job.category,
            status=JobStatus.SKIPPED,
            reason=reason,
        )

    def _execute(self, job: Job, catalogue: Catalogue, workspace: OutputWorkspace) -> JobResult:
        """Run one job; every failure is converted into a FAILED result."""
        reason = catalogue.skip_reason(job.name)
        if reason is None and self.cancelled:
            reason = CANCELLED
        if reason is not None:
            logger.debug(f"Skipping {job.name}: {reason}")
            return self._skipped(job, reason)

        self._announce(job.category)

        timeout_s = job.timeout_s or self.config.job_timeout_s
        ctx = JobContext(
            job=job,
            workspace=workspace,
            config=self.config,
            cancel_event=self._cancel_event,
            deadline=time.monotonic() + timeout_s if timeout_s else None,
        )

        started_utc = utc_now_iso()
        failure = ""

        with Timer() as timer:
            try:
                job.action.run(ctx)
            except JobTimeout:
                failure = f"timed out after {timeout_s:g}s"
            except JobCancelled:
                failure = CANCELLED
            except JobError as e:
                failure = str(e)
            except psutil.Error as e:
                failure = f"psutil: {e}"
            except OSError as e:
                failure = f"{e.filename}: {e.strerror}" if e.filename else str(e)
            except KeyboardInterrupt:
                self.cancel()
                failure = CANCELLED
            except Exception as e:
                logger.exception(f"Unexpected error in job {job.name}")
                failure = f"{type(e).__name__}: {e}"

        stderr = "\n".join(ctx.stderr)
        status = JobStatus.FAILED if failure else JobStatus.SUCCEEDED

        if failure:
            logger.warning(f"Job {job.name} failed: {failure}")
            workspace.error_log.append(job.name, f"FAILED: {failure}", stderr)
        elif stderr:
            workspace.error_log.append(job.name, "stderr", stderr)

        logger.debug(f"{job.name}: {status.value} in {timer.duration_s:.2f} s")

        return JobResult(
            job_name=job.name,
            category=job.category,
            status=status,
            reason=failure,
            stderr=stderr,
            started_utc=started_utc,
            duration_s=timer.duration_s,
            outputs=self._produced(job, ctx),
        )

    @staticmethod
    def _produced(job: Job, ctx: JobContext) -> tuple:
        return tuple(name for name in job.outputs if ctx.output_path(name).exists())


def results_by_category(manifest: RunManifest) -> Dict[Category, List[JobResult]]:
    """Group manifest results by category, preserving order."""
    grouped: Dict[Category, List[JobResult]] = {}
    for result in manifest.results:
        grouped.setdefault(result.category, []).append(result)
    return grouped
