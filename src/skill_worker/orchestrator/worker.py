"""Queue worker that feeds broker jobs through the lifecycle controller."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from skill_worker.config import WorkerIdentity
from skill_worker.orchestrator.broker import JobBroker
from skill_worker.orchestrator.lifecycle import JobController
from skill_worker.orchestrator.models import (
    JobEnvelope,
    JobParseError,
    JobResult,
    ProcessingRecord,
    job_envelope,
    parse_job,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class QueueIterationOutcome:
    """What happened during one pass of the queue loop."""

    received: bool
    job_id: str | None = None
    success: bool | None = None


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    loop_errors: int = 0


class QueueWorker:
    """Consumes jobs one at a time and publishes exactly one result per job."""

    def __init__(
        self,
        *,
        broker: JobBroker,
        controller: JobController,
        identity: WorkerIdentity,
        error_delay_seconds: float = 5.0,
    ) -> None:
        self.broker = broker
        self.controller = controller
        self.identity = identity
        self.error_delay_seconds = error_delay_seconds
        self._stop_requested = False
        self._stop_signal_name: str | None = None

    def run_once(self) -> QueueIterationOutcome:
        """Wait for one job, process it, publish its result.

        Broker errors and payloads without a usable id propagate to the caller.
        A payload with an id but invalid fields gets an error result. The
        processing entry is removed whenever it was created.
        """

        raw = self.broker.pop_job()
        if raw is None:
            return QueueIterationOutcome(received=False)

        try:
            job = parse_job(raw)
        except JobParseError as error:
            envelope = job_envelope(raw)
            if envelope is None:
                raise
            logger.error("Rejected job %s: %s", envelope.id, error)
            result = self._run_registered(
                envelope,
                lambda: self._rejection_result(str(error)),
            )
        else:
            logger.info("Received job: %s (%s)", job.id, job.type)
            envelope = JobEnvelope(id=job.id, type=job.type, metadata=job.metadata_payload())
            result = self._run_registered(envelope, lambda: self.controller.process_job(job))

        logger.info("Job %s completed (success: %s)", envelope.id, result.success)
        return QueueIterationOutcome(received=True, job_id=envelope.id, success=result.success)

    def _run_registered(
        self,
        envelope: JobEnvelope,
        produce: Callable[[], JobResult],
    ) -> JobResult:
        self.broker.mark_processing(
            envelope.id,
            ProcessingRecord(
                worker_id=self.identity.worker_id,
                worker_name=self.identity.worker_name,
                started_at_ms=int(time.time() * 1000),
                type=envelope.type,
            ),
        )
        try:
            result = produce()
            self.broker.publish_result(self._result_message(envelope, result))
        finally:
            self.broker.clear_processing(envelope.id)
        return result

    def _rejection_result(self, message: str) -> JobResult:
        return JobResult(
            success=False,
            output=None,
            git_info=None,
            duration_ms=0,
            worker_name=self.controller.worker_name,
            error=f"Invalid job: {message}",
        )

    def run_forever(self, *, max_jobs: int | None = None) -> WorkerRunSummary:
        """Loop until stopped by a signal or after ``max_jobs`` received jobs."""

        summary = WorkerRunSummary()
        logger.info("Waiting for jobs...")
        with self._signal_handlers():
            while not self._stop_requested:
                if max_jobs is not None and summary.processed >= max_jobs:
                    break
                try:
                    outcome = self.run_once()
                except Exception as error:
                    summary.loop_errors += 1
                    logger.error("Main loop error: %s", error, exc_info=True)
                    self._sleep_with_stop(self.error_delay_seconds)
                    continue

                if not outcome.received:
                    continue
                summary.processed += 1
                if outcome.success:
                    summary.succeeded += 1
                else:
                    summary.failed += 1

        if self._stop_signal_name is not None:
            logger.info("Worker stopped by %s", self._stop_signal_name)
        return summary

    def request_stop(self, *, signal_name: str = "request") -> None:
        self._stop_requested = True
        self._stop_signal_name = signal_name

    def _result_message(self, envelope: JobEnvelope, result: JobResult) -> dict[str, Any]:
        message = result.to_payload()
        message.update(
            {
                "jobId": envelope.id,
                "type": envelope.type,
                "metadata": envelope.metadata,
                "workerId": self.identity.worker_id,
            },
        )
        return message

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(signal_name=name)
            logger.info("Received %s, stopping after the current job", name)

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return

        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
