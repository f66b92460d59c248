"""Background parsing with request ids and timeouts.

Requests run on a thread pool. Every request carries a caller-chosen id and
every response echoes it; a request that does not finish within its timeout
is reported as failed and its cancel event is set so the engine stops at the
next checkpoint. Nothing is retried.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field

from bytelens.core.engine import ParseCancelled, ParsedNode
from bytelens.core.io import Buffer, ByteSource
from bytelens.core.runtime import Runtime

logger = logging.getLogger(__name__)


# ============================================================================
# MESSAGES
# ============================================================================


@dataclass(frozen=True)
class ParseRequest:
    """A unit of work for the worker.

    Args:
        request_id: Caller-chosen id, echoed on the response
        data: Bytes (or a ByteSource) to parse
        format_id: Format to use (detected when None)
        filename: Optional name used for extension-based detection
        start: Viewport start; with `end`, makes this a range parse
        end: Viewport end (exclusive)
    """

    request_id: str
    data: Buffer | ByteSource
    format_id: str | None = None
    filename: str | None = None
    start: int | None = None
    end: int | None = None

    @property
    def is_range(self) -> bool:
        return self.start is not None and self.end is not None


@dataclass(frozen=True)
class ParseResponse:
    """Outcome of one request.

    Attributes:
        request_id: Id of the request this answers
        success: False on timeout, cancellation or an unexpected error
        root: Root node of a full parse
        nodes: Overlapping nodes of a range parse
        error: Failure description when success is False
        elapsed: Seconds between submission and completion
    """

    request_id: str
    success: bool
    root: ParsedNode | None = None
    nodes: tuple[ParsedNode, ...] = ()
    error: str | None = None
    elapsed: float = 0.0


@dataclass
class _Job:
    request: ParseRequest
    future: Future[ParseResponse]
    cancel: threading.Event = field(default_factory=threading.Event)
    submitted: float = field(default_factory=time.monotonic)


# ============================================================================
# WORKER
# ============================================================================


class ParseWorker:
    def __init__(
        self,
        runtime: Runtime,
        *,
        max_workers: int | None = None,
        timeout: float | None = None,
    ) -> None:
        self.runtime = runtime
        self.timeout = timeout if timeout is not None else runtime.profile.worker_timeout
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or runtime.profile.worker_threads,
            thread_name_prefix="bytelens-parse",
        )
        self._jobs: dict[str, _Job] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> ParseWorker:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def submit(self, request: ParseRequest) -> str:
        """Queue a request. Raises ValueError if its id is still in flight.

        A finished job nobody waited for is dropped and its id reused.
        """
        with self._lock:
            old = self._jobs.get(request.request_id)
            if old is not None:
                if not old.future.done():
                    raise ValueError(f"Request id '{request.request_id}' is already pending")
                logger.debug("dropping unclaimed result of %s", request.request_id)
            cancel = threading.Event()
            future = self._executor.submit(self._run, request, cancel, time.monotonic())
            self._jobs[request.request_id] = _Job(request, future, cancel)
        logger.debug("submitted request %s", request.request_id)
        return request.request_id

    def wait(self, request_id: str, timeout: float | None = None) -> ParseResponse:
        """Block until the request finishes or times out.

        Raises:
            KeyError: No request with that id is pending.
        """
        with self._lock:
            job = self._jobs[request_id]
        limit = self.timeout if timeout is None else timeout
        remaining = max(0.0, limit - (time.monotonic() - job.submitted))
        try:
            response = job.future.result(timeout=remaining)
        except FutureTimeout:
            job.cancel.set()
            job.future.cancel()
            logger.warning("request %s timed out after %.1fs", request_id, limit)
            response = ParseResponse(
                request_id=request_id,
                success=False,
                error=f"Timed out after {limit:g}s",
                elapsed=time.monotonic() - job.submitted,
            )
        finally:
            with self._lock:
                if self._jobs.get(request_id) is job:
                    del self._jobs[request_id]
        return response

    def parse(self, request: ParseRequest, timeout: float | None = None) -> ParseResponse:
        """Submit and wait in one call."""
        return self.wait(self.submit(request), timeout)

    def cancel(self, request_id: str) -> bool:
        with self._lock:
            job = self._jobs.get(request_id)
        if job is None:
            return False
        job.cancel.set()
        return True

    def pending(self) -> list[str]:
        """Ids of requests that have not finished yet."""
        with self._lock:
            return [rid for rid, job in self._jobs.items() if not job.future.done()]

    def close(self) -> None:
        with self._lock:
            jobs = list(self._jobs.values())
            self._jobs.clear()
        for job in jobs:
            job.cancel.set()
        self._executor.shutdown(wait=True, cancel_futures=True)

    def _run(self, request: ParseRequest, cancel: threading.Event, submitted: float) -> ParseResponse:
        try:
            if cancel.is_set():
                raise ParseCancelled()
            if request.is_range:
                nodes = self.runtime.parse_range(
                    request.data,
                    request.start,  # type: ignore[arg-type]
                    request.end,  # type: ignore[arg-type]
                    format_id=request.format_id,
                    filename=request.filename,
                    cancel=cancel,
                )
                return ParseResponse(
                    request_id=request.request_id,
                    success=True,
                    nodes=tuple(nodes),
                    elapsed=time.monotonic() - submitted,
                )
            root = self.runtime.parse(
                request.data,
                format_id=request.format_id,
                filename=request.filename,
                cancel=cancel,
            )
            return ParseResponse(
                request_id=request.request_id,
                success=True,
                root=root,
                elapsed=time.monotonic() - submitted,
            )
        except ParseCancelled:
            return ParseResponse(
                request_id=request.request_id,
                success=False,
                error="Cancelled",
                elapsed=time.monotonic() - submitted,
            )
        except Exception as e:  # noqa: BLE001
            logger.exception("request %s failed", request.request_id)
            return ParseResponse(
                request_id=request.request_id,
                success=False,
                error=f"{type(e).__name__}: {e}",
                elapsed=time.monotonic() - submitted,
            )
