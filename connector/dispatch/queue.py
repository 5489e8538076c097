"""
Bounded-concurrency dispatch queue.

Every outbound call of a client goes through one ``DispatchQueue``. A fixed
pool of worker tasks drains a FIFO; each worker performs the network call,
classifies the response and settles the task's deferred:

- 2xx: resolved with a ``ResponseEnvelope`` (records plus optional metadata)
- non-2xx: rejected with ``RemoteError`` carrying the remote field errors
- transport exception: rejected with the exception itself
- no credentials: rejected with ``CredentialsError`` before any I/O

Nothing is retried.
"""

import asyncio
from typing import Any, Dict, List, Optional

from opentelemetry import trace

from shared.errors import ConnectorError, CredentialsError, RemoteError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..deferred import Deferred
from ..models import Credentials, ResponseEnvelope, Task
from .transport import Transport

DEFAULT_CONCURRENCY = 8

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
}

tracer = trace.get_tracer("connector.dispatch")


class DispatchQueue:
    """FIFO of tasks executed by at most ``concurrency`` workers."""

    def __init__(
        self,
        transport: Transport,
        credentials: Credentials,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        host_header: Optional[str] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self.transport = transport
        self.credentials = credentials
        self.concurrency = concurrency
        self.host_header = host_header
        self.metrics = metrics
        self.logger = get_logger("connector.dispatch")

        self._pending: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []
        self.in_flight = 0

    @property
    def depth(self) -> int:
        """Tasks waiting for a free worker."""
        return self._pending.qsize() if self._pending is not None else 0

    def submit(self, task: Task) -> Deferred:
        """Enqueue a task; its deferred settles once a worker has run it."""
        if not task.url or not task.method:
            raise ValueError("A task needs a target url and an http method")

        self._ensure_workers()
        self._pending.put_nowait(task)
        self._record_depth()
        return task.deferred

    def request(
        self,
        method: str,
        url: str,
        *,
        body: Any = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> "asyncio.Future[ResponseEnvelope]":
        """Build a task for one call, submit it and return its future."""
        task = Task(
            url=url,
            method=method,
            deferred=Deferred(),
            headers=headers,
            body=body,
            params=params
        )
        return self.submit(task).result

    async def close(self) -> None:
        """Stop the workers; tasks still waiting are rejected."""
        workers, self._workers = self._workers, []
        for worker in workers:
            worker.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)

        if self._pending is not None:
            while not self._pending.empty():
                task = self._pending.get_nowait()
                task.deferred.reject(ConnectorError("DISPATCH_CLOSED", "Dispatch queue closed"))
            self._pending = None

        self.logger.info("Dispatch queue closed", workers=len(workers))

    def _ensure_workers(self) -> None:
        if self._workers:
            return

        self._pending = asyncio.Queue()
        self._workers = [
            asyncio.create_task(self._worker(worker_id), name=f"docstore-dispatch-{worker_id}")
            for worker_id in range(self.concurrency)
        ]
        self.logger.debug("Dispatch workers started", concurrency=self.concurrency)

    async def _worker(self, worker_id: int) -> None:
        """Drain the FIFO until cancelled."""
        queue = self._pending
        while True:
            task = await queue.get()
            self._record_depth()
            try:
                await self._execute(task)
            except asyncio.CancelledError:
                task.deferred.reject(ConnectorError("DISPATCH_CLOSED", "Dispatch queue closed"))
                raise
            finally:
                queue.task_done()

    async def _execute(self, task: Task) -> None:
        """Run one task and settle its deferred."""
        # Checked per task: credentials may be set after the queue was built.
        if not self.credentials.present:
            self._record_outcome(task.method, "credentials_missing")
            task.deferred.reject(CredentialsError())
            return

        headers = self.build_headers(task.headers)

        with tracer.start_as_current_span("docstore.dispatch") as span:
            span.set_attribute("http.method", task.method)
            span.set_attribute("http.url", task.url)

            self._set_in_flight(self.in_flight + 1)
            try:
                if self.metrics:
                    with self.metrics.time_operation("dispatch_duration_seconds", method=task.method):
                        response = await self.transport.send(
                            task.method, task.url, headers, task.body, task.params
                        )
                else:
                    response = await self.transport.send(
                        task.method, task.url, headers, task.body, task.params
                    )
            except Exception as exc:
                self.logger.warning(
                    "Transport error",
                    method=task.method,
                    url=task.url,
                    error=str(exc)
                )
                span.record_exception(exc)
                self._record_outcome(task.method, "transport_error")
                task.deferred.reject(exc)
                return
            finally:
                self._set_in_flight(self.in_flight - 1)

            span.set_attribute("http.status_code", response.status_code)

        if response.is_success:
            self._record_outcome(task.method, "success")
            task.deferred.resolve(ResponseEnvelope.decode(response.body))
            return

        error = RemoteError.from_response(response.status_code, response.body, response.reason)
        self.logger.info(
            "Remote error",
            method=task.method,
            url=task.url,
            status_code=response.status_code,
            code=error.code,
            message=error.message
        )
        self._record_outcome(task.method, "remote_error")
        task.deferred.reject(error)

    def build_headers(self, headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Request headers with the Host override and the credentials applied."""
        headers = dict(headers) if headers else dict(DEFAULT_HEADERS)
        if self.host_header:
            headers["Host"] = self.host_header
        if self.credentials.api_key:
            headers["x-api-key"] = self.credentials.api_key
        if self.credentials.token:
            headers["x-access-token"] = self.credentials.token
        return headers

    def _set_in_flight(self, value: int) -> None:
        self.in_flight = value
        if self.metrics:
            self.metrics.set_gauge("dispatch_in_flight", value)

    def _record_depth(self) -> None:
        if self.metrics:
            self.metrics.set_gauge("dispatch_queue_depth", self.depth)

    def _record_outcome(self, method: str, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("dispatch_requests_total", method=method, outcome=outcome)
