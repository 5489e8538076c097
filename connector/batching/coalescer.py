"""
Id-batching coalescer for single-object fetches.

Fetches for ``(entity_type, object_id)`` registered during one pass of the
event loop are merged into a single ``{"_id": {"$in": [...]}}`` search per
entity type. A second request for an id that is already pending shares the
first request's future.
"""

import asyncio
from typing import Dict, List, Optional

from shared.errors import NotFoundError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..caching import ReadCache
from ..deferred import Deferred
from ..dispatch import DispatchQueue
from ..models import Document, ResponseEnvelope
from ..routing import EndpointRouter


def id_selector(object_ids: List[str]) -> Dict[str, Dict[str, List[str]]]:
    """Selector matching any of ``object_ids``."""
    return {"_id": {"$in": object_ids}}


class IdBatchingCoalescer:
    """Collects pending single-id fetches and spools them once per loop turn."""

    def __init__(
        self,
        dispatch: DispatchQueue,
        router: EndpointRouter,
        *,
        cache: Optional[ReadCache] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.dispatch = dispatch
        self.router = router
        self.cache = cache
        self.metrics = metrics
        self.logger = get_logger("connector.batching")

        self.pending: Dict[str, Dict[str, Deferred[Document]]] = {}
        self._spool_scheduled = False

    def fetch(self, entity_type: str, object_id: str) -> "asyncio.Future[Document]":
        """Return the future for one document, joining a pending request when there is one."""
        by_id = self.pending.setdefault(entity_type, {})

        existing = by_id.get(object_id)
        if existing is not None:
            if self.metrics:
                self.metrics.increment_counter("coalesced_dedup_total", entity_type=entity_type)
            return existing.result

        deferred: Deferred[Document] = Deferred()
        by_id[object_id] = deferred
        if self.cache is not None:
            self.cache.put_object(entity_type, object_id, deferred.result)

        if not self._spool_scheduled:
            asyncio.get_running_loop().call_soon(self.spool)
            self._spool_scheduled = True

        return deferred.result

    def spool(self) -> None:
        """Send one multi-get per entity type for everything pending."""
        self._spool_scheduled = False

        pending, self.pending = self.pending, {}
        for entity_type, deferreds in pending.items():
            if not deferreds:
                continue

            object_ids = list(deferreds.keys())
            self.logger.debug("Spooling batch", entity_type=entity_type, count=len(object_ids))
            if self.metrics:
                self.metrics.increment_counter("coalesced_batches_total", entity_type=entity_type)
                self.metrics.observe_histogram(
                    "coalesced_batch_size", len(object_ids), entity_type=entity_type
                )

            future = self.dispatch.request(
                "POST",
                self.router.search(entity_type),
                body=id_selector(object_ids)
            )
            future.add_done_callback(
                lambda done, batch=deferreds: self._settle_batch(batch, done)
            )

    def _settle_batch(
        self,
        deferreds: Dict[str, Deferred[Document]],
        outcome: "asyncio.Future[ResponseEnvelope]"
    ) -> None:
        """Fan the multi-get result out to the individual deferreds."""
        if outcome.cancelled():
            error: BaseException = asyncio.CancelledError()
        else:
            error = outcome.exception()

        if error is not None:
            for deferred in deferreds.values():
                deferred.reject(error)
            return

        documents = outcome.result().primary or []
        by_id = {
            document["_id"]: document
            for document in documents
            if isinstance(document, dict) and "_id" in document
        }

        for object_id, deferred in deferreds.items():
            document = by_id.get(object_id)
            if document is None:
                deferred.reject(NotFoundError(f"{object_id} is not found", {"object_id": object_id}))
                continue
            deferred.resolve(document)
