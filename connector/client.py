"""
Document store client.

``DocumentStoreClient`` is the public surface of the access layer. Every
call ends up as a task on the client's dispatch queue; single-object reads
go through the id-batching coalescer, and once ``enable_cache`` has been
called reads are served from the read cache until a dirty notification
or a local write evicts them.
"""

import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError as ModelValidationError

from shared.config import ConnectorConfig, get_config
from shared.errors import (
    CredentialsError,
    InvalidObjectIdError,
    NotFoundError,
    PartialResultError,
    ValidationError,
)
from shared.logging import configure_logging, get_logger, set_tenant_context
from shared.metrics import MetricsCollector, get_metrics_collector
from .batching import IdBatchingCoalescer, id_selector
from .caching import ReadCache, stable_hash
from .dispatch import DispatchQueue, HttpxTransport, Transport
from .invalidation import ChannelFactory, InvalidationChannelAdapter, get_channel_factory
from .models import (
    Credentials,
    Document,
    DocumentReference,
    ResponseEnvelope,
    VersionInformation,
    is_object_id,
)
from .routing import EndpointRouter

PARTIAL_POLICIES = ("drop", "raise")

Params = Optional[Dict[str, Any]]


def _has_fields(params: Params) -> bool:
    return bool(params and params.get("fields"))


class DocumentStoreClient:
    """Client for one set of credentials against one document store endpoint."""

    def __init__(
        self,
        config: Optional[ConnectorConfig] = None,
        *,
        transport: Optional[Transport] = None,
        channel_factory: Optional[ChannelFactory] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.config = config or get_config()
        self.logger = get_logger("connector.client")
        self.metrics = metrics or get_metrics_collector("connector")

        self.credentials = Credentials(api_key=self.config.api_key, token=self.config.token)
        self.router = EndpointRouter(self.config.api_url)
        self._shared_transport = transport
        self.transport = transport or HttpxTransport(timeout=self.config.request_timeout)
        self.dispatch = DispatchQueue(
            self.transport,
            self.credentials,
            concurrency=self.config.concurrency,
            host_header=self.config.api_host,
            metrics=self.metrics
        )
        self.coalescer = IdBatchingCoalescer(self.dispatch, self.router, metrics=self.metrics)

        self.channel_factory = channel_factory
        self.cache: Optional[ReadCache] = None
        self.invalidation: Optional[InvalidationChannelAdapter] = None

    async def __aenter__(self) -> "DocumentStoreClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # Configuration

    @property
    def service_url(self) -> str:
        return self.router.service_url

    def set_service_url(self, service_url: str) -> None:
        """Point the client at another endpoint; an empty url is rejected."""
        self.router.service_url = service_url

    def with_credentials(
        self,
        api_key: Optional[str] = None,
        token: Optional[str] = None
    ) -> "DocumentStoreClient":
        """Build a client with other credentials and the same settings.

        The new client has its own queue and cache but reports into the same
        metrics collector. A transport passed to this client's constructor is
        shared too, so closing either client closes it; otherwise the new
        client opens its own.
        """
        config = self.config.model_copy(
            update={"api_key": api_key, "token": token, "api_url": self.service_url}
        )
        return DocumentStoreClient(
            config,
            transport=self._shared_transport,
            channel_factory=self.channel_factory,
            metrics=self.metrics
        )

    async def close(self) -> None:
        """Stop the invalidation channel, the dispatch workers and the transport."""
        try:
            if self.invalidation is not None:
                await self.invalidation.stop()
        finally:
            try:
                await self.dispatch.close()
            finally:
                await self.transport.close()

    # Reads

    async def get_by_id(
        self,
        entity_type: str,
        object_id: str,
        params: Params = None,
        version_id: Optional[str] = None
    ) -> Document:
        """Get a single document by its id.

        A ``version_id`` or a ``fields`` param gets a dedicated request; any
        other fetch is served from the cache or batched with the other
        fetches of this loop turn.
        """
        if not is_object_id(object_id):
            raise InvalidObjectIdError(object_id)

        if version_id:
            return await self._request(
                "GET", self.router.version(entity_type, object_id, version_id), params=params
            )
        if _has_fields(params):
            return await self._request(
                "GET", self.router.crud(entity_type, object_id), params=params
            )

        if self.cache is not None:
            cached = self.cache.get_object(entity_type, object_id)
            if cached is not None:
                return await asyncio.shield(cached)

        return await asyncio.shield(self.coalescer.fetch(entity_type, object_id))

    async def get_by_ids(
        self,
        entity_type: str,
        object_ids: Sequence[str],
        params: Params = None,
        partial: Optional[str] = None
    ) -> List[Document]:
        """Get documents by their ids, in the order requested.

        ``partial`` decides what happens when some ids fail: ``"drop"``
        returns the documents that were found and only raises (the last
        error) when none were; ``"raise"`` raises ``PartialResultError``.
        """
        policy = partial or self.config.partial_policy
        if policy not in PARTIAL_POLICIES:
            raise ValueError(f"Unknown partial policy: {policy}")

        if not object_ids:
            return []

        if _has_fields(params):
            return await self._request(
                "POST", self.router.search(entity_type), body=id_selector(list(object_ids)), params=params
            )

        outcomes = await asyncio.gather(
            *(self.get_by_id(entity_type, object_id, params) for object_id in object_ids),
            return_exceptions=True
        )

        results: List[Document] = []
        errors: Dict[str, BaseException] = {}
        last_error: Optional[BaseException] = None
        for object_id, outcome in zip(object_ids, outcomes):
            if isinstance(outcome, BaseException):
                errors[str(object_id)] = outcome
                last_error = outcome
                continue
            results.append(outcome)

        if errors:
            self.logger.debug(
                "Multi-id fetch had failures",
                entity_type=entity_type,
                failed=len(errors),
                found=len(results),
                policy=policy
            )
            if policy == "raise":
                raise PartialResultError(results, errors)

        if not results and last_error is not None:
            raise last_error
        return results

    async def get_all(
        self,
        entity_type: str,
        params: Params = None,
        *,
        with_metadata: bool = False
    ) -> Union[List[Document], ResponseEnvelope]:
        """Get all documents of a type."""
        if self.cache is not None and not _has_fields(params) and not with_metadata:
            return await self.search(entity_type, {}, params)

        return await self._request(
            "GET", self.router.crud(entity_type), params=params, with_metadata=with_metadata
        )

    async def search(
        self,
        entity_type: str,
        selector: Optional[Dict[str, Any]],
        params: Params = None,
        *,
        with_metadata: bool = False
    ) -> Union[List[Document], ResponseEnvelope]:
        """Get the documents matching a selector."""
        if self.cache is not None and not _has_fields(params) and not with_metadata:
            ids = await self.get_ids(entity_type, selector, params)
            return await self.get_by_ids(entity_type, ids)

        if selector:
            return await self._request(
                "POST",
                self.router.search(entity_type),
                body=selector,
                params=params,
                with_metadata=with_metadata
            )

        return await self.get_all(entity_type, params, with_metadata=with_metadata)

    async def get_ids(
        self,
        entity_type: str,
        selector: Optional[Dict[str, Any]] = None,
        params: Params = None
    ) -> List[str]:
        """Get the ids of the documents matching a selector."""
        key = None
        if self.cache is not None:
            key = stable_hash(entity_type, selector, params)
            cached = self.cache.get_ids(entity_type, key)
            if cached is not None:
                return list(cached)

        documents = await self.search(entity_type, selector or {}, {"fields": "_id", **(params or {})})
        ids = [document["_id"] for document in documents]

        if key is not None and self.cache is not None:
            self.cache.set_ids(entity_type, key, ids)
        return ids

    async def get_id(self, entity_type: str, selector: Optional[Dict[str, Any]] = None) -> Optional[str]:
        """Get the id of the first document matching a selector, or ``None``."""
        ids = await self.get_ids(entity_type, selector, {"limit": 1})
        return ids[-1] if ids else None

    async def get_history(self, entity_type: str, object_id: str) -> List[VersionInformation]:
        """Get the version list of a document."""
        if not is_object_id(object_id):
            raise InvalidObjectIdError(object_id)
        versions = await self._request("GET", self.router.history(entity_type, object_id))
        return [VersionInformation.model_validate(version) for version in versions or []]

    async def history_search(self, entity_type: str, selector: Dict[str, Any]) -> List[VersionInformation]:
        """Search the version history of a type."""
        versions = await self._request("POST", self.router.history_search(entity_type), body=selector)
        return [VersionInformation.model_validate(version) for version in versions or []]

    async def get_by_ref(
        self,
        ref: Union[DocumentReference, Dict[str, Any]],
        parent_document: Optional[Document] = None
    ) -> Document:
        """Resolve a document reference, descending into sub-document arrays along its path.

        A root type starting with ``parent.`` resolves against ``parent_document``
        instead of fetching the root document.
        """
        if isinstance(ref, dict):
            try:
                ref = DocumentReference.model_validate(ref)
            except ModelValidationError as e:
                raise ValidationError("Invalid documentReference", {"errors": e.errors()}) from e

        if not (ref and ref.root_document_entity_type and (ref.root_document_id or parent_document)):
            raise ValidationError("Please provide a documentReference object with a type and id")

        if ref.refers_to_parent:
            if parent_document is None:
                raise ValidationError("A parent reference needs the parent document")
            document = parent_document
        else:
            document = await self.get_by_id(ref.root_document_entity_type, ref.root_document_id)

        for step in ref.path:
            candidates = document.get(step.field) if isinstance(document, dict) else None
            match = next(
                (
                    sub_document for sub_document in candidates or []
                    if isinstance(sub_document, dict) and sub_document.get("_id") == step.object_id
                ),
                None
            )
            if match is None:
                raise NotFoundError(
                    "The referred object within its parent could not be found",
                    {"field": step.field, "object_id": step.object_id}
                )
            document = match

        return document

    async def aggregate(self, entity_type: str, pipeline: List[Dict[str, Any]]) -> List[Any]:
        """Run an aggregation pipeline; results are cached per pipeline when caching is on."""
        if not pipeline:
            raise ValidationError("Please provide a valid Aggregation Pipeline.")

        key = None
        if self.cache is not None:
            key = stable_hash(entity_type, pipeline)
            cached = self.cache.get_aggregate(entity_type, key)
            if cached is not None:
                return list(cached)

        rows = await self._request("POST", self.router.aggregate(entity_type), body=pipeline)

        if key is not None and self.cache is not None:
            self.cache.set_aggregate(entity_type, key, list(rows or []))
        return rows

    # Writes

    async def update(self, entity_type: str, document: Document) -> Document:
        """Create a document, or update it when it carries an ``_id``."""
        object_id = document.get("_id")
        if object_id and self.cache is not None:
            self.cache.drop_object(entity_type, object_id)

        if object_id:
            return await self._request("PUT", self.router.crud(entity_type, object_id), body=document)
        return await self._request("POST", self.router.crud(entity_type), body=document)

    async def destroy(self, entity_type: str, object_id: str) -> Any:
        """Delete a document."""
        if not is_object_id(object_id):
            raise InvalidObjectIdError(object_id)
        if self.cache is not None:
            self.cache.drop_object(entity_type, object_id)

        return await self._request("DELETE", self.router.crud(entity_type, object_id))

    async def undelete(self, entity_type: str, object_id: str) -> Document:
        """Restore a deleted document."""
        if not is_object_id(object_id):
            raise InvalidObjectIdError(object_id)
        return await self._request("POST", self.router.undelete(entity_type, object_id))

    async def finalize_invoice(self, invoice_id: str) -> Document:
        """Finalize an invoice."""
        if not is_object_id(invoice_id):
            raise InvalidObjectIdError(invoice_id)
        return await self._request("POST", self.router.finalize_invoice(invoice_id))

    # Files

    def create_read_stream(self, file_id: str) -> AsyncIterator[bytes]:
        """Stream the binary content of a stored file.

        The download bypasses the dispatch queue. Iterating raises
        ``RemoteError`` when the remote answers with a non-success status.
        """
        if not is_object_id(file_id):
            raise InvalidObjectIdError(file_id)
        if not self.credentials.present:
            raise CredentialsError()

        headers = self.dispatch.build_headers({"Accept": "*/*"})
        self.logger.debug("Streaming file", file_id=file_id)
        return self.transport.stream("GET", self.router.binary(file_id), headers)

    # Cache

    async def enable_cache(self, tenant_id: str, channel_url: str) -> ReadCache:
        """Turn on the read cache, kept fresh by the tenant's dirty channel.

        Raises ``ChannelError`` and leaves caching off when the channel
        cannot be joined.
        """
        if not tenant_id or not channel_url:
            raise ValidationError("Caching needs a tenant id and a channel url")

        if self.invalidation is not None:
            await self.invalidation.stop()

        cache = ReadCache(self.config.cache_capacity, metrics=self.metrics)
        factory = self.channel_factory or get_channel_factory(self.config.invalidation_backend)
        adapter = InvalidationChannelAdapter(
            cache,
            factory,
            tenant_id,
            channel_url,
            metrics=self.metrics,
            reconnect_delay=self.config.invalidation_reconnect_delay,
            reconnect_max_delay=self.config.invalidation_reconnect_max_delay
        )
        await adapter.start()

        self.cache = cache
        self.coalescer.cache = cache
        self.invalidation = adapter
        set_tenant_context(tenant_id)

        self.logger.info("Read cache enabled", tenant_id=tenant_id, channel=adapter.channel_id)
        return cache

    async def _request(
        self,
        method: str,
        url: str,
        *,
        body: Any = None,
        params: Params = None,
        with_metadata: bool = False
    ) -> Any:
        if with_metadata:
            params = {"includeMetadata": True, **(params or {})}
        envelope = await self.dispatch.request(method, url, body=body, params=params)
        return envelope if with_metadata else envelope.primary


def create_client(config: Optional[ConnectorConfig] = None, **kwargs) -> DocumentStoreClient:
    """Configure logging from ``config`` and build a client."""
    config = config or get_config()
    configure_logging("connector", config.log_level, json_logs=config.env != "local")
    return DocumentStoreClient(config, **kwargs)
