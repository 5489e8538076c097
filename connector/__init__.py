"""
Client-side access layer for the document store REST API.

- client: ``DocumentStoreClient``, the public operations
- dispatch: bounded worker pool and HTTP transport
- batching: same-turn id coalescing into multi-gets
- caching: object / id-search / aggregate read cache
- invalidation: dirty-notification channel adapter
"""

from .client import DocumentStoreClient, create_client
from .deferred import Deferred
from .models import Credentials, DocumentReference, ResponseEnvelope, VersionInformation

__all__ = [
    "Credentials",
    "Deferred",
    "DocumentReference",
    "DocumentStoreClient",
    "ResponseEnvelope",
    "VersionInformation",
    "create_client",
]
