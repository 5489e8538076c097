"""
Integration tests for complete client flows.
"""

import asyncio
import json

import httpx
import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from connector import create_client
from connector.dispatch import HttpxTransport
from shared.config import ConnectorConfig
from shared.errors import NotFoundError, RemoteError
from shared.test_helpers import (
    FakeChannelFactory,
    InMemoryDocumentStore,
    RecordedCall,
    StubTransport,
    make_object_id,
)

SERVICE_URL = "https://api.test/0.1/"
CHANNEL_URL = "wss://notify.test/socket"


def wire_client(store, seen):
    """httpx client whose requests are answered by the in-memory store."""
    def handler(request: httpx.Request) -> httpx.Response:
        params = dict(request.url.params)
        body = json.loads(request.content) if request.content else None
        call = RecordedCall(request.method, str(request.url.copy_with(query=None)), dict(request.headers), body, params)
        seen.append(call)

        response = store(call)
        if response.body is None:
            return httpx.Response(response.status_code)
        return httpx.Response(response.status_code, json=response.body)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestClientFlow:
    """Integration tests for complete client flows."""

    @pytest.fixture
    def people(self):
        """Fifty persons."""
        return [
            {"_id": make_object_id("p"), "firstName": f"Person {index}", "lastName": "Tester"}
            for index in range(50)
        ]

    @pytest.fixture
    def events(self):
        """Ten events."""
        return [{"_id": make_object_id("e"), "title": f"Event {index}"} for index in range(10)]

    @pytest.fixture
    def store(self, people, events):
        """In-memory store with persons and events."""
        return InMemoryDocumentStore({"Person": people, "Event": events}, {"Person": ["lastName"]})

    @pytest.fixture
    def config(self):
        """Client configuration."""
        return ConnectorConfig(api_key="integration-key", api_url=SERVICE_URL, log_level="warning")

    @pytest.mark.asyncio
    async def test_over_the_wire(self, store, config, people):
        """Test requests travel through httpx with credentials and JSON bodies."""
        seen = []
        transport = HttpxTransport(client=wire_client(store, seen))
        client = create_client(config, transport=transport)

        person = await client.get_by_id("Person", people[0]["_id"])
        assert person["firstName"] == "Person 0"

        envelope = await client.get_all("Person", {"limit": 5}, with_metadata=True)
        assert len(envelope.primary) == 5
        assert envelope.metadata == {"total": 50}

        with pytest.raises(RemoteError) as exc_info:
            await client.update("Person", {"firstName": "No last name"})
        assert exc_info.value.errors == {"lastName": "lastName is required"}

        assert seen[0].headers["x-api-key"] == "integration-key"
        assert seen[0].body == {"_id": {"$in": [people[0]["_id"]]}}
        assert seen[1].params == {"includeMetadata": "true", "limit": "5"}

        await client.close()
        await transport.client.aclose()

    @pytest.mark.asyncio
    async def test_burst_of_reads_is_batched(self, store, config, people, events):
        """Test a burst of single reads becomes one multi-get per type."""
        transport = StubTransport(store, delay=0.001)
        client = create_client(config, transport=transport)

        requests = [("Person", person["_id"]) for person in people] * 5
        requests += [("Event", event["_id"]) for event in events]
        results = await asyncio.gather(*(client.get_by_id(kind, object_id) for kind, object_id in requests))

        assert len(results) == 260
        assert len(transport.calls) == 2
        assert len(transport.calls_to("Person.json/search")[0].body["_id"]["$in"]) == 50
        assert len(transport.calls_to("Event.json/search")[0].body["_id"]["$in"]) == 10

        await client.close()

    @pytest.mark.asyncio
    async def test_many_direct_requests_respect_concurrency(self, store, config, people):
        """Test many dedicated requests never exceed the worker pool."""
        transport = StubTransport(store, delay=0.001)
        client = create_client(config, transport=transport)

        results = await asyncio.gather(*(
            client.get_by_id("Person", person["_id"], {"fields": "firstName"})
            for person in people * 10
        ))

        assert len(results) == 500
        assert transport.max_in_flight <= config.concurrency

        await client.close()

    @pytest.mark.asyncio
    async def test_cached_lifecycle(self, store, config, people):
        """Test create, read, remote change, delete with the read cache on."""
        transport = StubTransport(store)
        factory = FakeChannelFactory()
        client = create_client(config, transport=transport, channel_factory=factory)
        await client.enable_cache("acme", CHANNEL_URL)

        created = await client.update("Person", {"firstName": "Nieuw", "lastName": "Tester"})
        object_id = created["_id"]

        testers = await client.search("Person", {"lastName": "Tester"})
        assert len(testers) == 51
        calls_after_search = len(transport.calls)

        # Served from the cache
        assert (await client.get_by_id("Person", object_id))["firstName"] == "Nieuw"
        assert await client.search("Person", {"lastName": "Tester"}) == testers
        assert len(transport.calls) == calls_after_search

        # Changed by someone else
        store.documents["Person"][object_id] = {**created, "firstName": "Gewijzigd"}
        factory.channel.publish(f"Person|{object_id}")
        assert (await client.get_by_id("Person", object_id))["firstName"] == "Gewijzigd"

        # Untouched objects stay cached
        untouched = len(transport.calls)
        await client.get_by_id("Person", people[0]["_id"])
        assert len(transport.calls) == untouched

        await client.destroy("Person", object_id)
        factory.channel.publish(f"Person|{object_id}")
        with pytest.raises(NotFoundError):
            await client.get_by_id("Person", object_id)
        assert len(await client.search("Person", {"lastName": "Tester"})) == 50

        await client.close()
        assert factory.channel.closed
