"""
Unit tests for the httpx transport.
"""

import json

import httpx
import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from connector.dispatch import HttpxTransport
from shared.errors import RemoteError


class TestHttpxTransport:
    """Test cases for HttpxTransport."""

    @pytest.fixture
    def seen(self):
        """Requests received by the mock transport."""
        return []

    def make_transport(self, seen, response):
        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return response

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return HttpxTransport(client=client), client

    @pytest.mark.asyncio
    async def test_send_json_request(self, seen):
        """Test method, headers, body and params reach the wire."""
        transport, client = self.make_transport(seen, httpx.Response(200, json=[{"_id": "a"}]))

        response = await transport.send(
            "POST",
            "https://api.test/0.1/Person.json/search",
            {"x-api-key": "test-key"},
            {"_id": {"$in": ["a"]}},
            {"limit": 5, "includeMetadata": True, "page": None}
        )

        request = seen[0]
        assert request.method == "POST"
        assert request.headers["x-api-key"] == "test-key"
        assert json.loads(request.content) == {"_id": {"$in": ["a"]}}
        assert request.url.params["limit"] == "5"
        assert request.url.params["includeMetadata"] == "true"
        assert "page" not in request.url.params

        assert response.status_code == 200
        assert response.body == [{"_id": "a"}]
        assert response.is_success

        await client.aclose()

    @pytest.mark.asyncio
    async def test_error_status_is_returned_not_raised(self, seen):
        """Test non-2xx responses come back as data."""
        transport, client = self.make_transport(
            seen, httpx.Response(404, json={"code": 404, "message": "Not found"})
        )

        response = await transport.send("GET", "https://api.test/0.1/Person.json/crud/x", {})

        assert response.status_code == 404
        assert response.reason == "Not Found"
        assert response.body["message"] == "Not found"
        assert not response.is_success

        await client.aclose()

    @pytest.mark.asyncio
    async def test_non_json_and_empty_bodies(self, seen):
        """Test text bodies are kept as text and empty bodies become None."""
        transport, client = self.make_transport(seen, httpx.Response(502, text="Bad gateway"))
        response = await transport.send("GET", "https://api.test/0.1/Person.json/crud", {})
        assert response.body == "Bad gateway"
        await client.aclose()

        transport, client = self.make_transport(seen, httpx.Response(200))
        response = await transport.send("DELETE", "https://api.test/0.1/Person.json/crud/x", {})
        assert response.body is None
        await client.aclose()

    @pytest.mark.asyncio
    async def test_connection_error_raises(self):
        """Test transport failures surface as httpx exceptions."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = HttpxTransport(client=client)

        with pytest.raises(httpx.ConnectError):
            await transport.send("GET", "https://api.test/0.1/Person.json/crud", {})

        await client.aclose()

    @pytest.mark.asyncio
    async def test_close_keeps_borrowed_client_open(self, seen):
        """Test a client passed in by the caller is not closed."""
        transport, client = self.make_transport(seen, httpx.Response(200, json=[]))

        await transport.close()

        assert not client.is_closed
        await client.aclose()

    @pytest.mark.asyncio
    async def test_close_owned_client(self):
        """Test the lazily created client is closed."""
        transport = HttpxTransport(timeout=5.0)
        client = transport.client

        assert client.timeout.connect == 5.0

        await transport.close()
        assert client.is_closed

    @pytest.mark.asyncio
    async def test_stream_yields_body_chunks(self, seen):
        """Test a streamed response arrives chunk by chunk with the given headers."""
        async def body():
            for chunk in (b"%PDF-", b"1.4\n", b"%%EOF"):
                yield chunk

        transport, client = self.make_transport(seen, httpx.Response(200, content=body()))

        chunks = [
            chunk async for chunk in transport.stream(
                "GET", "https://api.test/0.1/File.json/binary/f1", {"Host": "files.internal"}
            )
        ]

        assert b"".join(chunks) == b"%PDF-1.4\n%%EOF"
        assert len(chunks) == 3
        assert seen[0].method == "GET"
        assert seen[0].headers["Host"] == "files.internal"

        await client.aclose()

    @pytest.mark.asyncio
    async def test_stream_error_status_raises(self, seen):
        """Test a non-2xx streamed response raises RemoteError with the remote message."""
        transport, client = self.make_transport(
            seen, httpx.Response(404, json={"code": 404, "message": "File not found"})
        )

        with pytest.raises(RemoteError) as exc_info:
            async for _ in transport.stream("GET", "https://api.test/0.1/File.json/binary/f1", {}):
                pass

        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "File not found"

        await client.aclose()
