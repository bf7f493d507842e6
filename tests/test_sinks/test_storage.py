"""Tests for the Cloud Storage sink."""

import httpx
import pytest

from rtdb_profiler.credentials import Credential
from rtdb_profiler.errors import SinkError
from rtdb_profiler.sinks.storage import StorageSink

BASE = "https://storage.test"
UPLOAD_URL = f"{BASE}/upload/storage/v1/b/demo.appspot.com/o"


class TestStorageSink:

    @pytest.mark.asyncio
    async def test_upload(self, respx_mock):
        """Media upload with object name, payload and auth."""
        route = respx_mock.post(UPLOAD_URL).mock(
            return_value=httpx.Response(200, json={"name": "obj", "size": "2"})
        )
        path = "profiler-service-results/10-19-2026/9:05:01.123.json"

        async with StorageSink(
            "demo.appspot.com", Credential(access_token="tok"), base_url=BASE
        ) as sink:
            resource = await sink.upload(path, b"[]")

        assert resource == {"name": "obj", "size": "2"}
        request = route.calls.last.request
        assert request.url.params["uploadType"] == "media"
        assert request.url.params["name"] == path
        assert request.content == b"[]"
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_upload_failure_raises_sink_error(self, respx_mock):
        respx_mock.post(UPLOAD_URL).mock(return_value=httpx.Response(404, text="No such bucket"))

        async with StorageSink("demo.appspot.com", base_url=BASE, backoff=0.0) as sink:
            with pytest.raises(SinkError) as exc_info:
                await sink.upload("a/b.json", b"{}")

        assert exc_info.value.sink == "storage"
        assert exc_info.value.status_code == 404
