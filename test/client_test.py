"""
HttpCompletionExecutor 테스트 (httpx.MockTransport)

실행: python -m pytest test/client_test.py -v
"""

import json

import httpx
import pytest

from worker.client import HttpCompletionExecutor
from worker.exception import DownstreamError
from worker.model import CompletionConfig


def make_executor(handler, **config) -> HttpCompletionExecutor:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    options = {"base_url": "https://llm.test/v1", "api_key": "sk-test"}
    options.update(config)
    return HttpCompletionExecutor(CompletionConfig(**options), client=client)


class TestCompletion:
    """정상 응답 테스트"""

    @pytest.mark.asyncio
    async def test_request_shape_and_answer(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"choices": [{"message": {"content": "Looks fine."}}]})

        executor = make_executor(handler)
        answer = await executor("Summarize my inbox", "gpt-4o-mini")

        assert answer == "Looks fine."
        assert seen["url"] == "https://llm.test/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"] == {
            "model": "gpt-4o-mini",
            "messages": [{"role": "user", "content": "Summarize my inbox"}],
            "max_tokens": 500,
            "temperature": 0.7,
        }

    @pytest.mark.asyncio
    async def test_missing_content_returns_empty_string(self):
        executor = make_executor(lambda request: httpx.Response(200, json={"choices": []}))
        assert await executor("hello", "gpt-4o-mini") == ""

    @pytest.mark.asyncio
    async def test_no_api_key_omits_authorization(self):
        headers = {}

        def handler(request: httpx.Request) -> httpx.Response:
            headers.update(request.headers)
            return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

        executor = make_executor(handler, api_key=None)
        await executor("hello", "local-model")
        assert "authorization" not in {k.lower() for k in headers}


class TestErrors:
    """다운스트림 실패 테스트"""

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        executor = make_executor(lambda request: httpx.Response(429, text="Too Many Requests"))

        with pytest.raises(DownstreamError) as exc_info:
            await executor("hello", "gpt-4o-mini")
        assert exc_info.value.status_code == 429
        assert "Too Many Requests" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        executor = make_executor(handler)
        with pytest.raises(DownstreamError) as exc_info:
            await executor("hello", "gpt-4o-mini")
        assert exc_info.value.status_code is None
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_malformed_body(self):
        executor = make_executor(lambda request: httpx.Response(200, text="<html>oops</html>"))

        with pytest.raises(DownstreamError):
            await executor("hello", "gpt-4o-mini")

    @pytest.mark.asyncio
    async def test_aclose_keeps_injected_client_open(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={})))
        executor = HttpCompletionExecutor(CompletionConfig(), client=client)

        await executor.aclose()
        assert not client.is_closed
        await client.aclose()
