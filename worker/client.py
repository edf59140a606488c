"""
HttpCompletionExecutor: OpenAI 호환 chat completions 호출

RequestBatcher의 executor로 사용합니다.
"""

import logging
from typing import Any

import httpx

from worker.exception import DownstreamError
from worker.model import CompletionConfig

logger = logging.getLogger(__name__)


class HttpCompletionExecutor:
    """
    chat completions API 호출기

    사용 예시:
        executor = HttpCompletionExecutor(CompletionConfig(api_key="..."))
        batcher = RequestBatcher(executor)
    """

    def __init__(self, config: CompletionConfig, client: httpx.AsyncClient | None = None):
        """
        Args:
            config: API 설정
            client: 외부에서 주입할 httpx 클라이언트 (테스트용 MockTransport 등)
        """
        self._config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.timeout_seconds)

    async def __call__(self, payload: str, model: str) -> str:
        """
        Raises:
            DownstreamError: 전송 실패, 비정상 응답 코드, 응답 형식 오류
        """
        url = f"{self._config.base_url.rstrip('/')}/chat/completions"
        headers = {"Content-Type": "application/json"}
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"

        body = {
            "model": model or self._config.model,
            "messages": [{"role": "user", "content": payload}],
            "max_tokens": self._config.max_tokens,
            "temperature": self._config.temperature,
        }

        try:
            response = await self._client.post(url, headers=headers, json=body)
        except httpx.HTTPError as e:
            raise DownstreamError(f"Request to {url} failed: {e}") from e

        if response.status_code != 200:
            raise DownstreamError(
                f"Completion API returned {response.status_code}: {response.text[:300]}",
                status_code=response.status_code,
            )

        try:
            data: dict[str, Any] = response.json()
            choice = (data.get("choices") or [{}])[0]
            content = (choice.get("message") or {}).get("content") or ""
        except (ValueError, AttributeError, TypeError) as e:
            raise DownstreamError(f"Malformed completion response: {e}") from e

        logger.debug(f"Completion received (model={body['model']}, chars={len(content)})")
        return content

    async def aclose(self) -> None:
        """직접 생성한 클라이언트만 닫음"""
        if self._owns_client:
            await self._client.aclose()
