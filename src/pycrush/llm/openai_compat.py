from __future__ import annotations

import asyncio
import json
import logging
import socket
import threading
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, AsyncIterator, Iterator

from ..errors import ProviderError
from ..session.models import Usage
from .provider import ProviderRequest, StreamEnd, StreamEvent, TextDelta, ToolUseRequest

logger = logging.getLogger(__name__)

# 408 timeout, 409 conflict, 429 rate limit, 5xx server side.
_TRANSIENT_STATUS = {408, 409, 429}


def is_transient_status(code: int) -> bool:
    return code in _TRANSIENT_STATUS or 500 <= code <= 599


def _usage_from(obj: dict[str, Any] | None) -> Usage:
    if not isinstance(obj, dict):
        return Usage()
    return Usage(
        input_tokens=int(obj.get("prompt_tokens") or obj.get("input_tokens") or 0),
        output_tokens=int(obj.get("completion_tokens") or obj.get("output_tokens") or 0),
    )


@dataclass
class OpenAICompatProvider:
    """
    Minimal OpenAI-compatible Chat Completions streaming client.
    Works with OpenAI and many compatible gateways (OpenRouter, vLLM, LM Studio, etc.)
    """

    model: str
    base_url: str
    api_key: str
    provider_name: str = "openai"
    timeout: float = 120.0
    temperature: float = 0.2

    def _payload(self, request: ProviderRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": request.messages,
            "temperature": self.temperature,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if request.tools:
            payload["tools"] = request.tools
            payload["tool_choice"] = "auto"
        if request.max_tokens:
            payload["max_tokens"] = request.max_tokens
        return payload

    def _iter_sse(self, request: ProviderRequest, stop: threading.Event) -> Iterator[StreamEvent]:
        if not self.api_key:
            raise ProviderError("Missing API key for provider " + self.provider_name, transient=False)

        url = self.base_url.rstrip("/") + "/chat/completions"
        data = json.dumps(self._payload(request)).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        req = urllib.request.Request(url, data=data, headers=headers, method="POST")

        # tool_calls are streamed as deltas by index; accumulate into strings.
        tc_by_index: dict[int, dict[str, str]] = {}
        usage = Usage()
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                for raw_line in resp:
                    if stop.is_set():
                        return
                    line = raw_line.decode("utf-8", errors="replace").strip()
                    if not line.startswith("data:"):
                        continue
                    data_str = line[len("data:"):].strip()
                    if data_str == "[DONE]":
                        break
                    try:
                        ev = json.loads(data_str)
                    except ValueError:
                        logger.debug("skipping malformed SSE chunk: %.200s", data_str)
                        continue
                    if ev.get("usage"):
                        usage = _usage_from(ev.get("usage"))
                    choices = ev.get("choices") or []
                    if not choices:
                        continue
                    delta = choices[0].get("delta") or {}
                    if delta.get("content"):
                        yield TextDelta(str(delta["content"]))
                    for tc in delta.get("tool_calls") or []:
                        idx = int(tc.get("index", 0))
                        cur = tc_by_index.setdefault(idx, {"id": "", "name": "", "arguments": ""})
                        if tc.get("id"):
                            cur["id"] = tc["id"]
                        fn = tc.get("function") or {}
                        if fn.get("name"):
                            cur["name"] = fn["name"]
                        if fn.get("arguments"):
                            cur["arguments"] += str(fn["arguments"])
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace") if hasattr(e, "read") else ""
            raise ProviderError(
                f"Provider HTTPError {e.code}: {e.reason}\n{body}",
                transient=is_transient_status(e.code),
                status_code=e.code,
            ) from e
        except (urllib.error.URLError, socket.timeout, TimeoutError, ConnectionError) as e:
            raise ProviderError(f"Provider connection error: {e}", transient=True) from e

        for idx in sorted(tc_by_index):
            tc = tc_by_index[idx]
            yield ToolUseRequest(id=tc["id"], name=tc["name"], args_json=tc["arguments"] or "{}")
        yield StreamEnd(usage=usage)

    async def stream(self, request: ProviderRequest) -> AsyncIterator[StreamEvent]:
        """Run the blocking HTTP stream in a thread and hand events over a queue."""
        loop = asyncio.get_running_loop()
        q: asyncio.Queue[StreamEvent | BaseException | None] = asyncio.Queue()
        stop = threading.Event()

        def _producer() -> None:
            try:
                for ev in self._iter_sse(request, stop):
                    loop.call_soon_threadsafe(q.put_nowait, ev)
                loop.call_soon_threadsafe(q.put_nowait, None)
            except BaseException as e:
                try:
                    loop.call_soon_threadsafe(q.put_nowait, e)
                except RuntimeError:
                    # loop already closed
                    pass

        threading.Thread(target=_producer, name="pycrush-llm-stream", daemon=True).start()
        try:
            while True:
                item = await q.get()
                if item is None:
                    return
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            stop.set()
