"""Generic per-item HTTP enrichment block.

Calls an endpoint once per input item and attaches the response to the
item. The live path uses ``httpx`` with retry/backoff, a per-request
timeout and a shared response cache; the mock path fabricates responses
with simulated latency and makes no network calls.
"""

import asyncio
import random
from typing import Any, Dict, List, Literal, Optional, Tuple

import httpx
from pydantic import Field, field_validator

from ...errors import ItemError, TransientError
from ...utils.cache import Cache, generate_cache_key
from ...utils.paths import get_path
from ...utils.retry import RetryPolicy
from ...workflow.context import ExecutionContext
from ...workflow.templating import interpolate_object
from ..base import BaseBlock, BlockConfig

# Shared across invocations; responses for identical requests are reused
response_cache: Cache = Cache(max_size=1000, default_ttl=3600.0, name="http_request")


class HttpRequestConfig(BlockConfig):
    url: str
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    params: Dict[str, Any] = Field(default_factory=dict)
    body: Optional[Any] = None
    items_path: Optional[str] = Field(default=None, alias="itemsPath")  # Where the item list lives in the input
    result_field: str = Field(default="response", alias="resultField")
    timeout: float = 30.0  # seconds, per request
    retry: RetryPolicy = Field(default_factory=lambda: RetryPolicy(max_retries=2, initial_delay=0.5))
    use_cache: bool = Field(default=True, alias="useCache")
    cache_ttl: Optional[float] = Field(default=None, alias="cacheTtl")
    mock_response: Optional[Any] = Field(default=None, alias="mockResponse")
    mock_latency_ms: Tuple[int, int] = Field(default=(50, 150), alias="mockLatencyMs")

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"timeout must be positive, got {v}")
        return v


class HttpRequestBlock(BaseBlock):
    """Calls an HTTP endpoint for each input item.

    Per-item placeholders use the ``item`` scope, e.g.
    ``url: "https://api.example.com/people/{{item.id}}"``. They are left
    alone by config interpolation and resolved here for each item. A failed
    item is recorded (``error`` on the record and in ``metadata.errors``)
    and the loop continues.
    """
    type = "api.http_request"
    supports_mock = True
    config_model = HttpRequestConfig
    deferred_scopes = ("item", "index")

    def create_client(self, config: HttpRequestConfig) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=config.timeout, follow_redirects=True)

    async def execute_live(self, config: HttpRequestConfig, input: Any, context: ExecutionContext) -> Any:
        items = self._items(config, input)
        self.log(context, "info", f"Executing {config.method} for {len(items)} items (LIVE)")

        records: List[Any] = []
        errors: List[Dict[str, Any]] = []
        cache_hits = 0
        use_cache = config.use_cache and not context.disable_cache

        async with self.create_client(config) as client:
            for index, item in enumerate(items):
                request = self._build_request(config, item, context)
                cache_key = generate_cache_key("http_request", request)
                try:
                    cached = response_cache.get(cache_key) if use_cache else None
                    if cached is not None:
                        cache_hits += 1
                        response = cached
                    else:
                        response = await self.with_retry(
                            lambda request=request: self.with_timeout(
                                self._send(client, request), config.timeout,
                                operation=f"{request['method']} {request['url']}",
                            ),
                            config.retry,
                            context,
                            operation=f"{request['method']} {request['url']}",
                        )
                        if use_cache and response is not None:
                            response_cache.set(cache_key, response, ttl=config.cache_ttl)
                    records.append(_attach(item, config.result_field, response))
                except Exception as e:
                    item_error = ItemError(index, str(e), item)
                    errors.append(item_error.to_dict())
                    records.append(_attach(item, "error", str(item_error)))
                    self.log(context, "warning", f"Item {index} failed: {e}")

                context.update_progress((index + 1) / len(items) * 100, f"item {index + 1}/{len(items)}")

        self.log(
            context, "info", "HTTP requests completed",
            successful=len(items) - len(errors), failed=len(errors), cache_hits=cache_hits,
        )
        return self.completed(
            records,
            total=len(items),
            successful=len(items) - len(errors),
            failed=len(errors),
            cache_hits=cache_hits,
            errors=errors,
        )

    async def execute_mock(self, config: HttpRequestConfig, input: Any, context: ExecutionContext) -> Any:
        items = self._items(config, input)
        self.log(context, "info", f"Simulating {config.method} for {len(items)} items (MOCK)")

        low, high = config.mock_latency_ms
        records = []
        for index, item in enumerate(items):
            await asyncio.sleep(random.uniform(low, max(low, high)) / 1000)
            if config.mock_response is not None:
                response = interpolate_object(config.mock_response, {"item": item, "index": index}, context)
            else:
                request = self._build_request(config, item, context)
                response = {"status": 200, "url": request["url"], "index": index, "source": "mock"}
            records.append(_attach(item, config.result_field, response))
            context.update_progress((index + 1) / len(items) * 100, f"item {index + 1}/{len(items)}")

        return self.completed(records, total=len(items), successful=len(items), failed=0, cache_hits=0, errors=[])

    def _items(self, config: HttpRequestConfig, input: Any) -> List[Any]:
        data = get_path(input, config.items_path) if config.items_path else input
        if data is None:
            return []
        return list(data) if isinstance(data, list) else [data]

    def _build_request(self, config: HttpRequestConfig, item: Any, context: ExecutionContext) -> Dict[str, Any]:
        scope = {"item": item}
        return {
            "method": config.method,
            "url": interpolate_object(config.url, scope, context),
            "headers": interpolate_object(config.headers, scope, context),
            "params": interpolate_object(config.params, scope, context),
            "body": interpolate_object(config.body, scope, context),
        }

    async def _send(self, client: httpx.AsyncClient, request: Dict[str, Any]) -> Any:
        response = await client.request(
            request["method"],
            request["url"],
            headers=request["headers"] or None,
            params=request["params"] or None,
            json=request["body"],
        )
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientError(
                f"HTTP {response.status_code} from {request['url']}", status_code=response.status_code
            )
        response.raise_for_status()
        try:
            return response.json()
        except ValueError:
            return response.text


def _attach(item: Any, field: str, value: Any) -> Dict[str, Any]:
    if isinstance(item, dict):
        return {**item, field: value}
    return {"item": item, field: value}
