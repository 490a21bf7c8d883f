"""Tavily web-search client with credit accounting, rate limiting and caching."""

import asyncio
import json
import logging
import time

import httpx
from pydantic import BaseModel

from options_intel.data.rate_limiter import TokenBucket
from options_intel.models.research import WebSearchResponse, WebSearchResult

logger = logging.getLogger(__name__)

SEARCH_API = "https://api.tavily.com/search"
TIMEOUT = 30.0

CREDITS_PER_SEARCH = {"basic": 1, "advanced": 2}
RETRYABLE_STATUS = (429, 500, 502, 503, 504)

# Response cache TTLs in seconds
NEWS_CACHE_TTL = 6 * 60 * 60
GENERAL_CACHE_TTL = 12 * 60 * 60
MAX_CACHE_ENTRIES = 1000


class SearchOptions(BaseModel):
    topic: str | None = None  # "general" or "news"
    search_depth: str = "basic"  # "basic" or "advanced"
    days: int | None = None
    max_results: int = 5
    include_domains: list[str] = []
    exclude_domains: list[str] = []
    chunks_per_source: int | None = None
    include_raw_content: bool = False

    @property
    def credits(self) -> int:
        return CREDITS_PER_SEARCH.get(self.search_depth, 1)


class TavilyClient:
    """Async Tavily search client.

    Every live call reports its credit cost on the returned response;
    responses served from the in-memory cache cost nothing.
    """

    def __init__(
        self,
        api_key: str,
        *,
        requests_per_minute: int = 100,
        timeout: float = TIMEOUT,
        retries: int = 2,
        retry_delay: float = 0.5,
        max_cache_entries: int = MAX_CACHE_ENTRIES,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.retries = retries
        self.retry_delay = retry_delay
        self.max_cache_entries = max_cache_entries
        self.limiter = TokenBucket(requests_per_minute, requests_per_minute)
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._cache: dict[str, tuple[float, WebSearchResponse]] = {}

    @property
    def configured(self) -> bool:
        key = (self.api_key or "").strip()
        return bool(key) and key not in ("undefined", "null")

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def search(
        self, query: str, options: SearchOptions | None = None
    ) -> WebSearchResponse:
        """Run one search. Errors are reported in-band on the response."""
        opts = options or SearchOptions()
        if not self.configured:
            logger.error("TAVILY_API_KEY is not configured")
            return WebSearchResponse(query=query, error="TAVILY_API_KEY not configured")

        cache_key = self._cache_key(query, opts)
        cached = self._cache_get(cache_key)
        if cached is not None:
            logger.debug("Tavily cache hit: %s", query)
            return cached

        try:
            await self.limiter.acquire()
            payload = await self._post(self._request_body(query, opts))
        except (httpx.HTTPError, TimeoutError, ValueError) as e:
            logger.warning("Tavily search failed for %r: %s", query, e)
            return WebSearchResponse(query=query, error=str(e))

        if payload.get("error"):
            return WebSearchResponse(
                query=query, credits_used=opts.credits, error=str(payload["error"])
            )

        results = [
            WebSearchResult(
                title=r.get("title") or "",
                url=r["url"],
                snippet=r.get("content") or r.get("snippet") or "",
                published_at=r.get("published_date"),
                score=r.get("score"),
                raw_content=r.get("raw_content"),
            )
            for r in payload.get("results", [])
            if r.get("url")
        ]
        response = WebSearchResponse(
            query=query, results=results, credits_used=opts.credits
        )
        ttl = NEWS_CACHE_TTL if opts.topic == "news" else GENERAL_CACHE_TTL
        self._cache_put(
            cache_key,
            time.monotonic() + ttl,
            response.model_copy(update={"credits_used": 0, "cached": True}),
        )
        return response

    def _request_body(self, query: str, opts: SearchOptions) -> dict:
        body: dict = {
            "api_key": self.api_key,
            "query": query,
            "include_answer": False,
            "max_results": opts.max_results,
            "search_depth": opts.search_depth,
            "include_raw_content": opts.include_raw_content,
        }
        if opts.topic:
            body["topic"] = opts.topic
        if opts.days and opts.topic == "news":
            body["days"] = opts.days
        if opts.chunks_per_source and opts.search_depth == "advanced":
            body["chunks_per_source"] = opts.chunks_per_source
        if opts.include_domains:
            body["include_domains"] = opts.include_domains
        if opts.exclude_domains:
            body["exclude_domains"] = opts.exclude_domains
        return body

    async def _post(self, body: dict) -> dict:
        attempt = 0
        while True:
            try:
                resp = await self.client.post(SEARCH_API, json=body)
                resp.raise_for_status()
                return resp.json()
            except httpx.HTTPStatusError as e:
                if e.response.status_code not in RETRYABLE_STATUS:
                    raise
                if attempt >= self.retries:
                    raise
                logger.warning(
                    "Tavily HTTP %d, retrying (%d/%d)",
                    e.response.status_code,
                    attempt + 1,
                    self.retries,
                )
            except httpx.TransportError as e:
                if attempt >= self.retries:
                    raise
                logger.warning(
                    "Tavily connection error: %s, retrying (%d/%d)",
                    e,
                    attempt + 1,
                    self.retries,
                )
            attempt += 1
            await asyncio.sleep(self.retry_delay * (2 ** (attempt - 1)))

    @staticmethod
    def _cache_key(query: str, opts: SearchOptions) -> str:
        return json.dumps(
            {"q": query.strip().lower(), **opts.model_dump()}, sort_keys=True
        )

    def _cache_get(self, key: str) -> WebSearchResponse | None:
        entry = self._cache.get(key)
        if entry is None:
            return None
        expires, response = entry
        if time.monotonic() >= expires:
            del self._cache[key]
            return None
        return response

    def _cache_put(
        self, key: str, expires: float, response: WebSearchResponse
    ) -> None:
        self._cache.pop(key, None)
        while self._cache and len(self._cache) >= self.max_cache_entries:
            # dicts keep insertion order, so the first key is the oldest
            del self._cache[next(iter(self._cache))]
        self._cache[key] = (expires, response)

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()
