from __future__ import annotations

"""
Web-search providers.

Each provider exposes ``async search(query) -> List[WebSnippet]``. A provider
without an API key is disabled: ``enabled`` is False and ``search`` raises
``ConfigurationAbsent``. Providers are interchangeable; the web fallback runs
every enabled one in parallel.
"""

from typing import List, Optional

import httpx
from loguru import logger

from . import config
from .errors import ConfigurationAbsent, UpstreamUnavailable
from .normalize import basic_clean
from .pipeline_types import WebSnippet


class WebSearchProvider:
    name = "web"

    def __init__(self, api_key: Optional[str], timeout: float, client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=config.HTTP_CONNECT_TIMEOUT),
                headers={"User-Agent": config.HTTP_USER_AGENT},
            )
        return self._client

    async def _get_json(self, url: str, params: dict, headers: Optional[dict] = None) -> dict:
        r = await self._http().get(url, params=params, headers=headers)
        if r.status_code >= 400:
            raise UpstreamUnavailable(f"{self.name}: HTTP {r.status_code}")
        try:
            return r.json()
        except ValueError as e:
            raise UpstreamUnavailable(f"{self.name}: non-JSON body") from e

    async def search(self, query: str) -> List[WebSnippet]:
        raise NotImplementedError

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class BraveSearchProvider(WebSearchProvider):
    name = "brave"

    async def search(self, query: str) -> List[WebSnippet]:
        if not self.enabled:
            raise ConfigurationAbsent("BRAVE_API_KEY not set")
        data = await self._get_json(
            config.BRAVE_SEARCH_URL,
            params={"q": query, "count": config.WEB_RESULTS_PER_PROVIDER},
            headers={"Accept": "application/json", "X-Subscription-Token": self.api_key},
        )
        results = (data.get("web") or {}).get("results") or []
        snippets = [
            WebSnippet(
                title=basic_clean(r.get("title")),
                snippet=basic_clean(r.get("description")),
                provider=self.name,
            )
            for r in results
            if isinstance(r, dict)
        ]
        logger.debug("Brave returned {} results for '{}'", len(snippets), query)
        return snippets


class SerpApiSearchProvider(WebSearchProvider):
    name = "serpapi"

    async def search(self, query: str) -> List[WebSnippet]:
        if not self.enabled:
            raise ConfigurationAbsent("SERPAPI_API_KEY not set")
        data = await self._get_json(
            config.SERPAPI_SEARCH_URL,
            params={
                "q": query,
                "api_key": self.api_key,
                "engine": "google",
                "num": config.WEB_RESULTS_PER_PROVIDER * 2,
            },
        )
        results = data.get("organic_results") or []
        snippets = [
            WebSnippet(
                title=basic_clean(r.get("title")),
                snippet=basic_clean(r.get("snippet")),
                provider=self.name,
            )
            for r in results
            if isinstance(r, dict)
        ]
        logger.debug("SerpAPI returned {} results for '{}'", len(snippets), query)
        return snippets


def build_web_providers(settings: config.SearchSettings) -> List[WebSearchProvider]:
    """Enabled providers only; an empty list disables the web fallback."""
    candidates: List[WebSearchProvider] = [
        BraveSearchProvider(settings.brave_api_key, settings.web_provider_timeout),
        SerpApiSearchProvider(settings.serpapi_api_key, settings.web_provider_timeout),
    ]
    enabled = [p for p in candidates if p.enabled]
    for p in candidates:
        if not p.enabled:
            logger.info("Web provider '{}' has no API key; disabled", p.name)
    return enabled
