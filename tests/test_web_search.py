import asyncio

import httpx
import pytest

from tcode_search import config
from tcode_search.errors import ConfigurationAbsent, UpstreamUnavailable
from tcode_search.web_search import BraveSearchProvider, SerpApiSearchProvider, build_web_providers


def client_for(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_brave_parses_results_and_sends_token():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["token"] = request.headers.get("X-Subscription-Token")
        return httpx.Response(
            200,
            json={"web": {"results": [
                {"title": "ME21N <b>Create</b> PO", "description": "Use ME21N to create a purchase order"},
                "junk",
            ]}},
        )

    provider = BraveSearchProvider("brave-key", 1.0, client=client_for(handler))
    snippets = asyncio.run(provider.search("SAP transaction code create po"))

    assert seen["token"] == "brave-key"
    assert seen["url"].startswith(config.BRAVE_SEARCH_URL)
    assert len(snippets) == 1
    assert snippets[0].title == "ME21N Create PO"
    assert snippets[0].provider == "brave"
    assert "purchase order" in snippets[0].text


def test_serpapi_parses_organic_results():
    def handler(request):
        assert request.url.params["api_key"] == "serp-key"
        assert request.url.params["engine"] == "google"
        return httpx.Response(200, json={"organic_results": [{"title": "VA01", "snippet": "Create Sales Order"}]})

    provider = SerpApiSearchProvider("serp-key", 1.0, client=client_for(handler))
    snippets = asyncio.run(provider.search("sales order"))
    assert [(s.title, s.snippet) for s in snippets] == [("VA01", "Create Sales Order")]


def test_http_errors_are_upstream_unavailable():
    provider = BraveSearchProvider("k", 1.0, client=client_for(lambda r: httpx.Response(500)))
    with pytest.raises(UpstreamUnavailable):
        asyncio.run(provider.search("q"))

    not_json = SerpApiSearchProvider("k", 1.0, client=client_for(lambda r: httpx.Response(200, text="<html>")))
    with pytest.raises(UpstreamUnavailable):
        asyncio.run(not_json.search("q"))


def test_provider_without_key_is_disabled():
    provider = BraveSearchProvider(None, 1.0)
    assert not provider.enabled
    with pytest.raises(ConfigurationAbsent):
        asyncio.run(provider.search("q"))


def test_build_web_providers_keeps_only_enabled():
    assert build_web_providers(config.SearchSettings()) == []
    providers = build_web_providers(config.SearchSettings(serpapi_api_key="k"))
    assert [p.name for p in providers] == ["serpapi"]
    assert providers[0].timeout == config.SearchSettings().web_provider_timeout


def test_aclose_releases_http_client():
    http = client_for(lambda r: httpx.Response(200, json={}))
    provider = SerpApiSearchProvider("k", 1.0, client=http)
    asyncio.run(provider.search("q"))

    asyncio.run(provider.aclose())
    assert http.is_closed
    # closing twice is harmless
    asyncio.run(provider.aclose())
