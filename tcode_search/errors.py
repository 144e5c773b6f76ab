"""Error taxonomy shared by every collaborator of the search pipeline.

None of these escape ``SearchPipeline.search``: bounded calls turn them into
the stage's fallback value, and the orchestrator turns a fully unreachable
catalog into an explicit error result.
"""

from __future__ import annotations


class SearchError(Exception):
    """Base class for pipeline errors."""


class ConfigurationAbsent(SearchError):
    """An optional collaborator (model, web provider) has no credentials."""


class StageTimeout(SearchError):
    """A bounded call exceeded its deadline."""

    def __init__(self, stage: str, timeout: float) -> None:
        super().__init__(f"{stage} exceeded {timeout:.2f}s")
        self.stage = stage
        self.timeout = timeout


class MalformedResponse(SearchError):
    """An external call returned output that could not be parsed."""


class UpstreamUnavailable(SearchError):
    """The catalog, a store, or the shared cache could not be reached."""
