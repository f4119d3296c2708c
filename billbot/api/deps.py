from __future__ import annotations

from billbot.agents.orchestrator import RetrievalOrchestrator
from billbot.search.citations import CitationBuilder
from billbot.search.client import RankedSearchClient
from billbot.services import health
from billbot.services.registry import SessionRegistry

_registry: SessionRegistry | None = None
_orchestrator: RetrievalOrchestrator | None = None


def get_available_models() -> list[dict[str, str]]:
    """Return the OpenRouter models offered to chat clients."""
    return [
        {
            "id": "anthropic/claude-sonnet-4",
            "name": "Claude Sonnet 4",
            "description": "Default. Strong tool use and careful citation of legislative sources.",
        },
        {
            "id": "anthropic/claude-3.5-haiku",
            "name": "Claude 3.5 Haiku",
            "description": "Fast and inexpensive. Good for quick bill lookups.",
        },
        {
            "id": "openai/gpt-4o",
            "name": "GPT-4o",
            "description": "General-purpose model with reliable function calling.",
        },
        {
            "id": "google/gemini-2.0-flash-001",
            "name": "Gemini 2.0 Flash",
            "description": "Low latency with a large context window for long bill summaries.",
        },
    ]


def get_registry() -> SessionRegistry:
    global _registry
    if _registry is None:
        _registry = SessionRegistry()
    return _registry


def get_orchestrator() -> RetrievalOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = RetrievalOrchestrator()
    return _orchestrator


def get_search_client() -> RankedSearchClient:
    return get_orchestrator().search_client


def get_citation_builder() -> CitationBuilder:
    return get_orchestrator().citations


def get_health_checks() -> dict[str, health.Check]:
    return dict(health.DEFAULT_CHECKS)
