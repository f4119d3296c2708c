"""Builders and scripted fakes shared by the test modules."""
from __future__ import annotations

from typing import Any

from billbot.llm_client import MessageResponse, TextBlock, ToolUseBlock, Usage
from billbot.models.results import (
    BillDetails,
    ComponentScores,
    ExecutiveActionDetails,
    RankedResult,
    ScoreWeights,
)

WEIGHTS = ScoreWeights()


def make_result(
    content_id: str,
    score: float = 0.8,
    *,
    kind: str = "bill",
    published: str | None = None,
    title: str | None = None,
    summary: str = "",
) -> RankedResult:
    """A result whose four component scores all equal ``score``."""
    scores = ComponentScores(score, score, score, score)
    if kind == "bill":
        details: Any = BillDetails(bill_number=f"HR {content_id}", introduced_date=published)
    else:
        details = ExecutiveActionDetails(action_type="executive_order", signed_date=published)
    return RankedResult(
        content_id=content_id,
        title=title or f"Title {content_id}",
        summary=summary,
        scores=scores,
        composite_score=WEIGHTS.composite(scores),
        details=details,
    )


def make_row(
    content_id: str,
    score: float = 0.8,
    *,
    kind: str = "bill",
    title: str | None = None,
    summary: str = "A bill summary.",
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """A ranked-search backend row."""
    if metadata is None:
        metadata = (
            {"bill_number": f"HR {content_id}", "introduced_date": "2024-03-01", "sponsor": "Rep. Smith"}
            if kind == "bill"
            else {"executive_order_number": 14000, "signed_date": "2024-02-01", "action_type": "executive_order"}
        )
    return {
        "content_type": kind,
        "content_id": content_id,
        "title": title or f"Title {content_id}",
        "summary": summary,
        "metadata": metadata,
        "semantic_score": score,
        "keyword_score": score,
        "freshness_score": score,
        "authority_score": score,
        "combined_score": 0.123,
    }


class FakeBackend:
    """Returns scripted pages in order; an Exception entry is raised instead."""

    def __init__(self, *pages: Any):
        self.pages = list(pages)
        self.requests: list[Any] = []

    async def fetch(self, request):
        self.requests.append(request)
        page = self.pages.pop(0) if self.pages else []
        if isinstance(page, BaseException):
            raise page
        return page


def tool_use(name: str, call_id: str, **arguments: Any) -> ToolUseBlock:
    return ToolUseBlock(type="tool_use", id=call_id, name=name, input=arguments)


class FakeTurn:
    """Stands in for OpenRouterStream: yields text chunks, then the final message."""

    def __init__(self, chunks: list[str], tool_uses: list[ToolUseBlock], usage: Usage, error: Exception | None = None):
        self.chunks = chunks
        self.tool_uses = tool_uses
        self.usage = usage
        self.error = error

    async def __aenter__(self):
        if self.error is not None:
            raise self.error
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None

    @property
    def text_stream(self):
        async def gen():
            for chunk in self.chunks:
                yield chunk

        return gen()

    async def get_final_message(self) -> MessageResponse:
        content: list[Any] = []
        if self.chunks:
            content.append(TextBlock(type="text", text="".join(self.chunks)))
        content.extend(self.tool_uses)
        return MessageResponse(content=content, usage=self.usage)


class FakeMessages:
    def __init__(self, turns: list[FakeTurn]):
        self.turns = turns
        self.calls: list[dict[str, Any]] = []

    def stream(self, **kwargs: Any) -> FakeTurn:
        self.calls.append(kwargs)
        if not self.turns:
            return FakeTurn(["Done."], [], Usage(1, 1))
        return self.turns.pop(0)


class FakeLLM:
    """Scripted model: each entry is (text chunks, tool uses) or an Exception."""

    def __init__(self, *script: Any):
        turns = []
        for entry in script:
            if isinstance(entry, Exception):
                turns.append(FakeTurn([], [], Usage(), error=entry))
            else:
                chunks, uses = entry
                turns.append(FakeTurn(list(chunks), list(uses), Usage(10, 5, cost=0.001)))
        self.messages = FakeMessages(turns)
