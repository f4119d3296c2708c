from __future__ import annotations

import re
from typing import Any

from billbot.config import settings
from billbot.models.results import BillDetails, ExecutiveActionDetails, RankedResult
from billbot.models.session import Citation

ELLIPSIS = "..."
WHITEHOUSE_ACTIONS_URL = "https://www.whitehouse.gov/presidential-actions/"
CONGRESS_BILL_URL = "https://congress.gov/bill/"

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_WORD = re.compile(r"[a-z0-9']+")


def query_terms(query: str) -> list[str]:
    """Lower-cased query words longer than two characters, first occurrence order."""
    terms: list[str] = []
    for word in _WORD.findall(query.lower()):
        if len(word) > 2 and word not in terms:
            terms.append(word)
    return terms


def count_matches(text: str, terms: list[str]) -> int:
    words = _WORD.findall(text.lower())
    wanted = set(terms)
    return sum(1 for word in words if word in wanted)


def best_excerpt(text: str, terms: list[str], max_length: int) -> tuple[str, int]:
    """Pick the sentence with the most exact term matches (earliest on ties)."""
    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(text.strip()) if s.strip()]
    if not sentences:
        return "", 0

    best, best_count = sentences[0], count_matches(sentences[0], terms) if terms else 0
    for sentence in sentences[1:]:
        if not terms:
            break
        matches = count_matches(sentence, terms)
        if matches > best_count:
            best, best_count = sentence, matches

    if len(best) > max_length:
        best = best[: max(max_length - len(ELLIPSIS), 0)].rstrip() + ELLIPSIS
    return best, best_count


def _url(result: RankedResult) -> str:
    match result.details:
        case BillDetails(source_url=url) if url:
            return url
        case BillDetails(bill_number=number) if number:
            return CONGRESS_BILL_URL + number.lower().replace(" ", "")
        case BillDetails():
            return CONGRESS_BILL_URL
        case ExecutiveActionDetails(content_url=url) if url:
            return url
        case ExecutiveActionDetails():
            return WHITEHOUSE_ACTIONS_URL
        case _:
            raise TypeError(f"Unsupported result details: {type(result.details).__name__}")


def _metadata_and_source(result: RankedResult) -> tuple[dict[str, Any], dict[str, Any]]:
    match result.details:
        case BillDetails() as bill:
            metadata = {
                "bill_number": bill.bill_number,
                "sponsor": bill.sponsor,
                "chamber": bill.chamber,
                "status": bill.status,
                "introduced_date": bill.introduced_date,
            }
            source = {
                "name": "U.S. Congress",
                "type": "congressional",
                "published_date": bill.introduced_date,
                "author": bill.sponsor,
            }
        case ExecutiveActionDetails() as action:
            metadata = {
                "executive_order_number": action.executive_order_number,
                "action_type": action.action_type,
                "administration": action.administration,
                "president_name": action.president_name,
                "signed_date": action.signed_date,
                "status": action.status,
                "citation": action.citation,
            }
            source = {
                "name": "The White House",
                "type": "whitehouse",
                "published_date": action.signed_date,
                "author": action.president_name,
            }
        case _:
            raise TypeError(f"Unsupported result details: {type(result.details).__name__}")
    return metadata, source


class CitationBuilder:
    def __init__(self, excerpt_length: int | None = None):
        self.excerpt_length = excerpt_length or settings.citation_excerpt_length

    def build(
        self,
        result: RankedResult,
        query: str,
        iteration: int,
        rank: int,
        *,
        searched_at: str,
        search_method: str = "hybrid",
    ) -> Citation:
        terms = query_terms(query)
        excerpt, term_matches = best_excerpt(result.summary or result.title, terms, self.excerpt_length)
        metadata, source = _metadata_and_source(result)
        search_context = {
            "query": query,
            "search_method": search_method,
            "rank": rank,
            "iteration": iteration,
            "search_timestamp": searched_at,
        }
        indicators = {
            **result.scores.to_dict(),
            "term_matches": term_matches,
        }
        return Citation(
            id=result.content_id,
            kind=result.kind,
            title=result.title,
            url=_url(result),
            relevance_score=round(result.composite_score, 4),
            excerpt=excerpt,
            metadata=tuple(metadata.items()),
            source=tuple(source.items()),
            search_context=tuple(search_context.items()),
            relevance_indicators=tuple(indicators.items()),
        )
