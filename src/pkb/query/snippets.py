"""Snippet extraction and query-term highlighting for search results."""

import re

MIN_TERM_LENGTH = 3
SENTENCE_LOOKBACK = 100
CONTEXT_BEFORE = 60


def query_terms(query: str) -> list[str]:
    """Lowercased query words long enough to be worth matching."""
    terms: list[str] = []
    for word in query.lower().split():
        if len(word) >= MIN_TERM_LENGTH and word not in terms:
            terms.append(word)
    return terms


def highlight(text: str, terms: list[str]) -> str:
    """Wrap whole-word occurrences of ``terms`` in ``<mark>`` tags."""
    if not terms:
        return text
    alternatives = "|".join(re.escape(t) for t in sorted(terms, key=len, reverse=True))
    pattern = re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)
    return pattern.sub(lambda m: f"<mark>{m.group(0)}</mark>", text)


def extract_snippet(text: str, query: str, max_length: int = 200) -> str:
    """Window of ``text`` around the earliest query term, highlighted.

    The window starts at the preceding sentence boundary when one is close,
    otherwise a little before the match. Without any match the head of the
    text is returned.
    """
    terms = query_terms(query)
    lowered = text.lower()

    best = -1
    for term in terms:
        pos = lowered.find(term)
        if pos != -1 and (best == -1 or pos < best):
            best = pos

    if best == -1:
        return text[:max_length] + "..." if len(text) > max_length else text

    period = text.rfind(".", 0, best)
    if period != -1 and best - period < SENTENCE_LOOKBACK:
        start = period + 1
    else:
        start = max(0, best - CONTEXT_BEFORE)

    end = min(len(text), start + max_length)
    snippet = text[start:end].strip()
    if start > 0:
        snippet = "..." + snippet
    if end < len(text):
        snippet = snippet + "..."
    return highlight(snippet, terms)

