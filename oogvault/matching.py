"""
Similarity scoring between a query and a piece of stored text.

Two strategies, both returning a value in [0, 1]:

- relevance_score(): lenient token overlap, for bulk nugget search
  where an extra hit costs little.
- fuzzy_score(): keyword-gated matching for live suggestions, where a
  nonsense match shown mid-sentence is worse than no match.
"""

from .text import extract_keywords, levenshtein, tokenize

# A per-token contribution at or above this counts as a strong hit
STRONG_HIT = 0.8

# Contribution of a token contained in (or containing) a text token
SUBSTRING_SCORE = 0.9

# Substring containment only counts when the shorter token is this long
MIN_SUBSTRING_LENGTH = 4

# Edit distance is only tried for query tokens at least this long,
# against text tokens whose length differs by at most this much
MIN_EDIT_LENGTH = 4
MAX_LENGTH_DIFFERENCE = 2

# Edit similarity (1 - distance / longer length) must reach this
MIN_EDIT_SIMILARITY = 0.7

# Score floors once strong hits exist
SINGLE_HIT_FLOOR = 0.4
MULTI_HIT_BASE = 0.5
MULTI_HIT_STEP = 0.1


def relevance_score(query_tokens: list[str], text_tokens: list[str]) -> float:
    """Fraction of query tokens that overlap some text token by containment."""
    if not query_tokens or not text_tokens:
        return 0.0

    text_set = set(text_tokens)
    matches = 0
    for qt in query_tokens:
        if any(qt in tt or tt in qt for tt in text_set):
            matches += 1

    return matches / len(query_tokens)


def _token_match(qt: str, text_tokens: list[str]) -> float:
    """Best contribution of one query token against all text tokens."""
    best = 0.0
    for tt in text_tokens:
        if tt == qt:
            return 1.0
        if tt in qt or qt in tt:
            if min(len(qt), len(tt)) >= MIN_SUBSTRING_LENGTH:
                best = max(best, SUBSTRING_SCORE)
            continue
        if len(qt) >= MIN_EDIT_LENGTH and abs(len(qt) - len(tt)) <= MAX_LENGTH_DIFFERENCE:
            similarity = 1 - levenshtein(qt, tt) / max(len(qt), len(tt))
            if similarity >= MIN_EDIT_SIMILARITY and similarity > best:
                best = similarity
    return best


def fuzzy_score(query: str, text: str) -> float:
    """
    Keyword-gated similarity of text to query.

    Verbatim containment scores 1.0. Otherwise each query keyword (or each
    token, if the query has no keywords) is matched against the text tokens
    by equality, containment, or close edit distance. Unless at least one
    keyword matches strongly, the score is 0.

    Args:
        query: What the user typed
        text: Stored text to compare against

    Returns:
        Similarity in [0, 1]
    """
    q = query.lower()
    t = text.lower()

    if q in t:
        return 1.0

    query_tokens = extract_keywords(q) or tokenize(q)
    if not query_tokens:
        return 0.0
    text_tokens = tokenize(t)

    total = 0.0
    strong_hits = 0
    for qt in query_tokens:
        best = _token_match(qt, text_tokens)
        total += best
        if best >= STRONG_HIT:
            strong_hits += 1

    if strong_hits == 0:
        return 0.0

    average = total / len(query_tokens)
    if strong_hits >= 2:
        return min(1.0, max(average, MULTI_HIT_BASE + MULTI_HIT_STEP * strong_hits))
    return max(average, SINGLE_HIT_FLOOR)
