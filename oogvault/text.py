"""
Text normalization for matching: tokens, keywords and edit distance.

Pure functions, no state.
"""

import re

# Common words that dilute match scores when included in token averaging.
# Includes chat filler (greetings, "thanks") typical of typed prompts.
STOP_WORDS = frozenset({
    'i', 'me', 'my', 'we', 'our', 'you', 'your', 'he', 'she', 'it', 'they',
    'a', 'an', 'the', 'this', 'that', 'these', 'those',
    'is', 'am', 'are', 'was', 'were', 'be', 'been', 'being',
    'do', 'does', 'did', 'doing', 'done',
    'have', 'has', 'had', 'having',
    'will', 'would', 'shall', 'should', 'can', 'could', 'may', 'might', 'must',
    'to', 'of', 'in', 'on', 'at', 'by', 'for', 'with', 'from', 'into', 'about',
    'and', 'or', 'but', 'not', 'no', 'if', 'so', 'then', 'than',
    'what', 'how', 'when', 'where', 'which', 'who', 'why',
    'up', 'out', 'just', 'also', 'very', 'really', 'please', 'pls',
    'want', 'wanna', 'gonna', 'need', 'like', 'know', 'think', 'get', 'got',
    'hey', 'hi', 'hello', 'heya', 'ok', 'okay', 'thanks', 'thank',
    'tell', 'ask', 'help', 'make', 'let', 'give', 'show', 'use',
    'im', 'dont', 'cant', 'wont', 'its', 'thats', 'whats', 'heres',
    'some', 'any', 'all', 'more', 'much', 'many', 'most', 'other',
    'here', 'there', 'now', 'well', 'too', 'still', 'already',
})

MIN_KEYWORD_LENGTH = 3

_NON_WORD_RE = re.compile(r'[^\w\s]')


def tokenize(text: str) -> list[str]:
    """Lower-case, turn punctuation into spaces, split, drop 1-char tokens."""
    cleaned = _NON_WORD_RE.sub(' ', text.lower())
    return [t for t in cleaned.split() if len(t) > 1]


def extract_keywords(text: str) -> list[str]:
    """Meaningful tokens: at least 3 characters and not a stop word."""
    return [
        t for t in tokenize(text)
        if len(t) >= MIN_KEYWORD_LENGTH and t not in STOP_WORDS
    ]


def levenshtein(a: str, b: str) -> int:
    """Edit distance with unit cost for insertion, deletion and substitution."""
    rows = len(a) + 1
    cols = len(b) + 1
    matrix = [[0] * cols for _ in range(rows)]
    for i in range(rows):
        matrix[i][0] = i
    for j in range(cols):
        matrix[0][j] = j

    for i in range(1, rows):
        for j in range(1, cols):
            cost = 0 if a[i - 1] == b[j - 1] else 1
            matrix[i][j] = min(
                matrix[i - 1][j] + 1,
                matrix[i][j - 1] + 1,
                matrix[i - 1][j - 1] + cost,
            )

    return matrix[-1][-1]
