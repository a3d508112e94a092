# utils/text.py

"""Text normalization and tokenization for lexical scoring."""
import re
from typing import List, Set

ENGLISH_STOPWORDS: Set[str] = {
    "a", "an", "the", "and", "or", "but", "if", "of", "at", "by", "for",
    "with", "about", "to", "from", "in", "on", "into", "over", "under",
    "is", "are", "was", "were", "be", "been", "being", "am",
    "do", "does", "did", "have", "has", "had",
    "i", "me", "my", "we", "our", "you", "your", "he", "she", "it", "its",
    "they", "them", "their", "this", "that", "these", "those",
    "what", "which", "who", "whom", "when", "where", "why", "how",
    "can", "could", "should", "would", "will", "shall", "may", "might",
    "please", "tell", "give", "show", "also", "any", "all", "there",
    "as", "so", "than", "then", "not", "no",
}

_TOKEN_RE = re.compile(r"[\w%]+", re.UNICODE)


def tokenize(text: str) -> List[str]:
    """
    Lowercase and split on anything that is not a word character or '%'.
    Numbers, dates ("2023", "09") and codes ("q3", "inv-204" -> "inv", "204")
    survive as tokens.
    """
    if not text:
        return []
    return _TOKEN_RE.findall(text.lower())


def extract_keywords(text: str) -> List[str]:
    """Query terms worth matching: tokens minus stopwords, order kept, no repeats."""
    seen: Set[str] = set()
    keywords: List[str] = []
    for token in tokenize(text):
        if token in ENGLISH_STOPWORDS or token in seen:
            continue
        seen.add(token)
        keywords.append(token)
    return keywords


def truncate(text: str, limit: int) -> str:
    """Snippet for display: first `limit` characters plus an ellipsis when cut."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
