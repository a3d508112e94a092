# services/query_decomposer.py
"""Splits multi-part questions into independently searchable fragments."""
import logging
import string
from typing import List, Optional

from config import settings
from core.interfaces import IQueryDecomposer

logger = logging.getLogger(settings.LOGGER_NAME)

_STRIP_CHARS = string.whitespace + "?"


class SeparatorQueryDecomposer(IQueryDecomposer):
    """
    Applies each separator in turn across the current fragment set.

    Fragments no longer than `min_length` are dropped only if a longer one
    survives; if every fragment is short they are kept, and if none is left
    the whole question is the single fragment.
    """

    def __init__(self, separators: Optional[List[str]] = None, min_length: Optional[int] = None):
        self.separators = separators if separators is not None else list(settings.DECOMPOSER_SEPARATORS)
        self.min_length = settings.DECOMPOSER_MIN_FRAGMENT_LENGTH if min_length is None else min_length

    def decompose(self, question: str) -> List[str]:
        fragments = [question]
        for separator in self.separators:
            fragments = [part for fragment in fragments for part in fragment.split(separator)]

        cleaned: List[str] = []
        seen = set()
        for fragment in fragments:
            fragment = fragment.strip(_STRIP_CHARS)
            key = fragment.lower()
            if not fragment or key in seen:
                continue
            seen.add(key)
            cleaned.append(fragment)

        substantial = [f for f in cleaned if len(f) > self.min_length]
        result = substantial or cleaned or [question.strip()]

        if len(result) > 1:
            logger.info(f"[SEARCH] Decomposed question into {len(result)} parts: {result}")
        return result
