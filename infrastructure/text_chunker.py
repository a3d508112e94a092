# infrastructure/text_chunker.py
"""Splits extracted document text into overlapping, size-bounded chunks."""
import logging
import re
from typing import Any, Dict, Iterator, List, Optional

from config import settings
from core.errors import InvalidInput

logger = logging.getLogger(settings.LOGGER_NAME)

SHEET_MARKER = "=== SHEET:"
COLUMNS_PREFIX = "COLUMNS:"

_SHEET_SPLIT_RE = re.compile(r"(?==== SHEET:)")
_SENTENCE_RE = re.compile(r"[^.!?\n]+(?:[.!?\n]+|$)")


class TextChunker:
    """
    Chunker for prose and spreadsheet-derived text.

    `chunk()` validates its input immediately and returns a generator, so an
    empty document fails before any iteration starts.
    """

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        split_min_offset: Optional[int] = None,
    ):
        self.chunk_size = chunk_size or settings.CHUNK_SIZE
        self.chunk_overlap = settings.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        self.split_min_offset = (
            settings.CHUNK_SPLIT_MIN_OFFSET if split_min_offset is None else split_min_offset
        )
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        # Overlap is carried as whole words, ~5 characters each
        self.overlap_words = max(self.chunk_overlap, 0) // 5

    def chunk(self, text: str, is_tabular: bool = False) -> Iterator[str]:
        if text is None or not text.strip():
            raise InvalidInput("Document text is empty")
        if is_tabular:
            return self._chunk_tabular(text)
        return self._chunk_prose(text)

    # ---------- prose ----------

    def _chunk_prose(self, text: str) -> Iterator[str]:
        units = [u.strip() for u in _SENTENCE_RE.findall(text)]
        buffer = ""

        for unit in units:
            if not unit:
                continue

            if len(unit) > self.chunk_size:
                if buffer:
                    yield buffer
                    buffer = ""
                yield from self._hard_split(unit, self.chunk_size)
                continue

            candidate = f"{buffer} {unit}" if buffer else unit
            if len(candidate) <= self.chunk_size:
                buffer = candidate
                continue

            yield buffer
            buffer = self._seed_with_overlap(buffer, unit)

        if buffer:
            yield buffer

    def _seed_with_overlap(self, previous: str, unit: str) -> str:
        if self.overlap_words == 0:
            return unit
        words = previous.split()[-self.overlap_words:]
        while words and len(" ".join(words)) + 1 + len(unit) > self.chunk_size:
            words.pop(0)
        if not words:
            return unit
        return " ".join(words) + " " + unit

    def _hard_split(self, text: str, limit: int) -> Iterator[str]:
        """Cut at the last newline/space before `limit`, unless that is too close to the start."""
        limit = max(limit, 1)
        start = 0
        while len(text) - start > limit:
            end = start + limit
            cut = max(text.rfind("\n", start, end + 1), text.rfind(" ", start, end + 1))
            if cut < start + self.split_min_offset:
                cut = end
            piece = text[start:cut].strip()
            if piece:
                yield piece
            start = cut
        rest = text[start:].strip()
        if rest:
            yield rest

    # ---------- tabular ----------

    def _chunk_tabular(self, text: str) -> Iterator[str]:
        sections = [s for s in _SHEET_SPLIT_RE.split(text) if s.strip()]
        if len(sections) > 1 and not sections[0].lstrip().startswith(SHEET_MARKER):
            # Text before the first sheet marker is workbook metadata, not a sheet
            logger.debug(f"[INGEST] Dropped {len(sections[0])} chars before the first sheet")
            sections = sections[1:]
        for section in sections:
            yield from self._chunk_sheet(section)

    def _chunk_sheet(self, section: str) -> Iterator[str]:
        lines = [line.rstrip() for line in section.splitlines() if line.strip()]

        header_lines = [lines[0]]
        body_start = 1
        if lines[0].startswith(SHEET_MARKER) and len(lines) > 1 and lines[1].startswith(COLUMNS_PREFIX):
            header_lines.append(lines[1])
            body_start = 2

        header = "\n".join(header_lines)
        if len(header) > self.chunk_size // 2:
            logger.warning(f"[INGEST] Sheet header of {len(header)} chars truncated")
            header = header[: self.chunk_size // 2]

        rows = [line for line in lines[body_start:] if set(line.strip()) != {"="}]
        if not rows:
            yield header
            return

        row_limit = self.chunk_size - len(header) - 1
        current = header
        row_count = 0

        for row in rows:
            if len(row) > row_limit:
                if row_count:
                    yield current
                    current, row_count = header, 0
                for piece in self._hard_split(row, row_limit):
                    yield f"{header}\n{piece}"
                continue

            if row_count and len(current) + 1 + len(row) > self.chunk_size:
                yield current
                current, row_count = header, 0

            current = f"{current}\n{row}"
            row_count += 1

        if row_count:
            yield current


def render_tabular_text(sheets: Dict[str, List[List[Any]]]) -> str:
    """
    Render spreadsheet rows as sheet-structured text.

    The first row of each sheet holds the column headers; every following row
    becomes `ROW i: header: value, ...` with empty cells omitted.
    """
    parts = []
    for sheet_name, rows in sheets.items():
        if not rows:
            continue

        headers = [
            str(value).strip() if value not in (None, "") else f"Column{i + 1}"
            for i, value in enumerate(rows[0])
        ]
        lines = [
            f"{SHEET_MARKER} {sheet_name} ===",
            f"{COLUMNS_PREFIX} " + " | ".join(headers),
            "=" * 80,
        ]

        for row_number, row in enumerate(rows[1:], start=1):
            cells = []
            for col, value in enumerate(row):
                if value in (None, ""):
                    continue
                name = headers[col] if col < len(headers) else f"Column{col + 1}"
                cells.append(f"{name}: {value}")
            if cells:
                lines.append(f"ROW {row_number}: " + ", ".join(cells))

        parts.append("\n".join(lines))

    return "\n\n".join(parts)
