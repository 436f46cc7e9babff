"""
Token-budgeted, overlapping segmentation of document text into chunks.

Policy (defaults from ChunkingConfig):
- Target chunk size: 400 - 800 estimated tokens
- Overlap: the trailing whole sentences worth at most 15% of a closed chunk
  seed the next chunk, so context survives a chunk boundary
- Token estimate: ceil(CJK chars / 1.5 + other chars / 4), see utils.estimate_tokens

Boundaries are found in order of preference:
1. Paragraph (blank line)
2. Sentence (。！？.!?)
3. Character window (only for a single sentence longer than max_tokens)

A paragraph is broken into sentences only when it cannot be appended whole:
either the running chunk is still under min_tokens, or the paragraph alone is
larger than max_tokens.

Every chunk is an exact slice of the source: text[start_offset:end_offset] == content.
"""

import logging
import math
import re
import uuid
from collections import deque
from typing import List, Optional, Tuple

from .bm25.tokenizer import term_frequencies, term_stream
from .config import ChunkingConfig
from .models import Chunk, Document
from .utils import CJK_CHAR_PATTERN, estimate_tokens

logger = logging.getLogger(__name__)

_PARAGRAPH_BREAK = re.compile(r'\n\s*\n')
_SENTENCE_END = re.compile(r'[。！？.!?]')
_TABLE_HEADER = re.compile(r'[^\n]*[|｜]\s*[^\n]*')

SENTENCE_TERMINATORS = '。！？.!?'

PARAGRAPH, SENTENCE, WINDOW = "paragraph", "sentence", "window"

Span = Tuple[int, int]


def _strip_span(text: str, start: int, end: int) -> Optional[Span]:
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return (start, end) if start < end else None


def paragraph_spans(text: str) -> List[Span]:
    """Non-empty paragraphs as (start, end) offsets, whitespace trimmed"""
    spans = []
    pos = 0
    for match in _PARAGRAPH_BREAK.finditer(text):
        spans.append((pos, match.start()))
        pos = match.end()
    spans.append((pos, len(text)))
    return [s for s in (_strip_span(text, a, b) for a, b in spans) if s]


def sentence_spans(text: str, start: int, end: int) -> List[Span]:
    """Sentences inside text[start:end], each keeping its terminator"""
    spans = []
    pos = start
    for match in _SENTENCE_END.finditer(text, start, end):
        spans.append((pos, match.end()))
        pos = match.end()
    spans.append((pos, end))
    return [s for s in (_strip_span(text, a, b) for a, b in spans) if s]


def window_spans(text: str, start: int, end: int, max_tokens: int) -> List[Span]:
    """Cut text[start:end] into consecutive windows of at most max_tokens"""
    spans = []
    window_start = start
    cost = 0.0
    for i in range(start, end):
        char_cost = 1 / 1.5 if CJK_CHAR_PATTERN.match(text[i]) else 0.25
        if cost + char_cost > max_tokens and i > window_start:
            spans.append((window_start, i))
            window_start = i
            cost = 0.0
        cost += char_cost
    spans.append((window_start, end))
    return [s for s in (_strip_span(text, a, b) for a, b in spans) if s]


def is_title(content: str) -> bool:
    """Short first line, at most 3 lines, first line not a finished sentence"""
    lines = content.split("\n")
    first_line = lines[0].strip()
    return (
        2 < len(first_line) < 100
        and len(lines) <= 3
        and not first_line.endswith(tuple(SENTENCE_TERMINATORS))
    )


def is_table_header(content: str) -> bool:
    """Single line with a pipe-style column separator"""
    return _TABLE_HEADER.fullmatch(content.strip()) is not None


def section_title(content: str) -> Optional[str]:
    if is_title(content):
        return content.split("\n")[0].strip()
    return None


def content_quality(content: str) -> float:
    """
    Confidence score 0-1 rewarding medium length and medium sentence length.

    - start at 0.5
    - +0.2 when 100 < length < 2000 chars
    - +0.2 when 10 < average sentence length < 100 chars
    - -0.2 when length < 50 or length > 3000
    """
    length = len(content)
    sentences = len(_SENTENCE_END.split(content))
    avg_sentence_length = length / sentences

    score = 0.5
    if 100 < length < 2000:
        score += 0.2
    if 10 < avg_sentence_length < 100:
        score += 0.2
    if length < 50 or length > 3000:
        score -= 0.2

    return max(0.0, min(1.0, score))


class Segmenter:
    """Split document text into overlapping Chunk objects"""

    def __init__(self, config: Optional[ChunkingConfig] = None):
        self.config = config or ChunkingConfig()

    @property
    def min_tokens(self) -> int:
        return self.config.min_tokens

    @property
    def max_tokens(self) -> int:
        return self.config.max_tokens

    def segment(self, text: str, document: Document) -> List[Chunk]:
        """
        Split text into chunks owned by document.

        Args:
            text: Plain text of the document
            document: Owning document (id and language are copied to chunks)

        Returns:
            Chunks ordered by chunk_index, offsets strictly increasing
        """
        logger.info(
            f"Chunking {document.file_name}: {len(text)} chars, "
            f"tokens={self.min_tokens}-{self.max_tokens}, overlap={self.config.overlap_ratio}"
        )

        spans = self.chunk_spans(text)
        pages = "\f" in text
        chunks = []
        for index, (start, end) in enumerate(spans):
            content = text[start:end]
            chunks.append(Chunk(
                id=uuid.uuid4().hex,
                doc_id=document.id,
                chunk_index=index,
                content=content,
                token_count=estimate_tokens(content),
                start_offset=start,
                end_offset=end,
                is_title=is_title(content),
                is_table_header=is_table_header(content),
                section_title=section_title(content),
                page=text.count("\f", 0, start) + 1 if pages else None,
                language=document.language,
                confidence=content_quality(content),
                term_frequencies=term_frequencies(term_stream(content.strip())),
            ))
            logger.debug(f"Chunk #{index}: [{start}:{end}] {chunks[-1].token_count} tokens")

        logger.info(f"Created {len(chunks)} chunks")
        return chunks

    def chunk_spans(self, text: str) -> List[Span]:
        """Character spans of every chunk, before any Chunk objects are built"""
        units = deque((start, end, PARAGRAPH) for start, end in paragraph_spans(text))
        spans: List[Span] = []

        cur_start: Optional[int] = None
        cur_end = 0
        cur_tokens = 0
        seed_only = False  # buffer holds nothing but overlap from the previous chunk

        while units:
            start, end, kind = units.popleft()
            unit_tokens = estimate_tokens(text[start:end])

            if cur_start is None:
                if unit_tokens > self.max_tokens and self._split_into(units, text, start, end, kind):
                    continue
                cur_start, cur_end, cur_tokens = start, end, unit_tokens
                continue

            candidate_tokens = estimate_tokens(text[cur_start:end])
            if candidate_tokens <= self.max_tokens:
                cur_end, cur_tokens, seed_only = end, candidate_tokens, False
                continue

            # Unit does not fit: try finer boundaries before closing the chunk
            if seed_only or cur_tokens < self.min_tokens or unit_tokens > self.max_tokens:
                if self._split_into(units, text, start, end, kind):
                    continue

            if seed_only:
                # Overlap alone cannot host the unit: start fresh without overlap
                cur_start, cur_end, cur_tokens, seed_only = start, end, unit_tokens, False
                continue

            spans.append((cur_start, cur_end))
            seed = self._overlap_start(text, cur_start, cur_end, math.floor(cur_tokens * self.config.overlap_ratio))

            if seed is None:
                cur_start, cur_end, cur_tokens = start, end, unit_tokens
            elif estimate_tokens(text[seed:end]) <= self.max_tokens:
                cur_start, cur_end = seed, end
                cur_tokens = estimate_tokens(text[cur_start:cur_end])
            else:
                # Keep the overlap and re-offer the unit to the seeded buffer
                units.appendleft((start, end, kind))
                cur_start = seed
                cur_tokens = estimate_tokens(text[cur_start:cur_end])
                seed_only = True

        if cur_start is not None and not seed_only:
            spans.append((cur_start, cur_end))

        return spans

    def _split_into(self, units: deque, text: str, start: int, end: int, kind: str) -> bool:
        """Replace a unit by finer pieces at the head of the queue; False when it cannot split"""
        pieces: List[Tuple[int, int, str]] = []
        if kind == PARAGRAPH:
            pieces = [(a, b, SENTENCE) for a, b in sentence_spans(text, start, end)]
            if len(pieces) <= 1:
                kind = SENTENCE
        if kind == SENTENCE:
            pieces = [(a, b, WINDOW) for a, b in window_spans(text, start, end, self.max_tokens)]

        if len(pieces) <= 1:
            return False
        units.extendleft(reversed(pieces))
        return True

    def _overlap_start(self, text: str, start: int, end: int, budget: int) -> Optional[int]:
        """
        Start offset of the longest run of trailing whole sentences in
        text[start:end] that fits the token budget, or None.
        """
        if budget <= 0:
            return None

        best = None
        boundaries = [m.end() for m in _SENTENCE_END.finditer(text, start, end)]
        for boundary in reversed(boundaries):
            seed = boundary
            while seed < end and text[seed].isspace():
                seed += 1
            if seed >= end:
                continue  # chunk ends on this terminator
            if seed <= start:
                break
            if estimate_tokens(text[seed:end]) > budget:
                break
            best = seed
        return best
