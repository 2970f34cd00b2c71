"""Text chunking helpers for post content.

This module provides:
- split_paragraphs: blank-line paragraph split with whitespace collapsed
- split_sentences: sentence split on terminal punctuation
- chunk_text: packs paragraphs (or the sentences of oversized paragraphs) into
  chunks of at most max_chars characters; no chunk is ever empty
"""
import re
from typing import Iterable, List

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")
_WS = re.compile(r"\s+")


def split_paragraphs(text: str) -> List[str]:
    """Split text on blank lines.

    Args:
        text: Input string.

    Returns:
        List[str]: Non-empty paragraphs with inner whitespace collapsed.
    """
    if not text:
        return []
    out: List[str] = []
    for block in _PARAGRAPH_BREAK.split(text):
        block = _WS.sub(" ", block).strip()
        if block:
            out.append(block)
    return out


def split_sentences(paragraph: str) -> List[str]:
    """Split a paragraph after '.', '!' or '?' followed by whitespace."""
    return [s.strip() for s in _SENTENCE_END.split(paragraph) if s.strip()]


def _hard_split(sentence: str, max_chars: int) -> List[str]:
    """Split an oversized sentence on word boundaries, slicing words that alone exceed max_chars."""
    pieces: List[str] = []
    current = ""
    for word in sentence.split(" "):
        while len(word) > max_chars:
            if current:
                pieces.append(current)
                current = ""
            pieces.append(word[:max_chars])
            word = word[max_chars:]
        if not word:
            continue
        candidate = f"{current} {word}" if current else word
        if len(candidate) <= max_chars:
            current = candidate
        else:
            pieces.append(current)
            current = word
    if current:
        pieces.append(current)
    return pieces


def _units(paragraphs: Iterable[str], max_chars: int) -> List[str]:
    """Flatten paragraphs into units that each fit within max_chars."""
    units: List[str] = []
    for para in paragraphs:
        if len(para) <= max_chars:
            units.append(para)
            continue
        for sentence in split_sentences(para):
            if len(sentence) <= max_chars:
                units.append(sentence)
            else:
                units.extend(_hard_split(sentence, max_chars))
    return units


def chunk_text(text: str, max_chars: int) -> List[str]:
    """Split text into bounded chunks along paragraph and sentence boundaries.

    Whole paragraphs are preferred; paragraphs longer than max_chars are broken
    into sentences. Consecutive units are packed together (paragraphs joined by
    a blank line, sentences by a space) while the result stays within max_chars.

    Args:
        text: Plain post text.
        max_chars: Upper bound on chunk length in characters.

    Returns:
        List[str]: Ordered, non-empty chunks.

    Raises:
        ValueError: If max_chars is not positive.
    """
    if max_chars <= 0:
        raise ValueError("max_chars must be positive")
    paragraphs = split_paragraphs(text)
    chunks: List[str] = []
    current = ""
    current_para = -1
    para_index = 0
    for para in paragraphs:
        for unit in _units([para], max_chars):
            sep = " " if para_index == current_para else "\n\n"
            candidate = f"{current}{sep}{unit}" if current else unit
            if len(candidate) <= max_chars:
                current = candidate
            else:
                chunks.append(current)
                current = unit
            current_para = para_index
        para_index += 1
    if current:
        chunks.append(current)
    return [c for c in chunks if c.strip()]
