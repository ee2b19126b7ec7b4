"""
Sentence Boundary Detection
----------------------------
Composable helpers used by the Segmenter to pick cut points.

A boundary is an offset at which a new sentence starts: just past the
terminal punctuation and the whitespace that follows it.  Three kinds of
false positive are filtered out:

  - a period that closes a known abbreviation   ("Dr. Smith")
  - a period inside a decimal number            ("3.14")
  - an ellipsis                                 ("wait... Then")

The same three constructs are "protected spans": the Segmenter never
places a chunk edge strictly inside one of them.
"""
from __future__ import annotations

import re
from typing import Iterable, Optional, Sequence

# Common abbreviations that don't end sentences (compared lower-case)
ABBREVIATIONS: frozenset[str] = frozenset({
    "dr", "mr", "mrs", "ms", "prof", "sr", "jr", "vs", "etc", "inc", "ltd", "corp",
    "fig", "ref", "vol", "no", "pp", "ch", "sec", "dept", "univ", "assoc", "bros",
    "co", "al", "eg", "ie", "ca", "cf", "approx", "est", "max", "min", "avg",
})

SENTENCE_END_PATTERNS: list[re.Pattern[str]] = [
    # Punctuation, optional closing quotes / parenthesis, whitespace, capital
    re.compile(r"[.!?]+[\"'”’)]*\s+(?=[A-Z])"),
    # Before quoted speech
    re.compile(r"[.!?]+\s+(?=[\"'“‘][A-Z])"),
    # End of quoted speech at the very end of the searched text
    re.compile(r"[.!?]+[\"'”’]\s*$"),
]

_ABBREVIATION_SPAN = re.compile(
    r"\b(?:" + "|".join(sorted(ABBREVIATIONS, key=len, reverse=True)) + r")\.",
    re.IGNORECASE,
)
_DECIMAL_SPAN = re.compile(r"\d+\.\d+")
_ELLIPSIS_SPAN = re.compile(r"\.{3,}|…")
_WORD_BEFORE = re.compile(r"(\w+)$")


def compile_patterns(custom: Iterable[str] = ()) -> list[re.Pattern[str]]:
    """Built-in sentence-end patterns followed by any caller-supplied ones."""
    return SENTENCE_END_PATTERNS + [re.compile(p) for p in custom]


def is_valid_sentence_end(text: str, punct_start: int, punct_end: int) -> bool:
    """
    Decide whether the punctuation run text[punct_start:punct_end] really
    ends a sentence.
    """
    run = text[punct_start:punct_end]

    if "..." in run or "…" in run:
        return False
    if punct_start > 0 and text[punct_start - 1] in ".…":
        return False

    if run.startswith("."):
        word = _WORD_BEFORE.search(text, max(0, punct_start - 12), punct_start)
        if word and word.group(1).lower() in ABBREVIATIONS:
            return False
        # "3.5" never reaches here via the built-in patterns (no whitespace),
        # but custom patterns may match a bare period.
        if (
            punct_start > 0
            and text[punct_start - 1].isdigit()
            and punct_start + 1 < len(text)
            and text[punct_start + 1].isdigit()
        ):
            return False

    return True


def find_sentence_boundaries(
    text: str,
    start: int = 0,
    end: Optional[int] = None,
    patterns: Optional[Sequence[re.Pattern[str]]] = None,
) -> list[int]:
    """
    Return sorted, de-duplicated boundary offsets b with start < b <= end.

    Matching runs over the whole text so that lookaheads can see past
    `end`; only the resulting offsets are restricted to the window.
    """
    if end is None:
        end = len(text)
    patterns = patterns if patterns is not None else SENTENCE_END_PATTERNS

    # Limit the scan to the window plus a little trailing context
    scan_from = max(0, start - 1)
    scan_to = min(len(text), end + 8)
    region = text[scan_from:scan_to]

    boundaries: set[int] = set()
    for pattern in patterns:
        for match in pattern.finditer(region):
            # "$" anchors only count at the real end of the document
            if match.end() == len(region) and scan_to < len(text):
                continue
            position = scan_from + match.end()
            if not (start < position <= end):
                continue
            punct = re.match(r"[.!?…]+", match.group(0))
            punct_len = punct.end() if punct else 0
            punct_start = scan_from + match.start()
            if is_valid_sentence_end(text, punct_start, punct_start + punct_len):
                boundaries.add(position)
    return sorted(boundaries)


def last_sentence_boundary(
    text: str,
    window_start: int,
    window_end: int,
    patterns: Optional[Sequence[re.Pattern[str]]] = None,
) -> Optional[int]:
    """The last valid boundary in (window_start, window_end], or None."""
    boundaries = find_sentence_boundaries(text, window_start, window_end, patterns)
    return boundaries[-1] if boundaries else None


def protected_spans(text: str, start: int = 0, end: Optional[int] = None) -> list[tuple[int, int]]:
    """Abbreviation, decimal and ellipsis spans touching [start, end)."""
    if end is None:
        end = len(text)
    lo = max(0, start - 16)
    hi = min(len(text), end + 16)
    spans: list[tuple[int, int]] = []
    for pattern in (_ABBREVIATION_SPAN, _DECIMAL_SPAN, _ELLIPSIS_SPAN):
        for match in pattern.finditer(text, lo, hi):
            spans.append((match.start(), match.end()))
    return sorted(spans)


def enclosing_span(text: str, position: int) -> Optional[tuple[int, int]]:
    """The protected span that strictly contains `position`, if any."""
    for span_start, span_end in protected_spans(text, position, position + 1):
        if span_start < position < span_end:
            return span_start, span_end
    return None


def has_complete_sentences(text: str) -> bool:
    """Starts with a capital letter and ends with terminal punctuation."""
    trimmed = text.strip()
    if not trimmed:
        return False
    return bool(re.match(r"[A-Z]", trimmed)) and bool(re.search(r"[.!?][\"']?$", trimmed))
