"""
Rule-Based Analyzer
--------------------
A small, deterministic stand-in for the external analysis service.  Used by
the CLI and the tests so the pipeline can run end to end offline.

Rules (label, finding type, compiled pattern):
  - repeated words        "the the"
  - doubled spaces        "word  word"
  - space before a mark   "word ,"
  - lower-case "i"        "and i went"
  - common misspellings   "teh", "recieve", ...

Findings are reported in chunk-relative offsets, exactly like the real
service.  Ids are derived from the absolute position so that the same issue
seen through two overlapping chunks gets the same id.
"""
from __future__ import annotations

import asyncio
import hashlib
import re

from loguru import logger

from chunkflow.schemas import Chunk, Finding, FindingType


# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

_MISSPELLINGS: dict[str, str] = {
    "teh": "the",
    "recieve": "receive",
    "seperate": "separate",
    "occured": "occurred",
    "definately": "definitely",
    "wich": "which",
    "untill": "until",
    "adress": "address",
}

_RULES: list[tuple[str, FindingType, re.Pattern[str]]] = [
    ("repeated_word", FindingType.GRAMMAR, re.compile(r"\b(\w+)\s+\1\b", re.I)),
    ("double_space", FindingType.STYLE, re.compile(r"(?<=\S) {2,}(?=\S)")),
    ("space_before_punct", FindingType.PUNCTUATION, re.compile(r"(?<=\w) +(?=[,;:!?])")),
    ("lowercase_i", FindingType.SPELLING, re.compile(r"(?<![\w'])i(?![\w'])")),
    (
        "misspelling",
        FindingType.SPELLING,
        re.compile(r"\b(" + "|".join(_MISSPELLINGS) + r")\b", re.I),
    ),
]

_EXPLANATIONS: dict[str, str] = {
    "repeated_word": "The same word appears twice in a row.",
    "double_space": "Use a single space between words.",
    "space_before_punct": "Remove the space before the punctuation mark.",
    "lowercase_i": "The pronoun 'I' is always capitalised.",
    "misspelling": "Possible spelling mistake.",
}


def _suggestions(rule: str, matched: str) -> list[str]:
    if rule == "repeated_word":
        return [matched.split()[0]]
    if rule == "double_space":
        return [" "]
    if rule == "space_before_punct":
        return [""]
    if rule == "lowercase_i":
        return ["I"]
    if rule == "misspelling":
        fixed = _MISSPELLINGS[matched.lower()]
        return [fixed.capitalize() if matched[0].isupper() else fixed]
    return []


def _finding_id(rule: str, absolute_start: int, matched: str) -> str:
    digest = hashlib.sha1(f"{rule}:{absolute_start}:{matched}".encode("utf-8")).hexdigest()
    return f"{rule}-{digest[:12]}"


def find_issues(text: str, offset: int = 0) -> list[Finding]:
    """Run every rule over `text`.  `offset` only feeds the stable ids."""
    findings: list[Finding] = []
    for rule, finding_type, pattern in _RULES:
        for match in pattern.finditer(text):
            matched = match.group(0)
            findings.append(
                Finding(
                    id=_finding_id(rule, offset + match.start(), matched),
                    start=match.start(),
                    end=match.end(),
                    matched_text=matched,
                    type=finding_type,
                    suggestions=_suggestions(rule, matched),
                    explanation=_EXPLANATIONS[rule],
                )
            )
    return sorted(findings, key=lambda f: (f.start, f.end))


class RuleBasedAnalyzer:
    """
    Async Analyzer over the rules above.

    `latency_s` simulates a network round trip; `calls` counts invocations.
    """

    def __init__(self, latency_s: float = 0.0) -> None:
        self.latency_s = latency_s
        self.calls = 0

    async def __call__(self, chunk: Chunk) -> list[Finding]:
        self.calls += 1
        if self.latency_s:
            await asyncio.sleep(self.latency_s)
        findings = find_issues(chunk.text, chunk.original_start)
        logger.debug(f"[RuleAnalyzer] {chunk.chunk_id}: {len(findings)} finding(s)")
        return findings
