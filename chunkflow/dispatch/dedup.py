"""
Finding Deduplicator
---------------------
Overlap regions between adjacent chunks are analysed twice, so the same
real-world issue can come back once per chunk.  Two absolute findings are
duplicates when

    max(a.start, b.start) < min(a.end, b.end)          (spans overlap)
    and same_content(a, b)                              (same text + type)

The instance from the lowest-index chunk wins; later copies are dropped.
Exact repeats (same start, end, text and type) are always collapsed, even
for zero-length spans that cannot overlap anything.

FindingIndex merges one chunk's findings at a time.  Kept findings that
share a content key never overlap each other, so per key they are ordered
by start AND by end, and an overlap lookup is a bisect plus a short walk
over the neighbours that actually overlap.
"""
from __future__ import annotations

import bisect
from collections import defaultdict
from typing import Iterable

from loguru import logger

from chunkflow.schemas import AbsoluteFinding

# (start, end, chunk_index, sequence, finding); sequence keeps tuples unique
_Entry = tuple[int, int, int, int, AbsoluteFinding]


def spans_overlap(a: AbsoluteFinding, b: AbsoluteFinding) -> bool:
    return max(a.start, b.start) < min(a.end, b.end)


def content_key(finding: AbsoluteFinding) -> tuple[str, str]:
    """
    Identity of what a finding is about.  Surrounding whitespace is ignored
    so that copies picked up with a trailing space by different chunk
    overlaps still merge.
    """
    return finding.type.value, finding.matched_text.strip()


class FindingIndex:
    """
    Incrementally de-duplicated finding set for one dispatch.

    Usage:
        index = FindingIndex()
        index.add_all(mapped_findings_of_one_chunk)
        index.findings      # sorted by (start, end, chunk_index)
    """

    def __init__(self) -> None:
        self._ordered: list[_Entry] = []
        self._by_key: dict[tuple[str, str], list[_Entry]] = defaultdict(list)
        self._starts: dict[tuple[str, str], list[int]] = defaultdict(list)
        self._empty: dict[tuple[int, str, str], _Entry] = {}
        self._sequence = 0
        self.overlap_checks = 0    # Neighbour comparisons, for cost accounting

    def __len__(self) -> int:
        return len(self._ordered)

    @property
    def findings(self) -> list[AbsoluteFinding]:
        return [entry[4] for entry in self._ordered]

    def add_all(self, findings: Iterable[AbsoluteFinding]) -> int:
        """Merge `findings`; returns how many of them were dropped as duplicates."""
        dropped = 0
        for finding in sorted(findings, key=lambda f: (f.chunk_index, f.start, f.end)):
            if not self.add(finding):
                dropped += 1
        if dropped:
            logger.debug(f"[Dedup] Dropped {dropped} duplicate(s) | {len(self)} kept")
        return dropped

    def add(self, finding: AbsoluteFinding) -> bool:
        """Merge one finding.  False if an existing copy wins over it."""
        if finding.end <= finding.start:
            return self._add_empty(finding)

        key = content_key(finding)
        entries = self._by_key[key]
        starts = self._starts[key]

        # Candidates start before finding.end; ends are sorted too, so the
        # overlapping ones form a run just below `hi`
        hi = bisect.bisect_left(starts, finding.end)
        lo = hi
        while lo > 0:
            self.overlap_checks += 1
            if entries[lo - 1][1] <= finding.start:
                break
            lo -= 1

        overlapping = entries[lo:hi]
        if any(entry[2] <= finding.chunk_index for entry in overlapping):
            self._log_drop(finding)
            return False

        # A lower-index copy arrived late: it replaces the copies it overlaps
        for entry in overlapping:
            self._remove_ordered(entry)
            self._log_drop(entry[4])
        del entries[lo:hi]
        del starts[lo:hi]

        entry = self._entry(finding)
        entries.insert(lo, entry)
        starts.insert(lo, finding.start)
        bisect.insort(self._ordered, entry)
        return True

    # --- Internals ------------------------------------------------------------

    def _add_empty(self, finding: AbsoluteFinding) -> bool:
        exact = (finding.start, finding.type.value, finding.matched_text)
        existing = self._empty.get(exact)
        if existing is not None:
            if existing[2] <= finding.chunk_index:
                self._log_drop(finding)
                return False
            self._remove_ordered(existing)
            self._log_drop(existing[4])

        entry = self._entry(finding)
        self._empty[exact] = entry
        bisect.insort(self._ordered, entry)
        return True

    def _entry(self, finding: AbsoluteFinding) -> _Entry:
        self._sequence += 1
        return finding.start, finding.end, finding.chunk_index, self._sequence, finding

    def _remove_ordered(self, entry: _Entry) -> None:
        position = bisect.bisect_left(self._ordered, entry[:4])
        del self._ordered[position]

    def _log_drop(self, finding: AbsoluteFinding) -> None:
        logger.debug(
            f"[Dedup] Dropped duplicate {finding.type.value} at {finding.start}-{finding.end} "
            f"({finding.matched_text!r}, chunk {finding.chunk_index})"
        )


def dedupe(findings: Iterable[AbsoluteFinding]) -> list[AbsoluteFinding]:
    """Return the de-duplicated findings sorted by start (then end)."""
    index = FindingIndex()
    index.add_all(findings)
    return index.findings
