"""
Position Mapper
----------------
Translates chunk-relative finding offsets into document-absolute offsets.

    absolute = chunk.original_start + relative

Both ends are clamped into [chunk.original_start, chunk.original_start +
len(chunk.text)] so a malformed upstream offset can never point outside
the chunk's own span.  Anomalies are logged, never raised: one bad finding
must not block the rest of the document's results.
"""
from __future__ import annotations

from typing import Any, Iterable, Union

from loguru import logger
from pydantic import ValidationError

from chunkflow.schemas import AbsoluteFinding, Chunk, Finding


def _clamp(value: int, lo: int, hi: int) -> int:
    return max(lo, min(value, hi))


def finding_anomalies(finding: Finding, chunk: Chunk) -> list[str]:
    """Describe everything wrong with `finding` relative to `chunk` (empty if valid)."""
    problems: list[str] = []
    length = len(chunk.text)
    if not 0 <= finding.start < finding.end <= length:
        problems.append(
            f"offsets {finding.start}-{finding.end} outside chunk text (len {length})"
        )
    elif chunk.text[finding.start:finding.end] != finding.matched_text:
        problems.append(
            f"matched_text {finding.matched_text!r} != chunk text "
            f"{chunk.text[finding.start:finding.end]!r}"
        )
    return problems


def _relocate(finding: Finding, chunk: Chunk) -> tuple[int, int] | None:
    """Nearest occurrence of matched_text to the reported start, if any."""
    needle = finding.matched_text
    if not needle:
        return None
    best: int | None = None
    position = chunk.text.find(needle)
    while position != -1:
        if best is None or abs(position - finding.start) < abs(best - finding.start):
            best = position
        position = chunk.text.find(needle, position + 1)
    if best is None:
        return None
    return best, best + len(needle)


def map_to_original(finding: Finding, chunk: Chunk) -> AbsoluteFinding:
    """
    Map one chunk-relative Finding onto the original document.

    In-range offsets are always translated verbatim.  Out-of-range offsets
    are relocated to the nearest occurrence of matched_text inside the chunk
    when there is one, otherwise clamped into the chunk's span.
    """
    lo = chunk.original_start
    hi = chunk.original_start + len(chunk.text)

    start, end = finding.start, finding.end
    out_of_range = not 0 <= start <= end <= len(chunk.text)
    if out_of_range:
        relocated = _relocate(finding, chunk)
        if relocated is not None:
            logger.warning(
                f"[PositionMapper] {chunk.chunk_id}: offsets {start}-{end} out of range, "
                f"relocated {finding.matched_text!r} to {relocated[0]}-{relocated[1]}"
            )
            start, end = relocated

    absolute_start = _clamp(lo + start, lo, hi)
    absolute_end = max(absolute_start, _clamp(lo + end, lo, hi))

    return AbsoluteFinding(
        **finding.model_dump(exclude={"start", "end", "chunk_id", "chunk_index"}),
        start=absolute_start,
        end=absolute_end,
        chunk_id=chunk.chunk_id,
        chunk_index=chunk.index,
    )


def map_findings(
    raw_findings: Iterable[Union[Finding, dict[str, Any]]],
    chunk: Chunk,
) -> tuple[list[AbsoluteFinding], int]:
    """
    Validate and map every finding reported for `chunk`.

    Returns (mapped findings, number of malformed findings).  Entries that
    cannot even be parsed as a Finding are dropped; everything else is kept
    after clamping.
    """
    mapped: list[AbsoluteFinding] = []
    malformed = 0

    for raw in raw_findings:
        try:
            finding = raw if isinstance(raw, Finding) else Finding.model_validate(raw)
        except ValidationError as exc:
            malformed += 1
            logger.warning(f"[PositionMapper] {chunk.chunk_id}: dropping unparseable finding: {exc}")
            continue

        problems = finding_anomalies(finding, chunk)
        if problems:
            malformed += 1
            logger.warning(
                f"[PositionMapper] {chunk.chunk_id}: malformed finding {finding.id} | "
                + "; ".join(problems)
            )
        mapped.append(map_to_original(finding, chunk))

    return mapped, malformed
