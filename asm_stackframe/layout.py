"""asm_stackframe/layout.py – function model → ordered byte ranges.

The calculator partitions ``[0, stack_size)`` into variable and gap
ranges, lowest offset first, and cross-references the model's findings
to flag each variable range.  It also hosts the small numeric helpers
the renderers share (byte formatting, frame statistics, error summary).

Overlap between variables is not validated: when a variable's available
span does not exceed its size no gap is produced.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Tuple

from asm_stackframe.config import DEFAULT_CONFIG, AnalyzerConfig
from asm_stackframe.model import (
    FindingKind,
    FunctionModel,
    RangeEntry,
    RangeKind,
    Variable,
)


def format_bytes(n: int) -> str:
    """``1536`` → ``'1.5K'``; values below 1024 are shown as ``'NB'``."""
    if n >= 1024:
        return f"{n / 1024:.1f}K"
    return f"{n}B"


def is_unsafe(usage: Iterable[str], denylist: Iterable[str]) -> bool:
    """Case-insensitive substring match of any callee against the denylist."""
    lowered = [u.lower() for u in usage]
    for bad in denylist:
        needle = bad.lower()
        if any(needle in u for u in lowered):
            return True
    return False


def _variable_range(model: FunctionModel, var: Variable, config: AnalyzerConfig) -> RangeEntry:
    findings = model.findings_for(var.offset)
    kinds = {f.kind for f in findings}
    return RangeEntry(
        kind=RangeKind.VARIABLE,
        offset=var.offset,
        size=var.size,
        inferred_type=var.inferred_type,
        usage=tuple(var.usage),
        def_line=var.def_line,
        unsafe=is_unsafe(var.usage, config.unsafe_functions),
        uninitialized=FindingKind.UNINITIALIZED in kinds,
        out_of_bounds=FindingKind.OUT_OF_BOUNDS in kinds,
        findings=findings,
    )


def calculate_ranges(
    model: FunctionModel,
    config: AnalyzerConfig = DEFAULT_CONFIG,
) -> List[RangeEntry]:
    """
    Build the render-ready range list for *model*.

    Each variable occupies the size of its inferred type.  The space up to
    the next variable's offset (or ``stack_size`` for the last one) is the
    available span; whatever exceeds the occupied size becomes a gap
    directly after the variable.
    """
    variables = model.sorted_variables()
    ranges: List[RangeEntry] = []
    for i, var in enumerate(variables):
        ranges.append(_variable_range(model, var, config))
        boundary = variables[i + 1].offset if i + 1 < len(variables) else model.stack_size
        available = boundary - var.offset
        if available > var.size:
            ranges.append(RangeEntry(
                kind=RangeKind.GAP,
                offset=var.offset + var.size,
                size=available - var.size,
            ))
    return ranges


@dataclass(frozen=True)
class FrameStats:
    stack_size: int
    used_bytes: int
    efficiency: float  # percent of stack_size occupied by variables

    @property
    def label(self) -> str:
        return f"{format_bytes(self.stack_size)} ({self.efficiency:.0f}%)"


def frame_stats(ranges: Iterable[RangeEntry], stack_size: int) -> FrameStats:
    used = sum(r.size for r in ranges if not r.is_gap)
    efficiency = (used / stack_size * 100.0) if stack_size > 0 else 0.0
    return FrameStats(stack_size=stack_size, used_bytes=used, efficiency=efficiency)


@dataclass(frozen=True)
class ErrorSummary:
    """Unique offsets per finding kind, plus the return-tamper count."""
    out_of_bounds: Tuple[int, ...] = ()
    uninitialized: Tuple[int, ...] = ()
    return_tamper: int = 0

    @property
    def empty(self) -> bool:
        return not (self.out_of_bounds or self.uninitialized or self.return_tamper)

    def describe(self) -> str:
        parts: List[str] = []
        if self.out_of_bounds:
            offsets = ",".join(str(o) for o in self.out_of_bounds)
            parts.append(f"{len(self.out_of_bounds)} OOB @{offsets}")
        if self.uninitialized:
            offsets = ",".join(str(o) for o in self.uninitialized)
            parts.append(f"{len(self.uninitialized)} Uninit @{offsets}")
        if self.return_tamper:
            parts.append(f"{self.return_tamper} RetAddr")
        return " • ".join(parts)


def error_summary(model: FunctionModel) -> ErrorSummary:
    oob = set()
    uninit = set()
    tamper = 0
    for f in model.errors:
        if f.kind is FindingKind.RETURN_TAMPER:
            tamper += 1
        elif f.kind is FindingKind.OUT_OF_BOUNDS and f.offset is not None:
            oob.add(f.offset)
        elif f.kind is FindingKind.UNINITIALIZED and f.offset is not None:
            uninit.add(f.offset)
    return ErrorSummary(
        out_of_bounds=tuple(sorted(oob)),
        uninitialized=tuple(sorted(uninit)),
        return_tamper=tamper,
    )


__all__ = [
    "format_bytes",
    "is_unsafe",
    "calculate_ranges",
    "FrameStats",
    "frame_stats",
    "ErrorSummary",
    "error_summary",
]
