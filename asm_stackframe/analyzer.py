"""
asm_stackframe/analyzer.py
══════════════════════════

One analysis pass over a source buffer, and the queries a front end asks
of its result.

Pipeline
────────

  lines ──► matcher.match_line ──► frame_builder.build_functions
        ──► diagnostics.diagnose (per function) ──► AnalysisResult

The result is a snapshot: a read-only function mapping (declaration
order) over sealed models, and the line → offsets map.  Queries never
raise for unknown functions, lines or offsets; they return ``None`` or an
empty list.

Usage
─────
    >>> result = analyze_text(open("prog.asm").read())
    >>> for name, fn in result.functions.items():
    ...     print(name, fn.stack_size, len(fn.errors))
    >>> active_offsets(result, cursor_line=12)
    [8, 16]
"""

from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from asm_stackframe.config import DEFAULT_CONFIG, AnalyzerConfig
from asm_stackframe.diagnostics import diagnose
from asm_stackframe.frame_builder import build_functions
from asm_stackframe.layout import calculate_ranges
from asm_stackframe.matcher import match_line
from asm_stackframe.model import Finding, FunctionModel, RangeEntry, RegisterState
from asm_stackframe.registers import display_key, is_alias, parent_of

_log = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — RESULT
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AnalysisResult:
    """
    Outcome of one pass.

    Attributes
    ----------
    all_functions : every function model, in declaration order
    line_map      : source line → stack offsets referenced on it
    config        : configuration the pass ran with
    """
    all_functions: Mapping[str, FunctionModel] = field(
        default_factory=lambda: MappingProxyType({})
    )
    line_map: Mapping[int, Tuple[int, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    config: AnalyzerConfig = DEFAULT_CONFIG

    @property
    def functions(self) -> Dict[str, FunctionModel]:
        """Functions that allocate a frame; the others are not reported."""
        return {
            name: fn for name, fn in self.all_functions.items()
            if fn.stack_size > 0
        }

    def function(self, name: str) -> Optional[FunctionModel]:
        return self.all_functions.get(name)

    def function_at_line(self, line: int) -> Optional[FunctionModel]:
        for fn in self.all_functions.values():
            if fn.start_line <= line <= fn.end_line:
                return fn
        return None

    @property
    def finding_count(self) -> int:
        return sum(len(fn.errors) for fn in self.functions.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "functions": {
                name: fn.to_dict() for name, fn in self.functions.items()
            },
            "line_map": {
                str(line): list(offsets) for line, offsets in self.line_map.items()
            },
        }


def analyze_lines(
    lines: Sequence[str],
    config: Optional[AnalyzerConfig] = None,
) -> AnalysisResult:
    """Run the full pipeline over *lines* (line 1 is ``lines[0]``)."""
    cfg = config or DEFAULT_CONFIG
    matched = [match_line(raw, number) for number, raw in enumerate(lines, start=1)]
    built, line_map = build_functions(matched, cfg)

    diagnosed: Dict[str, FunctionModel] = {}
    for name, model in built.items():
        diagnosed[name] = diagnose(model, cfg)

    _log.debug(
        "analysed %d line(s): %d function(s), %d with a frame",
        len(lines), len(diagnosed),
        sum(1 for fn in diagnosed.values() if fn.stack_size > 0),
    )
    return AnalysisResult(
        all_functions=MappingProxyType(diagnosed),
        line_map=MappingProxyType({k: tuple(v) for k, v in line_map.items()}),
        config=cfg,
    )


def split_lines(text: str) -> List[str]:
    r"""
    Break *text* into buffer lines on ``\n`` only.

    A trailing ``\r`` is dropped from each line; form feeds and the other
    characters ``str.splitlines`` treats as breaks stay inside their line,
    so line numbers match the editor.
    """
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [ln[:-1] if ln.endswith("\r") else ln for ln in lines]


def analyze_text(text: str, config: Optional[AnalyzerConfig] = None) -> AnalysisResult:
    return analyze_lines(split_lines(text), config)


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — QUERIES
# ═════════════════════════════════════════════════════════════════════════

def active_offsets(result: AnalysisResult, cursor_line: int) -> List[int]:
    """Offsets referenced on *cursor_line*; empty when there are none."""
    return list(result.line_map.get(cursor_line, ()))


def ranges_for(result: AnalysisResult, name: str) -> List[RangeEntry]:
    fn = result.function(name)
    if fn is None:
        return []
    return calculate_ranges(fn, result.config)


def findings_at_line(model: FunctionModel, line: int) -> List[Finding]:
    """Findings reported at *line* (the tooltip query)."""
    return [f for f in model.errors if f.line == line]


def jump_target(result: AnalysisResult, name: str, offset: int) -> Optional[int]:
    """Definition line of the slot at *offset* in function *name*."""
    fn = result.function(name)
    if fn is None:
        return None
    var = fn.variables.get(offset)
    return var.def_line if var is not None else None


def register_snapshot(model: FunctionModel, cursor_line: int) -> List[RegisterState]:
    """
    Register panel rows for *cursor_line*.

    ``current`` is the last operation at or before the cursor, ``final`` the
    function's latest operation.  A sub-register row is dropped when its
    64-bit parent has a row of its own.
    """
    rows: Dict[str, RegisterState] = {}
    for name, usage in model.register_usage.items():
        current = usage.state_at(cursor_line)
        final = usage.latest
        if current is None and final is None:
            continue
        if current is not None and final is not None:
            changed = (
                current.source_line != final.source_line
                or current.display != final.display
            )
        else:
            changed = True
        rows[name] = RegisterState(
            register=name, current=current, final=final, changed=changed,
        )

    visible = [
        state for name, state in rows.items()
        if not (is_alias(name) and parent_of(name) in rows)
    ]
    visible.sort(key=lambda s: display_key(s.register))
    return visible


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — SESSION
# ═════════════════════════════════════════════════════════════════════════

def _digest(lines: Sequence[str]) -> str:
    h = hashlib.sha256()
    for line in lines:
        h.update(line.encode("utf-8", errors="surrogatepass"))
        h.update(b"\n")
    return h.hexdigest()


class AnalysisSession:
    """
    Latest analysis of one source buffer.

    ``refresh`` runs at most one pass at a time per session and reuses the
    previous result when the text is unchanged.  Nothing writes to a
    published result, so it is safe to hand to another thread.
    """

    def __init__(self, config: Optional[AnalyzerConfig] = None) -> None:
        self.config = config or DEFAULT_CONFIG
        self._lock = threading.Lock()
        self._digest: Optional[str] = None
        self._result: Optional[AnalysisResult] = None
        self.passes = 0

    @property
    def result(self) -> Optional[AnalysisResult]:
        return self._result

    def refresh(self, lines: Sequence[str]) -> AnalysisResult:
        digest = _digest(lines)
        with self._lock:
            if self._result is not None and digest == self._digest:
                _log.debug("buffer unchanged, reusing analysis")
                return self._result
            result = analyze_lines(lines, self.config)
            self._digest = digest
            self._result = result
            self.passes += 1
            return result

    def reconfigure(self, config: AnalyzerConfig) -> None:
        with self._lock:
            self.config = config
            self._digest = None
            self._result = None


__all__ = [
    "AnalysisResult",
    "analyze_lines",
    "analyze_text",
    "split_lines",
    "active_offsets",
    "ranges_for",
    "findings_at_line",
    "jump_target",
    "register_snapshot",
    "AnalysisSession",
]
