"""
asm_stackframe/report.py
════════════════════════

Renderings of an :class:`~asm_stackframe.analyzer.AnalysisResult`.

  text     frame diagram per function: header, error summary,
           misalignment banner, saved registers, ranges, findings, hints,
           and the register panel when a cursor line is given
  gcc      ``file:line: severity: message [kind]``, one per line
  json     the full result (functions + line map)
  summary  one line per function plus a total

Colour comes from termcolor; ``color=False`` yields plain text.
"""

from __future__ import annotations

import json
from typing import Callable, Dict, List, Optional

from termcolor import colored

from asm_stackframe.analyzer import (
    AnalysisResult,
    active_offsets,
    ranges_for,
    register_snapshot,
)
from asm_stackframe.layout import error_summary, format_bytes, frame_stats
from asm_stackframe.model import FunctionModel, Hint, RangeEntry, RegisterState, Severity

RULE_WIDTH = 60

_SEVERITY_COLORS: Dict[Severity, str] = {
    Severity.ERROR: "red",
    Severity.WARNING: "yellow",
    Severity.STYLE: "cyan",
    Severity.PERFORMANCE: "magenta",
    Severity.PORTABILITY: "blue",
    Severity.INFORMATION: "white",
}


class _Painter:
    """``colored`` when enabled, identity otherwise."""

    def __init__(self, enabled: bool) -> None:
        self.enabled = enabled

    def __call__(self, text: str, color: Optional[str] = None,
                 attrs: Optional[List[str]] = None) -> str:
        if not self.enabled:
            return text
        return colored(text, color, attrs=attrs)


# ═════════════════════════════════════════════════════════════════════════
#  TEXT
# ═════════════════════════════════════════════════════════════════════════

def format_register_row(state: RegisterState) -> str:
    cur, fin = state.current, state.final
    if cur is not None and fin is not None:
        if state.changed:
            return f" {state.register} = {cur.display} → {fin.display}"
        return f" {state.register} = {cur.display}"
    if fin is not None:
        return f" {state.register} = (not set) → {fin.display}"
    if cur is not None:
        return f" {state.register} = {cur.display} → (cleared)"
    return f" {state.register} = ?"


def format_range(entry: RangeEntry, active: bool = False) -> str:
    marker = ">" if active else " "
    if entry.is_gap:
        return f"{marker} gap • {format_bytes(entry.size)}"
    parts = [f"[rbp-{entry.offset}] • {format_bytes(entry.size)}"]
    if entry.inferred_type is not None and entry.inferred_type.value != "unknown":
        parts.append(entry.inferred_type.value)
    if entry.usage:
        parts.append("← " + ", ".join(entry.usage))
    if entry.def_line is not None:
        parts.append(f"line {entry.def_line}")
    flags = []
    if entry.out_of_bounds:
        flags.append("[!] Out of Bounds")
    if entry.uninitialized:
        flags.append("[!] Uninitialized")
    if entry.unsafe:
        flags.append("[!] Unsafe")
    return f"{marker} " + " • ".join(parts + flags)


def _range_color(entry: RangeEntry, active: bool) -> Optional[str]:
    if entry.is_gap:
        return "white"
    if active:
        return "cyan"
    if entry.out_of_bounds or entry.unsafe:
        return "red"
    if entry.uninitialized:
        return "yellow"
    return "green"


def _hint_line(hint: Hint) -> str:
    where = f"line {hint.line}: " if hint.line is not None else ""
    return f"  {where}{hint.message} [{hint.kind.value}]"


def render_function(
    result: AnalysisResult,
    fn: FunctionModel,
    cursor: Optional[int] = None,
    color: bool = True,
) -> str:
    paint = _Painter(color)
    rule = "─" * RULE_WIDTH
    lines: List[str] = []

    if cursor is not None and fn.start_line <= cursor <= fn.end_line:
        rows = register_snapshot(fn, cursor)
        if rows:
            lines.append(rule)
            lines.append(paint(f" Registers @ Line {cursor} ", attrs=["bold"]))
            lines.append(rule)
            for state in rows:
                lines.append(paint(
                    format_register_row(state),
                    "yellow" if state.changed else "blue",
                ))

    ranges = ranges_for(result, fn.name)
    stats = frame_stats(ranges, fn.stack_size)
    lines.append(rule)
    lines.append(paint(f" {fn.name} • {stats.label} ", "green", attrs=["bold"]))

    summary = error_summary(fn)
    if not summary.empty:
        lines.append(paint(f" ⚠ {summary.describe()} ", "red", attrs=["bold"]))
    if fn.misaligned:
        lines.append(paint(f" ⚠ MISALIGNED (frame {fn.frame_total}B) ", "red", attrs=["bold"]))

    lines.append(rule)
    lines.append(paint(" Return Address (8B)", attrs=["dark"]))
    for reg in fn.saved_regs:
        lines.append(paint(f" Saved {reg} (8B)", "magenta"))
    lines.append(paint(" RBP (Base Pointer)", "blue", attrs=["bold"]))
    lines.append(rule)

    active = set(active_offsets(result, cursor)) if cursor is not None else set()
    for entry in ranges:
        is_active = not entry.is_gap and entry.offset in active
        lines.append(paint(format_range(entry, is_active), _range_color(entry, is_active)))

    if fn.errors:
        lines.append(rule)
        lines.append(paint(" Findings", attrs=["bold"]))
        for f in fn.errors:
            sev = paint(f.severity.value, _SEVERITY_COLORS[f.severity], attrs=["bold"])
            lines.append(f"  line {f.line}: {sev}: {f.message} [{f.kind.value}]")
    if fn.hints:
        lines.append(rule)
        lines.append(paint(" Hints", attrs=["bold"]))
        for h in fn.hints:
            lines.append(paint(_hint_line(h), _SEVERITY_COLORS[h.severity]))
    return "\n".join(lines)


def render_text(
    result: AnalysisResult,
    file: str = "<input>",
    function: Optional[str] = None,
    cursor: Optional[int] = None,
    color: bool = True,
) -> str:
    paint = _Painter(color)
    functions = _selected(result, function)
    if not functions:
        return paint(f"{file}: no stack frames found", attrs=["dark"])
    blocks = [paint(f"{file}", attrs=["bold", "underline"])]
    for fn in functions:
        blocks.append(render_function(result, fn, cursor=cursor, color=color))
    return "\n".join(blocks)


# ═════════════════════════════════════════════════════════════════════════
#  GCC / JSON / SUMMARY
# ═════════════════════════════════════════════════════════════════════════

def render_gcc(
    result: AnalysisResult,
    file: str = "<input>",
    function: Optional[str] = None,
) -> str:
    out: List[str] = []
    for fn in _selected(result, function):
        for f in fn.errors:
            out.append(f.to_gcc_format(file))
        for h in fn.hints:
            line = h.line if h.line is not None else fn.start_line
            out.append(f"{file}:{line}: {h.severity.value}: {h.message} [{h.kind.value}]")
        if fn.misaligned:
            out.append(
                f"{file}:{fn.start_line}: {Severity.PORTABILITY.value}: "
                f"frame of {fn.frame_total} bytes is not {result.config.alignment}-byte "
                f"aligned [misaligned]"
            )
    return "\n".join(out)


def render_json(
    result: AnalysisResult,
    file: str = "<input>",
    function: Optional[str] = None,
) -> str:
    data = result.to_dict()
    if function is not None:
        data["functions"] = {
            k: v for k, v in data["functions"].items() if k == function
        }
    data["file"] = file
    return json.dumps(data, indent=2)


def render_summary(
    result: AnalysisResult,
    file: str = "<input>",
    function: Optional[str] = None,
) -> str:
    functions = _selected(result, function)
    out: List[str] = []
    for fn in functions:
        flag = " misaligned" if fn.misaligned else ""
        out.append(
            f"{file}: {fn.name}: stack {format_bytes(fn.stack_size)}, "
            f"{len(fn.variables)} slot(s), {len(fn.errors)} finding(s), "
            f"{len(fn.hints)} hint(s){flag}"
        )
    findings = sum(len(fn.errors) for fn in functions)
    hints = sum(len(fn.hints) for fn in functions)
    out.append(f"{file}: {len(functions)} function(s), {findings} finding(s), {hints} hint(s)")
    return "\n".join(out)


def _selected(result: AnalysisResult, function: Optional[str]) -> List[FunctionModel]:
    fns = list(result.functions.values())
    if function is not None:
        fns = [fn for fn in fns if fn.name == function]
    return fns


Renderer = Callable[..., str]

RENDERERS: Dict[str, Renderer] = {
    "text": render_text,
    "gcc": render_gcc,
    "json": render_json,
    "summary": render_summary,
}


__all__ = [
    "RULE_WIDTH",
    "format_register_row",
    "format_range",
    "render_function",
    "render_text",
    "render_gcc",
    "render_json",
    "render_summary",
    "RENDERERS",
]
