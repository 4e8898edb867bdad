"""
asm_stackframe — Stack Frame Analysis for x86-64 Assembly Source
================================================================

Reconstructs, per function, the stack frame layout of Intel-syntax
x86-64 assembly, the flow of values through registers, and static
defects: out-of-bounds slots, reads before writes, unsafe library calls,
return-address tampering and misalignment.

Core modules
------------
model
    Record types: function model, variables, register operations, findings.
registers
    Register alias table and the two-level register state store.
config
    ``AnalyzerConfig`` thresholds and the S-expression configuration loader.
matcher
    Ordered recogniser rules turning one source line into events.
layout
    Layout calculator: gap-filled byte ranges, frame statistics.
frame_builder
    Per-function symbolic state tracker.
diagnostics
    Checker framework producing findings and hints.
analyzer
    Pass driver, result queries and the per-buffer analysis session.
report
    Text / GCC / JSON / summary renderings.

Quick start
-----------
>>> from asm_stackframe import analyze_text
>>> result = analyze_text("main:\\n  sub rsp, 16\\n  mov qword [rbp-8], 1\\n")
>>> result.functions["main"].stack_size
16

Package layout
--------------
::

    asm_stackframe/
    ├── __init__.py            ← this file
    ├── __main__.py
    ├── cli.py
    ├── model.py
    ├── registers.py
    ├── config.py
    ├── matcher.py
    ├── layout.py
    ├── frame_builder.py
    ├── diagnostics.py
    ├── analyzer.py
    └── report.py
"""

from __future__ import annotations

import importlib
import logging
import sys
from typing import List

# ---------------------------------------------------------------------------
# Package metadata
# ---------------------------------------------------------------------------

__version__ = "0.1.0"
__all__: List[str] = []          # populated incrementally below

_log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Internal registry: module_name → names re-exported at package level.
# Order matters: each module only depends on the ones above it.
# ---------------------------------------------------------------------------

_CORE_MODULES = {
    "model": [
        "OpKind",
        "VarType",
        "Severity",
        "FindingKind",
        "HintKind",
        "RegisterOp",
        "Variable",
        "Finding",
        "Hint",
        "FunctionModel",
        "RangeEntry",
        "RegisterState",
    ],
    "registers": [
        "RegisterFile",
        "parent_of",
        "is_register",
    ],
    "config": [
        "AnalyzerConfig",
        "ConfigError",
        "load_config",
        "parse_config",
    ],
    "matcher": [
        "match_line",
        "MatchedLine",
    ],
    "layout": [
        "calculate_ranges",
        "format_bytes",
    ],
    "frame_builder": [
        "FrameBuilder",
    ],
    "diagnostics": [
        "diagnose",
        "CheckerRegistry",
        "DiagnosticsRunner",
    ],
    "analyzer": [
        "AnalysisResult",
        "AnalysisSession",
        "analyze_lines",
        "analyze_text",
        "active_offsets",
        "findings_at_line",
        "jump_target",
        "register_snapshot",
    ],
    "report": [
        "render_text",
        "render_gcc",
        "render_json",
        "render_summary",
    ],
}


def _import_names(module_rel_name: str, names: List[str]) -> None:
    """Import *names* from a submodule and bind them in the package namespace."""
    fq_name = f"{__name__}.{module_rel_name}"
    try:
        mod = importlib.import_module(fq_name)
    except ImportError as exc:
        raise ImportError(
            f"asm_stackframe: required submodule '{module_rel_name}' "
            f"failed to import: {exc}"
        ) from exc

    current_module = sys.modules[__name__]
    for name in names:
        obj = getattr(mod, name, None)
        if obj is None:
            raise AttributeError(
                f"asm_stackframe.{module_rel_name} does not export '{name}'"
            )
        setattr(current_module, name, obj)
        __all__.append(name)

    setattr(current_module, module_rel_name, mod)
    if module_rel_name not in __all__:
        __all__.append(module_rel_name)


for _mod, _names in _CORE_MODULES.items():
    _import_names(_mod, _names)

del _mod, _names


def list_submodules() -> List[str]:
    """Return the names of the re-exporting submodules."""
    return sorted(_CORE_MODULES)


def package_info() -> dict:
    """Metadata about the installed package, handy in ``-vv`` logs."""
    loaded = [m for m in list_submodules() if f"{__name__}.{m}" in sys.modules]
    return {
        "package": __name__,
        "version": __version__,
        "python": sys.version,
        "loaded_submodules": loaded,
        "all_exports": list(__all__),
    }


__all__ += ["list_submodules", "package_info", "__version__"]
