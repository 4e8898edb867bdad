"""
asm_stackframe/diagnostics.py
═════════════════════════════

Diagnostics Engine: turns a sealed function model into findings and hints.

Architecture
────────────

  ┌──────────────────────────────────────────────────────────┐
  │                   DiagnosticsRunner                      │
  │  ┌─────────────┐ ┌─────────────┐ ┌─────────────┐         │
  │  │OutOfBounds  │ │ReturnTamper │ │Uninitialized│  ...    │
  │  │  Checker    │ │  Checker    │ │  Checker    │         │
  │  └──────┬──────┘ └──────┬──────┘ └──────┬──────┘         │
  │         └───────────────┼───────────────┘                │
  │                ┌────────▼────────┐                       │
  │                │  CheckContext   │  model + config       │
  │                └────────┬────────┘                       │
  │                ┌────────▼────────┐                       │
  │                │ new sealed model│  errors / hints       │
  │                └─────────────────┘                       │
  └──────────────────────────────────────────────────────────┘

Checkers never re-scan source text; everything they need is on the
model.  They run in registration order, and their output is appended in
that order, so findings from one pass are reproducible.

Checker catalogue
─────────────────
  out-of-bounds   error        CWE-787  slot offset beyond ``stack_size``
  return-tamper   error        CWE-121  access at or above the frame base
  uninitialized   warning      CWE-457  slot read but never written
  alignment       portability           committed frame not 16-aligned
  single-use      performance           slot touched exactly once
  random-access   performance           large jump between accesses
  large-stack     performance           frame larger than the threshold
"""

from __future__ import annotations

import copy
import dataclasses
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, FrozenSet, List, Optional, Set, Type

from asm_stackframe.config import DEFAULT_CONFIG, AnalyzerConfig
from asm_stackframe.layout import format_bytes
from asm_stackframe.model import (
    Finding,
    FindingKind,
    FunctionModel,
    Hint,
    HintKind,
    Severity,
)

_log = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — CHECKER BASE CLASS AND CONTEXT
# ═════════════════════════════════════════════════════════════════════════

@dataclass
class CheckContext:
    """
    Shared state handed to every checker for one function.

    Attributes
    ----------
    model  : FunctionModel being diagnosed (read-only for checkers)
    config : AnalyzerConfig
    flags  : model-level conditions set by checkers (``misaligned``, ...)
    """
    model: FunctionModel
    config: AnalyzerConfig = DEFAULT_CONFIG
    flags: Dict[str, Any] = field(default_factory=dict)


class Checker(ABC):
    """
    Abstract base class for all checkers.

    Subclass Contract
    ─────────────────
      - Override ``name``, ``description``, ``kinds``
      - Implement ``check()``, calling ``_emit`` / ``_hint``
    """

    name: ClassVar[str] = "base-checker"
    description: ClassVar[str] = ""
    kinds: ClassVar[FrozenSet[str]] = frozenset()
    default_severity: ClassVar[Severity] = Severity.WARNING
    cwe_ids: ClassVar[Dict[str, int]] = {}  # kind → CWE number

    def __init__(self) -> None:
        self._findings: List[Finding] = []
        self._hints: List[Hint] = []

    @property
    def findings(self) -> List[Finding]:
        return list(self._findings)

    @property
    def hints(self) -> List[Hint]:
        return list(self._hints)

    @abstractmethod
    def check(self, ctx: CheckContext) -> None:
        ...

    def _emit(
        self,
        kind: FindingKind,
        line: int,
        message: str,
        offset: Optional[int] = None,
        severity: Optional[Severity] = None,
    ) -> None:
        """Helper to create and store a finding."""
        self._findings.append(Finding(
            kind=kind,
            line=line,
            message=message,
            offset=offset,
            severity=severity or self.default_severity,
            cwe=self.cwe_ids.get(kind.value, 0),
        ))

    def _hint(
        self,
        kind: HintKind,
        message: str,
        offset: Optional[int] = None,
        line: Optional[int] = None,
    ) -> None:
        self._hints.append(Hint(
            kind=kind,
            message=message,
            offset=offset,
            line=line,
            severity=self.default_severity,
        ))

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} '{self.name}'>"


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — CHECKERS
# ═════════════════════════════════════════════════════════════════════════

class OutOfBoundsChecker(Checker):
    """One finding per slot whose offset lies beyond the allocated frame."""

    name: ClassVar[str] = "out-of-bounds"
    description: ClassVar[str] = "Stack slot beyond the allocated frame"
    kinds: ClassVar[FrozenSet[str]] = frozenset({"out_of_bounds"})
    default_severity: ClassVar[Severity] = Severity.ERROR
    cwe_ids: ClassVar[Dict[str, int]] = {"out_of_bounds": 787}

    def check(self, ctx: CheckContext) -> None:
        size = ctx.model.stack_size
        if size <= 0:
            return
        for var in ctx.model.sorted_variables():
            if var.offset > size:
                self._emit(
                    FindingKind.OUT_OF_BOUNDS,
                    var.def_line,
                    f"Access [rbp-{var.offset}] exceeds stack size {size}",
                    offset=var.offset,
                )


class ReturnTamperChecker(Checker):
    """Accesses at or above the frame base reach saved RBP / return address."""

    name: ClassVar[str] = "return-tamper"
    description: ClassVar[str] = "Access above the frame base"
    kinds: ClassVar[FrozenSet[str]] = frozenset({"return_tamper"})
    default_severity: ClassVar[Severity] = Severity.ERROR
    cwe_ids: ClassVar[Dict[str, int]] = {"return_tamper": 121}

    def check(self, ctx: CheckContext) -> None:
        for cand in ctx.model.tamper_candidates:
            self._emit(
                FindingKind.RETURN_TAMPER,
                cand.line,
                "Accessing above RBP (return address area)",
            )


class UninitializedChecker(Checker):
    name: ClassVar[str] = "uninitialized"
    description: ClassVar[str] = "Stack slot read but never written"
    kinds: ClassVar[FrozenSet[str]] = frozenset({"uninitialized"})
    default_severity: ClassVar[Severity] = Severity.WARNING
    cwe_ids: ClassVar[Dict[str, int]] = {"uninitialized": 457}

    def check(self, ctx: CheckContext) -> None:
        for var in ctx.model.sorted_variables():
            if var.reads and not var.writes:
                self._emit(
                    FindingKind.UNINITIALIZED,
                    var.reads[0],
                    f"[rbp-{var.offset}] read before write",
                    offset=var.offset,
                )


class AlignmentChecker(Checker):
    """
    Binary, once per function: is the committed frame aligned?

    The result is a model flag, not a finding.
    """

    name: ClassVar[str] = "alignment"
    description: ClassVar[str] = "Committed frame size not a multiple of the alignment"
    default_severity: ClassVar[Severity] = Severity.PORTABILITY

    def check(self, ctx: CheckContext) -> None:
        cfg = ctx.config
        model = ctx.model
        total = (
            cfg.return_address_size
            + cfg.register_save_size * len(model.saved_regs)
            + model.stack_size
        )
        ctx.flags["frame_total"] = total
        ctx.flags["misaligned"] = total % cfg.alignment != 0


class SingleUseChecker(Checker):
    name: ClassVar[str] = "single-use"
    description: ClassVar[str] = "Stack slot touched only once"
    kinds: ClassVar[FrozenSet[str]] = frozenset({"single_use"})
    default_severity: ClassVar[Severity] = Severity.PERFORMANCE

    def check(self, ctx: CheckContext) -> None:
        threshold = ctx.config.single_use_threshold
        for var in ctx.model.sorted_variables():
            if var.access_count == threshold:
                self._hint(
                    HintKind.SINGLE_USE,
                    f"[rbp-{var.offset}] used only once - consider using register",
                    offset=var.offset,
                    line=var.def_line,
                )


class RandomAccessChecker(Checker):
    """Emits at most once: the scan stops at the first large jump."""

    name: ClassVar[str] = "random-access"
    description: ClassVar[str] = "Scattered stack access pattern"
    kinds: ClassVar[FrozenSet[str]] = frozenset({"random_access"})
    default_severity: ClassVar[Severity] = Severity.PERFORMANCE

    def check(self, ctx: CheckContext) -> None:
        order = ctx.model.access_order
        if len(order) <= ctx.config.min_pattern_accesses:
            return
        jump = ctx.config.random_access_jump
        for prev, cur in zip(order, order[1:]):
            if abs(cur - prev) > jump:
                self._hint(
                    HintKind.RANDOM_ACCESS,
                    "Random stack access pattern - may cause cache misses",
                )
                return


class LargeStackChecker(Checker):
    name: ClassVar[str] = "large-stack"
    description: ClassVar[str] = "Stack frame large enough for the heap"
    kinds: ClassVar[FrozenSet[str]] = frozenset({"large_stack"})
    default_severity: ClassVar[Severity] = Severity.PERFORMANCE

    def check(self, ctx: CheckContext) -> None:
        size = ctx.model.stack_size
        if size > ctx.config.large_stack_threshold:
            self._hint(
                HintKind.LARGE_STACK,
                f"Large stack ({format_bytes(size)}) - consider heap allocation",
            )


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — CHECKER REGISTRY
# ═════════════════════════════════════════════════════════════════════════

class CheckerRegistry:
    """
    Ordered registry of checker classes.

    Usage
    -----
    >>> registry = CheckerRegistry()
    >>> registry.register(OutOfBoundsChecker)
    >>> registry.disable("out-of-bounds")
    >>> registry.get_enabled()
    []
    """

    def __init__(self) -> None:
        self._checkers: Dict[str, Type[Checker]] = {}
        self._disabled: Set[str] = set()

    def register(self, checker_cls: Type[Checker]) -> None:
        self._checkers[checker_cls.name] = checker_cls

    def disable(self, name: str) -> None:
        self._disabled.add(name)

    def get_enabled(self) -> List[Type[Checker]]:
        """Enabled checker classes, in registration order."""
        return [
            cls for name, cls in self._checkers.items()
            if name not in self._disabled
        ]

    def for_config(self, config: AnalyzerConfig) -> "CheckerRegistry":
        """Copy of this registry with *config*'s disabled checks switched off."""
        reg = CheckerRegistry()
        for cls in self._checkers.values():
            reg.register(cls)
        for name in self._disabled | set(config.disabled_checks):
            reg.disable(name)
        return reg

    @property
    def names(self) -> List[str]:
        """Registered names, in run order."""
        return list(self._checkers.keys())


def _build_default_registry() -> CheckerRegistry:
    reg = CheckerRegistry()
    for cls in (
        OutOfBoundsChecker,
        ReturnTamperChecker,
        UninitializedChecker,
        AlignmentChecker,
        SingleUseChecker,
        RandomAccessChecker,
        LargeStackChecker,
    ):
        reg.register(cls)
    return reg


_DEFAULT_REGISTRY = _build_default_registry()


def default_registry() -> CheckerRegistry:
    return _DEFAULT_REGISTRY


# ═════════════════════════════════════════════════════════════════════════
#  PART 4 — RUNNER
# ═════════════════════════════════════════════════════════════════════════

@dataclass
class DiagnosticsResults:
    """Outcome of running the checkers over one function."""
    model: FunctionModel
    checker_names: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_errors(self) -> bool:
        return any(f.severity is Severity.ERROR for f in self.model.errors)

    def summary(self) -> str:
        lines = [
            f"Function {self.model.name}: "
            f"{len(self.model.errors)} finding(s), {len(self.model.hints)} hint(s)"
        ]
        for name in self.checker_names:
            ms = self.stats.get(f"{name}_elapsed_ms", 0.0)
            status = "FAILED" if name in self.failures else "ok"
            lines.append(f"  {name:<16} {status:<6} {ms:.2f} ms")
        return "\n".join(lines)


class DiagnosticsRunner:
    """
    Runs the enabled checkers over a function model.

    Usage
    -----
    >>> runner = DiagnosticsRunner(config=AnalyzerConfig())
    >>> results = runner.run(model)
    >>> results.model.sealed
    True
    """

    def __init__(
        self,
        registry: Optional[CheckerRegistry] = None,
        config: AnalyzerConfig = DEFAULT_CONFIG,
    ) -> None:
        self.registry = registry or _DEFAULT_REGISTRY
        self.config = config

    def run(self, model: FunctionModel) -> DiagnosticsResults:
        ctx = CheckContext(model=model, config=self.config)
        results = DiagnosticsResults(model=model)
        errors: List[Finding] = []
        hints: List[Hint] = []

        for cls in self.registry.for_config(self.config).get_enabled():
            checker = cls()
            results.checker_names.append(cls.name)
            t0 = time.monotonic()
            try:
                checker.check(ctx)
            except Exception as exc:
                # record the failure; later checkers still run
                _log.error("checker %s failed on %s: %s", cls.name, model.name, exc)
                results.failures[cls.name] = str(exc)
            else:
                errors.extend(checker.findings)
                hints.extend(checker.hints)
            results.stats[f"{cls.name}_elapsed_ms"] = (time.monotonic() - t0) * 1000.0

        # the sealed model shares no containers with its input
        results.model = dataclasses.replace(
            copy.deepcopy(model),
            errors=errors,
            hints=hints,
            misaligned=bool(ctx.flags.get("misaligned", False)),
            frame_total=int(ctx.flags.get("frame_total", 0)),
            sealed=True,
        )
        _log.debug(
            "diagnosed %s: %d finding(s), %d hint(s)",
            model.name, len(errors), len(hints),
        )
        return results


def diagnose(model: FunctionModel, config: AnalyzerConfig = DEFAULT_CONFIG) -> FunctionModel:
    """Return a new sealed copy of *model* with findings and hints filled in."""
    return DiagnosticsRunner(config=config).run(model).model


__all__ = [
    "CheckContext",
    "Checker",
    "OutOfBoundsChecker",
    "ReturnTamperChecker",
    "UninitializedChecker",
    "AlignmentChecker",
    "SingleUseChecker",
    "RandomAccessChecker",
    "LargeStackChecker",
    "CheckerRegistry",
    "default_registry",
    "DiagnosticsResults",
    "DiagnosticsRunner",
    "diagnose",
]
