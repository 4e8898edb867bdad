"""asm_stackframe/config.py – analyser configuration and its S-expression loader.

The engine reads one :class:`AnalyzerConfig` per pass and never mutates
it.  Defaults are the stock thresholds of the analyser; a
configuration file may override any of them.

S-expression surface syntax
---------------------------
::

    (stackframe-config
      (unsafe-functions "strcpy" "gets")
      (extra-unsafe-functions "memcpy")
      (string-functions "lstrcpy" "strcpy")
      (single-use-threshold 1)
      (random-access-jump 64)
      (min-pattern-accesses 3)
      (large-stack-threshold 4096)
      (alignment 16)
      (return-address-size 8)
      (register-save-size 8)
      (disable single-use random-access))

``unsafe-functions`` replaces the denylist, ``extra-unsafe-functions``
appends to it.  Every clause is dispatched on its head symbol through ``_CLAUSES``;
anything unknown or ill-shaped raises :class:`ConfigError`.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, List, Tuple, Union

import sexpdata
from sexpdata import Symbol

_log = logging.getLogger(__name__)


DEFAULT_UNSAFE_FUNCTIONS: Tuple[str, ...] = (
    "strcpy", "lstrcpy", "lstrcpyA", "lstrcpyW",
    "strcat", "lstrcat", "lstrcatA", "lstrcatW",
    "gets", "scanf", "wscanf", "sscanf", "swscanf",
    "sprintf", "wsprintf", "swprintf", "vsprintf", "vswprintf",
    "strncpy", "wcsncpy", "strncat", "wcsncat",
)

DEFAULT_STRING_FUNCTIONS: Tuple[str, ...] = ("lstrcpy", "lstrcat")

#: names accepted by ``(disable ...)``, in the order the checks run.
KNOWN_CHECKS: Tuple[str, ...] = (
    "out-of-bounds",
    "return-tamper",
    "uninitialized",
    "alignment",
    "single-use",
    "random-access",
    "large-stack",
)


class ConfigError(Exception):
    """Raised when a configuration source cannot be turned into a config."""

    def __init__(self, message: str, source: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.source = source

    def __str__(self) -> str:
        if self.source:
            return f"{self.source}: {self.message}"
        return self.message


@dataclass(frozen=True)
class AnalyzerConfig:
    """
    Thresholds and lists consumed by one analysis pass.

    Attributes
    ----------
    unsafe_functions      : case-insensitive substrings marking a slot unsafe
    string_functions      : mentions that force a slot's type to ``string``
    single_use_threshold  : access count that triggers the single-use hint
    random_access_jump    : byte distance between consecutive accesses
    min_pattern_accesses  : accesses required before pattern analysis
    large_stack_threshold : stack sizes above this get a heap hint
    alignment             : required alignment of the committed frame
    return_address_size   : bytes pushed by ``call``
    register_save_size    : bytes per pushed register
    disabled_checks       : checker names to skip
    """
    unsafe_functions: Tuple[str, ...] = DEFAULT_UNSAFE_FUNCTIONS
    string_functions: Tuple[str, ...] = DEFAULT_STRING_FUNCTIONS
    single_use_threshold: int = 1
    random_access_jump: int = 64
    min_pattern_accesses: int = 3
    large_stack_threshold: int = 4096
    alignment: int = 16
    return_address_size: int = 8
    register_save_size: int = 8
    disabled_checks: FrozenSet[str] = field(default_factory=frozenset)

    def is_enabled(self, check: str) -> bool:
        return check not in self.disabled_checks

    def replace(self, **changes: Any) -> "AnalyzerConfig":
        return dataclasses.replace(self, **changes)


DEFAULT_CONFIG = AnalyzerConfig()


# ═══════════════════════════════════════════════════════════════════════
#  S-expression helpers
# ═══════════════════════════════════════════════════════════════════════

Sexp = Any  # Union[list, Symbol, str, int, float, bool]


def _sym_name(s: Sexp) -> str:
    if isinstance(s, Symbol):
        return s.value()
    raise ConfigError(f"Expected symbol, got {type(s).__name__}: {s!r}")


def _as_str(s: Sexp) -> str:
    if isinstance(s, Symbol):
        return s.value()
    if isinstance(s, str):
        return s
    raise ConfigError(f"Expected string or symbol, got {type(s).__name__}: {s!r}")


def _as_int(s: Sexp, clause: str) -> int:
    if isinstance(s, int) and not isinstance(s, bool):
        return s
    raise ConfigError(f"({clause} ...) expects an integer, got {s!r}")


# ═══════════════════════════════════════════════════════════════════════
#  Clause dispatch
# ═══════════════════════════════════════════════════════════════════════

Clause = Callable[[List[Sexp], Dict[str, Any]], None]

_CLAUSES: Dict[str, Clause] = {}


def _register(tag: str):
    """Decorator: register a clause handler under *tag*."""
    def deco(fn: Clause) -> Clause:
        _CLAUSES[tag] = fn
        return fn
    return deco


@_register("unsafe-functions")
def _clause_unsafe(args: List[Sexp], out: Dict[str, Any]) -> None:
    out["unsafe_functions"] = tuple(_as_str(a) for a in args)


@_register("extra-unsafe-functions")
def _clause_extra_unsafe(args: List[Sexp], out: Dict[str, Any]) -> None:
    current = out["unsafe_functions"]
    extra = tuple(a for a in (_as_str(x) for x in args) if a not in current)
    out["unsafe_functions"] = tuple(current) + extra


@_register("string-functions")
def _clause_strings(args: List[Sexp], out: Dict[str, Any]) -> None:
    out["string_functions"] = tuple(_as_str(a) for a in args)


@_register("disable")
def _clause_disable(args: List[Sexp], out: Dict[str, Any]) -> None:
    names = set(out["disabled_checks"])
    for a in args:
        name = _as_str(a)
        if name not in KNOWN_CHECKS:
            raise ConfigError(
                f"Unknown check '{name}' in (disable ...); "
                f"expected one of: {', '.join(KNOWN_CHECKS)}"
            )
        names.add(name)
    out["disabled_checks"] = frozenset(names)


def _int_clause(tag: str, attr: str, minimum: int) -> None:
    def handler(args: List[Sexp], out: Dict[str, Any]) -> None:
        if len(args) != 1:
            raise ConfigError(f"({tag} ...) takes exactly one value")
        value = _as_int(args[0], tag)
        if value < minimum:
            raise ConfigError(f"({tag} ...) must be >= {minimum}, got {value}")
        out[attr] = value
    _register(tag)(handler)


_int_clause("single-use-threshold", "single_use_threshold", 0)
_int_clause("random-access-jump", "random_access_jump", 0)
_int_clause("min-pattern-accesses", "min_pattern_accesses", 0)
_int_clause("large-stack-threshold", "large_stack_threshold", 0)
_int_clause("alignment", "alignment", 1)
_int_clause("return-address-size", "return_address_size", 0)
_int_clause("register-save-size", "register_save_size", 0)


# ═══════════════════════════════════════════════════════════════════════
#  Public API
# ═══════════════════════════════════════════════════════════════════════

def parse_config(text: str, base: AnalyzerConfig = DEFAULT_CONFIG) -> AnalyzerConfig:
    """Parse a ``(stackframe-config ...)`` form on top of *base*."""
    try:
        form = sexpdata.loads(text, nil=None, true=None, false=None)
    except Exception as exc:
        raise ConfigError(f"Malformed S-expression: {exc}") from exc

    if not isinstance(form, list) or not form:
        raise ConfigError("Expected (stackframe-config ...)")
    if _sym_name(form[0]) != "stackframe-config":
        raise ConfigError(f"Expected (stackframe-config ...), got ({_sym_name(form[0])} ...)")

    # accumulating clauses extend what the base already holds
    changes: Dict[str, Any] = {
        "unsafe_functions": base.unsafe_functions,
        "disabled_checks": base.disabled_checks,
    }
    for clause in form[1:]:
        if not isinstance(clause, list) or not clause:
            raise ConfigError(f"Expected clause form (tag ...), got: {clause!r}")
        tag = _sym_name(clause[0])
        handler = _CLAUSES.get(tag)
        if handler is None:
            raise ConfigError(f"Unknown configuration clause: ({tag} ...)")
        handler(list(clause[1:]), changes)
        _log.debug("config clause %s applied", tag)
    return base.replace(**changes)


def load_config(path: Union[str, Path], base: AnalyzerConfig = DEFAULT_CONFIG) -> AnalyzerConfig:
    """Read and parse a configuration file."""
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read configuration: {exc}", source=str(p)) from exc
    try:
        config = parse_config(text, base)
    except ConfigError as exc:
        raise ConfigError(exc.message, source=str(p)) from exc
    _log.info("Loaded configuration from %s", p)
    return config


def clause_names() -> List[str]:
    return sorted(_CLAUSES)


__all__ = [
    "DEFAULT_UNSAFE_FUNCTIONS",
    "DEFAULT_STRING_FUNCTIONS",
    "KNOWN_CHECKS",
    "ConfigError",
    "AnalyzerConfig",
    "DEFAULT_CONFIG",
    "parse_config",
    "load_config",
    "clause_names",
]
