"""
asm_stackframe/model.py
═══════════════════════

Record types produced by one analysis pass.

Every record is constructed complete, with defaulted fields; nothing is
attached ad hoc later.  Records that are facts about a single source line
(``RegisterOp``, ``Finding``, ``Hint``, ``TamperCandidate``,
``RangeEntry``) are frozen.  ``Variable`` and ``FunctionModel`` are
mutable only while the Frame Builder owns them.  The Diagnostics Engine
seals a deep copy, so a sealed model shares no containers with the model
it was built from.  Nothing in the package writes to a sealed model;
callers holding one treat it as read-only.

Serialisation
─────────────
Each record offers ``to_dict()`` producing plain JSON-compatible data,
mirroring ``Diagnostic.to_cppcheck_json`` in spirit.
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — ENUMERATIONS
# ═════════════════════════════════════════════════════════════════════════

class OpKind(enum.Enum):
    """Classification of a register write."""
    CALL = "call"
    MOV = "mov"
    REG_MOVE = "reg_move"
    STACK_LOAD = "stack_load"
    IMMEDIATE = "immediate"
    LEA = "lea"
    XOR = "xor"
    ADD = "add"
    SUB = "sub"
    INC = "inc"
    DEC = "dec"
    AND = "and"
    OR = "or"
    SHL = "shl"
    SHR = "shr"
    IMUL = "imul"


class VarType(enum.Enum):
    """Inferred type of a stack slot."""
    UNKNOWN = "unknown"
    BYTE = "byte"
    WORD = "word"
    DWORD = "dword"
    QWORD = "qword"
    STRING = "string"

    @property
    def size(self) -> int:
        """Occupied bytes; ``unknown`` defaults to pointer width."""
        return _TYPE_SIZES[self]


_TYPE_SIZES = {
    VarType.UNKNOWN: 8,
    VarType.BYTE: 1,
    VarType.WORD: 2,
    VarType.DWORD: 4,
    VarType.QWORD: 8,
    VarType.STRING: 32,
}


class Severity(enum.Enum):
    """cppcheck-compatible severity levels."""
    ERROR = "error"
    WARNING = "warning"
    STYLE = "style"
    PERFORMANCE = "performance"
    PORTABILITY = "portability"
    INFORMATION = "information"


class FindingKind(enum.Enum):
    OUT_OF_BOUNDS = "out_of_bounds"
    UNINITIALIZED = "uninitialized"
    RETURN_TAMPER = "return_tamper"


class HintKind(enum.Enum):
    SINGLE_USE = "single_use"
    RANDOM_ACCESS = "random_access"
    LARGE_STACK = "large_stack"


class RangeKind(enum.Enum):
    VARIABLE = "variable"
    GAP = "gap"


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — REGISTER RECORDS
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RegisterOp:
    """
    One typed write to a register.

    Attributes
    ----------
    kind        : OpKind
    source_line : 1-based line of the instruction
    raw_value   : operand text as written (lower-cased for non-call ops)
    display     : human-readable value; for ``call`` ops, the callee name
    """
    kind: OpKind
    source_line: int
    raw_value: str
    display: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "line": self.source_line,
            "value": self.raw_value,
            "display": self.display,
        }


@dataclass
class RegisterUsage:
    """Operation history of one register name plus its latest entry."""
    operations: List[RegisterOp] = field(default_factory=list)
    latest: Optional[RegisterOp] = None

    def record(self, op: RegisterOp) -> None:
        self.operations.append(op)
        self.latest = op

    def state_at(self, line: int) -> Optional[RegisterOp]:
        """Most recent operation recorded at or before *line*."""
        current: Optional[RegisterOp] = None
        for op in self.operations:
            if op.source_line <= line and (
                current is None or op.source_line >= current.source_line
            ):
                current = op
        return current

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operations": [op.to_dict() for op in self.operations],
            "latest": self.latest.to_dict() if self.latest else None,
        }


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — STACK RECORDS
# ═════════════════════════════════════════════════════════════════════════

@dataclass
class Variable:
    """
    A stack slot identified by its distance below the frame base.

    ``access_count`` always equals the number of entries for ``offset``
    in the owning function's ``access_order``.
    """
    offset: int
    def_line: int
    inferred_type: VarType = VarType.UNKNOWN
    usage: List[str] = field(default_factory=list)
    reads: List[int] = field(default_factory=list)
    writes: List[int] = field(default_factory=list)
    access_count: int = 0

    @property
    def size(self) -> int:
        return self.inferred_type.size

    def add_usage(self, callee: str) -> None:
        if callee and callee not in self.usage:
            self.usage.append(callee)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "offset": self.offset,
            "type": self.inferred_type.value,
            "usage": list(self.usage),
            "def_line": self.def_line,
            "reads": list(self.reads),
            "writes": list(self.writes),
            "access_count": self.access_count,
        }


@dataclass(frozen=True)
class TamperCandidate:
    """A base-relative access at or above the frame base."""
    line: int
    displacement: int
    text: str


# ═════════════════════════════════════════════════════════════════════════
#  PART 4 — FINDINGS AND HINTS
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Finding:
    """
    A static-analysis finding attached to a function.

    Attributes
    ----------
    kind     : FindingKind
    line     : 1-based source line
    message  : human-readable description
    offset   : slot offset, ``None`` for return-address tampering
    severity : Severity
    cwe      : CWE identifier (0 = none)
    """
    kind: FindingKind
    line: int
    message: str
    offset: Optional[int] = None
    severity: Severity = Severity.ERROR
    cwe: int = 0

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "kind": self.kind.value,
            "line": self.line,
            "message": self.message,
            "severity": self.severity.value,
        }
        if self.offset is not None:
            result["offset"] = self.offset
        if self.cwe:
            result["cwe"] = self.cwe
        return result

    def to_json_str(self) -> str:
        return json.dumps(self.to_dict())

    def to_gcc_format(self, file: str = "<input>") -> str:
        """GCC-style string: ``file:line: severity: message [kind]``."""
        return (
            f"{file}:{self.line}: {self.severity.value}: "
            f"{self.message} [{self.kind.value}]"
        )


@dataclass(frozen=True)
class Hint:
    """Advisory, non-error suggestion."""
    kind: HintKind
    message: str
    offset: Optional[int] = None
    line: Optional[int] = None
    severity: Severity = Severity.PERFORMANCE

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.message,
            "severity": self.severity.value,
        }
        if self.offset is not None:
            result["offset"] = self.offset
        if self.line is not None:
            result["line"] = self.line
        return result


# ═════════════════════════════════════════════════════════════════════════
#  PART 5 — FUNCTION MODEL
# ═════════════════════════════════════════════════════════════════════════

@dataclass
class FunctionModel:
    """
    Everything learned about one top-level label.

    ``stack_size`` is fixed by the first ``sub rsp, N``; ``misaligned``
    and ``frame_total`` are filled in by the alignment check.
    """
    name: str
    start_line: int
    end_line: int = 0
    stack_size: int = 0
    variables: Dict[int, Variable] = field(default_factory=dict)
    saved_regs: List[str] = field(default_factory=list)
    register_usage: Dict[str, RegisterUsage] = field(default_factory=dict)
    register_map: Dict[str, int] = field(default_factory=dict)
    access_order: List[int] = field(default_factory=list)
    tamper_candidates: List[TamperCandidate] = field(default_factory=list)
    has_calls: bool = False
    errors: List[Finding] = field(default_factory=list)
    hints: List[Hint] = field(default_factory=list)
    misaligned: bool = False
    frame_total: int = 0
    sealed: bool = False

    def __post_init__(self) -> None:
        if not self.end_line:
            self.end_line = self.start_line

    def sorted_variables(self) -> List[Variable]:
        return [self.variables[k] for k in sorted(self.variables)]

    def findings_for(self, offset: int) -> Tuple[Finding, ...]:
        return tuple(f for f in self.errors if f.offset == offset)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "stack_size": self.stack_size,
            "frame_total": self.frame_total,
            "misaligned": self.misaligned,
            "has_calls": self.has_calls,
            "saved_regs": list(self.saved_regs),
            "variables": {
                str(v.offset): v.to_dict() for v in self.sorted_variables()
            },
            "register_usage": {
                name: usage.to_dict()
                for name, usage in self.register_usage.items()
            },
            "register_map": dict(self.register_map),
            "access_order": list(self.access_order),
            "errors": [f.to_dict() for f in self.errors],
            "hints": [h.to_dict() for h in self.hints],
        }


# ═════════════════════════════════════════════════════════════════════════
#  PART 6 — LAYOUT RECORDS
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RangeEntry:
    """A byte range ``[offset, offset + size)`` below the frame base."""
    kind: RangeKind
    offset: int
    size: int
    inferred_type: Optional[VarType] = None
    usage: Tuple[str, ...] = ()
    def_line: Optional[int] = None
    unsafe: bool = False
    uninitialized: bool = False
    out_of_bounds: bool = False
    findings: Tuple[Finding, ...] = ()

    @property
    def is_gap(self) -> bool:
        return self.kind is RangeKind.GAP

    def to_dict(self) -> Dict[str, Any]:
        if self.is_gap:
            return {"kind": self.kind.value, "offset": self.offset, "size": self.size}
        return {
            "kind": self.kind.value,
            "offset": self.offset,
            "size": self.size,
            "type": self.inferred_type.value if self.inferred_type else None,
            "usage": list(self.usage),
            "def_line": self.def_line,
            "unsafe": self.unsafe,
            "uninitialized": self.uninitialized,
            "out_of_bounds": self.out_of_bounds,
        }


@dataclass(frozen=True)
class RegisterState:
    """One row of the register panel for a cursor position."""
    register: str
    current: Optional[RegisterOp]
    final: Optional[RegisterOp]
    changed: bool


__all__ = [
    "OpKind",
    "VarType",
    "Severity",
    "FindingKind",
    "HintKind",
    "RangeKind",
    "RegisterOp",
    "RegisterUsage",
    "Variable",
    "TamperCandidate",
    "Finding",
    "Hint",
    "FunctionModel",
    "RangeEntry",
    "RegisterState",
]
