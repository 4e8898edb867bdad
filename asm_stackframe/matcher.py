"""asm_stackframe/matcher.py – one source line → classified instruction events.

The matcher is a heuristic recogniser, not a decoder.  Each rule is an
independent function registered with ``@_rule``; ``match_line`` runs every
rule in registration order and concatenates what they return.

Design principles
-----------------
* **Rules are isolated** – a rule sees a pre-split :class:`SourceLine`
  and returns zero or more events; no rule depends on another's result,
  so each can be unit-tested on its own.
* **Best effort** – a line no rule recognises yields no events.  Nothing
  here raises on odd input.
* **Case** – mnemonics and operands are matched lower-cased; label names
  and call targets keep the case they were written in.
* **Comments** – ``;`` and ``#`` comments are dropped before mnemonic and
  operand matching.  Stack references are searched over the *whole* raw
  line, comments included, and every occurrence is reported.

Event types
-----------
``LabelDecl``, ``StackAlloc``, ``RegisterPush``, ``CallInstr``,
``MoveInstr``, ``LeaInstr``, ``XorInstr``, ``ArithInstr``, ``StackRef``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple, Type, TypeVar, Union

from asm_stackframe.model import OpKind
from asm_stackframe.registers import is_register


# ═══════════════════════════════════════════════════════════════════════
#  Patterns
# ═══════════════════════════════════════════════════════════════════════

LOCAL_LABEL_MARKER = "."

_LABEL_RE = re.compile(r"^([\w.$@?]+):")
_MNEMONIC_RE = re.compile(r"^([a-z][a-z0-9]*)\b\s*(.*)$")
_COMMENT_RE = re.compile(r"[;#].*$")
_WORD_RE = re.compile(r"^\w+$")
_IMMEDIATE_RE = re.compile(r"^(?:\d+|0x[0-9a-f]+)$")
_SIZE_RE = re.compile(r"\b(byte|word|dword|qword)\b")

#: ``[rbp-N]`` / ``[rbp+N]``; N decimal or hexadecimal.
STACK_REF_RE = re.compile(
    r"\[\s*rbp\s*([-+])\s*(0x[0-9a-f]+|\d+)\s*\]",
    re.IGNORECASE,
)

_CALL_TARGET_RE = re.compile(
    r"^\*?\s*(?:(?:byte|word|dword|qword)\s+(?:ptr\s+)?)?\[?\s*"
    r"(?:rel\s+|rip\s*\+\s*)?([\w@?$.]+)",
    re.IGNORECASE,
)

_MOV_MNEMONICS = frozenset({"mov", "movb", "movw", "movl", "movq"})

_BINARY_ARITH = {
    "add": OpKind.ADD,
    "sub": OpKind.SUB,
    "and": OpKind.AND,
    "or": OpKind.OR,
    "shl": OpKind.SHL,
    "shr": OpKind.SHR,
}

_UNARY_ARITH = {
    "inc": OpKind.INC,
    "dec": OpKind.DEC,
}


def is_immediate(text: str) -> bool:
    """Decimal digits or a ``0x`` hex literal, nothing else."""
    return bool(_IMMEDIATE_RE.match(text.strip().lower()))


def parse_int(text: str) -> int:
    text = text.strip().lower()
    return int(text, 16) if text.startswith("0x") else int(text)


def stack_offsets(text: str) -> Tuple[int, ...]:
    """Offsets below the frame base of every stack reference in *text*.

    ``[rbp-8]`` → 8, ``[rbp+8]`` → -8.
    """
    return tuple(_signed_offset(m) for m in STACK_REF_RE.finditer(text))


def _signed_offset(m: "re.Match[str]") -> int:
    value = parse_int(m.group(2))
    return value if m.group(1) == "-" else -value


def split_operands(text: str) -> List[str]:
    """Split an operand list on top-level commas (brackets respected)."""
    parts: List[str] = []
    depth = 0
    current: List[str] = []
    for ch in text:
        if ch == "[":
            depth += 1
        elif ch == "]":
            depth = max(0, depth - 1)
        if ch == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    tail = "".join(current).strip()
    if tail or parts:
        parts.append(tail)
    return parts


# ═══════════════════════════════════════════════════════════════════════
#  Source line
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SourceLine:
    """A raw line split into the pieces rules match against."""

    number: int
    raw: str
    label: Optional[str]
    instruction: str          # comment-free, original case
    mnemonic: str             # lower-cased, "" when absent
    operand_text: str         # lower-cased
    operands: Tuple[str, ...]  # lower-cased, top-level split

    @classmethod
    def parse(cls, number: int, raw: str) -> "SourceLine":
        trimmed = raw.strip()
        label: Optional[str] = None
        rest = trimmed
        m = _LABEL_RE.match(trimmed)
        if m:
            label = m.group(1)
            rest = trimmed[m.end():]
        instruction = _COMMENT_RE.sub("", rest).strip()
        mnemonic = ""
        operand_text = ""
        mm = _MNEMONIC_RE.match(instruction.lower())
        if mm:
            mnemonic, operand_text = mm.group(1), mm.group(2).strip()
        return cls(
            number=number,
            raw=raw,
            label=label,
            instruction=instruction,
            mnemonic=mnemonic,
            operand_text=operand_text,
            operands=tuple(split_operands(operand_text)),
        )

    @property
    def size_keyword(self) -> Optional[str]:
        """First explicit size keyword in the instruction, if any."""
        m = _SIZE_RE.search(self.operand_text)
        return m.group(1) if m else None

    def mentions(self, needle: str) -> bool:
        """Case-insensitive substring test over the whole raw line."""
        return needle.lower() in self.raw.lower()


# ═══════════════════════════════════════════════════════════════════════
#  Events
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class LabelDecl:
    name: str

    @property
    def is_local(self) -> bool:
        return self.name.startswith(LOCAL_LABEL_MARKER)


@dataclass(frozen=True)
class StackAlloc:
    amount: int


@dataclass(frozen=True)
class RegisterPush:
    register: str


@dataclass(frozen=True)
class CallInstr:
    target: str


@dataclass(frozen=True)
class MoveInstr:
    dest: str
    src: str
    dest_slots: Tuple[int, ...] = ()
    src_slots: Tuple[int, ...] = ()

    @property
    def dest_register(self) -> Optional[str]:
        return self.dest if is_register(self.dest) else None

    @property
    def src_register(self) -> Optional[str]:
        return self.src if is_register(self.src) else None


@dataclass(frozen=True)
class LeaInstr:
    dest: str
    src: str
    src_slots: Tuple[int, ...] = ()


@dataclass(frozen=True)
class XorInstr:
    dest: str
    src: str


@dataclass(frozen=True)
class ArithInstr:
    kind: OpKind
    dest: str
    operand: str


@dataclass(frozen=True)
class StackRef:
    """One occurrence of ``[rbp±N]``; ``offset`` > 0 means below the base."""
    offset: int
    text: str

    @property
    def is_tamper_candidate(self) -> bool:
        return self.offset <= 0


Event = Union[
    LabelDecl, StackAlloc, RegisterPush, CallInstr, MoveInstr,
    LeaInstr, XorInstr, ArithInstr, StackRef,
]

E = TypeVar("E")


@dataclass(frozen=True)
class MatchedLine:
    """A source line together with the events recognised on it."""

    line: SourceLine
    events: Tuple[Event, ...]

    def first(self, kind: Type[E]) -> Optional[E]:
        for ev in self.events:
            if isinstance(ev, kind):
                return ev
        return None

    def every(self, kind: Type[E]) -> List[E]:
        return [ev for ev in self.events if isinstance(ev, kind)]


# ═══════════════════════════════════════════════════════════════════════
#  Rule registry
# ═══════════════════════════════════════════════════════════════════════

Rule = Callable[[SourceLine], Sequence[Event]]

_RULES: List[Tuple[str, Rule]] = []


def _rule(name: str):
    """Decorator: append a recogniser to the ordered rule table."""
    def deco(fn: Rule) -> Rule:
        _RULES.append((name, fn))
        return fn
    return deco


def rule_names() -> List[str]:
    return [name for name, _ in _RULES]


def get_rule(name: str) -> Rule:
    for rule_name, fn in _RULES:
        if rule_name == name:
            return fn
    raise KeyError(name)


@_rule("label")
def _match_label(line: SourceLine) -> Sequence[Event]:
    if line.label is None:
        return ()
    return (LabelDecl(line.label),)


@_rule("stack-alloc")
def _match_stack_alloc(line: SourceLine) -> Sequence[Event]:
    ops = line.operands
    if line.mnemonic == "sub" and len(ops) == 2 and ops[0] == "rsp" and is_immediate(ops[1]):
        return (StackAlloc(parse_int(ops[1])),)
    return ()


@_rule("push")
def _match_push(line: SourceLine) -> Sequence[Event]:
    ops = line.operands
    if line.mnemonic == "push" and len(ops) == 1 and is_register(ops[0]):
        return (RegisterPush(ops[0]),)
    return ()


@_rule("call")
def _match_call(line: SourceLine) -> Sequence[Event]:
    if line.mnemonic != "call":
        return ()
    target = line.instruction[len("call"):].strip()
    if not target:
        return ()
    m = _CALL_TARGET_RE.match(target)
    return (CallInstr(m.group(1) if m else target),)


@_rule("mov")
def _match_mov(line: SourceLine) -> Sequence[Event]:
    ops = line.operands
    if line.mnemonic not in _MOV_MNEMONICS or len(ops) != 2 or not all(ops):
        return ()
    dest, src = ops
    return (MoveInstr(
        dest=dest,
        src=src,
        dest_slots=stack_offsets(dest),
        src_slots=stack_offsets(src),
    ),)


@_rule("lea")
def _match_lea(line: SourceLine) -> Sequence[Event]:
    ops = line.operands
    if line.mnemonic != "lea" or len(ops) != 2 or not is_register(ops[0]) or not ops[1]:
        return ()
    return (LeaInstr(dest=ops[0], src=ops[1], src_slots=stack_offsets(ops[1])),)


@_rule("xor")
def _match_xor(line: SourceLine) -> Sequence[Event]:
    ops = line.operands
    if (line.mnemonic == "xor" and len(ops) == 2 and is_register(ops[0])
            and _WORD_RE.match(ops[1])):
        return (XorInstr(dest=ops[0], src=ops[1]),)
    return ()


@_rule("arith")
def _match_arith(line: SourceLine) -> Sequence[Event]:
    ops = line.operands
    mnem = line.mnemonic
    if mnem in _BINARY_ARITH and len(ops) == 2 and is_register(ops[0]) and ops[1]:
        if mnem == "sub" and ops[0] == "rsp":
            return ()
        return (ArithInstr(_BINARY_ARITH[mnem], ops[0], ops[1]),)
    if mnem in _UNARY_ARITH and len(ops) == 1 and is_register(ops[0]):
        return (ArithInstr(_UNARY_ARITH[mnem], ops[0], ""),)
    if mnem == "imul" and ops and all(ops):
        # one-operand form multiplies into rdx:rax
        dest = ops[0] if len(ops) > 1 else "rax"
        if is_register(dest):
            return (ArithInstr(OpKind.IMUL, dest, ",".join(ops[1:]) or ops[0]),)
    return ()


@_rule("stack-ref")
def _match_stack_refs(line: SourceLine) -> Sequence[Event]:
    return tuple(
        StackRef(offset=_signed_offset(m), text=m.group(0))
        for m in STACK_REF_RE.finditer(line.raw)
    )


def match_source_line(line: SourceLine) -> MatchedLine:
    events: List[Event] = []
    for _, fn in _RULES:
        events.extend(fn(line))
    return MatchedLine(line=line, events=tuple(events))


def match_line(raw: str, number: int = 1) -> MatchedLine:
    """Classify one raw source line.

    Parameters
    ----------
    raw:
        The line as it appears in the buffer.
    number:
        Its 1-based line number.
    """
    return match_source_line(SourceLine.parse(number, raw))


__all__ = [
    "LOCAL_LABEL_MARKER",
    "STACK_REF_RE",
    "SourceLine",
    "LabelDecl",
    "StackAlloc",
    "RegisterPush",
    "CallInstr",
    "MoveInstr",
    "LeaInstr",
    "XorInstr",
    "ArithInstr",
    "StackRef",
    "Event",
    "MatchedLine",
    "match_line",
    "match_source_line",
    "rule_names",
    "get_rule",
    "is_immediate",
    "parse_int",
    "stack_offsets",
    "split_operands",
]
