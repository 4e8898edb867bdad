"""
asm_stackframe/registers.py
═══════════════════════════

Register alias table and the per-function register state store.

x86-64 exposes each general purpose register under several names
(``rax``/``eax``/``ax``/``al``/``ah``).  The tracker keeps two tables:

  • the *architectural* table, keyed by the 64-bit name, and
  • the *alias* table, keyed by the narrower name that was written.

A write through an alias lands in both tables; a write through the 64-bit
name lands only in the architectural table.  Reads consult the exact name
first and fall back to the 64-bit parent.  Propagation is therefore
one-directional (sub → parent), never parent → sub.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional, Tuple

from asm_stackframe.model import RegisterOp, RegisterUsage


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — ALIAS TABLE
# ═════════════════════════════════════════════════════════════════════════

GPR64: Tuple[str, ...] = (
    "rax", "rbx", "rcx", "rdx", "rsi", "rdi", "rbp", "rsp",
    "r8", "r9", "r10", "r11", "r12", "r13", "r14", "r15",
)

_LEGACY = {
    "rax": ("eax", "ax", "al", "ah"),
    "rbx": ("ebx", "bx", "bl", "bh"),
    "rcx": ("ecx", "cx", "cl", "ch"),
    "rdx": ("edx", "dx", "dl", "dh"),
    "rsi": ("esi", "si", "sil"),
    "rdi": ("edi", "di", "dil"),
    "rbp": ("ebp", "bp", "bpl"),
    "rsp": ("esp", "sp", "spl"),
}


def _build_alias_table() -> Mapping[str, str]:
    table: Dict[str, str] = {}
    for parent, subs in _LEGACY.items():
        for sub in subs:
            table[sub] = parent
    for n in range(8, 16):
        for suffix in ("d", "w", "b"):
            table[f"r{n}{suffix}"] = f"r{n}"
    return MappingProxyType(table)


#: sub-register name → 64-bit parent.  Immutable, shared by every pass.
REGISTER_PARENTS: Mapping[str, str] = _build_alias_table()

#: every register name the matcher treats as a register operand.
REGISTER_NAMES = frozenset(GPR64) | frozenset(REGISTER_PARENTS)

#: display order for register panels; anything else sorts after, by name.
DISPLAY_ORDER: Mapping[str, int] = MappingProxyType({
    name: idx for idx, name in enumerate(
        ("rax", "rbx", "rcx", "rdx", "rsi", "rdi",
         "r8", "r9", "r10", "r11", "r12", "r13", "r14", "r15"),
        start=1,
    )
})


def is_register(name: str) -> bool:
    """Return ``True`` if *name* (any case) is a known GPR name."""
    return name.lower() in REGISTER_NAMES


def parent_of(name: str) -> str:
    """Return the 64-bit parent of *name*; 64-bit names map to themselves."""
    low = name.lower()
    return REGISTER_PARENTS.get(low, low)


def is_alias(name: str) -> bool:
    return name.lower() in REGISTER_PARENTS


def same_register(a: str, b: str) -> bool:
    """``True`` when *a* and *b* name overlapping bits of one GPR."""
    return parent_of(a) == parent_of(b)


def display_key(name: str) -> Tuple[int, str]:
    return (DISPLAY_ORDER.get(name, 99), name)


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — REGISTER STATE STORE
# ═════════════════════════════════════════════════════════════════════════

class RegisterFile:
    """
    Two-level register state store for one function.

    Usage
    -----
    >>> regs = RegisterFile()
    >>> regs.write("eax", RegisterOp(kind=OpKind.IMMEDIATE, source_line=3,
    ...                              raw_value="5", display="5"))
    >>> regs.latest("rax").display
    '5'
    """

    def __init__(self) -> None:
        self._arch: Dict[str, RegisterUsage] = {}
        self._alias: Dict[str, RegisterUsage] = {}

    def write(self, name: str, op: RegisterOp) -> None:
        """Record *op* as the new value of *name* (and of its parent)."""
        low = name.lower()
        parent = REGISTER_PARENTS.get(low)
        if parent is None:
            self._arch.setdefault(low, RegisterUsage()).record(op)
            return
        self._alias.setdefault(low, RegisterUsage()).record(op)
        # RegisterOp is frozen, so the parent's entry is an independent record
        self._arch.setdefault(parent, RegisterUsage()).record(op)

    def latest(self, name: str) -> Optional[RegisterOp]:
        """Latest operation on *name*, falling back to its 64-bit parent."""
        low = name.lower()
        usage = self._alias.get(low) or self._arch.get(low)
        if usage is not None and usage.latest is not None:
            return usage.latest
        parent = REGISTER_PARENTS.get(low)
        if parent is not None and parent in self._arch:
            return self._arch[parent].latest
        return None

    def usage(self) -> Dict[str, RegisterUsage]:
        """Merged ``name → RegisterUsage`` view, 64-bit names first."""
        merged: Dict[str, RegisterUsage] = {}
        for name, entry in self._iter_all():
            merged[name] = entry
        return merged

    def _iter_all(self) -> Iterator[Tuple[str, RegisterUsage]]:
        yield from self._arch.items()
        yield from self._alias.items()

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and (
            name.lower() in self._arch or name.lower() in self._alias
        )

    def __len__(self) -> int:
        return len(self._arch) + len(self._alias)


__all__ = [
    "GPR64",
    "REGISTER_PARENTS",
    "REGISTER_NAMES",
    "DISPLAY_ORDER",
    "is_register",
    "is_alias",
    "parent_of",
    "same_register",
    "display_key",
    "RegisterFile",
]
