"""
asm_stackframe/frame_builder.py
═══════════════════════════════

Symbolic state tracker for one function.

A :class:`FrameBuilder` is created when a top-level label is seen and is
fed every following :class:`~asm_stackframe.matcher.MatchedLine` until the
next top-level label.  It owns a :class:`~asm_stackframe.registers.RegisterFile`
and the growing :class:`~asm_stackframe.model.FunctionModel`; ``seal()``
hands the model over and the builder is discarded.

Per line, events are applied in a fixed order:

  1. stack allocation, pushes, calls                  (frame facts)
  2. mov / lea / xor / arithmetic                      (register writes)
  3. every stack reference on the line                 (slot accounting)

Step 3 runs after step 2 so a ``call`` and a store on the same line
already see the call's effect on ``rax``.

Value resolution for ``mov``
────────────────────────────
  src is a register  → latest op of src (parent fallback);
                       ``call`` ops propagate as ``call`` with the same
                       display, anything else becomes ``reg_move``
  src is ``[rbp±N]`` → ``stack_load``, displayed as the bracketed text
  src is immediate   → ``immediate``
  otherwise          → ``mov``

A stack store from any part of ``rax`` takes the call attribution from
``rax`` itself, even when the narrower name holds an older value.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from asm_stackframe.config import DEFAULT_CONFIG, AnalyzerConfig
from asm_stackframe.matcher import (
    STACK_REF_RE,
    ArithInstr,
    CallInstr,
    LabelDecl,
    LeaInstr,
    MatchedLine,
    MoveInstr,
    RegisterPush,
    StackAlloc,
    StackRef,
    XorInstr,
    is_immediate,
)
from asm_stackframe.model import (
    FunctionModel,
    OpKind,
    RegisterOp,
    TamperCandidate,
    Variable,
    VarType,
)
from asm_stackframe.registers import RegisterFile, is_register, parent_of, same_register

_log = logging.getLogger(__name__)


_SIZE_TYPES = {
    "byte": VarType.BYTE,
    "word": VarType.WORD,
    "dword": VarType.DWORD,
    "qword": VarType.QWORD,
}

_ARITH_DISPLAY = {
    OpKind.ADD: "+{}",
    OpKind.SUB: "-{}",
    OpKind.AND: "&{}",
    OpKind.OR: "|{}",
    OpKind.SHL: "<<{}",
    OpKind.SHR: ">>{}",
}


class FrameBuilder:
    """
    Accumulates the model of one function, line by line.

    Usage
    -----
    >>> fb = FrameBuilder("main", start_line=1)
    >>> fb.feed(match_line("  sub rsp, 16", 2))
    []
    >>> fb.feed(match_line("  mov qword [rbp-8], 100", 3))
    [8]
    >>> fb.seal().variables[8].inferred_type
    <VarType.QWORD: 'qword'>
    """

    def __init__(
        self,
        name: str,
        start_line: int,
        config: AnalyzerConfig = DEFAULT_CONFIG,
    ) -> None:
        self.config = config
        self.model = FunctionModel(name=name, start_line=start_line)
        self.registers = RegisterFile()

    # ── Feeding ──────────────────────────────────────────────────────

    def feed(self, matched: MatchedLine) -> List[int]:
        """
        Apply one line.  Returns the positive offsets referenced on it,
        in the order they appear.
        """
        number = matched.line.number
        self.model.end_line = number

        self._apply_frame_events(matched)
        self._apply_register_events(matched)
        return self._apply_stack_refs(matched)

    def _apply_frame_events(self, matched: MatchedLine) -> None:
        number = matched.line.number
        alloc = matched.first(StackAlloc)
        if alloc is not None and self.model.stack_size == 0:
            self.model.stack_size = alloc.amount

        for push in matched.every(RegisterPush):
            self.model.saved_regs.append(push.register.lower())

        call = matched.first(CallInstr)
        if call is not None:
            self.model.has_calls = True
            self.registers.write("rax", RegisterOp(
                kind=OpKind.CALL,
                source_line=number,
                raw_value=call.target,
                display=call.target,
            ))

    def _apply_register_events(self, matched: MatchedLine) -> None:
        number = matched.line.number

        for mov in matched.every(MoveInstr):
            dest = mov.dest_register
            if dest is not None:
                self.registers.write(dest, self.resolve_source(mov.src, number))

        for lea in matched.every(LeaInstr):
            positive = [o for o in lea.src_slots if o > 0]
            if positive:
                offset = positive[0]
                self.model.register_map[lea.dest] = offset
                value = f"[rbp-{offset}]"
            else:
                value = lea.src
            self.registers.write(lea.dest, RegisterOp(
                kind=OpKind.LEA, source_line=number,
                raw_value=value, display=f"&{value}",
            ))

        for xor in matched.every(XorInstr):
            if same_register(xor.dest, xor.src):
                op = RegisterOp(OpKind.XOR, number, "0", "0")
            else:
                op = RegisterOp(OpKind.XOR, number, xor.src, f"^{xor.src}")
            self.registers.write(xor.dest, op)

        for arith in matched.every(ArithInstr):
            self.registers.write(arith.dest, self._arith_op(arith, number))

    def _apply_stack_refs(self, matched: MatchedLine) -> List[int]:
        line = matched.line
        number = line.number
        movs = matched.every(MoveInstr)
        leas = matched.every(LeaInstr)
        call = matched.first(CallInstr)
        slot_type = self._infer_type(matched)
        touched: List[int] = []

        for ref in matched.every(StackRef):
            if ref.is_tamper_candidate:
                self.model.tamper_candidates.append(
                    TamperCandidate(line=number, displacement=-ref.offset, text=ref.text)
                )
                continue

            offset = ref.offset
            var = self.model.variables.get(offset)
            if var is None:
                var = Variable(offset=offset, def_line=number)
                self.model.variables[offset] = var

            var.access_count += 1
            self.model.access_order.append(offset)
            touched.append(offset)

            is_read = any(offset in m.src_slots for m in movs) or any(
                offset in lea.src_slots for lea in leas
            )
            is_write = any(offset in m.dest_slots for m in movs)
            if is_read:
                var.reads.append(number)
            if is_write:
                var.writes.append(number)
                self._propagate_call_usage(var, movs, offset, number)

            if slot_type is not None:
                var.inferred_type = slot_type
            if call is not None:
                var.add_usage(call.target)

        return touched

    # ── Resolution helpers ───────────────────────────────────────────

    def resolve_source(self, src: str, line: int) -> RegisterOp:
        """Classify the value a ``mov`` copies from *src*."""
        if is_register(src):
            latest = self.registers.latest(src)
            if latest is not None and latest.kind is OpKind.CALL:
                return RegisterOp(OpKind.CALL, line, latest.raw_value, latest.display)
            return RegisterOp(OpKind.REG_MOVE, line, src, src)
        ref = STACK_REF_RE.search(src)
        if ref is not None:
            return RegisterOp(OpKind.STACK_LOAD, line, src, ref.group(0))
        if is_immediate(src):
            return RegisterOp(OpKind.IMMEDIATE, line, src, src)
        return RegisterOp(OpKind.MOV, line, src, src)

    def _propagate_call_usage(
        self,
        var: Variable,
        movs: List[MoveInstr],
        offset: int,
        line: int,
    ) -> None:
        for mov in movs:
            if offset in mov.dest_slots and is_register(mov.src):
                # a call writes only rax; stores from eax/ax/al read it there
                src = "rax" if parent_of(mov.src) == "rax" else mov.src
                op = self.resolve_source(src, line)
                if op.kind is OpKind.CALL:
                    var.add_usage(op.display)

    def _infer_type(self, matched: MatchedLine) -> Optional[VarType]:
        line = matched.line
        for name in self.config.string_functions:
            if line.mentions(name):
                return VarType.STRING
        keyword = line.size_keyword
        if keyword is not None:
            return _SIZE_TYPES[keyword]
        if matched.first(LeaInstr) is not None:
            return VarType.QWORD
        return None

    @staticmethod
    def _arith_op(arith: ArithInstr, line: int) -> RegisterOp:
        if arith.kind is OpKind.INC:
            return RegisterOp(OpKind.INC, line, "1", "+1")
        if arith.kind is OpKind.DEC:
            return RegisterOp(OpKind.DEC, line, "1", "-1")
        if arith.kind is OpKind.IMUL:
            return RegisterOp(OpKind.IMUL, line, "mul", "*")
        return RegisterOp(
            arith.kind, line, arith.operand,
            _ARITH_DISPLAY[arith.kind].format(arith.operand),
        )

    # ── Sealing ──────────────────────────────────────────────────────

    def seal(self) -> FunctionModel:
        """Hand over the model with the merged register usage view."""
        self.model.register_usage = self.registers.usage()
        _log.debug(
            "function %s: lines %d-%d, stack %d, %d variables",
            self.model.name, self.model.start_line, self.model.end_line,
            self.model.stack_size, len(self.model.variables),
        )
        return self.model


def _store(functions: Dict[str, FunctionModel], model: FunctionModel) -> None:
    if model.name in functions:
        _log.debug("label %s redefined at line %d", model.name, model.start_line)
        del functions[model.name]
    functions[model.name] = model


def build_functions(
    matched_lines: List[MatchedLine],
    config: AnalyzerConfig = DEFAULT_CONFIG,
) -> Tuple[Dict[str, FunctionModel], Dict[int, List[int]]]:
    """
    Split a matched buffer into functions and build each one.

    Returns ``(functions, line_map)``.  ``functions`` keeps
    source-declaration order; a repeated label replaces the earlier model
    and moves to its own position.  Lines before the first top-level
    label are discarded.
    """
    functions: Dict[str, FunctionModel] = {}
    line_map: Dict[int, List[int]] = {}
    builder: Optional[FrameBuilder] = None

    for matched in matched_lines:
        label = matched.first(LabelDecl)
        if label is not None and not label.is_local:
            if builder is not None:
                _store(functions, builder.seal())
            builder = FrameBuilder(label.name, matched.line.number, config)
        if builder is None:
            continue
        touched = builder.feed(matched)
        if touched:
            line_map.setdefault(matched.line.number, []).extend(touched)
    if builder is not None:
        _store(functions, builder.seal())
    return functions, line_map


__all__ = ["FrameBuilder", "build_functions"]
