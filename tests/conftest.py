# tests/conftest.py
"""
Shared assembly sources and fixtures for the asm_stackframe test suite.

Sources are plain module constants so test modules can import them
directly (``from tests.conftest import BASIC_FRAME_ASM``) as well as
through the fixtures below.
"""

import textwrap

import pytest

from asm_stackframe.analyzer import analyze_text
from asm_stackframe.config import AnalyzerConfig


def _asm(src: str) -> str:
    return textwrap.dedent(src).lstrip("\n")


# Canonical frame: push rbp, 16-byte frame, one qword slot written then read.
BASIC_FRAME_ASM = _asm("""
    main:
      push rbp
      mov rbp, rsp
      sub rsp, 16
      mov qword [rbp-8], 100
      mov rax, [rbp-8]
      add rsp, 16
      pop rbp
      ret
""")

# lea takes the address of a slot beyond the frame, then an unsafe call.
OOB_LEA_ASM = _asm("""
    copy:
      push rbp
      mov rbp, rsp
      sub rsp, 16
      lea rcx, [rbp-32]
      call lstrcpy
      leave
      ret
""")

# Same, but the unsafe call's result is stored into the slot.
UNSAFE_STORE_ASM = _asm("""
    copy:
      push rbp
      mov rbp, rsp
      sub rsp, 48
      lea rcx, [rbp-32]
      call strcpy
      mov [rbp-32], rax
      leave
      ret
""")

RETURN_TAMPER_ASM = _asm("""
    evil:
      push rbp
      mov rbp, rsp
      sub rsp, 16
      mov rax, [rbp+8]
      leave
      ret
""")

IMMEDIATE_STORE_ASM = _asm("""
    imm:
      push rbp
      mov rbp, rsp
      sub rsp, 16
      mov eax, 5
      mov [rbp-8], eax
      leave
      ret
""")

CALL_STORE_ASM = _asm("""
    caller:
      push rbp
      mov rbp, rsp
      sub rsp, 16
      call foo
      mov [rbp-8], rax
      leave
      ret
""")

# Two functions, a local label, a frameless helper and stray code up front.
MULTI_FUNCTION_ASM = _asm("""
      mov qword [rbp-8], 1
    first:
      push rbp
      mov rbp, rsp
      sub rsp, 32
      mov dword [rbp-4], 0
    .loop:
      add dword [rbp-4], 1
      mov eax, dword [rbp-4]
      cmp eax, 10
      jl .loop
      leave
      ret
    helper:
      ret
    second:
      push rbp
      mov rbp, rsp
      sub rsp, 16
      mov byte [rbp-1], 65
      mov al, byte [rbp-1]
      leave
      ret
""")

# Register flow for the cursor panel: line numbers matter.
REGISTER_FLOW_ASM = _asm("""
    regs:
      sub rsp, 16
      mov eax, 5
      call foo
      mov rbx, rax
      xor ecx, ecx
""")


@pytest.fixture
def default_config():
    return AnalyzerConfig()


@pytest.fixture
def basic_result():
    return analyze_text(BASIC_FRAME_ASM)


@pytest.fixture
def multi_result():
    return analyze_text(MULTI_FUNCTION_ASM)
