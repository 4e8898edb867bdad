# tests/test_report.py
"""
Tests for the text, GCC, JSON and summary renderings.
"""

import json

import pytest

from asm_stackframe.analyzer import analyze_lines, analyze_text, ranges_for
from asm_stackframe.model import OpKind, RangeEntry, RangeKind, RegisterOp, RegisterState
from asm_stackframe.report import (
    RENDERERS,
    format_range,
    format_register_row,
    render_gcc,
    render_json,
    render_summary,
    render_text,
)
from tests.conftest import (
    OOB_LEA_ASM,
    REGISTER_FLOW_ASM,
    UNSAFE_STORE_ASM,
)

MISALIGNED_LINES = ["f:", "  push rbx", "  push rbp", "  sub rsp, 16"]


def _op(line, display, kind=OpKind.MOV):
    return RegisterOp(kind, line, display, display)


class TestRegisterRow:

    @pytest.mark.parametrize("current,final,changed,expected", [
        (_op(3, "5"), _op(4, "foo"), True, " rax = 5 → foo"),
        (_op(4, "foo"), _op(4, "foo"), False, " rax = foo"),
        (None, _op(4, "foo"), True, " rax = (not set) → foo"),
        (_op(3, "5"), None, True, " rax = 5 → (cleared)"),
        (None, None, True, " rax = ?"),
    ])
    def test_rows(self, current, final, changed, expected):
        state = RegisterState("rax", current, final, changed)
        assert format_register_row(state) == expected


class TestFormatRange:

    def test_gap(self):
        gap = RangeEntry(kind=RangeKind.GAP, offset=8, size=24)
        assert format_range(gap) == "  gap • 24B"

    def test_unsafe_variable(self):
        entry = ranges_for(analyze_text(UNSAFE_STORE_ASM), "copy")[0]
        assert format_range(entry) == (
            "  [rbp-32] • 8B • qword • ← strcpy • line 5 • [!] Unsafe"
        )

    def test_flags_and_active_marker(self):
        entry = ranges_for(analyze_text(OOB_LEA_ASM), "copy")[0]
        assert format_range(entry, active=True) == (
            "> [rbp-32] • 8B • qword • line 5 • [!] Out of Bounds • [!] Uninitialized"
        )


class TestRenderText:

    def test_plain_frame_diagram(self, basic_result):
        out = render_text(basic_result, file="a.asm", color=False)
        lines = out.splitlines()
        assert lines[0] == "a.asm"
        assert " main • 16B (50%) " in lines
        assert " Return Address (8B)" in lines
        assert " Saved rbp (8B)" in lines
        assert " RBP (Base Pointer)" in lines
        assert "  [rbp-8] • 8B • qword • line 5" in lines
        assert "Findings" not in out
        assert "MISALIGNED" not in out

    def test_error_summary_and_findings(self):
        out = render_text(analyze_text(OOB_LEA_ASM), color=False)
        assert " ⚠ 1 OOB @32 • 1 Uninit @32 " in out
        assert "  line 5: error: Access [rbp-32] exceeds stack size 16 [out_of_bounds]" in out
        assert "  line 5: warning: [rbp-32] read before write [uninitialized]" in out
        assert " Hints" in out

    def test_misaligned_banner(self):
        out = render_text(analyze_lines(MISALIGNED_LINES), color=False)
        assert " ⚠ MISALIGNED (frame 40B) " in out

    def test_cursor_register_panel(self):
        out = render_text(
            analyze_text(REGISTER_FLOW_ASM), function="regs", cursor=3, color=False,
        )
        assert " Registers @ Line 3 " in out
        assert " rax = 5 → foo" in out
        assert " rbx = (not set) → foo" in out
        assert " rcx = (not set) → 0" in out

    def test_cursor_marks_active_slot(self, multi_result):
        out = render_text(multi_result, function="first", cursor=6, color=False)
        assert "> [rbp-4] • 4B • dword • line 6" in out
        assert "  gap • 24B" in out

    def test_cursor_outside_function_has_no_panel(self, multi_result):
        out = render_text(multi_result, function="second", cursor=6, color=False)
        assert "Registers @" not in out

    def test_function_filter(self, multi_result):
        out = render_text(multi_result, function="second", color=False)
        assert " second • 16B" in out
        assert " first •" not in out

    def test_no_frames(self):
        out = render_text(analyze_text("helper:\n  ret\n"), file="x.asm", color=False)
        assert out == "x.asm: no stack frames found"

    def test_color_output(self, basic_result, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.delenv("ANSI_COLORS_DISABLED", raising=False)
        monkeypatch.setenv("FORCE_COLOR", "1")
        out = render_text(basic_result, color=True)
        assert "\x1b[" in out
        assert "main" in out


class TestRenderGcc:

    def test_findings_and_hints(self):
        out = render_gcc(analyze_text(OOB_LEA_ASM), file="a.asm")
        assert out.splitlines() == [
            "a.asm:5: error: Access [rbp-32] exceeds stack size 16 [out_of_bounds]",
            "a.asm:5: warning: [rbp-32] read before write [uninitialized]",
            "a.asm:5: performance: [rbp-32] used only once - consider using register [single_use]",
        ]

    def test_misaligned_line(self):
        out = render_gcc(analyze_lines(MISALIGNED_LINES), file="m.asm")
        assert out == (
            "m.asm:1: portability: frame of 40 bytes is not 16-byte aligned [misaligned]"
        )

    def test_clean_file_is_empty(self, basic_result):
        assert render_gcc(basic_result) == ""


class TestRenderJson:

    def test_round_trips_through_json(self, multi_result):
        data = json.loads(render_json(multi_result, file="m.asm"))
        assert data["file"] == "m.asm"
        assert list(data["functions"]) == ["first", "second"]
        assert data["functions"]["first"]["variables"]["4"]["type"] == "dword"
        assert data["line_map"]["20"] == [1]

    def test_function_filter(self, multi_result):
        data = json.loads(render_json(multi_result, function="second"))
        assert list(data["functions"]) == ["second"]

    def test_finding_json(self):
        finding = analyze_text(OOB_LEA_ASM).functions["copy"].errors[0]
        data = json.loads(finding.to_json_str())
        assert data["kind"] == "out_of_bounds"
        assert data["line"] == 5
        assert data["severity"] == "error"


class TestRenderSummary:

    def test_lines(self, multi_result):
        assert render_summary(multi_result, file="m.asm").splitlines() == [
            "m.asm: first: stack 32B, 1 slot(s), 0 finding(s), 0 hint(s)",
            "m.asm: second: stack 16B, 1 slot(s), 0 finding(s), 0 hint(s)",
            "m.asm: 2 function(s), 0 finding(s), 0 hint(s)",
        ]

    def test_renderer_table(self):
        assert set(RENDERERS) == {"text", "gcc", "json", "summary"}
