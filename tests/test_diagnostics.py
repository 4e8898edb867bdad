# tests/test_diagnostics.py
"""
Tests for the diagnostics engine: checker metadata, each check in
isolation on hand-built models, and runner behaviour.
"""

from typing import ClassVar

import pytest

from asm_stackframe.config import KNOWN_CHECKS, AnalyzerConfig
from asm_stackframe.diagnostics import (
    AlignmentChecker,
    CheckContext,
    Checker,
    CheckerRegistry,
    DiagnosticsRunner,
    LargeStackChecker,
    OutOfBoundsChecker,
    RandomAccessChecker,
    ReturnTamperChecker,
    SingleUseChecker,
    UninitializedChecker,
    default_registry,
    diagnose,
)
from asm_stackframe.model import (
    FindingKind,
    FunctionModel,
    HintKind,
    Severity,
    TamperCandidate,
    Variable,
)


def _model(stack_size=16, saved=("rbp",), variables=(), order=None, tamper=()):
    vars_by_offset = {v.offset: v for v in variables}
    if order is None:
        order = [v.offset for v in variables for _ in range(v.access_count)]
    return FunctionModel(
        name="f",
        start_line=1,
        end_line=20,
        stack_size=stack_size,
        saved_regs=list(saved),
        variables=vars_by_offset,
        access_order=list(order),
        tamper_candidates=list(tamper),
    )


def _var(offset, def_line=2, reads=(), writes=(), count=2):
    return Variable(
        offset=offset,
        def_line=def_line,
        reads=list(reads),
        writes=list(writes),
        access_count=count,
    )


class TestCheckerMetadata:

    EXPECTED_CHECKERS = [
        (OutOfBoundsChecker,   "out-of-bounds", Severity.ERROR,       {"out_of_bounds": 787}),
        (ReturnTamperChecker,  "return-tamper", Severity.ERROR,       {"return_tamper": 121}),
        (UninitializedChecker, "uninitialized", Severity.WARNING,     {"uninitialized": 457}),
        (AlignmentChecker,     "alignment",     Severity.PORTABILITY, {}),
        (SingleUseChecker,     "single-use",    Severity.PERFORMANCE, {}),
        (RandomAccessChecker,  "random-access", Severity.PERFORMANCE, {}),
        (LargeStackChecker,    "large-stack",   Severity.PERFORMANCE, {}),
    ]

    @pytest.mark.parametrize("cls,name,severity,cwes", EXPECTED_CHECKERS,
                             ids=[c[1] for c in EXPECTED_CHECKERS])
    def test_checker_metadata(self, cls, name, severity, cwes):
        assert cls.name == name
        assert cls.default_severity is severity
        assert cls.cwe_ids == cwes
        assert cls.description

    def test_default_registry_order_matches_config_names(self):
        assert default_registry().names == list(KNOWN_CHECKS)

    def test_repr(self):
        assert repr(OutOfBoundsChecker()) == "<OutOfBoundsChecker 'out-of-bounds'>"


class TestOutOfBounds:

    def test_slot_beyond_frame(self):
        model = diagnose(_model(variables=[_var(32, def_line=5, writes=[5])]))
        (f,) = model.errors
        assert f.kind is FindingKind.OUT_OF_BOUNDS
        assert (f.line, f.offset) == (5, 32)
        assert f.message == "Access [rbp-32] exceeds stack size 16"
        assert f.severity is Severity.ERROR
        assert f.cwe == 787

    @pytest.mark.parametrize("offset,expected", [(8, False), (16, False), (17, True)])
    def test_boundary(self, offset, expected):
        model = diagnose(_model(variables=[_var(offset, writes=[2])]))
        kinds = [f.kind for f in model.errors]
        assert (FindingKind.OUT_OF_BOUNDS in kinds) is expected

    def test_no_frame_means_no_bounds(self):
        model = diagnose(_model(stack_size=0, variables=[_var(64, writes=[2])]))
        assert model.errors == []

    def test_one_finding_per_slot(self):
        model = diagnose(_model(variables=[_var(40, writes=[2, 3, 4], count=3)]))
        assert len([f for f in model.errors if f.kind is FindingKind.OUT_OF_BOUNDS]) == 1


class TestReturnTamper:

    def test_each_candidate_reported(self):
        cands = [TamperCandidate(4, 8, "[rbp+8]"), TamperCandidate(6, 16, "[rbp+16]")]
        model = diagnose(_model(tamper=cands))
        assert [f.line for f in model.errors] == [4, 6]
        for f in model.errors:
            assert f.kind is FindingKind.RETURN_TAMPER
            assert f.offset is None
            assert f.message == "Accessing above RBP (return address area)"
            assert f.cwe == 121


class TestUninitialized:

    def test_read_without_write(self):
        model = diagnose(_model(variables=[_var(8, reads=[7, 9])]))
        (f,) = model.errors
        assert f.kind is FindingKind.UNINITIALIZED
        assert (f.line, f.offset) == (7, 8)
        assert f.message == "[rbp-8] read before write"
        assert f.severity is Severity.WARNING

    def test_any_write_clears(self):
        model = diagnose(_model(variables=[_var(8, reads=[3], writes=[9])]))
        assert model.errors == []

    def test_no_reads_no_finding(self):
        model = diagnose(_model(variables=[_var(8)]))
        assert model.errors == []


class TestAlignment:

    @pytest.mark.parametrize("saved,stack,total", [
        (("rbp",), 16, 32),
        ((), 16, 24),
        (("rbp", "rbx"), 16, 40),
        (("rbp", "rbx"), 8, 32),
        ((), 0, 8),
        (("rbp",), 0, 16),
    ])
    def test_total_and_flag(self, saved, stack, total):
        model = diagnose(_model(stack_size=stack, saved=saved))
        assert model.frame_total == total
        assert model.misaligned is (total % 16 != 0)

    def test_misalignment_is_not_a_finding(self):
        model = diagnose(_model(saved=()))
        assert model.misaligned
        assert model.errors == []

    def test_custom_alignment(self):
        model = diagnose(_model(saved=()), AnalyzerConfig(alignment=8))
        assert not model.misaligned


class TestHints:

    def test_single_use(self):
        model = diagnose(_model(variables=[_var(8, def_line=4, writes=[4], count=1)]))
        (h,) = model.hints
        assert h.kind is HintKind.SINGLE_USE
        assert h.message == "[rbp-8] used only once - consider using register"
        assert (h.offset, h.line) == (8, 4)
        assert h.severity is Severity.PERFORMANCE

    def test_single_use_threshold_configurable(self):
        var = _var(8, writes=[2], count=2)
        assert diagnose(_model(variables=[var])).hints == []
        model = diagnose(_model(variables=[var]), AnalyzerConfig(single_use_threshold=2))
        assert [h.kind for h in model.hints] == [HintKind.SINGLE_USE]

    @pytest.mark.parametrize("order,expected", [
        ([8, 100, 8, 100], 1),
        ([8, 16, 24, 200], 1),
        ([8, 100, 8], 0),
        ([8, 16, 24, 32, 40], 0),
        ([8, 72, 8, 72], 0),
        ([], 0),
    ])
    def test_random_access(self, order, expected):
        model = diagnose(_model(stack_size=256, order=order))
        hits = [h for h in model.hints if h.kind is HintKind.RANDOM_ACCESS]
        assert len(hits) == expected
        if hits:
            assert hits[0].message == "Random stack access pattern - may cause cache misses"

    @pytest.mark.parametrize("size,message", [
        (4096, None),
        (4097, "Large stack (4.0K) - consider heap allocation"),
        (8192, "Large stack (8.0K) - consider heap allocation"),
    ])
    def test_large_stack(self, size, message):
        model = diagnose(_model(stack_size=size))
        hits = [h.message for h in model.hints if h.kind is HintKind.LARGE_STACK]
        assert hits == ([message] if message else [])


class TestRunner:

    def test_order_findings_then_hints(self):
        variables = [
            _var(8, def_line=3, reads=[3], count=1),
            _var(24, def_line=4, writes=[4], count=1),
        ]
        cands = [TamperCandidate(5, 8, "[rbp+8]")]
        model = diagnose(_model(variables=variables, tamper=cands))
        assert [f.kind for f in model.errors] == [
            FindingKind.OUT_OF_BOUNDS,
            FindingKind.RETURN_TAMPER,
            FindingKind.UNINITIALIZED,
        ]
        assert [h.offset for h in model.hints] == [8, 24]

    def test_input_model_is_not_mutated(self):
        before = _model(variables=[_var(32, reads=[2])])
        sealed = diagnose(before)
        assert before.errors == [] and not before.sealed
        assert sealed is not before
        assert sealed.sealed
        assert len(sealed.errors) == 2

    def test_sealed_model_shares_no_containers(self):
        before = _model(variables=[_var(32, reads=[2])], saved=("rbp", "rbx"))
        sealed = diagnose(before)
        before.variables[32].reads.append(9)
        before.variables[8] = _var(8)
        before.saved_regs.append("r12")
        before.access_order.append(32)
        assert sealed.variables[32].reads == [2]
        assert list(sealed.variables) == [32]
        assert sealed.saved_regs == ["rbp", "rbx"]
        assert sealed.access_order == [32, 32]

    def test_rerun_is_idempotent(self):
        model = _model(variables=[_var(32, reads=[2])])
        once = diagnose(model)
        twice = diagnose(once)
        assert once.errors == twice.errors
        assert once.hints == twice.hints

    def test_disabled_checks_are_skipped(self):
        cfg = AnalyzerConfig(disabled_checks=frozenset({"out-of-bounds", "alignment"}))
        results = DiagnosticsRunner(config=cfg).run(
            _model(saved=(), variables=[_var(32, writes=[2])])
        )
        assert results.model.errors == []
        assert not results.model.misaligned
        assert "out-of-bounds" not in results.checker_names

    def test_failing_checker_is_isolated(self):
        class Boom(Checker):
            name: ClassVar[str] = "boom"

            def check(self, ctx: CheckContext) -> None:
                raise RuntimeError("kaboom")

        registry = CheckerRegistry()
        registry.register(Boom)
        registry.register(OutOfBoundsChecker)
        results = DiagnosticsRunner(registry=registry).run(
            _model(variables=[_var(32, writes=[2])])
        )
        assert results.failures == {"boom": "kaboom"}
        assert [f.kind for f in results.model.errors] == [FindingKind.OUT_OF_BOUNDS]
        assert results.model.sealed
        assert "boom" in results.summary()
        assert results.has_errors

    def test_stats_record_timing(self):
        results = DiagnosticsRunner().run(_model())
        for name in KNOWN_CHECKS:
            assert f"{name}_elapsed_ms" in results.stats


class TestRegistry:

    def test_disable(self):
        reg = CheckerRegistry()
        reg.register(OutOfBoundsChecker)
        reg.register(SingleUseChecker)
        reg.disable("single-use")
        reg.disable("not-a-check")
        assert reg.get_enabled() == [OutOfBoundsChecker]

    def test_for_config_merges_disabled_sets(self):
        reg = default_registry()
        reg.disable("large-stack")
        cfg = AnalyzerConfig(disabled_checks=frozenset({"alignment"}))
        names = [cls.name for cls in reg.for_config(cfg).get_enabled()]
        assert names == [
            n for n in KNOWN_CHECKS if n not in ("large-stack", "alignment")
        ]
        # the source registry is left as it was
        assert len(reg.get_enabled()) == len(KNOWN_CHECKS) - 1

    def test_registry_disable_is_honoured_by_runner(self):
        reg = default_registry()
        reg.disable("out-of-bounds")
        results = DiagnosticsRunner(registry=reg).run(
            _model(variables=[_var(32, writes=[2])])
        )
        assert results.model.errors == []
        assert "out-of-bounds" not in results.checker_names
