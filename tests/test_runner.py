"""
Test Runner / Demo Catalog Tests for the Tiny CPU.

Every catalog demo must pass at both word lengths; the runner must turn
mismatches and load/run errors into failing results instead of raising.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import json

import pytest
from tinycpu.config import ArchitectureConfig
from tinycpu.core import SimulationCore
from tinycpu.demos import DEMO_PROGRAMS, DemoProgram, Expected, UnknownDemo, get_demo_by_id
from tinycpu.runner import ProgramResult, SuiteReport, TestRunner, check_expected


def _runner(bits: int = 16, max_steps: int = None) -> TestRunner:
    return TestRunner(SimulationCore(ArchitectureConfig(word_length=bits)), max_steps=max_steps)


class TestCatalog:
    def test_ids_unique(self):
        ids = [demo.id for demo in DEMO_PROGRAMS]
        assert ids == [f"demo{i}" for i in range(1, 8)]

    def test_lookup(self):
        assert get_demo_by_id("demo5").name == "Demo 5 - Negative Immediate"
        assert get_demo_by_id("missing") is None

    def test_expected_is_read_only(self):
        with pytest.raises(TypeError):
            DEMO_PROGRAMS[0].expected.registers['A'] = 0


class TestSweep:
    @pytest.mark.parametrize("bits", [10, 16])
    def test_all_demos_pass(self, bits):
        report = _runner(bits).run_all(DEMO_PROGRAMS)
        assert report.word_length == bits
        assert report.total == len(DEMO_PROGRAMS)
        assert report.all_passed, report.format_summary()

    def test_negative_expectation_details(self):
        report = _runner(10).run_all([get_demo_by_id("demo5")])
        assert report.results[0].details == ["halted=True", "A=1023", "M[30]=1023"]

    def test_failing_expectation(self):
        bad = DemoProgram(
            id="bad", name="Wrong expectation",
            source="LDI A, 2\nHLT",
            expected=Expected(halted=True, registers={'A': 3}, memory={4: 1}),
        )
        result = _runner().run_all([bad]).results[0]
        assert result.passed is False
        assert result.details == [
            "register A expected 3, got 2",
            "memory[4] expected 1, got 0",
        ]

    def test_load_error_becomes_failure(self):
        broken = DemoProgram("broken", "Broken", "LDI Q, 1", Expected(halted=True))
        report = _runner().run_all([broken, DEMO_PROGRAMS[0]])
        assert report.pass_count == 1
        assert report.total == 2
        assert not report.all_passed
        failed = report.results[0]
        assert failed.passed is False
        assert len(failed.details) == 1
        assert failed.details[0].startswith("Line 1:")

    def test_run_error_becomes_failure(self):
        looping = DemoProgram("loop", "Loop", "JMP 0", Expected(halted=True))
        result = _runner(max_steps=20).run_all([looping]).results[0]
        assert result.details == ["Execution did not halt within 20 steps"]

    def test_fall_through_becomes_failure(self):
        open_end = DemoProgram("open", "Open end", "LDI A, 1", Expected(halted=True))
        result = _runner().run_all([open_end]).results[0]
        assert result.passed is False
        assert "no_instruction" in result.details[0]

    def test_unchecked_fields(self):
        state = _runner().run_program(DEMO_PROGRAMS[0])
        passed, details = check_expected(state, Expected(), 16)
        assert passed is True
        assert details == []

    def test_halted_mismatch(self):
        state = _runner().run_program(DEMO_PROGRAMS[0])
        passed, details = check_expected(state, Expected(halted=False), 16)
        assert not passed
        assert details == ["halted expected False, got True"]

    def test_run_demo_by_id(self):
        state = _runner().run_demo_by_id("demo7")
        assert state.cpu.registers['A'] == 6

    def test_run_unknown_demo(self):
        with pytest.raises(UnknownDemo, match="demo0"):
            _runner().run_demo_by_id("demo0")


class TestReport:
    def test_summary_format(self):
        report = SuiteReport(word_length=16)
        report.add_result(ProgramResult("demo1", "Demo 1 - Basic Add", True, ["A=5", "B=3"]))
        report.add_result(ProgramResult("x", "X", False, ["boom"]))
        assert report.format_summary().splitlines() == [
            "Test Summary: 1/2 passed",
            "PASS demo1 - Demo 1 - Basic Add :: A=5 | B=3",
            "FAIL x - X :: boom",
        ]

    def test_export(self, tmp_path):
        report = _runner().run_all(DEMO_PROGRAMS)
        path = tmp_path / "report.json"
        report.export_report(str(path))

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["word_length"] == 16
        assert data["summary"] == {"total": 7, "passed": 7, "failed": 0}
        assert [r["status"] for r in data["results"]] == ["PASS"] * 7
        assert data["results"][0]["id"] == "demo1"

    def test_empty_report(self):
        report = SuiteReport(word_length=10)
        assert report.all_passed
        assert report.format_summary() == "Test Summary: 0/0 passed"
