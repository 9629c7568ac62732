"""
Tiny CPU: Program Test Runner
=============================

Runs catalog programs to completion and checks the final state:
  1. Load the program source into the simulation core
  2. Run until halt (bounded step budget)
  3. Compare halted flag, registers and memory cells against the
     program's declared expectation
  4. Collect a pass/fail verdict and detail list per program

Expected negative values are masked to the active word length before
comparison, so an expectation of -1 matches the stored 0xFFFF (16-bit)
or 0x3FF (10-bit).

A load or run error does not stop the sweep: it becomes a failing
result whose only detail is the error message.

Usage:
    runner = TestRunner(SimulationCore())
    report = runner.run_all(DEMO_PROGRAMS)
    print(report.format_summary())
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, List, Tuple

from .core import SimulationCore, StateSnapshot
from .demos import DemoProgram, Expected, UnknownDemo, get_demo_by_id

__all__ = ['TestRunner', 'ProgramResult', 'SuiteReport', 'check_expected']

log = logging.getLogger(__name__)


@dataclass
class ProgramResult:
    id: str
    name: str
    passed: bool
    details: List[str] = field(default_factory=list)
    duration_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "status": "PASS" if self.passed else "FAIL",
            "details": list(self.details),
            "duration_ms": self.duration_ms,
        }


@dataclass
class SuiteReport:
    """Results of one sweep."""
    word_length: int
    results: List[ProgramResult] = field(default_factory=list)
    pass_count: int = 0
    total: int = 0

    def add_result(self, result: ProgramResult):
        self.results.append(result)
        self.total += 1
        if result.passed:
            self.pass_count += 1

    @property
    def all_passed(self) -> bool:
        return self.pass_count == self.total

    def format_summary(self) -> str:
        lines = [f"Test Summary: {self.pass_count}/{self.total} passed"]
        for r in self.results:
            badge = "PASS" if r.passed else "FAIL"
            lines.append(f"{badge} {r.id} - {r.name} :: {' | '.join(r.details)}")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "word_length": self.word_length,
            "summary": {
                "total": self.total,
                "passed": self.pass_count,
                "failed": self.total - self.pass_count,
            },
            "results": [r.to_dict() for r in self.results],
        }

    def export_report(self, path: str):
        """Write the report as JSON."""
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
        log.info("Report exported to %s", path)


# =============================================================================
#  EXPECTATION CHECK
# =============================================================================

def _normalize(value: int, mask: int) -> int:
    return value & mask if value < 0 else value


def check_expected(state: StateSnapshot, expected: Expected, bits: int) -> Tuple[bool, List[str]]:
    """Compare a final state against an expectation.

    Returns (passed, details): the checked facts on success, only the
    mismatches on failure.
    """
    mask = (1 << bits) - 1
    details: List[str] = []
    failures: List[str] = []

    if expected.halted is not None:
        if state.cpu.halted != expected.halted:
            failures.append(f"halted expected {expected.halted}, got {state.cpu.halted}")
        else:
            details.append(f"halted={state.cpu.halted}")

    for register, value in expected.registers.items():
        actual = state.cpu.registers.get(register)
        want = _normalize(value, mask)
        if actual != want:
            failures.append(f"register {register} expected {want}, got {actual}")
        else:
            details.append(f"{register}={actual}")

    for address, value in expected.memory.items():
        address = int(address)
        actual = state.memory[address] if 0 <= address < len(state.memory) else None
        want = _normalize(value, mask)
        if actual != want:
            failures.append(f"memory[{address}] expected {want}, got {actual}")
        else:
            details.append(f"M[{address}]={actual}")

    if failures:
        return False, failures
    return True, details


# =============================================================================
#  TEST RUNNER
# =============================================================================

class TestRunner:
    """Drives a SimulationCore through catalog programs."""

    __test__ = False  # not a pytest test class

    def __init__(self, core: SimulationCore, max_steps: int = None):
        self.core = core
        self.max_steps = max_steps

    def _run_to_halt(self) -> StateSnapshot:
        if self.max_steps is None:
            return self.core.run_until_halt()
        return self.core.run_until_halt(self.max_steps)

    def run_program(self, program: DemoProgram) -> StateSnapshot:
        self.core.load_program(program.source)
        return self._run_to_halt()

    def run_demo_by_id(self, demo_id: str) -> StateSnapshot:
        """Load a catalog demo and run it to halt; returns the final state."""
        demo = get_demo_by_id(demo_id)
        if demo is None:
            raise UnknownDemo(demo_id)
        return self.run_program(demo)

    def run_all(self, programs: Iterable[DemoProgram]) -> SuiteReport:
        """Load, run and check each program; errors become failing results."""
        report = SuiteReport(word_length=self.core.config.word_length)

        for program in programs:
            t0 = time.perf_counter()
            try:
                final_state = self.run_program(program)
                passed, details = check_expected(
                    final_state, program.expected, self.core.config.word_length)
            except Exception as e:
                passed, details = False, [str(e)]
            duration = (time.perf_counter() - t0) * 1000

            log.info("%s %s: %s", "PASS" if passed else "FAIL", program.id, " | ".join(details))
            report.add_result(ProgramResult(program.id, program.name, passed, details, duration))

        return report
