"""
Tiny CPU: Demo Program Catalog

Named example programs with their expected final state. Used by the
interactive load/run commands and by the automated test sweep.

The catalog is read-only reference data. Expected register/memory
values may be negative; the test runner compares them as two's
complement bit patterns at the active word length.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

__all__ = ['Expected', 'DemoProgram', 'DEMO_PROGRAMS', 'get_demo_by_id', 'UnknownDemo']


class UnknownDemo(KeyError):
    def __init__(self, demo_id: str):
        self.demo_id = demo_id
        super().__init__(f"Unknown demo: {demo_id}")

    def __str__(self) -> str:
        return self.args[0]


@dataclass(frozen=True)
class Expected:
    """Expected outcome of a run; None/empty fields are not checked."""
    halted: Optional[bool] = None
    registers: Mapping[str, int] = field(default_factory=dict)
    memory: Mapping[int, int] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'registers', MappingProxyType(dict(self.registers)))
        object.__setattr__(self, 'memory', MappingProxyType(dict(self.memory)))


@dataclass(frozen=True)
class DemoProgram:
    id: str
    name: str
    source: str
    expected: Expected


DEMO_PROGRAMS = (
    DemoProgram(
        id="demo1",
        name="Demo 1 - Basic Add",
        source="LDI A, 2\nLDI B, 3\nADD A, B\nSTORE A, 10\nHLT",
        expected=Expected(halted=True, registers={'A': 5, 'B': 3}, memory={10: 5}),
    ),
    DemoProgram(
        id="demo2",
        name="Demo 2 - Load/Store",
        source="LDI A, 12\nSTORE A, 20\nLDI A, 0\nLOAD B, 20\nHLT",
        expected=Expected(halted=True, registers={'A': 0, 'B': 12}, memory={20: 12}),
    ),
    DemoProgram(
        id="demo3",
        name="Demo 3 - Branch Taken",
        source="LDI A, 0\nJZ A, 4\nLDI B, 9\nJMP 5\nLDI B, 7\nHLT",
        expected=Expected(halted=True, registers={'B': 7}),
    ),
    DemoProgram(
        id="demo4",
        name="Demo 4 - Branch Not Taken",
        source="LDI A, 1\nJZ A, 4\nLDI B, 9\nJMP 5\nLDI B, 7\nHLT",
        expected=Expected(halted=True, registers={'B': 9}),
    ),
    DemoProgram(
        id="demo5",
        name="Demo 5 - Negative Immediate",
        source="LDI A, -1\nSTORE A, 30\nHLT",
        expected=Expected(halted=True, registers={'A': -1}, memory={30: -1}),
    ),
    DemoProgram(
        id="demo6",
        name="Demo 6 - Overwrite Memory",
        source="LDI A, 3\nSTORE A, 5\nLDI A, 8\nSTORE A, 5\nLOAD B, 5\nHLT",
        expected=Expected(halted=True, registers={'B': 8}, memory={5: 8}),
    ),
    DemoProgram(
        id="demo7",
        name="Demo 7 - Jump Skip",
        source="LDI A, 2\nJMP 3\nLDI A, 9\nLDI B, 4\nADD A, B\nHLT",
        expected=Expected(halted=True, registers={'A': 6, 'B': 4}),
    ),
)

_BY_ID = MappingProxyType({demo.id: demo for demo in DEMO_PROGRAMS})


def get_demo_by_id(demo_id: str) -> Optional[DemoProgram]:
    return _BY_ID.get(demo_id)
