"""
Tiny CPU: Instruction Set

Seven instructions, two general registers (A, B):

  LDI   reg, imm      reg <- imm (signed immediate)
  ADD   dest, src     dest <- dest + src, sets SF/OF
  STORE reg, addr     MEM[addr] <- reg
  LOAD  reg, addr     reg <- MEM[addr]
  JMP   addr          PC <- addr
  JZ    reg, addr     PC <- addr if reg == 0
  HLT                 stop

The enum value of each Opcode is its 4-bit tag in an encoded word.
Instructions are immutable; a program is a list of them where the list
index is the instruction's address.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

__all__ = [
    'Opcode', 'REGISTER_SELECT', 'GENERAL_REGISTERS',
    'Ldi', 'Add', 'Store', 'Load', 'Jmp', 'Jz', 'Hlt',
    'Instruction', 'ADDRESS_OPCODES', 'check_dispatch_table',
]


class Opcode(Enum):
    LDI = 1
    ADD = 2
    STORE = 3
    LOAD = 4
    JMP = 5
    JZ = 6
    HLT = 15

    @property
    def tag(self) -> int:
        return self.value


# Register selector bit used by the encoder
REGISTER_SELECT = {'A': 0, 'B': 1}
GENERAL_REGISTERS = tuple(REGISTER_SELECT)


# ──────────────────────────────────────────────
# Instruction variants
# ──────────────────────────────────────────────
# `line` is the 1-based source line; it is diagnostic only and takes no
# part in equality.

@dataclass(frozen=True)
class Ldi:
    reg: str
    value: int
    line: int = field(default=0, compare=False, repr=False)

    op = Opcode.LDI

    def __str__(self) -> str:
        return f"LDI {self.reg}, {self.value}"


@dataclass(frozen=True)
class Add:
    dest: str
    src: str
    line: int = field(default=0, compare=False, repr=False)

    op = Opcode.ADD

    def __str__(self) -> str:
        return f"ADD {self.dest}, {self.src}"


@dataclass(frozen=True)
class Store:
    reg: str
    address: int
    line: int = field(default=0, compare=False, repr=False)

    op = Opcode.STORE

    def __str__(self) -> str:
        return f"STORE {self.reg}, {self.address}"


@dataclass(frozen=True)
class Load:
    reg: str
    address: int
    line: int = field(default=0, compare=False, repr=False)

    op = Opcode.LOAD

    def __str__(self) -> str:
        return f"LOAD {self.reg}, {self.address}"


@dataclass(frozen=True)
class Jmp:
    address: int
    line: int = field(default=0, compare=False, repr=False)

    op = Opcode.JMP

    def __str__(self) -> str:
        return f"JMP {self.address}"


@dataclass(frozen=True)
class Jz:
    reg: str
    address: int
    line: int = field(default=0, compare=False, repr=False)

    op = Opcode.JZ

    def __str__(self) -> str:
        return f"JZ {self.reg}, {self.address}"


@dataclass(frozen=True)
class Hlt:
    line: int = field(default=0, compare=False, repr=False)

    op = Opcode.HLT

    def __str__(self) -> str:
        return "HLT"


Instruction = Union[Ldi, Add, Store, Load, Jmp, Jz, Hlt]

# Opcodes whose `address` operand must lie inside memory
ADDRESS_OPCODES = frozenset({Opcode.STORE, Opcode.LOAD, Opcode.JMP, Opcode.JZ})


def check_dispatch_table(table: dict, owner: str):
    """Fail at import time if `table` does not cover every Opcode."""
    missing = [op.name for op in Opcode if op not in table]
    if missing:
        raise RuntimeError(f"{owner}: no handler for {', '.join(missing)}")
