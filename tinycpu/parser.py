"""
Tiny CPU: Assembly Parser

Turns line-oriented assembly text into a list of typed instructions.

Source rules:
  - One instruction per line: OPCODE operands. Lines end at LF or
    CRLF; no other character starts a new line
  - Comments start at ';', '#' or '//' and run to end of line
  - Blank and comment-only lines are skipped and take no address
  - Opcodes and register names are case-insensitive
  - Whitespace around commas is ignored
  - LOAD/STORE addresses may be bracketed: LOAD A, [20]

Example:
    LDI A, 2        ; A <- 2
    LDI B, 3
    ADD A, B        # A <- A + B
    STORE A, [10]   // MEM[10] <- A
    HLT

The parser checks syntax only. Immediate widths and address bounds
depend on the active word length and are checked by the simulation
core when the program is loaded.
"""

from __future__ import annotations
from typing import Callable, Dict, List, Tuple
import re

from .isa import Add, Hlt, Instruction, Jmp, Jz, Ldi, Load, Opcode, Store, check_dispatch_table

__all__ = ['AssemblerParser', 'ParseError', 'parse']


class ParseError(Exception):
    """Raised on the first malformed source line."""
    def __init__(self, message: str, line_num: int = 0, line_text: str = ""):
        self.reason = message
        self.line_num = line_num
        self.line_text = line_text
        super().__init__(f"Line {line_num}: {message}" if line_num else message)


# ──────────────────────────────────────────────
# Operand grammar
# ──────────────────────────────────────────────
# Format: { OPCODE: (pattern, builder, usage) }
# builder(match, line_num) -> Instruction

_REG = r'([AB])'
_INT = r'(-?\d+)'
_ADDR = r'(\d+)'
_MEM = r'(?:\[\s*(\d+)\s*\]|(\d+))'
_SEP = r'\s*,\s*'
_FLAGS = re.IGNORECASE | re.ASCII       # digits are 0-9 only

GRAMMAR: Dict[Opcode, Tuple[re.Pattern, Callable, str]] = {
    Opcode.LDI: (
        re.compile(rf'^{_REG}{_SEP}{_INT}$', _FLAGS),
        lambda m, n: Ldi(m.group(1).upper(), int(m.group(2)), line=n),
        "LDI <A|B>, <number>",
    ),
    Opcode.ADD: (
        re.compile(rf'^{_REG}{_SEP}{_REG}$', _FLAGS),
        lambda m, n: Add(m.group(1).upper(), m.group(2).upper(), line=n),
        "ADD <A|B>, <A|B>",
    ),
    Opcode.LOAD: (
        re.compile(rf'^{_REG}{_SEP}{_MEM}$', _FLAGS),
        lambda m, n: Load(m.group(1).upper(), int(m.group(2) or m.group(3)), line=n),
        "LOAD <A|B>, <address>' or 'LOAD <A|B>, [address]",
    ),
    Opcode.STORE: (
        re.compile(rf'^{_REG}{_SEP}{_MEM}$', _FLAGS),
        lambda m, n: Store(m.group(1).upper(), int(m.group(2) or m.group(3)), line=n),
        "STORE <A|B>, <address>' or 'STORE <A|B>, [address]",
    ),
    Opcode.JMP: (
        re.compile(rf'^{_ADDR}$', _FLAGS),
        lambda m, n: Jmp(int(m.group(1)), line=n),
        "JMP <address>",
    ),
    Opcode.JZ: (
        re.compile(rf'^{_REG}{_SEP}{_ADDR}$', _FLAGS),
        lambda m, n: Jz(m.group(1).upper(), int(m.group(2)), line=n),
        "JZ <A|B>, <address>",
    ),
    Opcode.HLT: (
        re.compile(r'^$'),
        lambda m, n: Hlt(line=n),
        "HLT",
    ),
}
check_dispatch_table(GRAMMAR, "parser")

_COMMENT = re.compile(r'(;|#|//).*$')
_LINE_BREAK = re.compile(r'\r?\n')


def strip_comment(line: str) -> str:
    """Drop everything from the first comment marker on."""
    return _COMMENT.sub('', line)


def _parse_line(text: str, line_num: int) -> Instruction:
    """Parse one cleaned, non-empty line."""
    parts = text.split(None, 1)
    mnem = parts[0].upper()
    operand = parts[1].strip() if len(parts) > 1 else ""

    try:
        op = Opcode[mnem]
    except KeyError:
        raise ParseError(f"unsupported opcode '{mnem}'", line_num, text) from None

    pattern, build, usage = GRAMMAR[op]
    match = pattern.match(operand)
    if match is None:
        if op is Opcode.HLT:
            raise ParseError("HLT takes no operands", line_num, text)
        raise ParseError(f"expected '{usage}'", line_num, text)
    return build(match, line_num)


class AssemblerParser:
    """Line-oriented parser.

    Usage:
        program = AssemblerParser().parse(source_text)
    """

    def parse(self, source: str) -> List[Instruction]:
        """Parse `source`; raise ParseError naming the first bad line."""
        program: List[Instruction] = []
        for line_num, raw in enumerate(_LINE_BREAK.split(source), 1):
            text = strip_comment(raw).strip()
            if not text:
                continue
            program.append(_parse_line(text, line_num))

        if not program:
            raise ParseError("No instructions found in source")
        return program


def parse(source: str) -> List[Instruction]:
    """Parse source text with a fresh parser."""
    return AssemblerParser().parse(source)
