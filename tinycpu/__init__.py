"""
Tiny CPU: Instructional Fixed-Word-Length CPU Emulator
=======================================================
Parses a seven-instruction assembly language, encodes programs into a
64-word memory image and executes them one micro-step at a time against
an explicit register/flag/bus model, at 10-bit or 16-bit word length.

Architecture:
    ┌──────────┐    ┌──────────┐    ┌──────────────┐    ┌──────────────┐
    │  Source  │───>│  Parser  │───>│ Instructions │───>│   Encoder    │
    │  (.asm)  │    │          │    │   (typed)    │    │ (word image) │
    └──────────┘    └──────────┘    └──────┬───────┘    └──────┬───────┘
                                           │ executes           │ display
                                           v                    v
                                    ┌────────────────────────────────┐
                                    │ SimulationCore: CPU + Memory   │
                                    │ fetch -> execute (-> writeback)│
                                    └────────────────────────────────┘

    - config.py:     word length / display base / memory size
    - isa.py:        Opcode enum + one dataclass per instruction
    - parser.py:     line parser, ParseError on the first bad line
    - encoder.py:    instruction -> packed word (never fails)
    - cpu/regs.py:   registers, SF/OF flags, bus trace
    - mem/memory.py: masked word memory
    - core.py:       load/reset/step/run state machine + observers
    - demos.py:      demo program catalog
    - runner.py:     run-to-halt checker for catalog programs
"""

__version__ = "0.2.0"

from .config import (
    ArchitectureConfig, UnsupportedConfiguration, UnsupportedWordLength,
    UnsupportedDisplayBase, SUPPORTED_WORD_LENGTHS, SUPPORTED_DISPLAY_BASES, MEMORY_SIZE,
)
from .isa import Opcode, Ldi, Add, Store, Load, Jmp, Jz, Hlt
from .parser import AssemblerParser, ParseError, parse
from .encoder import encode_instruction, encode_program, decode_opcode, IllegalOpcode
from .cpu.regs import CPU, BusTrace
from .mem.memory import Memory, OutOfRangeAddress
from .core import (
    SimulationCore, Phase, StepReason, StepResult, MicroStep, StateSnapshot,
    ProgramTooLarge, ProgramRangeError, NonTermination, ExecutionFault,
)
from .demos import DEMO_PROGRAMS, DemoProgram, Expected, get_demo_by_id, UnknownDemo
from .runner import TestRunner, SuiteReport, ProgramResult


def run_source(source: str, *, word_length: int = 16, max_steps: int = 256) -> StateSnapshot:
    """Load `source` into a fresh core and run it to halt.

    Returns the final state snapshot.
    """
    core = SimulationCore(ArchitectureConfig(word_length=word_length))
    core.load_program(source)
    return core.run_until_halt(max_steps)
