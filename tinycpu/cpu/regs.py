"""
Tiny CPU: Register Set, Flags and Bus Trace

Register model:
  A   general register
  B   general register
  DR  data register (last word moved over the data bus)
  AR  address register (last address driven onto the address bus)
  PC  program counter
  SP  stack pointer, memory_size - 1 at reset; no instruction uses it
  IR  mnemonic of the fetched instruction (a string, not a word)

Every numeric register holds an unsigned word masked to the active
word length.

Flags (0/1), written only by ADD:
  SF  sign: top bit of the masked result
  OF  overflow: the sum did not fit the word

The bus trace is the record of the last micro-step's data paths. It is
overwritten on every step and only read by visualisation code.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Tuple

from ..config import MEMORY_SIZE, DEFAULT_WORD_LENGTH

# Numeric registers, in display order
REGISTER_NAMES = ('A', 'B', 'DR', 'AR', 'PC', 'SP')
FLAG_NAMES = ('SF', 'OF')


@dataclass(frozen=True)
class BusTrace:
    """Address bus, data bus, control tag and active data paths of one micro-step."""
    ab: Optional[int] = None
    db: Optional[int] = None
    control: str = "IDLE"
    active_paths: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "AB": self.ab,
            "DB": self.db,
            "control": self.control,
            "active_paths": list(self.active_paths),
        }


IDLE_BUS = BusTrace()


class CPU:
    """Register/flag state of the machine.

    Holds no execution semantics; the simulation core drives it.
    """

    __slots__ = ('A', 'B', 'DR', 'AR', 'PC', 'SP', 'IR', 'SF', 'OF',
                 'halted', 'cycle', 'buses', 'word_length', 'memory_size')

    def __init__(self, word_length: int = DEFAULT_WORD_LENGTH, memory_size: int = MEMORY_SIZE):
        self.word_length = word_length
        self.memory_size = memory_size
        self.reset()

    def reset(self):
        """Power-on state: all zero, SP at the top of memory, bus idle."""
        self.A: int = 0
        self.B: int = 0
        self.DR: int = 0
        self.AR: int = 0
        self.PC: int = 0
        self.SP: int = self.mask_value(self.memory_size - 1)
        self.IR: str = "NOP"
        self.SF: int = 0
        self.OF: int = 0
        self.halted: bool = False
        self.cycle: int = 0
        self.buses: BusTrace = IDLE_BUS

    # --- Width ---

    @property
    def mask(self) -> int:
        return (1 << self.word_length) - 1

    @property
    def sign_bit(self) -> int:
        return 1 << (self.word_length - 1)

    def mask_value(self, value: int) -> int:
        return value & self.mask

    def set_word_length(self, bits: int):
        """Switch width and re-mask every register in place."""
        self.word_length = bits
        self.mask_registers()

    def mask_registers(self):
        for name in REGISTER_NAMES:
            setattr(self, name, self.mask_value(getattr(self, name)))

    # --- Register access by name ---

    def read_register(self, name: str) -> int:
        if name not in REGISTER_NAMES:
            raise KeyError(f"Unknown register: {name}")
        return getattr(self, name)

    def write_register(self, name: str, value: int):
        """Write a numeric register, masked to the word length."""
        if name not in REGISTER_NAMES:
            raise KeyError(f"Unknown register: {name}")
        setattr(self, name, self.mask_value(value))

    # --- Flags ---

    def update_flags_from_value(self, value: int, overflow: bool):
        """SF from the sign bit of the masked value, OF as given by the caller."""
        masked = self.mask_value(value)
        self.SF = 1 if masked & self.sign_bit else 0
        self.OF = 1 if overflow else 0

    @property
    def sign(self) -> bool:
        return bool(self.SF)

    @property
    def overflow(self) -> bool:
        return bool(self.OF)

    # --- Bus trace ---

    def set_bus_state(self, ab: Optional[int] = None, db: Optional[int] = None,
                      control: str = "IDLE", active_paths=()) -> BusTrace:
        self.buses = BusTrace(ab=ab, db=db, control=control, active_paths=tuple(active_paths))
        return self.buses

    # --- Snapshots / display ---

    def registers(self) -> dict:
        regs = {name: getattr(self, name) for name in REGISTER_NAMES}
        regs['IR'] = self.IR
        return regs

    def flags(self) -> dict:
        return {'SF': self.SF, 'OF': self.OF}

    def display(self) -> str:
        """One-line register dump for logs and the CLI."""
        width = (self.word_length + 3) // 4
        regs = ' '.join(f"{name}={getattr(self, name):0{width}X}" for name in REGISTER_NAMES)
        flags = ('S' if self.SF else '.') + ('O' if self.OF else '.')
        state = " HALT" if self.halted else ""
        return f"{regs} IR={self.IR:<5s} [{flags}] cyc={self.cycle}{state}"
