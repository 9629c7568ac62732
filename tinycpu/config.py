"""
Tiny CPU: Architecture Configuration
====================================

Word length, display base and memory size of the simulated machine.

The word length is the only setting with execution semantics: every
register and memory cell is masked to it. The display base is carried
for the text/diagram front ends and never changes what a program does.
Memory size is fixed.

Profiles:
  edu16: 16-bit words, binary display (power-on default)
  edu10: 10-bit words, binary display
"""

from __future__ import annotations
from typing import Dict

__all__ = [
    'SUPPORTED_WORD_LENGTHS', 'SUPPORTED_DISPLAY_BASES', 'MEMORY_SIZE',
    'DEFAULT_WORD_LENGTH', 'DEFAULT_DISPLAY_BASE', 'DEFAULT_MAX_STEPS',
    'ARCH_PROFILES', 'ArchitectureConfig', 'UnsupportedConfiguration',
    'UnsupportedWordLength', 'UnsupportedDisplayBase',
]


# =============================================================================
#  MACHINE CONSTANTS
# =============================================================================
SUPPORTED_WORD_LENGTHS = (10, 16)
SUPPORTED_DISPLAY_BASES = ("bin", "hex", "dec")

MEMORY_SIZE = 64               # words, addresses 0..63
OPCODE_BITS = 4                # top bits of an encoded word
ADDRESS_BITS = 6               # enough for MEMORY_SIZE

DEFAULT_WORD_LENGTH = 16
DEFAULT_DISPLAY_BASE = "bin"
DEFAULT_MAX_STEPS = 256        # run-to-halt step budget


ARCH_PROFILES: Dict[str, dict] = {
    "edu16": {
        "word_length": 16,
        "display_base": "bin",
        "description": "16-bit words (default)",
    },
    "edu10": {
        "word_length": 10,
        "display_base": "bin",
        "description": "10-bit words, narrow immediates",
    },
}


class UnsupportedConfiguration(Exception):
    """Raised when a configuration value is outside its supported set."""
    def __init__(self, setting: str, value, supported):
        self.setting = setting
        self.value = value
        self.supported = tuple(supported)
        super().__init__(
            f"Unsupported {setting}: {value!r} "
            f"(supported: {', '.join(str(s) for s in self.supported)})"
        )


class UnsupportedWordLength(UnsupportedConfiguration):
    def __init__(self, bits):
        super().__init__("word length", bits, SUPPORTED_WORD_LENGTHS)


class UnsupportedDisplayBase(UnsupportedConfiguration):
    def __init__(self, base):
        super().__init__("display base", base, SUPPORTED_DISPLAY_BASES)


class ArchitectureConfig:
    """Active machine configuration.

    Only the simulation core mutates this object. Range checks live here;
    re-validating a loaded program before a width change is the core's job.
    """

    __slots__ = ('word_length', 'display_base', 'memory_size')

    def __init__(self, word_length: int = DEFAULT_WORD_LENGTH,
                 display_base: str = DEFAULT_DISPLAY_BASE):
        self.memory_size: int = MEMORY_SIZE
        self.word_length: int = DEFAULT_WORD_LENGTH
        self.display_base: str = DEFAULT_DISPLAY_BASE
        self.set_word_length(word_length)
        self.set_display_base(display_base)

    @classmethod
    def from_profile(cls, name: str) -> ArchitectureConfig:
        """Build a config from an ARCH_PROFILES entry."""
        if name not in ARCH_PROFILES:
            raise UnsupportedConfiguration("profile", name, ARCH_PROFILES.keys())
        profile = ARCH_PROFILES[name]
        return cls(word_length=profile["word_length"],
                   display_base=profile["display_base"])

    @staticmethod
    def check_word_length(bits: int):
        # bool is an int subclass; True is not a word length
        if isinstance(bits, bool) or bits not in SUPPORTED_WORD_LENGTHS:
            raise UnsupportedWordLength(bits)

    @staticmethod
    def check_display_base(base: str):
        if base not in SUPPORTED_DISPLAY_BASES:
            raise UnsupportedDisplayBase(base)

    def set_word_length(self, bits: int):
        self.check_word_length(bits)
        self.word_length = bits

    def set_display_base(self, base: str):
        self.check_display_base(base)
        self.display_base = base

    def to_dict(self) -> dict:
        return {
            "word_length": self.word_length,
            "display_base": self.display_base,
            "memory_size": self.memory_size,
        }
