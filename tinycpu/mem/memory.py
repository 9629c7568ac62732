"""
Tiny CPU: Word Memory

A fixed array of `size` words, each masked to the active word length.
Address = list index. Cells start at zero.

Changing the word length clips every stored cell in place. Bit patterns
are never sign-extended or re-interpreted: a 16-bit 0xFFFF becomes the
10-bit 0x3FF.

The program image written by the simulation core lives in the low cells;
STORE/LOAD reach any cell, image included.
"""

from __future__ import annotations
from typing import Callable, Dict, List

from ..config import MEMORY_SIZE, DEFAULT_WORD_LENGTH


class OutOfRangeAddress(IndexError):
    """Raised on a read/write outside [0, size)."""
    def __init__(self, address, size: int):
        self.address = address
        self.size = size
        super().__init__(f"Invalid memory address: {address!r} (valid 0..{size - 1})")


class Memory:
    """Word-addressable memory with write watchpoints.

    Watchpoint callbacks are called as callback(addr, old, new) after a
    word is stored; they let a front end highlight the touched cell.
    """

    def __init__(self, size: int = MEMORY_SIZE, word_length: int = DEFAULT_WORD_LENGTH):
        self.size = size
        self.word_length = word_length
        self._cells: List[int] = [0] * size
        self._watchpoints: Dict[int, List[Callable]] = {}

    # --- Width ---

    @property
    def mask(self) -> int:
        return (1 << self.word_length) - 1

    def mask_value(self, value: int) -> int:
        return value & self.mask

    def set_word_length(self, bits: int):
        """Switch width and clip every cell to it."""
        self.word_length = bits
        self._cells = [self.mask_value(v) for v in self._cells]

    # --- Core read/write ---

    def _check_address(self, address):
        # bool is an int subclass but never a valid address
        if (not isinstance(address, int) or isinstance(address, bool)
                or address < 0 or address >= self.size):
            raise OutOfRangeAddress(address, self.size)

    def read(self, address: int) -> int:
        self._check_address(address)
        return self._cells[address]

    def write(self, address: int, value: int):
        """Store `value` masked to the word length."""
        self._check_address(address)
        old = self._cells[address]
        new = self.mask_value(value)
        self._cells[address] = new
        for cb in self._watchpoints.get(address, ()):
            cb(address, old, new)

    def load_image(self, words: List[int]):
        """Write a program image starting at address 0 in one pass."""
        if len(words) > self.size:
            raise OutOfRangeAddress(len(words) - 1, self.size)
        for addr, word in enumerate(words):
            self._cells[addr] = self.mask_value(word)

    def reset(self):
        self._cells = [0] * self.size

    def snapshot(self) -> tuple:
        """Immutable copy of every cell."""
        return tuple(self._cells)

    # --- Watchpoints ---

    def add_watchpoint(self, address: int, callback: Callable):
        self._check_address(address)
        self._watchpoints.setdefault(address, []).append(callback)

    def remove_watchpoint(self, address: int, callback: Callable = None):
        """Remove one callback, or every callback on `address` if None."""
        if address not in self._watchpoints:
            return
        if callback is None:
            del self._watchpoints[address]
            return
        self._watchpoints[address] = [cb for cb in self._watchpoints[address] if cb is not callback]
        if not self._watchpoints[address]:
            del self._watchpoints[address]

    def __len__(self) -> int:
        return self.size

    def dump(self, start: int = 0, end: int = None) -> str:
        """Hex dump of [start, end) for debugging, 8 words per row."""
        end = self.size if end is None else min(end, self.size)
        width = (self.word_length + 3) // 4
        rows = []
        for base in range(start, end, 8):
            words = ' '.join(f"{self._cells[a]:0{width}X}" for a in range(base, min(base + 8, end)))
            rows.append(f"{base:02d}: {words}")
        return '\n'.join(rows)
