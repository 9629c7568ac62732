"""
Tiny CPU: Instruction Encoder

Packs a typed instruction into one machine word for the memory image.

Word layout (W = word length, 10 or 16):

    | opcode tag (4) | payload (W - 4)                        |

Payload per opcode:
  LDI    top payload bit = register (A=0, B=1), rest = immediate
  ADD    bits 1..0 = dest << 1 | src
  STORE  bit 6 = register, bits 5..0 = address
  LOAD   bit 6 = register, bits 5..0 = address
  JMP    bits 5..0 = address
  JZ     bit 6 = register, bits 5..0 = address
  HLT    0

Every field is masked, never range-checked: the encoder cannot fail.
Range errors are the simulation core's job. At W=10 the payload is only
6 bits wide, so the register bit of STORE/LOAD/JZ falls outside the
payload and is masked away.

The image is for display only. Execution always reads the typed
instruction, never these words.
"""

from __future__ import annotations
from typing import Callable, Dict, List

from .config import ADDRESS_BITS, OPCODE_BITS
from .isa import Instruction, Opcode, REGISTER_SELECT, check_dispatch_table

__all__ = ['encode_instruction', 'encode_program', 'decode_opcode', 'IllegalOpcode']

ADDRESS_MASK = (1 << ADDRESS_BITS) - 1
REG_BIT = ADDRESS_BITS          # register selector position for memory/branch ops


class IllegalOpcode(ValueError):
    """Raised when a word's top bits hold no known opcode tag."""
    def __init__(self, tag: int):
        self.tag = tag
        super().__init__(f"Illegal opcode tag: {tag} (0x{tag:X})")


# ──────────────────────────────────────────────
# Payload packers: (instruction, payload_bits) -> payload
# ──────────────────────────────────────────────

def _pack_ldi(ins, payload_bits: int) -> int:
    imm_bits = payload_bits - 1
    imm_mask = (1 << imm_bits) - 1
    return (REGISTER_SELECT[ins.reg] << imm_bits) | (ins.value & imm_mask)


def _pack_add(ins, payload_bits: int) -> int:
    return (REGISTER_SELECT[ins.dest] << 1) | REGISTER_SELECT[ins.src]


def _pack_reg_address(ins, payload_bits: int) -> int:
    return (REGISTER_SELECT[ins.reg] << REG_BIT) | (ins.address & ADDRESS_MASK)


def _pack_address(ins, payload_bits: int) -> int:
    return ins.address & ADDRESS_MASK


def _pack_none(ins, payload_bits: int) -> int:
    return 0


_PACKERS: Dict[Opcode, Callable] = {
    Opcode.LDI: _pack_ldi,
    Opcode.ADD: _pack_add,
    Opcode.STORE: _pack_reg_address,
    Opcode.LOAD: _pack_reg_address,
    Opcode.JMP: _pack_address,
    Opcode.JZ: _pack_reg_address,
    Opcode.HLT: _pack_none,
}
check_dispatch_table(_PACKERS, "encoder")

_TAGS = {op.tag: op for op in Opcode}


def encode_instruction(instruction: Instruction, word_length: int) -> int:
    """Return the unsigned `word_length`-bit word for `instruction`."""
    payload_bits = word_length - OPCODE_BITS
    payload_mask = (1 << payload_bits) - 1
    payload = _PACKERS[instruction.op](instruction, payload_bits)
    word = (instruction.op.tag << payload_bits) | (payload & payload_mask)
    return word & ((1 << word_length) - 1)


def encode_program(program: List[Instruction], word_length: int) -> List[int]:
    """Encode a whole program; index = address."""
    return [encode_instruction(ins, word_length) for ins in program]


def decode_opcode(word: int, word_length: int) -> Opcode:
    """Recover the opcode from the top 4 bits of an encoded word."""
    tag = (word >> (word_length - OPCODE_BITS)) & ((1 << OPCODE_BITS) - 1)
    try:
        return _TAGS[tag]
    except KeyError:
        raise IllegalOpcode(tag) from None
