"""
Tiny CPU: Simulation Core

Top-level class that owns and drives:
  - configuration (config.py)
  - register/flag model (cpu/regs.py)
  - word memory (mem/memory.py)
  - assembly parser (parser.py)
  - instruction encoder (encoder.py)

Phases:
  idle       no program, or just reset
  ready      program loaded, PC=0
  fetch      DR <- MEM[PC], AR <- PC, IR <- opcode
  execute    per-opcode effect
  writeback  STORE only: register written to memory
  halt       HLT executed, or PC ran past the last instruction

One step() runs fetch + execute (+ writeback) of one instruction. The
typed program list is what executes; the encoded words in memory are a
display image rebuilt in full whenever the program or the word length
changes.

Observers:
  on_state_change(cb)  cb(state) after load, reset, step, width/base change
  on_step(cb)          cb(state, micro_step) after each executed step

Usage:
    core = SimulationCore()
    core.load_program("LDI A, 2\\nLDI B, 3\\nADD A, B\\nSTORE A, 10\\nHLT")
    state = core.run_until_halt()
    state.cpu.registers['A']   # 5
    state.memory[10]           # 5
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Callable, List, Mapping, Optional, Tuple
import logging

from .config import ArchitectureConfig, DEFAULT_MAX_STEPS
from .cpu.regs import CPU, BusTrace
from .demos import UnknownDemo, get_demo_by_id, DEMO_PROGRAMS
from .encoder import encode_program
from .isa import ADDRESS_OPCODES, Instruction, Opcode, check_dispatch_table
from .mem.memory import Memory
from .parser import AssemblerParser

__all__ = [
    'SimulationCore', 'Phase', 'StepReason', 'StepResult', 'MicroStep',
    'CPUSnapshot', 'StateSnapshot', 'ProgramTooLarge', 'ProgramRangeError',
    'NonTermination', 'ExecutionFault',
]

log = logging.getLogger(__name__)


class Phase(str, Enum):
    IDLE = 'idle'
    READY = 'ready'
    FETCH = 'fetch'
    EXECUTE = 'execute'
    WRITEBACK = 'writeback'
    HALT = 'halt'


class StepReason(str, Enum):
    """Why step() did not execute an instruction. Neither is a fault."""
    HALTED = 'halted'
    NO_INSTRUCTION = 'no_instruction'


# ══════════════════════════════════════════════
# Errors
# ══════════════════════════════════════════════

class ProgramTooLarge(ValueError):
    def __init__(self, count: int, limit: int):
        self.count = count
        self.limit = limit
        super().__init__(f"Program too large: {count} instructions (max {limit})")


class ProgramRangeError(ValueError):
    """An immediate or address does not fit the word length / memory."""
    def __init__(self, index: int, value: int, message: str):
        self.index = index
        self.value = value
        super().__init__(f"Instruction {index}: {message}")


class NonTermination(RuntimeError):
    def __init__(self, max_steps: int):
        self.max_steps = max_steps
        super().__init__(f"Execution did not halt within {max_steps} steps")


class ExecutionFault(RuntimeError):
    """A run stopped for a reason other than an explicit halt."""
    def __init__(self, reason, state: StateSnapshot = None):
        self.reason = StepReason(reason)
        self.state = state
        super().__init__(f"Execution failed: {self.reason.value}")


# ══════════════════════════════════════════════
# Snapshots
# ══════════════════════════════════════════════
# Observers only ever see these. They hold copies behind read-only
# mappings and tuples; nothing in them aliases live machine state.

@dataclass(frozen=True)
class MicroStep:
    """What one step did, for observers and visualisation."""
    phase: str
    action: str
    touched: Tuple[str, ...]
    active_paths: Tuple[str, ...]
    bus_trace: Tuple[BusTrace, ...] = ()   # fetch first, then execute/writeback
    alu: Optional[Mapping[str, object]] = None

    def to_dict(self) -> dict:
        return {
            "phase": self.phase,
            "action": self.action,
            "touched": list(self.touched),
            "active_paths": list(self.active_paths),
            "bus_trace": [bus.to_dict() for bus in self.bus_trace],
            "alu": dict(self.alu) if self.alu is not None else None,
        }


@dataclass(frozen=True)
class CPUSnapshot:
    registers: Mapping[str, object]
    flags: Mapping[str, int]
    buses: BusTrace
    halted: bool
    cycle: int

    def to_dict(self) -> dict:
        return {
            "registers": dict(self.registers),
            "flags": dict(self.flags),
            "buses": self.buses.to_dict(),
            "halted": self.halted,
            "cycle": self.cycle,
        }


@dataclass(frozen=True)
class StateSnapshot:
    cpu: CPUSnapshot
    program: Tuple[Tuple[int, Instruction], ...]
    memory: Tuple[int, ...]
    config: Mapping[str, object]
    meta: Mapping[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "cpu": self.cpu.to_dict(),
            "program": [{"address": addr, "instruction": str(ins)} for addr, ins in self.program],
            "memory": list(self.memory),
            "config": dict(self.config),
            "meta": dict(self.meta),
        }


@dataclass(frozen=True)
class StepResult:
    ok: bool
    state: StateSnapshot
    reason: Optional[StepReason] = None
    micro_step: Optional[MicroStep] = None


FETCH_PATHS = ("pc-ab", "ab-memory", "memory-ir")


class SimulationCore:
    """Load/reset/step/run state machine of the tiny CPU.

    The only component with execution semantics, and the only one that
    mutates the config, CPU, memory and program it owns.
    """

    def __init__(self, config: ArchitectureConfig = None):
        self.config = config if config is not None else ArchitectureConfig()
        self.cpu = CPU(self.config.word_length, self.config.memory_size)
        self.memory = Memory(self.config.memory_size, self.config.word_length)
        self.parser = AssemblerParser()

        self._program: List[Instruction] = []
        self._last_action = "Not started"
        self._phase = Phase.IDLE

        self._state_listeners: List[Callable] = []
        self._step_listeners: List[Callable] = []

    # ══════════════════════════════════════════════
    # Observers
    # ══════════════════════════════════════════════

    def on_state_change(self, listener: Callable) -> Callable:
        """Register listener(state); returned so it works as a decorator."""
        self._state_listeners.append(listener)
        return listener

    def on_step(self, listener: Callable) -> Callable:
        """Register listener(state, micro_step)."""
        self._step_listeners.append(listener)
        return listener

    def _notify_state_change(self):
        state = self.get_state()
        for listener in self._state_listeners:
            listener(state)

    def _notify_step(self, micro_step: MicroStep):
        state = self.get_state()
        for listener in self._step_listeners:
            listener(state, micro_step)

    # ══════════════════════════════════════════════
    # Read-only views
    # ══════════════════════════════════════════════

    @property
    def program(self) -> Tuple[Instruction, ...]:
        return tuple(self._program)

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def last_action(self) -> str:
        return self._last_action

    def get_state(self) -> StateSnapshot:
        cpu = self.cpu
        return StateSnapshot(
            cpu=CPUSnapshot(
                registers=MappingProxyType(cpu.registers()),
                flags=MappingProxyType(cpu.flags()),
                buses=cpu.buses,
                halted=cpu.halted,
                cycle=cpu.cycle,
            ),
            program=tuple(enumerate(self._program)),
            memory=self.memory.snapshot(),
            config=MappingProxyType(self.config.to_dict()),
            meta=MappingProxyType({
                "last_action": self._last_action,
                "phase": self._phase.value,
            }),
        )

    # ══════════════════════════════════════════════
    # Configuration
    # ══════════════════════════════════════════════

    def set_display_base(self, base: str):
        """Display-only; no effect on execution."""
        self.config.set_display_base(base)
        log.info("Display base set to %s", base)
        self._notify_state_change()

    def set_word_length(self, bits: int):
        """Switch word length; all-or-nothing.

        The loaded program is re-validated against the new width first.
        On any failure nothing (config, registers, memory) changes.
        """
        self.config.check_word_length(bits)
        self.validate_program_constraints(self._program, bits)

        self.config.set_word_length(bits)
        self.cpu.set_word_length(bits)
        self.memory.set_word_length(bits)
        self._rewrite_program_image()
        self._last_action = f"Word length switched to {bits}-bit"
        log.info(self._last_action)
        self._notify_state_change()

    # ══════════════════════════════════════════════
    # Loading
    # ══════════════════════════════════════════════

    def validate_program_constraints(self, program: List[Instruction], bits: int):
        """Raise ProgramRangeError for the first immediate or address out of range."""
        min_signed = -(1 << (bits - 1))
        max_signed = (1 << (bits - 1)) - 1
        size = self.config.memory_size

        for index, ins in enumerate(program):
            if ins.op is Opcode.LDI and not min_signed <= ins.value <= max_signed:
                raise ProgramRangeError(
                    index, ins.value,
                    f"immediate {ins.value} does not fit signed {bits}-bit range "
                    f"({min_signed}..{max_signed})",
                )
            if ins.op in ADDRESS_OPCODES and not 0 <= ins.address < size:
                raise ProgramRangeError(
                    index, ins.address,
                    f"address {ins.address} out of range (0..{size - 1})",
                )

    def load_program(self, source: str) -> int:
        """Parse, validate and load `source`. Returns the instruction count.

        Any failure leaves the previously loaded program and memory as they were.
        """
        parsed = self.parser.parse(source)
        if len(parsed) > self.config.memory_size:
            raise ProgramTooLarge(len(parsed), self.config.memory_size)
        self.validate_program_constraints(parsed, self.config.word_length)

        self._reset_machine()
        self._program = list(parsed)
        self._rewrite_program_image()

        self._last_action = f"Program loaded ({len(parsed)} instructions)"
        self._phase = Phase.READY
        log.info(self._last_action)
        self._notify_state_change()
        return len(parsed)

    def load_demo(self, demo_id: str) -> int:
        demo = get_demo_by_id(demo_id)
        if demo is None:
            raise UnknownDemo(demo_id)
        return self.load_program(demo.source)

    def load_tiny_program(self) -> int:
        """Load the basic add demo."""
        return self.load_program(DEMO_PROGRAMS[0].source)

    def _rewrite_program_image(self):
        self.memory.load_image(encode_program(self._program, self.config.word_length))

    def _reset_machine(self):
        self.cpu.reset()
        self.memory.reset()

    def reset(self):
        """Clear CPU and memory; a loaded program stays and its image is rewritten."""
        self._reset_machine()
        if self._program:
            self._rewrite_program_image()
        self._last_action = "Reset"
        self._phase = Phase.IDLE
        log.info("Reset")
        self._notify_state_change()

    # ══════════════════════════════════════════════
    # Execution
    # ══════════════════════════════════════════════

    def step(self) -> StepResult:
        """Fetch and execute one instruction."""
        cpu = self.cpu
        if cpu.halted:
            return StepResult(ok=False, reason=StepReason.HALTED, state=self.get_state())

        pc = cpu.PC
        if pc >= len(self._program):
            # fell off the end of the program: implicit halt
            cpu.halted = True
            self._phase = Phase.HALT
            self._last_action = f"No instruction at PC={pc}; halting"
            log.info(self._last_action)
            self._notify_state_change()
            return StepResult(ok=False, reason=StepReason.NO_INSTRUCTION, state=self.get_state())

        ins = self._program[pc]

        # ── Fetch ──
        self._phase = Phase.FETCH
        cpu.AR = pc
        cpu.DR = self.memory.read(pc)
        cpu.IR = ins.op.name
        fetch_bus = cpu.set_bus_state(ab=pc, db=cpu.DR, control="FETCH", active_paths=FETCH_PATHS)

        # ── Execute (+ writeback) ──
        self._phase = Phase.EXECUTE
        micro_step = _EXECUTORS[ins.op](self, ins, pc)
        micro_step = replace(micro_step, bus_trace=(fetch_bus, cpu.buses))

        cpu.mask_registers()
        cpu.cycle += 1
        self._last_action = micro_step.action

        log.debug("[STEP] cyc=%d pc=%d ir=%s A=%d B=%d bus=%s action=%s bits=%d",
                  cpu.cycle, cpu.PC, cpu.IR, cpu.A, cpu.B, cpu.buses.control,
                  micro_step.action, self.config.word_length)

        state = self.get_state()
        self._notify_state_change()
        self._notify_step(micro_step)
        return StepResult(ok=True, state=state, micro_step=micro_step)

    def run_until_halt(self, max_steps: int = DEFAULT_MAX_STEPS) -> StateSnapshot:
        """Step until halted; NonTermination after `max_steps` steps without halting.

        Falling off the end of the program is reported as ExecutionFault.
        """
        if self.cpu.halted:
            return self.get_state()

        for _ in range(max_steps):
            result = self.step()
            if not result.ok and result.reason is not StepReason.HALTED:
                raise ExecutionFault(result.reason, result.state)
            if result.state.cpu.halted:
                return result.state

        raise NonTermination(max_steps)

    # ══════════════════════════════════════════════
    # Per-opcode execute handlers
    # ══════════════════════════════════════════════
    # Each one applies the instruction's effect, sets PC, records the
    # execute bus trace and returns the micro-step description.

    def _exec_ldi(self, ins, pc: int) -> MicroStep:
        cpu = self.cpu
        cpu.write_register(ins.reg, ins.value)
        cpu.DR = cpu.mask_value(ins.value)
        paths = ("ir-control", "control-dr", f"dr-{ins.reg.lower()}")
        cpu.set_bus_state(ab=pc, db=cpu.DR, control="EXEC_LDI", active_paths=paths)
        cpu.PC += 1
        return MicroStep(Phase.EXECUTE.value, f"{ins.reg} <- {ins.value}",
                         ("IR", "DR", ins.reg), paths)

    def _exec_add(self, ins, pc: int) -> MicroStep:
        cpu = self.cpu
        lhs = cpu.read_register(ins.dest)
        rhs = cpu.read_register(ins.src)
        full = lhs + rhs
        masked = cpu.mask_value(full)
        cpu.write_register(ins.dest, masked)
        cpu.DR = masked
        cpu.update_flags_from_value(masked, full != masked)
        paths = (f"{ins.dest.lower()}-alu", f"{ins.src.lower()}-alu",
                 "alu-dr", f"dr-{ins.dest.lower()}")
        cpu.set_bus_state(ab=pc, db=masked, control="EXEC_ADD", active_paths=paths)
        cpu.PC += 1
        return MicroStep(
            Phase.EXECUTE.value, f"{ins.dest} <- {ins.dest} + {ins.src}",
            ("IR", ins.dest, ins.src, "DR", "ALU"), paths,
            alu=MappingProxyType({"op": "ADD", "in1": lhs, "in2": rhs, "out": masked}),
        )

    def _exec_store(self, ins, pc: int) -> MicroStep:
        cpu = self.cpu
        value = cpu.read_register(ins.reg)
        cpu.AR = ins.address
        cpu.DR = value
        self.memory.write(ins.address, value)
        self._phase = Phase.WRITEBACK
        paths = (f"{ins.reg.lower()}-dr", "dr-memory")
        cpu.set_bus_state(ab=ins.address, db=value, control="MEM_WRITE", active_paths=paths)
        cpu.PC += 1
        return MicroStep(Phase.WRITEBACK.value, f"MEM[{ins.address}] <- {ins.reg}",
                         ("IR", "AR", "DR", ins.reg, f"MEM[{ins.address}]"), paths)

    def _exec_load(self, ins, pc: int) -> MicroStep:
        cpu = self.cpu
        cpu.AR = ins.address
        value = self.memory.read(ins.address)
        cpu.DR = value
        cpu.write_register(ins.reg, value)
        paths = ("ab-memory", "memory-ir", "control-dr", f"dr-{ins.reg.lower()}")
        cpu.set_bus_state(ab=ins.address, db=value, control="MEM_READ", active_paths=paths)
        cpu.PC += 1
        return MicroStep(Phase.EXECUTE.value, f"{ins.reg} <- MEM[{ins.address}]",
                         ("IR", "AR", "DR", ins.reg, f"MEM[{ins.address}]"), paths)

    def _exec_jmp(self, ins, pc: int) -> MicroStep:
        cpu = self.cpu
        cpu.PC = ins.address
        paths = ("ir-control", "pc-ab")
        cpu.set_bus_state(ab=ins.address, db=ins.address, control="JMP", active_paths=paths)
        return MicroStep(Phase.EXECUTE.value, f"PC <- {ins.address}", ("IR", "PC"), paths)

    def _exec_jz(self, ins, pc: int) -> MicroStep:
        cpu = self.cpu
        value = cpu.read_register(ins.reg)
        taken = value == 0
        cpu.PC = ins.address if taken else cpu.PC + 1
        paths = ("ir-control", f"{ins.reg.lower()}-alu", "pc-ab")
        cpu.set_bus_state(ab=cpu.PC, db=value,
                          control="BRANCH_TAKEN" if taken else "BRANCH_NOT_TAKEN",
                          active_paths=paths)
        action = f"JZ {ins.reg} taken -> {ins.address}" if taken else f"JZ {ins.reg} not taken"
        return MicroStep(Phase.EXECUTE.value, action, ("IR", ins.reg, "PC"), paths)

    def _exec_hlt(self, ins, pc: int) -> MicroStep:
        cpu = self.cpu
        cpu.halted = True
        self._phase = Phase.HALT
        paths = ("ir-control",)
        cpu.set_bus_state(ab=None, db=None, control="HALT", active_paths=paths)
        return MicroStep(Phase.HALT.value, "HALT", ("IR", "CONTROL"), paths)


_EXECUTORS = {
    Opcode.LDI: SimulationCore._exec_ldi,
    Opcode.ADD: SimulationCore._exec_add,
    Opcode.STORE: SimulationCore._exec_store,
    Opcode.LOAD: SimulationCore._exec_load,
    Opcode.JMP: SimulationCore._exec_jmp,
    Opcode.JZ: SimulationCore._exec_jz,
    Opcode.HLT: SimulationCore._exec_hlt,
}
check_dispatch_table(_EXECUTORS, "executor")
