"""
Simulation Core Tests for the Tiny CPU.

Tests cover:
  - Canonical programs run to halt at both word lengths
  - Per-opcode effects, flags and bus traces
  - Halt / fall-through step results and run-to-halt failures
  - Load validation (size, immediates, addresses) leaving prior state intact
  - All-or-nothing word length switching
  - Observer channels and snapshot immutability
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import dataclasses

import pytest
from tinycpu import run_source
from tinycpu.config import ArchitectureConfig, UnsupportedDisplayBase, UnsupportedWordLength
from tinycpu.core import (
    ExecutionFault, FETCH_PATHS, NonTermination, Phase, ProgramRangeError,
    ProgramTooLarge, SimulationCore, StepReason,
)
from tinycpu.demos import UnknownDemo
from tinycpu.encoder import encode_program
from tinycpu.isa import Hlt, Ldi
from tinycpu.parser import ParseError

BASIC_ADD = "LDI A, 2\nLDI B, 3\nADD A, B\nSTORE A, 10\nHLT"
BRANCH = "LDI A, {a}\nJZ A, 4\nLDI B, 9\nJMP 5\nLDI B, 7\nHLT"


def _core(bits: int = 16) -> SimulationCore:
    return SimulationCore(ArchitectureConfig(word_length=bits))


def _loaded(source: str, bits: int = 16) -> SimulationCore:
    core = _core(bits)
    core.load_program(source)
    return core


# ─── Canonical programs ─────────────────────

class TestCanonicalPrograms:
    @pytest.mark.parametrize("bits", [10, 16])
    def test_basic_add(self, bits):
        state = _loaded(BASIC_ADD, bits).run_until_halt()
        assert state.cpu.registers['A'] == 5
        assert state.cpu.registers['B'] == 3
        assert state.memory[10] == 5
        assert state.cpu.halted is True

    @pytest.mark.parametrize("bits", [10, 16])
    def test_branch_taken(self, bits):
        state = _loaded(BRANCH.format(a=0), bits).run_until_halt()
        assert state.cpu.registers['B'] == 7
        assert state.cpu.halted

    @pytest.mark.parametrize("bits", [10, 16])
    def test_branch_not_taken(self, bits):
        state = _loaded(BRANCH.format(a=1), bits).run_until_halt()
        assert state.cpu.registers['B'] == 9
        assert state.cpu.halted

    def test_negative_immediate_16(self):
        state = _loaded("LDI A, -1\nSTORE A, 30\nHLT", 16).run_until_halt()
        assert state.cpu.registers['A'] == 65535
        assert state.memory[30] == 65535
        assert state.cpu.halted

    def test_negative_immediate_10(self):
        state = _loaded("LDI A, -1\nSTORE A, 30\nHLT", 10).run_until_halt()
        assert state.cpu.registers['A'] == 1023
        assert state.memory[30] == 1023

    def test_load_after_store(self):
        state = _loaded("LDI A, 12\nSTORE A, 20\nLDI A, 0\nLOAD B, 20\nHLT").run_until_halt()
        assert state.cpu.registers['A'] == 0
        assert state.cpu.registers['B'] == 12

    def test_hlt_does_not_advance_pc(self):
        state = _loaded(BASIC_ADD).run_until_halt()
        assert state.cpu.registers['PC'] == 4
        assert state.cpu.cycle == 5
        assert state.meta["phase"] == "halt"

    def test_run_source_helper(self):
        state = run_source(BASIC_ADD, word_length=10)
        assert state.memory[10] == 5
        assert state.config["word_length"] == 10

    def test_deterministic(self):
        """Same program, same config: identical final snapshots."""
        first = _loaded(BRANCH.format(a=0)).run_until_halt()
        second = _loaded(BRANCH.format(a=0)).run_until_halt()
        assert first.to_dict() == second.to_dict()


# ─── Per-step effects ─────────────────────

class TestStep:
    def test_fetch(self):
        core = _loaded(BASIC_ADD)
        result = core.step()
        assert result.ok
        fetch_bus = result.micro_step.bus_trace[0]
        assert fetch_bus.control == "FETCH"
        assert fetch_bus.ab == 0
        assert fetch_bus.db == 0x1002
        assert fetch_bus.active_paths == FETCH_PATHS

        regs = result.state.cpu.registers
        assert regs['IR'] == "LDI"
        assert regs['AR'] == 0
        assert regs['DR'] == 2        # LDI mirrors the immediate into DR
        assert regs['PC'] == 1
        assert result.state.cpu.cycle == 1

    def test_execute_bus_is_live_bus(self):
        core = _loaded(BASIC_ADD)
        result = core.step()
        assert result.micro_step.bus_trace[1].control == "EXEC_LDI"
        assert result.state.cpu.buses == result.micro_step.bus_trace[1]

    def test_add_records_alu(self):
        core = _loaded(BASIC_ADD)
        core.step()
        core.step()
        micro = core.step().micro_step
        assert micro.action == "A <- A + B"
        assert dict(micro.alu) == {"op": "ADD", "in1": 2, "in2": 3, "out": 5}
        assert micro.bus_trace[1].control == "EXEC_ADD"

    def test_store_writeback(self):
        core = _loaded(BASIC_ADD)
        for _ in range(3):
            core.step()
        result = core.step()
        micro = result.micro_step
        assert micro.phase == "writeback"
        assert core.phase is Phase.WRITEBACK
        assert "MEM[10]" in micro.touched
        bus = micro.bus_trace[1]
        assert (bus.control, bus.ab, bus.db) == ("MEM_WRITE", 10, 5)
        assert result.state.cpu.registers['AR'] == 10
        assert result.state.cpu.registers['DR'] == 5

    def test_load_bus(self):
        core = _loaded("LDI A, 12\nSTORE A, 20\nLOAD B, 20\nHLT")
        core.step()
        core.step()
        bus = core.step().micro_step.bus_trace[1]
        assert (bus.control, bus.ab, bus.db) == ("MEM_READ", 20, 12)

    def test_jz_taken_and_not_taken(self):
        core = _loaded(BRANCH.format(a=0))
        core.step()
        micro = core.step().micro_step
        assert micro.bus_trace[1].control == "BRANCH_TAKEN"
        assert core.cpu.PC == 4

        core = _loaded(BRANCH.format(a=1))
        core.step()
        micro = core.step().micro_step
        assert micro.bus_trace[1].control == "BRANCH_NOT_TAKEN"
        assert core.cpu.PC == 2

    def test_hlt_bus(self):
        core = _loaded("HLT")
        result = core.step()
        assert result.ok
        assert result.micro_step.phase == "halt"
        assert result.micro_step.bus_trace[1].control == "HALT"
        assert result.state.cpu.halted

    def test_store_into_program_image(self):
        """Overwriting an image cell does not change what executes."""
        core = _loaded("LDI A, 7\nSTORE A, 0\nJZ B, 4\nHLT\nHLT")
        state = core.run_until_halt()
        assert state.memory[0] == 7
        assert core.program[0] == Ldi('A', 7)


class TestFlags:
    def test_unsigned_wrap_sets_overflow(self):
        state = run_source("LDI A, -1\nLDI B, 1\nADD A, B\nHLT")
        assert state.cpu.registers['A'] == 0
        assert dict(state.cpu.flags) == {'SF': 0, 'OF': 1}

    def test_sign_without_overflow(self):
        state = run_source("LDI A, 32767\nLDI B, 1\nADD A, B\nHLT")
        assert state.cpu.registers['A'] == 0x8000
        assert dict(state.cpu.flags) == {'SF': 1, 'OF': 0}

    def test_sign_10_bit(self):
        state = run_source("LDI A, 511\nLDI B, 1\nADD A, B\nHLT", word_length=10)
        assert state.cpu.registers['A'] == 0x200
        assert state.cpu.flags['SF'] == 1

    def test_flags_only_written_by_add(self):
        state = run_source("LDI A, -1\nLDI B, 1\nADD A, B\nLDI A, -5\nHLT")
        assert state.cpu.flags['OF'] == 1
        assert state.cpu.flags['SF'] == 0


# ─── Halt and fall-through ─────────────────────

class TestHaltResults:
    def test_step_after_halt_changes_nothing(self):
        core = _loaded(BASIC_ADD)
        core.run_until_halt()
        before = core.get_state().to_dict()
        seen = []
        core.on_state_change(seen.append)

        result = core.step()
        assert result.ok is False
        assert result.reason is StepReason.HALTED
        assert result.micro_step is None
        assert core.get_state().to_dict() == before
        assert seen == []

    def test_fall_through(self):
        core = _loaded("LDI A, 1")
        assert core.step().ok
        result = core.step()
        assert result.ok is False
        assert result.reason is StepReason.NO_INSTRUCTION
        assert result.state.cpu.halted
        assert core.phase is Phase.HALT
        assert core.step().reason is StepReason.HALTED

    def test_step_with_nothing_loaded(self):
        result = _core().step()
        assert result.reason is StepReason.NO_INSTRUCTION

    def test_run_reports_fall_through_as_fault(self):
        core = _loaded("LDI A, 1\nLDI B, 2")
        with pytest.raises(ExecutionFault) as exc:
            core.run_until_halt()
        assert exc.value.reason is StepReason.NO_INSTRUCTION
        assert exc.value.state.cpu.registers['B'] == 2
        assert "no_instruction" in str(exc.value)

    def test_run_when_already_halted(self):
        core = _loaded(BASIC_ADD)
        core.run_until_halt()
        state = core.run_until_halt()
        assert state.cpu.cycle == 5

    def test_non_termination(self):
        core = _loaded("JMP 0")
        with pytest.raises(NonTermination) as exc:
            core.run_until_halt(10)
        assert exc.value.max_steps == 10
        assert core.cpu.cycle == 10
        assert not core.cpu.halted

    def test_exact_budget_is_enough(self):
        state = _loaded(BASIC_ADD).run_until_halt(5)
        assert state.cpu.halted


# ─── Loading ─────────────────────

class TestLoad:
    def test_initial_state(self):
        state = _core().get_state()
        assert state.meta["last_action"] == "Not started"
        assert state.meta["phase"] == "idle"
        assert state.cpu.registers['IR'] == "NOP"
        assert state.cpu.registers['SP'] == 63
        assert state.program == ()
        assert state.memory == (0,) * 64

    def test_load_returns_count_and_writes_image(self):
        core = _core()
        assert core.load_program(BASIC_ADD) == 5
        assert core.phase is Phase.READY
        assert list(core.memory.snapshot()[:5]) == encode_program(core.program, 16)
        assert core.memory.snapshot()[5:] == (0,) * 59

    def test_load_resets_machine(self):
        core = _loaded(BASIC_ADD)
        core.run_until_halt()
        core.load_program("HLT")
        assert core.cpu.A == 0
        assert not core.cpu.halted
        assert core.memory.read(10) == 0

    def test_full_memory_program(self):
        core = _core()
        assert core.load_program("HLT\n" * 64) == 64
        assert core.memory.snapshot() == (0xF000,) * 64

    def test_too_large_keeps_previous_program(self):
        core = _loaded(BASIC_ADD)
        core.run_until_halt()
        before = core.get_state().to_dict()
        with pytest.raises(ProgramTooLarge) as exc:
            core.load_program("HLT\n" * 65)
        assert exc.value.count == 65
        assert exc.value.limit == 64
        assert core.get_state().to_dict() == before

    def test_parse_error_keeps_previous_program(self):
        core = _loaded(BASIC_ADD)
        before = core.get_state().to_dict()
        with pytest.raises(ParseError):
            core.load_program("LDI A, 1\nBOGUS")
        assert core.get_state().to_dict() == before

    @pytest.mark.parametrize("bits,good,bad", [
        (16, (-32768, 32767), (-32769, 32768)),
        (10, (-512, 511), (-513, 512)),
    ])
    def test_immediate_range(self, bits, good, bad):
        core = _core(bits)
        for value in good:
            core.load_program(f"LDI A, {value}\nHLT")
        for value in bad:
            with pytest.raises(ProgramRangeError) as exc:
                core.load_program(f"LDI A, {value}\nHLT")
            assert exc.value.index == 0
            assert exc.value.value == value

    def test_address_range(self):
        core = _core()
        core.load_program("STORE A, 63\nHLT")
        with pytest.raises(ProgramRangeError) as exc:
            core.load_program("LDI A, 1\nSTORE A, 64\nHLT")
        assert exc.value.index == 1
        assert exc.value.value == 64
        assert str(exc.value).startswith("Instruction 1:")
        assert [str(ins) for ins in core.program] == ["STORE A, 63", "HLT"]

    def test_jump_target_range(self):
        with pytest.raises(ProgramRangeError):
            _core().load_program("JMP 99")
        with pytest.raises(ProgramRangeError):
            _core().load_program("JZ A, 64")

    def test_load_demo(self):
        core = _core()
        assert core.load_demo("demo3") == 6
        assert core.run_until_halt().cpu.registers['B'] == 7

    def test_unknown_demo(self):
        with pytest.raises(UnknownDemo):
            _core().load_demo("demo99")

    def test_tiny_program(self):
        core = _core()
        assert core.load_tiny_program() == 5
        assert core.run_until_halt().memory[10] == 5

    def test_reset_keeps_program(self):
        core = _loaded(BASIC_ADD)
        first = core.run_until_halt()
        core.reset()
        assert core.phase is Phase.IDLE
        assert core.last_action == "Reset"
        assert core.cpu.cycle == 0
        assert core.memory.read(10) == 0
        assert list(core.memory.snapshot()[:5]) == encode_program(core.program, 16)
        assert core.run_until_halt().to_dict()["cpu"] == first.to_dict()["cpu"]


# ─── Configuration changes ─────────────────────

class TestWordLengthSwitch:
    def test_switch_reencodes_image(self):
        core = _loaded(BASIC_ADD, 16)
        core.set_word_length(10)
        assert core.config.word_length == 10
        assert list(core.memory.snapshot()[:5]) == encode_program(core.program, 10)
        assert core.last_action == "Word length switched to 10-bit"

    def test_switch_remasks_registers_and_memory(self):
        core = _loaded("LDI A, -1\nSTORE A, 30\nHLT", 16)
        core.run_until_halt()
        core.set_word_length(10)
        assert core.cpu.A == 0x3FF
        assert core.memory.read(30) == 0x3FF

    def test_rejected_switch_changes_nothing(self):
        core = _loaded("LDI A, 600\nSTORE A, 12\nHLT", 16)
        core.run_until_halt()
        before = core.get_state().to_dict()
        seen = []
        core.on_state_change(seen.append)

        with pytest.raises(ProgramRangeError) as exc:
            core.set_word_length(10)
        assert exc.value.value == 600
        assert core.get_state().to_dict() == before
        assert core.cpu.word_length == 16
        assert core.memory.word_length == 16
        assert seen == []

    def test_unsupported_width(self):
        core = _loaded(BASIC_ADD)
        before = core.get_state().to_dict()
        with pytest.raises(UnsupportedWordLength):
            core.set_word_length(12)
        assert core.get_state().to_dict() == before

    def test_switch_back_and_forth(self):
        core = _loaded(BASIC_ADD, 16)
        core.set_word_length(10)
        core.set_word_length(16)
        assert list(core.memory.snapshot()[:5]) == encode_program(core.program, 16)
        assert core.run_until_halt().memory[10] == 5


class TestDisplayBase:
    def test_display_base_is_display_only(self):
        plain = _loaded(BASIC_ADD).run_until_halt()
        core = _loaded(BASIC_ADD)
        core.set_display_base("hex")
        state = core.run_until_halt()
        assert state.config["display_base"] == "hex"
        assert state.cpu.to_dict() == plain.cpu.to_dict()
        assert state.memory == plain.memory

    def test_unsupported_base(self):
        core = _core()
        seen = []
        core.on_state_change(seen.append)
        with pytest.raises(UnsupportedDisplayBase):
            core.set_display_base("octal")
        assert core.config.display_base == "bin"
        assert seen == []


# ─── Observers and snapshots ─────────────────────

class TestObservers:
    def test_events_in_order(self):
        core = _core()
        events = []
        core.on_state_change(lambda state: events.append(("state", state.cpu.cycle)))
        core.on_step(lambda state, micro: events.append(("step", micro.action)))

        core.load_program("LDI A, 4\nHLT")
        core.step()
        core.set_display_base("dec")
        core.set_word_length(10)
        core.reset()

        assert events == [
            ("state", 0),
            ("state", 1), ("step", "A <- 4"),
            ("state", 1),
            ("state", 1),
            ("state", 0),
        ]

    def test_listeners_called_in_registration_order(self):
        core = _core()
        order = []
        core.on_step(lambda s, m: order.append(1))
        core.on_step(lambda s, m: order.append(2))
        core.load_program("HLT")
        core.step()
        assert order == [1, 2]

    def test_decorator_form(self):
        core = _core()
        seen = []

        @core.on_state_change
        def listener(state):
            seen.append(state.meta["phase"])

        assert callable(listener)
        core.load_program("HLT")
        assert seen == ["ready"]

    def test_no_step_event_for_unsuccessful_step(self):
        core = _loaded("LDI A, 1")
        steps = []
        core.on_step(lambda s, m: steps.append(m))
        core.step()
        core.step()
        core.step()
        assert len(steps) == 1


class TestSnapshots:
    def test_mappings_are_read_only(self):
        state = _loaded(BASIC_ADD).get_state()
        with pytest.raises(TypeError):
            state.cpu.registers['A'] = 99
        with pytest.raises(TypeError):
            state.cpu.flags['SF'] = 1
        with pytest.raises(TypeError):
            state.config['word_length'] = 10
        with pytest.raises(TypeError):
            state.memory[0] = 1

    def test_dataclasses_frozen(self):
        state = _loaded(BASIC_ADD).get_state()
        with pytest.raises(dataclasses.FrozenInstanceError):
            state.cpu.halted = True
        with pytest.raises(dataclasses.FrozenInstanceError):
            state.cpu.buses.control = "X"

    def test_snapshot_does_not_track_live_state(self):
        core = _loaded(BASIC_ADD)
        before = core.get_state()
        core.run_until_halt()
        assert before.cpu.registers['A'] == 0
        assert before.memory[10] == 0
        assert before.cpu.halted is False

    def test_program_listing(self):
        state = _loaded("LDI A, 1\nHLT").get_state()
        assert state.program == ((0, Ldi('A', 1)), (1, Hlt()))
        assert state.to_dict()["program"] == [
            {"address": 0, "instruction": "LDI A, 1"},
            {"address": 1, "instruction": "HLT"},
        ]

    def test_micro_step_to_dict(self):
        micro = _loaded(BASIC_ADD).step().micro_step
        d = micro.to_dict()
        assert d["phase"] == "execute"
        assert d["action"] == "A <- 2"
        assert [bus["control"] for bus in d["bus_trace"]] == ["FETCH", "EXEC_LDI"]
        assert d["alu"] is None
