#!/usr/bin/env python3
"""
cpukit: Tiny CPU Toolkit
========================

One CLI for the emulator:
    cpukit run         Load a program and run it to halt
    cpukit step        Execute a program one step at a time
    cpukit demo        Run one catalog demo and check its outcome
    cpukit test        Run every catalog demo (the automated sweep)
    cpukit image       Print the encoded memory image of a program
    cpukit list-demos  List the demo catalog

Usage:
    python cpukit.py <command> [options]
    python cpukit.py <command> --help

Examples:
    python cpukit.py run add.asm --trace
    python cpukit.py run loop.asm --bits 10 --max-steps 1000 --watch 10
    python cpukit.py step add.asm --count 3
    python cpukit.py demo demo5 --bits 10
    python cpukit.py test --report results.json
    python cpukit.py image add.asm --base hex
"""

import argparse
import logging
import sys
from pathlib import Path

from tinycpu import __version__
from tinycpu.config import (
    ArchitectureConfig, UnsupportedConfiguration, SUPPORTED_WORD_LENGTHS,
    SUPPORTED_DISPLAY_BASES, DEFAULT_WORD_LENGTH, DEFAULT_DISPLAY_BASE, DEFAULT_MAX_STEPS,
)
from tinycpu.core import (
    SimulationCore, ProgramTooLarge, ProgramRangeError, NonTermination, ExecutionFault,
)
from tinycpu.cpu.regs import REGISTER_NAMES
from tinycpu.demos import DEMO_PROGRAMS, UnknownDemo, get_demo_by_id
from tinycpu.encoder import encode_instruction, encode_program
from tinycpu.log_setup import setup_logging
from tinycpu.mem.memory import OutOfRangeAddress
from tinycpu.parser import ParseError
from tinycpu.runner import TestRunner, check_expected

# Errors reported as one line + exit status 1
USER_ERRORS = (
    ParseError, ProgramTooLarge, ProgramRangeError, NonTermination, ExecutionFault,
    UnsupportedConfiguration, UnknownDemo, OutOfRangeAddress, OSError,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cpukit",
        description="Tiny CPU Toolkit: run, step, check and inspect tiny CPU programs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"cpukit {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Log every step to the console (DEBUG)")
    parser.add_argument("--log-dir", default=None,
                        help="Also write a DEBUG log file into this directory")
    sub = parser.add_subparsers(dest="command", metavar="command")

    def add_bits(p):
        p.add_argument("--bits", type=int, default=DEFAULT_WORD_LENGTH,
                       choices=SUPPORTED_WORD_LENGTHS,
                       help=f"Word length (default: {DEFAULT_WORD_LENGTH})")

    def add_base(p):
        p.add_argument("--base", default=DEFAULT_DISPLAY_BASE, choices=SUPPORTED_DISPLAY_BASES,
                       help=f"Display base (default: {DEFAULT_DISPLAY_BASE})")

    # ── run ──────────────────────────────────────────────────────────────
    p_run = sub.add_parser("run", help="Load a program and run it to halt")
    p_run.add_argument("input", help="Assembly source file ('-' for stdin)")
    add_bits(p_run)
    add_base(p_run)
    p_run.add_argument("--max-steps", type=int, default=DEFAULT_MAX_STEPS,
                       help=f"Step budget before giving up (default: {DEFAULT_MAX_STEPS})")
    p_run.add_argument("--trace", action="store_true", help="Print each micro-step")
    p_run.add_argument("--watch", type=int, action="append", default=[], metavar="ADDR",
                       help="Report every write to memory address ADDR (repeatable)")

    # ── step ─────────────────────────────────────────────────────────────
    p_step = sub.add_parser("step", help="Execute a program step by step")
    p_step.add_argument("input", help="Assembly source file ('-' for stdin)")
    add_bits(p_step)
    add_base(p_step)
    p_step.add_argument("--count", type=int, default=1, help="Number of steps (default: 1)")

    # ── demo ─────────────────────────────────────────────────────────────
    p_demo = sub.add_parser("demo", help="Run one catalog demo and check it")
    p_demo.add_argument("demo_id", help="Demo id, e.g. demo1 (see list-demos)")
    add_bits(p_demo)
    add_base(p_demo)

    # ── test ─────────────────────────────────────────────────────────────
    p_test = sub.add_parser("test", help="Run the whole demo catalog")
    add_bits(p_test)
    p_test.add_argument("--report", default=None, help="Export report to JSON file")

    # ── image ────────────────────────────────────────────────────────────
    p_img = sub.add_parser("image", help="Print the encoded memory image")
    p_img.add_argument("input", help="Assembly source file ('-' for stdin)")
    add_bits(p_img)
    add_base(p_img)

    # ── list-demos ───────────────────────────────────────────────────────
    sub.add_parser("list-demos", help="List the demo catalog")

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    console_level = logging.DEBUG if args.verbose else logging.WARNING
    setup_logging("tinycpu", console_level=console_level,
                  log_dir=Path(args.log_dir) if args.log_dir else None)

    commands = {
        "run": cmd_run,
        "step": cmd_step,
        "demo": cmd_demo,
        "test": cmd_test,
        "image": cmd_image,
        "list-demos": cmd_list_demos,
    }
    try:
        return commands[args.command](args)
    except USER_ERRORS as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


# ═════════════════════════════════════════════════════════════════════════
# Commands
# ═════════════════════════════════════════════════════════════════════════

def cmd_run(args):
    core = _make_core(args)
    core.load_program(_read_source(args.input))

    for addr in args.watch:
        core.memory.add_watchpoint(addr, _print_write(core))

    if args.trace:
        @core.on_step
        def _trace(state, micro):
            cycle = state.cpu.cycle
            print(f"  [{cycle:3d}] {state.cpu.registers['IR']:<5s} {micro.phase:<9s} {micro.action}")

    state = core.run_until_halt(args.max_steps)
    _print_state(state)
    return 0


def cmd_step(args):
    core = _make_core(args)
    core.load_program(_read_source(args.input))

    for _ in range(args.count):
        result = core.step()
        if not result.ok:
            print(f"  step: {result.reason.value}")
            break
        micro = result.micro_step
        print(f"  [{result.state.cpu.cycle:3d}] {micro.phase:<9s} {micro.action}")
        for bus in micro.bus_trace:
            print(f"        {bus.control:<16s} AB={_fmt_bus(bus.ab, core)} DB={_fmt_bus(bus.db, core)}")

    _print_state(core.get_state())
    return 0


def cmd_demo(args):
    demo = get_demo_by_id(args.demo_id)
    if demo is None:
        raise UnknownDemo(args.demo_id)

    core = _make_core(args)
    state = TestRunner(core).run_demo_by_id(demo.id)
    passed, details = check_expected(state, demo.expected, core.config.word_length)

    print(f"Demo check: {demo.name}")
    print(f"{'PASS' if passed else 'FAIL'} {' | '.join(details)}")
    _print_state(state)
    return 0 if passed else 1


def cmd_test(args):
    core = SimulationCore(ArchitectureConfig(word_length=args.bits))
    report = TestRunner(core).run_all(DEMO_PROGRAMS)
    print(report.format_summary())
    if args.report:
        report.export_report(args.report)
        print(f"\nReport exported to {args.report}")
    return 0 if report.all_passed else 1


def cmd_image(args):
    core = _make_core(args)
    core.load_program(_read_source(args.input))
    bits = core.config.word_length
    base = core.config.display_base

    print(f"{'ADDR':>4}  {'WORD':<{max(bits, 6)}}  SOURCE")
    print("-" * 40)
    for addr, ins in enumerate(core.program):
        word = encode_instruction(ins, bits)
        print(f"{addr:4d}  {format_word(word, bits, base):<{max(bits, 6)}}  {ins}")
    return 0


def cmd_list_demos(args):
    for demo in DEMO_PROGRAMS:
        print(f"{demo.id:<8s} {demo.name}")
    return 0


# ═════════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════════

def format_word(value: int, bits: int, base: str, signed: bool = False) -> str:
    """Render a word in bin (zero-padded), hex (0x-prefixed) or dec."""
    mask = (1 << bits) - 1
    masked = value & mask
    if base == "bin":
        return format(masked, f"0{bits}b")
    if base == "hex":
        return f"0x{masked:0{(bits + 3) // 4}X}"
    if signed and masked & (1 << (bits - 1)):
        return str(masked - (1 << bits))
    return str(masked)


def _make_core(args) -> SimulationCore:
    config = ArchitectureConfig(word_length=args.bits,
                                display_base=getattr(args, "base", DEFAULT_DISPLAY_BASE))
    return SimulationCore(config)


def _read_source(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def _fmt_bus(value, core) -> str:
    if value is None:
        return "-"
    return format_word(value, core.config.word_length, core.config.display_base)


def _print_write(core):
    def on_write(addr, old, new):
        bits, base = core.config.word_length, core.config.display_base
        print(f"  watch M[{addr}]: {format_word(old, bits, base)} -> {format_word(new, bits, base)}")
    return on_write


def _print_state(state):
    bits = state.config["word_length"]
    base = state.config["display_base"]
    regs = state.cpu.registers

    print(f"Phase: {state.meta['phase']}  Last: {state.meta['last_action']}")
    print(f"Cycle: {state.cpu.cycle}  Halted: {state.cpu.halted}  IR: {regs['IR']}")
    for name in REGISTER_NAMES:
        signed = name in ('A', 'B') and base == "dec"
        print(f"  {name:<2s} = {format_word(regs[name], bits, base, signed=signed)}")
    print(f"  SF={state.cpu.flags['SF']} OF={state.cpu.flags['OF']}")

    # cells that differ from the freshly loaded image (zero past the program)
    image = encode_program([ins for _, ins in state.program], bits)
    image += [0] * (len(state.memory) - len(image))
    data = [(addr, word) for addr, word in enumerate(state.memory) if word != image[addr]]
    if data:
        print("Memory:")
        for addr, word in data:
            print(f"  M[{addr:2d}] = {format_word(word, bits, base)}")


if __name__ == "__main__":
    sys.exit(main())
