#!/usr/bin/env python3
"""
rtlkit - RTL Teaching Computer Toolkit
======================================

One CLI for everything:
    rtlkit asm     - Assemble .dsf source to a .dxf executable or listing
    rtlkit run     - Execute a .dxf executable
    rtlkit build   - Assemble a .dsf file and execute it
    rtlkit disasm  - Disassemble a .dxf executable

Usage:
    python rtlkit.py <command> [options]
    python rtlkit.py --help

Examples:
    python rtlkit.py asm examples/subroutines.dsf -o subroutines.dxf
    python rtlkit.py asm examples/subroutines.dsf --listing
    python rtlkit.py run subroutines.dxf --trace
    python rtlkit.py build examples/subroutines.dsf --max-steps 1000
    python rtlkit.py disasm subroutines.dxf
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Optional

__version__ = "1.0.0"

# Ensure our packages are importable when run from a checkout
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from rtl_assembler.assembler import Assembler, AssemblerError
from rtl_emulator.cpu.decoder import disassemble
from rtl_emulator.emu import Architecture, StopReason, read_dxf
from rtl_emulator.mem.memory import DEFAULT_MEMORY_SIZE


def setup_logging(verbose: int = 0, quiet: bool = False, log_file: Optional[str] = None):
    """Configure root logging from -v/-q/--log-file."""
    if quiet:
        level = logging.ERROR
    elif verbose == 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:  # -vv or more
        level = logging.DEBUG

    handlers = []
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
    handlers.append(console)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        handlers.append(file_handler)
        level = logging.DEBUG

    logging.basicConfig(level=level, handlers=handlers, force=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rtlkit",
        description="RTL teaching computer - assemble, run, disassemble",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""commands:
  asm        Assemble .dsf source to .dxf or listing
  run        Execute a .dxf executable
  build      Assemble then execute a .dsf file
  disasm     Disassemble a .dxf executable
""",
    )
    parser.add_argument("--version", action="version", version=f"rtlkit {__version__}")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Increase verbosity (-v info, -vv per-instruction debug)")
    parser.add_argument("-q", "--quiet", action="store_true", help="Errors only")
    parser.add_argument("--log-file", help="Also write a full debug log to this file")
    parser.add_argument("--memory-size", type=int, default=DEFAULT_MEMORY_SIZE,
                        help=f"Memory size in words (default: {DEFAULT_MEMORY_SIZE})")
    sub = parser.add_subparsers(dest="command", metavar="command")

    # ── asm ──────────────────────────────────────────────────────────────
    p_asm = sub.add_parser("asm", help="Assemble .dsf source to .dxf")
    p_asm.add_argument("input", help="Input .dsf file")
    p_asm.add_argument("-o", "--output", help="Output file (.dxf or .lst)")
    p_asm.add_argument("--listing", action="store_true", help="Print listing to stdout")

    # ── run / build ──────────────────────────────────────────────────────
    for name, help_text, input_help in (
            ("run", "Execute a .dxf executable", "Input .dxf file"),
            ("build", "Assemble then execute a .dsf file", "Input .dsf file")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("input", help=input_help)
        p.add_argument("--max-steps", type=int, default=None,
                       help="Stop with TIMEOUT after this many instructions")
        p.add_argument("--trace", action="store_true",
                       help="Print an instruction trace after the run")
        p.add_argument("--dump", action="store_true",
                       help="Print a memory dump after the run")

    # ── disasm ───────────────────────────────────────────────────────────
    p_dis = sub.add_parser("disasm", help="Disassemble a .dxf executable")
    p_dis.add_argument("input", help="Input .dxf file")

    return parser


# ═════════════════════════════════════════════════════════════════════════════
# COMMAND IMPLEMENTATIONS
# ═════════════════════════════════════════════════════════════════════════════

def cmd_asm(args) -> int:
    asm = Assembler(args.memory_size)
    asm.assemble(Path(args.input).read_text(encoding="utf-8"))

    if args.listing or not args.output:
        print(asm.get_listing())
        if not args.output:
            return 0

    out = args.output
    if os.path.splitext(out)[1].lower() == ".lst":
        Path(out).write_text(asm.get_listing() + "\n", encoding="utf-8")
    else:
        asm.write_dxf(out)
    print(f"Assembled {len(asm.executable)} words -> {out}")
    return 0


def _execute(args, words) -> int:
    arch = Architecture(args.memory_size)
    arch.load_program(words)
    arch.enable_trace(args.trace)
    reason = arch.run(max_steps=args.max_steps)

    if args.trace:
        print(arch.get_trace())
    print(f"Stopped: {reason.value} after {arch.steps} steps")
    print(arch.dump_registers())
    if args.dump:
        print(arch.memory.dump())
    return 0 if reason is StopReason.HALT else 2


def cmd_run(args) -> int:
    return _execute(args, read_dxf(args.input))


def cmd_build(args) -> int:
    asm = Assembler(args.memory_size)
    words = asm.assemble(Path(args.input).read_text(encoding="utf-8"))
    return _execute(args, words)


def cmd_disasm(args) -> int:
    for line in disassemble(read_dxf(args.input)):
        print(line)
    return 0


COMMANDS = {
    "asm": cmd_asm,
    "run": cmd_run,
    "build": cmd_build,
    "disasm": cmd_disasm,
}


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(0)

    setup_logging(args.verbose, args.quiet, args.log_file)

    try:
        code = COMMANDS[args.command](args)
    except AssemblerError as e:
        print(f"Assembly error: {e}", file=sys.stderr)
        sys.exit(1)
    except (OSError, ValueError) as e:
        print(f"Load error: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
