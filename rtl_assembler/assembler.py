"""
Two-pass assembler for the RTL teaching computer.

Assembles .dsf source text into the .dxf executable word stream.

Input:  Source text (variables, labels, instructions, ';' comments)
Output: List of integer words, or .dxf text (one decimal word per line)

How the two passes and the link step work:
  Pass 1: Leading bare identifiers are variable declarations, in order,
          until the first line that is not one.
  Pass 2: Every remaining line is a label (`name:`, recorded at the current
          object-program length) or an instruction matched against the
          signature table. Operands stay symbolic: '&name' for memory
          references, '%name' for registers.
  Link:   Emit the stack prologue, append the object program resolving
          every symbolic token, and terminate with the -1 sentinel.

Memory layout produced (memory size N, V variables):

  0   MOVE_IMM_REG N-V %stkbot
  3   MOVE_IMM_REG N-V %stktop
  6   object program ...
      -1
  ...
  N-V .. N-1   variables; the first declared lives at N-1

Parse errors are collected over the whole source and raised together;
link errors are raised at the first unresolved symbol.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple, Union

from rtl_emulator.cpu.decoder import CommandID, SIGNATURES, MNEMONICS, instruction_size
from rtl_emulator.cpu.regs import register_id
from rtl_emulator.mem.memory import DEFAULT_MEMORY_SIZE

from .lexer import SourceLine, scan, is_variable_decl, match_label, classify_operand, IDENT_RE

__all__ = [
    'Assembler', 'AssemblerError', 'ParseError', 'LinkError',
    'ObjInstruction', 'ObjectProgram', 'PROLOGUE_LENGTH',
    'assemble', 'assemble_file', 'assemble_to_dxf',
]

logger = logging.getLogger(__name__)

# Two MOVE_IMM_REG instructions: StkBOT then StkTOP
PROLOGUE_LENGTH = 2 * instruction_size(CommandID.MOVE_IMM_REG)

HALT_WORD = -1


class AssemblerError(Exception):
    """Raised on assembly errors."""
    def __init__(self, message: str, line_num: int = 0, line_text: str = ""):
        self.line_num = line_num
        self.line_text = line_text
        super().__init__(f"Line {line_num}: {message}" if line_num else message)


class ParseError(AssemblerError):
    """Unrecognised statement or duplicate declaration."""
    def __init__(self, message: str, line_num: int = 0, line_text: str = ""):
        super().__init__(message, line_num, line_text)
        self.errors: List[ParseError] = [self]


class LinkError(AssemblerError):
    """Undeclared symbol, unknown register, or program too large."""
    def __init__(self, message: str, line_num: int = 0, line_text: str = "",
                 symbol: Optional[str] = None):
        super().__init__(message, line_num, line_text)
        self.symbol = symbol


# ──────────────────────────────────────────────
# Object program
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class ObjInstruction:
    """One instruction with unresolved operand tokens."""
    command: CommandID
    operands: Tuple[str, ...]
    line_num: int = 0
    raw: str = ""
    offset: int = 0     # word offset into the object program

    @property
    def size(self) -> int:
        return 1 + len(self.operands)

    def tokens(self) -> List[str]:
        return [str(int(self.command))] + list(self.operands)


@dataclass(frozen=True)
class ObjectProgram:
    """Output of the two passes; input to the linker."""
    variables: Tuple[str, ...] = ()
    labels: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    instructions: Tuple[ObjInstruction, ...] = ()

    @property
    def length(self) -> int:
        return sum(inst.size for inst in self.instructions)

    def tokens(self) -> List[str]:
        """Flat object token stream ('9', '15', '%reg0', '&end', ...)."""
        out: List[str] = []
        for inst in self.instructions:
            out.extend(inst.tokens())
        return out


# ──────────────────────────────────────────────
# The Assembler
# ──────────────────────────────────────────────

class Assembler:
    """Two-pass assembler + linker.

    Usage:
        asm = Assembler(memory_size=256)
        words = asm.assemble(source_text)
        dxf = asm.to_dxf()
    """

    def __init__(self, memory_size: int = DEFAULT_MEMORY_SIZE):
        self.memory_size = memory_size
        self.errors: List[ParseError] = []          # Accumulated parse errors
        self.program: Optional[ObjectProgram] = None
        self.executable: List[int] = []             # Linked output

    def assemble(self, source: str) -> List[int]:
        """Parse and link source text into executable words."""
        program = self.parse(source)
        executable = self.link(program)
        self.program, self.executable = program, executable
        logger.info("Assembled %d instructions, %d variables, %d labels -> %d words",
                    len(program.instructions), len(program.variables),
                    len(program.labels), len(executable))
        return executable

    # ── Passes ──

    def parse(self, source: str) -> ObjectProgram:
        """Run both passes. Raises ParseError carrying every error found."""
        self.errors = []
        lines = scan(source)

        variables, body_start = self._pass1(lines)
        labels, instructions = self._pass2(lines[body_start:], variables)

        if self.errors:
            first = self.errors[0]
            if len(self.errors) == 1:
                raise first
            err = ParseError("Parse errors:\n" + "\n".join(str(e) for e in self.errors))
            err.line_num = first.line_num
            err.line_text = first.line_text
            err.errors = list(self.errors)
            raise err

        return ObjectProgram(
            variables=tuple(variables),
            labels=MappingProxyType(labels),
            instructions=tuple(instructions),
        )

    def _pass1(self, lines: List[SourceLine]) -> Tuple[List[str], int]:
        """Pass 1: leading variable declarations. Returns (names, index of first body line)."""
        variables: List[str] = []
        seen = set()
        index = 0
        for index, line in enumerate(lines):
            if not is_variable_decl(line.text):
                break
            if line.text in seen:
                self._error(f"Duplicate variable '{line.text}'", line)
            else:
                seen.add(line.text)
                variables.append(line.text)
                logger.debug("Variable %s (line %d)", line.text, line.line_num)
        else:
            index = len(lines)
        return variables, index

    def _pass2(self, lines: List[SourceLine], variables: List[str]
               ) -> Tuple[Dict[str, int], List[ObjInstruction]]:
        """Pass 2: labels and instructions, emitting symbolic object code."""
        labels: Dict[str, int] = {}
        instructions: List[ObjInstruction] = []
        offset = 0
        var_names = set(variables)

        for line in lines:
            name = match_label(line.text)
            if name is not None:
                if name in var_names:
                    self._error(f"Label '{name}' already declared as a variable", line)
                elif name in labels:
                    self._error(f"Duplicate label '{name}'", line)
                else:
                    labels[name] = offset
                    logger.debug("Label %s at object offset %d", name, offset)
                continue

            inst = self._parse_instruction(line, offset)
            if inst is not None:
                instructions.append(inst)
                offset += inst.size

        return labels, instructions

    def _parse_instruction(self, line: SourceLine, offset: int) -> Optional[ObjInstruction]:
        parts = line.text.split()
        mnem = parts[0].lower()

        if mnem not in MNEMONICS:
            if len(parts) == 1 and IDENT_RE.match(parts[0]):
                self._error(f"Variable declaration '{parts[0]}' must precede "
                            f"labels and instructions", line)
            else:
                self._error(f"Cannot parse '{line.text}'", line)
            return None

        kinds = []
        tokens = []
        for tok in parts[1:]:
            classified = classify_operand(tok)
            if classified is None:
                self._error(f"Bad operand '{tok}' in '{line.text}'", line)
                return None
            kinds.append(classified[0])
            tokens.append(classified[1])

        kinds = tuple(kinds)
        for cmd, (sig_mnem, sig_kinds) in SIGNATURES.items():
            if sig_mnem == mnem and sig_kinds == kinds:
                return ObjInstruction(cmd, tuple(tokens), line.line_num, line.raw, offset)

        shape = ', '.join(kinds) if kinds else 'no operands'
        self._error(f"No form of '{mnem}' takes ({shape}): '{line.text}'", line)
        return None

    def _error(self, message: str, line: SourceLine):
        self.errors.append(ParseError(message, line.line_num, line.raw.strip()))

    # ── Link ──

    def variable_addresses(self, program: ObjectProgram) -> Dict[str, int]:
        return {name: self.memory_size - 1 - i for i, name in enumerate(program.variables)}

    def label_addresses(self, program: ObjectProgram) -> Dict[str, int]:
        return {name: off + PROLOGUE_LENGTH for name, off in program.labels.items()}

    def link(self, program: ObjectProgram) -> List[int]:
        """Resolve an object program into executable words (new list)."""
        base = self.memory_size - len(program.variables)
        symbols = self.label_addresses(program)
        symbols.update(self.variable_addresses(program))

        words = [
            int(CommandID.MOVE_IMM_REG), base, register_id('STKBOT'),
            int(CommandID.MOVE_IMM_REG), base, register_id('STKTOP'),
        ]
        for inst in program.instructions:
            words.append(int(inst.command))
            for tok in inst.operands:
                words.append(self._resolve(tok, symbols, inst))
        words.append(HALT_WORD)

        if len(words) > base:
            raise LinkError(f"Program of {len(words)} words does not fit below "
                            f"the variable area at {base}")
        return words

    @staticmethod
    def _resolve(tok: str, symbols: Dict[str, int], inst: ObjInstruction) -> int:
        if tok.startswith('&'):
            name = tok[1:]
            if name not in symbols:
                raise LinkError(f"Undeclared symbol '{name}'",
                                inst.line_num, inst.raw.strip(), symbol=name)
            return symbols[name]
        if tok.startswith('%'):
            name = tok[1:]
            try:
                return register_id(name)
            except KeyError:
                raise LinkError(f"Unknown register '%{name}'",
                                inst.line_num, inst.raw.strip(), symbol=name) from None
        return int(tok)

    # ── Output ──

    def to_dxf(self) -> str:
        """Executable as .dxf text: one decimal word per line."""
        return ''.join(f"{w}\n" for w in self.executable)

    def write_dxf(self, path: Union[str, Path]):
        Path(path).write_text(self.to_dxf())
        logger.info("Wrote %d words to %s", len(self.executable), path)

    def get_listing(self) -> str:
        """Return a human-readable listing showing address, words, and source."""
        if self.program is None:
            return ""
        program = self.program
        words = self.executable
        lines = []
        lines.append(f"{'ADDR':>6}  {'WORDS':<16}  SOURCE")
        lines.append("-" * 60)

        for name, addr in self.variable_addresses(program).items():
            lines.append(f"{addr:>6}  {'':16}  {name}")

        half = PROLOGUE_LENGTH // 2
        for i, reg in enumerate(('stkbot', 'stktop')):
            chunk = ' '.join(str(w) for w in words[i * half:(i + 1) * half])
            lines.append(f"{i * half:>6}  {chunk:<16}  <prologue: %{reg}>")

        labels_at: Dict[int, List[str]] = {}
        for name, off in program.labels.items():
            labels_at.setdefault(off, []).append(name)

        for inst in program.instructions:
            for name in labels_at.pop(inst.offset, []):
                lines.append(f"{'':>6}  {'':16}  {name}:")
            addr = inst.offset + PROLOGUE_LENGTH
            chunk = ' '.join(str(w) for w in words[addr:addr + inst.size])
            raw = inst.raw.strip()
            if len(raw) > 40:
                raw = raw[:40]
            lines.append(f"{addr:>6}  {chunk:<16}  {raw}")

        # Labels after the last instruction point at the sentinel
        for off in sorted(labels_at):
            for name in labels_at[off]:
                lines.append(f"{'':>6}  {'':16}  {name}:")
        lines.append(f"{len(words) - 1:>6}  {HALT_WORD:<16}  <end>")

        return '\n'.join(lines)


# ──────────────────────────────────────────────
# Convenience functions
# ──────────────────────────────────────────────

def assemble(source: str, memory_size: int = DEFAULT_MEMORY_SIZE) -> List[int]:
    """Assemble source text, return executable words."""
    return Assembler(memory_size).assemble(source)


def assemble_file(path: Union[str, Path], memory_size: int = DEFAULT_MEMORY_SIZE) -> List[int]:
    """Assemble a .dsf file, return executable words."""
    return assemble(Path(path).read_text(), memory_size)


def assemble_to_dxf(source: str, memory_size: int = DEFAULT_MEMORY_SIZE) -> str:
    """Assemble source text, return .dxf text."""
    asm = Assembler(memory_size)
    asm.assemble(source)
    return asm.to_dxf()
