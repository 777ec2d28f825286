"""
RTL Emulator - Opcode Table / Decoder / Disassembler

The numeric id of every instruction is its position in CommandID. The
ids ARE the executable (.dxf) format, so the declaration order below must
never change.

Operand kinds:
  REG   register id          (source: %name)
  MEM   memory address       (source: bare identifier - variable or label)
  IMM   signed immediate     (source: [+-]digits)

Every operand occupies one word following the opcode. A word value of
-1 in opcode position is the end-of-program sentinel.
"""

from enum import IntEnum
from typing import Dict, List, Optional, Sequence, Tuple

from .regs import REGISTER_NAMES

REG = 'reg'
MEM = 'mem'
IMM = 'imm'

HALT_SENTINEL = -1


class CommandID(IntEnum):
    ADD_REG_REG = 0    # add %<regA> %<regB>
    ADD_MEM_REG = 1    # add <mem> %<regA>
    ADD_REG_MEM = 2    # add %<regA> <mem>
    SUB_REG_REG = 3    # sub %<regA> %<regB>
    SUB_MEM_REG = 4    # sub <mem> %<regA>
    SUB_REG_MEM = 5    # sub %<regA> <mem>
    MOVE_MEM_REG = 6   # move <mem> %<regA>
    MOVE_REG_MEM = 7   # move %<regA> <mem>
    MOVE_REG_REG = 8   # move %<regA> %<regB>
    MOVE_IMM_REG = 9   # move <imm> %<regA>
    INC_REG = 10       # inc %<regA>
    INC_MEM = 11       # inc <mem>
    JMP = 12           # jmp <mem>
    JN = 13            # jn <mem>
    JZ = 14            # jz <mem>
    JNZ = 15           # jnz <mem>
    JEQ = 16           # jeq %<regA> %<regB> <mem>
    JGT = 17           # jgt %<regA> %<regB> <mem>
    JLW = 18           # jlw %<regA> %<regB> <mem>
    CALL = 19          # call <mem>
    RET = 20           # ret

    @classmethod
    def from_int(cls, value: int) -> Optional['CommandID']:
        """Decode an opcode word; None if it names no instruction."""
        try:
            return cls(value)
        except ValueError:
            return None


# ──────────────────────────────────────────────
# Instruction signatures
# ──────────────────────────────────────────────
# Format: CommandID -> (source mnemonic, operand kinds)
#
# A mnemonic may appear several times; the assembler tries the
# signatures in id order and picks the first whose operand kinds match.

SIGNATURES: Dict[CommandID, Tuple[str, Tuple[str, ...]]] = {
    CommandID.ADD_REG_REG:  ('add',  (REG, REG)),
    CommandID.ADD_MEM_REG:  ('add',  (MEM, REG)),
    CommandID.ADD_REG_MEM:  ('add',  (REG, MEM)),
    CommandID.SUB_REG_REG:  ('sub',  (REG, REG)),
    CommandID.SUB_MEM_REG:  ('sub',  (MEM, REG)),
    CommandID.SUB_REG_MEM:  ('sub',  (REG, MEM)),
    CommandID.MOVE_MEM_REG: ('move', (MEM, REG)),
    CommandID.MOVE_REG_MEM: ('move', (REG, MEM)),
    CommandID.MOVE_REG_REG: ('move', (REG, REG)),
    CommandID.MOVE_IMM_REG: ('move', (IMM, REG)),
    CommandID.INC_REG:      ('inc',  (REG,)),
    CommandID.INC_MEM:      ('inc',  (MEM,)),
    CommandID.JMP:          ('jmp',  (MEM,)),
    CommandID.JN:           ('jn',   (MEM,)),
    CommandID.JZ:           ('jz',   (MEM,)),
    CommandID.JNZ:          ('jnz',  (MEM,)),
    CommandID.JEQ:          ('jeq',  (REG, REG, MEM)),
    CommandID.JGT:          ('jgt',  (REG, REG, MEM)),
    CommandID.JLW:          ('jlw',  (REG, REG, MEM)),
    CommandID.CALL:         ('call', (MEM,)),
    CommandID.RET:          ('ret',  ()),
}

MNEMONICS = frozenset(mnem for mnem, _ in SIGNATURES.values())


def instruction_size(cmd: CommandID) -> int:
    """Words occupied by the instruction, opcode included."""
    return 1 + len(SIGNATURES[cmd][1])


# ──────────────────────────────────────────────
# Disassembler
# ──────────────────────────────────────────────

def _format_operand(kind: str, word: int) -> str:
    if kind == REG:
        if 0 <= word < len(REGISTER_NAMES):
            return '%' + REGISTER_NAMES[word].lower()
        return f'%?{word}'
    if kind == MEM:
        return f'[{word}]'
    return str(word)


def disassemble_one(words: Sequence[int], addr: int) -> Tuple[str, int]:
    """Disassemble the instruction at addr.

    Returns (text, size). Unknown opcodes and truncated instructions are
    rendered as a raw '.word'.
    """
    op = words[addr]
    if op == HALT_SENTINEL:
        return 'halt', 1
    cmd = CommandID.from_int(op)
    if cmd is None:
        return f'.word {op}', 1
    mnem, kinds = SIGNATURES[cmd]
    size = 1 + len(kinds)
    if addr + size > len(words):
        return f'.word {op}', 1
    operands = [_format_operand(k, words[addr + 1 + i]) for i, k in enumerate(kinds)]
    return ' '.join([mnem] + operands), size


def disassemble(words: Sequence[int], start: int = 0, end: Optional[int] = None) -> List[str]:
    """Disassemble a word range into 'AAAA: words  text' lines.

    Stops after the first halt sentinel.
    """
    if end is None:
        end = len(words)
    lines = []
    addr = start
    while addr < end:
        text, size = disassemble_one(words, addr)
        raw = ' '.join(str(w) for w in words[addr:addr + size])
        lines.append(f'{addr:04d}: {raw:<16}  {text}')
        if words[addr] == HALT_SENTINEL:
            break
        addr += size
    return lines
