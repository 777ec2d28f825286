"""
RTL Emulator - Control Unit / Machine Aggregate

Integrates:
  - Buses: internal, external (bridged) and the ALU's private bus (regs.py)
  - Registers: IR, REG0-REG3, PC, STKTOP, STKBOT + 2-bit flags (regs.py)
  - ALU (alu.py)
  - Demultiplexer for runtime register selection (regs.py)
  - Main memory + 2-cell status-selection memory (memory.py)
  - Opcode table (decoder.py)

Execution model (one step):
  1. FETCH           PC out of range → OUT_OF_RANGE
                     IR ← mem[PC] over the buses; PC ← PC + 1 through the ALU
  2. DECODE_EXECUTE  IR == -1 → HALT; unknown opcode → ILLEGAL
                     otherwise run the instruction's micro-program; every
                     operand word is read at PC and PC incremented before
                     the next one is read

Register values move only by a put on one bus followed by a get on the
same bus, and every add/subtract/increment is done by the ALU. Operand
words are held by the handler between their fetch and their use.

Termination reasons:
  - HALT:          -1 sentinel executed
  - ILLEGAL:       opcode outside the instruction set
  - OUT_OF_RANGE:  PC outside memory at fetch
  - FAULT:         memory address or register id out of range mid-instruction
  - TIMEOUT:       max_steps exhausted

Runtime faults never propagate; the machine stops in whatever state the
partially executed instruction left it in.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from .cpu.regs import (
    Buses, Register, FlagsRegister, Demux, DatapathFault,
    REGISTER_NAMES, FLAG_Z, FLAG_N, status_bits,
)
from .cpu.alu import ALU
from .cpu.decoder import CommandID, HALT_SENTINEL, disassemble_one
from .mem.memory import Memory, DEFAULT_MEMORY_SIZE

logger = logging.getLogger(__name__)


class StopReason(Enum):
    HALT = 'HALT'
    ILLEGAL = 'ILLEGAL'
    OUT_OF_RANGE = 'OUT_OF_RANGE'
    FAULT = 'FAULT'
    TIMEOUT = 'TIMEOUT'


class Phase(Enum):
    FETCH = 'FETCH'
    DECODE_EXECUTE = 'DECODE_EXECUTE'
    HALTED = 'HALTED'


def parse_dxf(text: str) -> List[int]:
    """Parse executable text: one decimal integer per line, blanks ignored.

    Raises ValueError naming the first line that is not an integer.
    """
    words = []
    for line_num, line in enumerate(text.splitlines(), 1):
        line = line.strip()
        if not line:
            continue
        try:
            words.append(int(line))
        except ValueError:
            raise ValueError(f"Line {line_num}: not an integer word: {line!r}") from None
    return words


def read_dxf(path: Union[str, Path]) -> List[int]:
    return parse_dxf(Path(path).read_text())


class Architecture:
    """RTL teaching computer.

    Usage:
        arch = Architecture()
        arch.load_program(assemble(source))
        reason = arch.run()
        print(arch.display())
    """

    def __init__(self, memory_size: int = DEFAULT_MEMORY_SIZE):
        self.memory_size = memory_size
        self.buses = Buses()

        self.ir = Register('IR')
        self.reg0 = Register('REG0')
        self.reg1 = Register('REG1')
        self.reg2 = Register('REG2')
        self.reg3 = Register('REG3')
        self.pc = Register('PC')
        self.stktop = Register('STKTOP')
        self.stkbot = Register('STKBOT')

        # Ordered by executable register id
        self.register_list: List[Register] = [
            self.ir, self.reg0, self.reg1, self.reg2, self.reg3,
            self.pc, self.stktop, self.stkbot,
        ]

        self.flags = FlagsRegister()
        self.alu = ALU()
        self.demux = Demux(len(self.register_list))
        self.memory = Memory(memory_size, bus='external', name='MEM')
        self.status = Memory(2, bus='internal', name='STATUS')

        self.phase = Phase.FETCH
        self.stop_reason: Optional[StopReason] = None
        self.steps = 0

        self._trace = False
        self._trace_output: List[str] = []

        self._dispatch = self._build_dispatch()

    # ══════════════════════════════════════════════
    # Loading
    # ══════════════════════════════════════════════

    def load_program(self, words: Sequence[int]):
        """Load an executable word stream at address 0 and arm the machine.

        The machine is reset first, so execution starts at address 0 with
        clear registers, flags and memory. Raises ValueError if the program
        is larger than memory; the machine is left untouched in that case.
        """
        words = list(words)
        if len(words) > self.memory_size:
            raise ValueError(f"Program of {len(words)} words does not fit in "
                             f"{self.memory_size}-word memory")
        self.reset()
        self.memory.load(words, base=0)
        logger.info("Loaded %d-word program into %d-word memory",
                    len(words), self.memory_size)

    def load_dxf(self, path: Union[str, Path]):
        """Load a .dxf executable file."""
        self.load_program(read_dxf(path))

    # ══════════════════════════════════════════════
    # Execution
    # ══════════════════════════════════════════════

    def fetch(self) -> Optional[StopReason]:
        """IR ← mem[PC]; PC ← PC + 1."""
        pc = self.pc.value
        if not 0 <= pc < self.memory_size:
            return StopReason.OUT_OF_RANGE
        self.pc.internal_read(self.buses)
        self.buses.to_external()
        self.memory.select(self.buses)
        self.memory.read(self.buses)
        self.buses.to_internal()
        self.ir.internal_store(self.buses)
        self._pc_inc()
        return None

    def decode_execute(self) -> Optional[StopReason]:
        self.ir.internal_read(self.buses)
        opcode = self.buses.internal.get()
        if opcode == HALT_SENTINEL:
            return StopReason.HALT
        cmd = CommandID.from_int(opcode)
        if cmd is None:
            return StopReason.ILLEGAL
        self._dispatch[cmd]()
        return None

    def step(self) -> Optional[StopReason]:
        """Execute one fetch + decode/execute. Returns StopReason if stopped, else None."""
        if self.phase is Phase.HALTED:
            return self.stop_reason

        pc = self.pc.value
        self.phase = Phase.FETCH
        reason = self.fetch()
        if reason is None:
            if self._trace or logger.isEnabledFor(logging.DEBUG):
                self._log_instruction(pc)
            self.phase = Phase.DECODE_EXECUTE
            try:
                reason = self.decode_execute()
            except DatapathFault as e:
                logger.warning("Datapath fault at %d: %s", pc, e)
                if self._trace:
                    self._trace_output.append(f"  FAULT: {e}")
                reason = StopReason.FAULT

        self.steps += 1
        if reason is not None:
            self._halt(reason, pc)
            return reason
        self.phase = Phase.FETCH
        return None

    def run(self, max_steps: Optional[int] = None) -> StopReason:
        """Run until the machine stops.

        Args:
            max_steps: Maximum instructions before TIMEOUT (None = unbounded)

        Returns:
            StopReason indicating why execution stopped
        """
        executed = 0
        while max_steps is None or executed < max_steps:
            reason = self.step()
            if reason is not None:
                return reason
            executed += 1
        logger.info("Stopped after %d steps: %s", executed, StopReason.TIMEOUT.value)
        return StopReason.TIMEOUT

    def _halt(self, reason: StopReason, pc: int):
        self.phase = Phase.HALTED
        self.stop_reason = reason
        logger.info("Halted (%s) at %d after %d steps", reason.value, pc, self.steps)

    def _log_instruction(self, pc: int):
        text, _ = disassemble_one(self.memory.cells, pc)
        line = f"{pc:04d}: {text:<24} {self.display()}"
        logger.debug(line)
        if self._trace:
            self._trace_output.append(line)

    # ══════════════════════════════════════════════
    # Micro-operation helpers
    # ══════════════════════════════════════════════

    def _pc_inc(self):
        """PC ← PC + 1 through ALU register 1."""
        self.pc.internal_read(self.buses)
        self.alu.internal_store(1, self.buses)
        self.alu.inc(self.buses)
        self.alu.internal_read(1, self.buses)
        self.pc.internal_store(self.buses)

    def _fetch_operand(self, park: Optional[Register] = None) -> int:
        """Read the word at PC, then PC ← PC + 1.

        If park is given, the word is also latched into that register
        before PC moves on.
        """
        self.pc.internal_read(self.buses)
        self.buses.to_external()
        self.memory.select(self.buses)
        self.memory.read(self.buses)
        self.buses.to_internal()
        word = self.buses.internal.get()
        if park is not None:
            park.internal_store(self.buses)
        self._pc_inc()
        return word

    def _reg(self, reg_id: int) -> Register:
        """Drive the demux with a register id; returns the selected register."""
        self.demux.set_value(reg_id)
        return self.register_list[self.demux.selected()]

    def _memory_select(self, addr: int):
        """Address phase: latch addr into main memory via the internal bus."""
        self.buses.internal.put(addr)
        self.buses.to_external()
        self.memory.select(self.buses)

    def _set_status_flags(self):
        """Flags ← Z/N of ALU register 1."""
        self.alu.internal_read(1, self.buses)
        self.flags.update_from_bus(self.buses)

    def _compare_bit(self, pos: int):
        """Place one comparator bit of ALU register 1 on the internal bus.

        Used by the compare-and-jump instructions; the flags register is
        left untouched.
        """
        self.alu.internal_read(1, self.buses)
        bits = status_bits(self.buses.internal.get())
        self.buses.internal.put(bits[pos])

    def _select_branch(self, place_bit: Callable[[], None], target: int,
                       invert: bool = False):
        """PC ← status[bit] with status = [fall-through, target].

        place_bit puts the selecting bit on the internal bus. With invert
        the slots are swapped, so a clear bit takes the jump.
        """
        fall_slot, taken_slot = (1, 0) if invert else (0, 1)

        self.buses.internal.put(fall_slot)
        self.status.select(self.buses)
        self.pc.internal_read(self.buses)
        self.status.store(self.buses)

        self.buses.internal.put(taken_slot)
        self.status.select(self.buses)
        self.buses.internal.put(target)
        self.status.store(self.buses)

        place_bit()
        self.status.select(self.buses)
        self.status.read(self.buses)
        self.pc.internal_store(self.buses)

    # --- Shared arithmetic shapes ---

    def _arith_reg_reg(self, op: Callable[[Buses], None]):
        """regB ← regA op regB"""
        a = self._fetch_operand()
        b = self._fetch_operand()
        self._reg(a).internal_read(self.buses)
        self.alu.internal_store(0, self.buses)
        self._reg(b).internal_read(self.buses)
        self.alu.internal_store(1, self.buses)
        op(self.buses)
        self._set_status_flags()
        self._reg(b).internal_store(self.buses)

    def _arith_mem_reg(self, op: Callable[[Buses], None]):
        """regA ← mem op regA"""
        addr = self._fetch_operand()
        a = self._fetch_operand()
        self._memory_select(addr)
        self.memory.read(self.buses)
        self.alu.store(0, self.buses)
        self._reg(a).internal_read(self.buses)
        self.alu.internal_store(1, self.buses)
        op(self.buses)
        self._set_status_flags()
        self._reg(a).internal_store(self.buses)

    def _arith_reg_mem(self, op: Callable[[Buses], None]):
        """mem ← regA op mem"""
        a = self._fetch_operand()
        addr = self._fetch_operand()
        self._reg(a).internal_read(self.buses)
        self.alu.internal_store(0, self.buses)
        self._memory_select(addr)
        self.memory.read(self.buses)
        self.alu.store(1, self.buses)
        op(self.buses)
        self._set_status_flags()
        self.alu.read(1, self.buses)
        self.memory.store(self.buses)

    # ══════════════════════════════════════════════
    # Instruction handlers
    # ══════════════════════════════════════════════

    def _build_dispatch(self) -> dict:
        return {
            # ── Arithmetic ──
            CommandID.ADD_REG_REG:  self._op_add_reg_reg,
            CommandID.ADD_MEM_REG:  self._op_add_mem_reg,
            CommandID.ADD_REG_MEM:  self._op_add_reg_mem,
            CommandID.SUB_REG_REG:  self._op_sub_reg_reg,
            CommandID.SUB_MEM_REG:  self._op_sub_mem_reg,
            CommandID.SUB_REG_MEM:  self._op_sub_reg_mem,
            CommandID.INC_REG:      self._op_inc_reg,
            CommandID.INC_MEM:      self._op_inc_mem,
            # ── Data movement ──
            CommandID.MOVE_MEM_REG: self._op_move_mem_reg,
            CommandID.MOVE_REG_MEM: self._op_move_reg_mem,
            CommandID.MOVE_REG_REG: self._op_move_reg_reg,
            CommandID.MOVE_IMM_REG: self._op_move_imm_reg,
            # ── Jumps ──
            CommandID.JMP:          self._op_jmp,
            CommandID.JN:           self._op_jn,
            CommandID.JZ:           self._op_jz,
            CommandID.JNZ:          self._op_jnz,
            CommandID.JEQ:          self._op_jeq,
            CommandID.JGT:          self._op_jgt,
            CommandID.JLW:          self._op_jlw,
            # ── Subroutines ──
            CommandID.CALL:         self._op_call,
            CommandID.RET:          self._op_ret,
        }

    # ── Arithmetic handlers ──

    def _op_add_reg_reg(self):
        self._arith_reg_reg(self.alu.add)

    def _op_add_mem_reg(self):
        self._arith_mem_reg(self.alu.add)

    def _op_add_reg_mem(self):
        self._arith_reg_mem(self.alu.add)

    def _op_sub_reg_reg(self):
        self._arith_reg_reg(self.alu.sub)

    def _op_sub_mem_reg(self):
        self._arith_mem_reg(self.alu.sub)

    def _op_sub_reg_mem(self):
        self._arith_reg_mem(self.alu.sub)

    def _op_inc_reg(self):
        a = self._fetch_operand()
        self._reg(a).internal_read(self.buses)
        self.alu.internal_store(1, self.buses)
        self.alu.inc(self.buses)
        self._set_status_flags()
        self._reg(a).internal_store(self.buses)

    def _op_inc_mem(self):
        addr = self._fetch_operand()
        self._memory_select(addr)
        self.memory.read(self.buses)
        self.alu.store(1, self.buses)
        self.alu.inc(self.buses)
        self._set_status_flags()
        self.alu.read(1, self.buses)
        self.memory.store(self.buses)

    # ── Data movement handlers ──

    def _op_move_mem_reg(self):
        addr = self._fetch_operand()
        a = self._fetch_operand()
        self._memory_select(addr)
        self.memory.read(self.buses)
        self.buses.to_internal()
        self._reg(a).internal_store(self.buses)

    def _op_move_reg_mem(self):
        a = self._fetch_operand()
        addr = self._fetch_operand()
        self._memory_select(addr)
        self._reg(a).internal_read(self.buses)
        self.buses.to_external()
        self.memory.store(self.buses)

    def _op_move_reg_reg(self):
        a = self._fetch_operand()
        b = self._fetch_operand()
        self._reg(a).internal_read(self.buses)
        self._reg(b).internal_store(self.buses)

    def _op_move_imm_reg(self):
        # The immediate waits in IR while the register id is fetched
        self._fetch_operand(park=self.ir)
        a = self._fetch_operand()
        self.ir.internal_read(self.buses)
        self._reg(a).internal_store(self.buses)

    # ── Jump handlers ──

    def _op_jmp(self):
        target = self._fetch_operand()
        self.buses.internal.put(target)
        self.pc.internal_store(self.buses)

    def _op_jn(self):
        target = self._fetch_operand()
        self._select_branch(lambda: self.flags.read_bit(FLAG_N, self.buses), target)

    def _op_jz(self):
        target = self._fetch_operand()
        self._select_branch(lambda: self.flags.read_bit(FLAG_Z, self.buses), target)

    def _op_jnz(self):
        target = self._fetch_operand()
        self._select_branch(lambda: self.flags.read_bit(FLAG_Z, self.buses), target,
                            invert=True)

    def _compare(self, first: int, second: int):
        """ALU register 1 ← first - second (flags untouched)."""
        self._reg(first).internal_read(self.buses)
        self.alu.internal_store(0, self.buses)
        self._reg(second).internal_read(self.buses)
        self.alu.internal_store(1, self.buses)
        self.alu.sub(self.buses)

    def _op_jeq(self):
        a = self._fetch_operand()
        b = self._fetch_operand()
        target = self._fetch_operand()
        self._compare(a, b)
        self._select_branch(lambda: self._compare_bit(FLAG_Z), target)

    def _op_jgt(self):
        # regA > regB  <=>  regB - regA < 0
        a = self._fetch_operand()
        b = self._fetch_operand()
        target = self._fetch_operand()
        self._compare(b, a)
        self._select_branch(lambda: self._compare_bit(FLAG_N), target)

    def _op_jlw(self):
        a = self._fetch_operand()
        b = self._fetch_operand()
        target = self._fetch_operand()
        self._compare(a, b)
        self._select_branch(lambda: self._compare_bit(FLAG_N), target)

    # ── Subroutine handlers ──

    def _op_call(self):
        target = self._fetch_operand()

        # StkTOP ← StkTOP + (t - (t + 1))
        self.stktop.internal_read(self.buses)
        self.alu.internal_store(0, self.buses)
        self.alu.internal_store(1, self.buses)
        self.alu.inc(self.buses)
        self.alu.sub(self.buses)
        self.alu.add(self.buses)
        self.alu.internal_read(1, self.buses)
        self.stktop.internal_store(self.buses)

        # mem[StkTOP] ← return address
        self.stktop.internal_read(self.buses)
        self.buses.to_external()
        self.memory.select(self.buses)
        self.pc.internal_read(self.buses)
        self.buses.to_external()
        self.memory.store(self.buses)

        self.buses.internal.put(target)
        self.pc.internal_store(self.buses)

    def _op_ret(self):
        self.stktop.internal_read(self.buses)
        self.buses.to_external()
        self.memory.select(self.buses)
        self.memory.read(self.buses)
        self.buses.to_internal()
        self.pc.internal_store(self.buses)

        self.stktop.internal_read(self.buses)
        self.alu.internal_store(1, self.buses)
        self.alu.inc(self.buses)
        self.alu.internal_read(1, self.buses)
        self.stktop.internal_store(self.buses)

    # ══════════════════════════════════════════════
    # Trace / Debug
    # ══════════════════════════════════════════════

    def display(self) -> str:
        """One-line register/flag snapshot."""
        flag_str = ('Z' if self.flags.zero else '.') + ('N' if self.flags.negative else '.')
        return (f"PC={self.pc.value} IR={self.ir.value} "
                f"R0={self.reg0.value} R1={self.reg1.value} "
                f"R2={self.reg2.value} R3={self.reg3.value} "
                f"TOP={self.stktop.value} BOT={self.stkbot.value} [{flag_str}]")

    def dump_registers(self) -> str:
        """Multi-line register file dump in executable id order."""
        lines = [f"  {i} {name:<7} {reg.value}"
                 for i, (name, reg) in enumerate(zip(REGISTER_NAMES, self.register_list))]
        lines.append(f"    FLAGS   Z={self.flags.get_bit(FLAG_Z)} N={self.flags.get_bit(FLAG_N)}")
        return '\n'.join(lines)

    def enable_trace(self, enable: bool = True):
        """Enable instruction trace recording."""
        self._trace = enable

    def get_trace(self) -> str:
        return '\n'.join(self._trace_output)

    def clear_trace(self):
        self._trace_output.clear()

    def reset(self):
        """Full machine reset: registers, flags, ALU, buses, both memories."""
        for reg in self.register_list:
            reg.value = 0
        self.flags.reset()
        self.alu.reset()
        self.demux.set_value(0)
        self.buses.reset()
        self.memory.clear()
        self.status.clear()
        self.phase = Phase.FETCH
        self.stop_reason = None
        self.steps = 0
        self._trace_output.clear()
