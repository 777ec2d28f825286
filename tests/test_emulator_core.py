"""
RTL Emulator - Core Instruction Tests

Each test loads hand-written executable words at address 0, presets the
registers it needs and steps the machine. Opcode numbers are the
executable format ids:

  0 ADD_REG_REG   4 SUB_MEM_REG   8 MOVE_REG_REG  12 JMP  16 JEQ  20 RET
  1 ADD_MEM_REG   5 SUB_REG_MEM   9 MOVE_IMM_REG  13 JN   17 JGT
  2 ADD_REG_MEM   6 MOVE_MEM_REG 10 INC_REG       14 JZ   18 JLW
  3 SUB_REG_REG   7 MOVE_REG_MEM 11 INC_MEM       15 JNZ  19 CALL

Register ids: 0 IR, 1 REG0, 2 REG1, 3 REG2, 4 REG3, 5 PC, 6 STKTOP, 7 STKBOT
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from rtl_emulator.emu import Architecture, StopReason, Phase, parse_dxf
from rtl_emulator.cpu.regs import FLAG_Z, FLAG_N

REG0, REG1, REG2, REG3 = 1, 2, 3, 4


def _arch(words, memory_size=256):
    arch = Architecture(memory_size)
    arch.load_program(words)
    return arch


def _reg(arch, reg_id):
    return arch.register_list[reg_id]


# ═══════════════════════════════════════════════
# Test Group 1: Arithmetic
# ═══════════════════════════════════════════════

class TestArithmetic:

    def test_add_reg_reg(self):
        arch = _arch([0, REG0, REG1])
        arch.reg0.value, arch.reg1.value = 3, 4
        assert arch.step() is None
        assert arch.reg1.value == 7
        assert arch.reg0.value == 3
        assert arch.pc.value == 3
        assert not arch.flags.zero and not arch.flags.negative

    @pytest.mark.parametrize("a", [REG0, REG1, REG2, REG3])
    @pytest.mark.parametrize("b", [REG0, REG1, REG2, REG3])
    def test_add_sub_all_register_pairs(self, a, b):
        # same register: add doubles it, sub clears it
        cases = ((0, 10), (3, 0)) if a == b else ((0, 0), (3, 10))
        for opcode, expected in cases:
            arch = _arch([opcode, a, b])
            _reg(arch, b).value = -5
            _reg(arch, a).value = 5
            arch.step()
            assert _reg(arch, b).value == expected
            if a != b:
                assert _reg(arch, a).value == 5
            assert arch.flags.zero == (expected == 0)
            assert arch.flags.negative == (expected < 0)

    def test_add_mem_reg(self):
        arch = _arch([1, 100, REG1])
        arch.memory.poke(100, 10)
        arch.reg1.value = 5
        arch.step()
        assert arch.reg1.value == 15
        assert arch.memory.peek(100) == 10

    def test_add_reg_mem(self):
        arch = _arch([2, REG0, 100])
        arch.reg0.value = 3
        arch.memory.poke(100, 4)
        arch.step()
        assert arch.memory.peek(100) == 7
        assert arch.reg0.value == 3

    def test_sub_reg_reg_negative(self):
        arch = _arch([3, REG0, REG1])
        arch.reg0.value, arch.reg1.value = 3, 10
        arch.step()
        assert arch.reg1.value == -7
        assert arch.flags.negative
        assert not arch.flags.zero

    def test_sub_mem_reg(self):
        arch = _arch([4, 100, REG0])
        arch.memory.poke(100, 10)
        arch.reg0.value = 4
        arch.step()
        assert arch.reg0.value == 6

    def test_sub_reg_mem_zero(self):
        arch = _arch([5, REG0, 100])
        arch.reg0.value = 4
        arch.memory.poke(100, 4)
        arch.step()
        assert arch.memory.peek(100) == 0
        assert arch.flags.zero

    def test_inc_reg(self):
        arch = _arch([10, REG0])
        arch.reg0.value = -1
        arch.step()
        assert arch.reg0.value == 0
        assert arch.flags.zero
        assert arch.pc.value == 2

    def test_inc_mem(self):
        arch = _arch([11, 100])
        arch.memory.poke(100, 41)
        arch.step()
        assert arch.memory.peek(100) == 42
        assert not arch.flags.zero

    def test_words_are_not_truncated(self):
        arch = _arch([0, REG0, REG1])
        arch.reg0.value = 2 ** 40
        arch.reg1.value = 2 ** 40
        arch.step()
        assert arch.reg1.value == 2 ** 41


# ═══════════════════════════════════════════════
# Test Group 2: Data movement
# ═══════════════════════════════════════════════

class TestMove:

    def test_move_mem_reg(self):
        arch = _arch([6, 100, REG2])
        arch.memory.poke(100, 33)
        arch.step()
        assert arch.reg2.value == 33

    def test_move_reg_mem(self):
        arch = _arch([7, REG3, 100])
        arch.reg3.value = -2
        arch.step()
        assert arch.memory.peek(100) == -2

    def test_move_reg_reg(self):
        arch = _arch([8, REG0, REG1])
        arch.reg0.value = 9
        arch.step()
        assert arch.reg1.value == 9
        assert arch.reg0.value == 9

    def test_move_imm_reg(self):
        arch = _arch([9, 135, REG0])
        arch.step()
        assert arch.reg0.value == 135
        assert arch.pc.value == 3

    @pytest.mark.parametrize("value", [-8, 0, 1, 10, 99999])
    def test_move_imm_reg_any_value(self, value):
        arch = _arch([9, value, REG1])
        arch.step()
        assert arch.reg1.value == value

    def test_moves_do_not_touch_flags(self):
        arch = _arch([9, 0, REG0, 8, REG0, REG1, 6, 100, REG2, 7, REG2, 101])
        arch.flags.set_bit(FLAG_N, 1)
        for _ in range(4):
            arch.step()
        assert arch.flags.negative
        assert not arch.flags.zero

    def test_move_into_stack_registers(self):
        arch = _arch([9, 250, 7, 9, 250, 6])
        arch.step()
        arch.step()
        assert arch.stkbot.value == 250
        assert arch.stktop.value == 250


# ═══════════════════════════════════════════════
# Test Group 3: Jumps
# ═══════════════════════════════════════════════

class TestJumps:

    def test_jmp(self):
        arch = _arch([12, 50])
        arch.step()
        assert arch.pc.value == 50

    @pytest.mark.parametrize("opcode,flag,bit,taken", [
        (13, FLAG_N, 1, True),
        (13, FLAG_N, 0, False),
        (14, FLAG_Z, 1, True),
        (14, FLAG_Z, 0, False),
        (15, FLAG_Z, 0, True),
        (15, FLAG_Z, 1, False),
    ])
    def test_flag_jumps(self, opcode, flag, bit, taken):
        arch = _arch([opcode, 50])
        arch.flags.set_bit(flag, bit)
        arch.step()
        assert arch.pc.value == (50 if taken else 2)

    def test_jn_after_sub(self):
        arch = _arch([3, REG0, REG1, 13, 50])
        arch.reg0.value, arch.reg1.value = 3, 10
        arch.step()
        arch.step()
        assert arch.pc.value == 50

    @pytest.mark.parametrize("opcode,a,b,taken", [
        (16, 5, 5, True),
        (16, 5, 6, False),
        (17, 15, 10, True),
        (17, 10, 10, False),
        (17, 5, 10, False),
        (18, 5, 10, True),
        (18, 10, 10, False),
        (18, 15, 10, False),
        (17, -1, -2, True),
        (18, -2, -1, True),
    ])
    def test_compare_jumps(self, opcode, a, b, taken):
        arch = _arch([opcode, REG0, REG1, 50])
        arch.reg0.value, arch.reg1.value = a, b
        arch.step()
        assert arch.pc.value == (50 if taken else 4)
        assert arch.reg0.value == a and arch.reg1.value == b

    def test_compare_jumps_leave_flags_alone(self):
        arch = _arch([16, REG0, REG1, 50])
        arch.reg0.value, arch.reg1.value = 1, 2
        arch.flags.set_bit(FLAG_Z, 1)
        arch.step()
        assert arch.flags.zero
        assert not arch.flags.negative

    def test_status_memory_holds_both_candidates(self):
        arch = _arch([14, 50])
        arch.step()
        assert arch.status.cells == [2, 50]

    def test_jnz_swaps_slots(self):
        arch = _arch([15, 50])
        arch.step()
        assert arch.status.cells == [50, 2]


# ═══════════════════════════════════════════════
# Test Group 4: Call / Return
# ═══════════════════════════════════════════════

class TestSubroutines:

    def test_call(self):
        arch = _arch([19, 100])
        arch.stktop.value = 200
        arch.step()
        assert arch.stktop.value == 199
        assert arch.pc.value == 100
        assert arch.memory.peek(199) == 2

    def test_ret(self):
        arch = _arch([20])
        arch.stktop.value = 199
        arch.memory.poke(199, 115)
        arch.step()
        assert arch.pc.value == 115
        assert arch.stktop.value == 200

    def test_call_then_ret_round_trip(self):
        arch = _arch([19, 10, -1])
        arch.memory.poke(10, 20)
        arch.stktop.value = 200
        arch.step()
        arch.step()
        assert arch.pc.value == 2
        assert arch.stktop.value == 200
        assert arch.run() is StopReason.HALT

    def test_nested_calls(self):
        # 0: call 10 | 2: halt | 10: call 20 | 12: ret | 20: ret
        arch = _arch([19, 10, -1])
        arch.memory.load([19, 20, 20], base=10)
        arch.memory.poke(20, 20)
        arch.stktop.value = 100
        assert arch.run() is StopReason.HALT
        assert arch.stktop.value == 100
        assert arch.memory.peek(99) == 2
        assert arch.memory.peek(98) == 12

    def test_stack_is_unchecked(self):
        arch = _arch([19, 100])
        arch.stktop.value = 0
        assert arch.step() is StopReason.FAULT
        assert arch.stktop.value == -1


# ═══════════════════════════════════════════════
# Test Group 5: Halting
# ═══════════════════════════════════════════════

class TestHalting:

    def test_sentinel(self):
        arch = _arch([-1])
        assert arch.run() is StopReason.HALT
        assert arch.phase is Phase.HALTED
        assert arch.pc.value == 1

    @pytest.mark.parametrize("opcode", [21, 99, -2])
    def test_illegal_opcode(self, opcode):
        arch = _arch([opcode])
        assert arch.run() is StopReason.ILLEGAL

    def test_pc_out_of_range(self):
        arch = _arch([12, 4], memory_size=4)
        assert arch.run() is StopReason.OUT_OF_RANGE
        assert arch.pc.value == 4

    def test_bad_memory_operand_faults(self):
        arch = _arch([6, 999, REG0])
        assert arch.run() is StopReason.FAULT
        assert arch.reg0.value == 0

    def test_bad_register_operand_faults(self):
        arch = _arch([8, REG0, 9])
        assert arch.run() is StopReason.FAULT

    def test_operand_past_end_of_memory_faults(self):
        arch = _arch([12, 3, 0, 0], memory_size=4)
        assert arch.run() is StopReason.FAULT

    def test_halted_machine_stays_halted(self):
        arch = _arch([-1, 9, 5, REG0])
        assert arch.step() is StopReason.HALT
        assert arch.step() is StopReason.HALT
        assert arch.reg0.value == 0
        assert arch.pc.value == 1

    def test_timeout(self):
        arch = _arch([12, 0])
        assert arch.run(max_steps=10) is StopReason.TIMEOUT
        assert arch.steps == 10
        assert arch.phase is Phase.FETCH

    def test_empty_memory_executes_zero_opcode_to_end(self):
        # all-zero memory decodes as ADD_REG_REG %ir %ir until PC leaves memory
        arch = Architecture(9)
        assert arch.run() is StopReason.OUT_OF_RANGE


# ═══════════════════════════════════════════════
# Test Group 6: Loading, trace, reset
# ═══════════════════════════════════════════════

class TestMachine:

    def test_load_program_too_large(self):
        arch = Architecture(4)
        with pytest.raises(ValueError):
            arch.load_program([0] * 5)

    def test_parse_dxf(self):
        assert parse_dxf("9\n15\n1\n\n-1\n") == [9, 15, 1, -1]

    def test_parse_dxf_rejects_garbage(self):
        with pytest.raises(ValueError, match="Line 2"):
            parse_dxf("9\nabc\n")

    def test_load_dxf(self, tmp_path):
        path = tmp_path / "prog.dxf"
        path.write_text("9\n15\n1\n-1\n")
        arch = Architecture()
        arch.load_dxf(path)
        assert arch.run() is StopReason.HALT
        assert arch.reg0.value == 15

    def test_trace(self):
        arch = _arch([9, 5, REG0, -1])
        arch.enable_trace()
        arch.run()
        trace = arch.get_trace()
        assert "move 5 %reg0" in trace
        assert "halt" in trace
        arch.clear_trace()
        assert arch.get_trace() == ""

    def test_display(self):
        arch = _arch([9, 5, REG0, -1])
        arch.run()
        text = arch.display()
        assert "R0=5" in text
        assert "PC=4" in text
        assert "REG0" in arch.dump_registers()

    def test_reset(self):
        arch = _arch([9, 5, REG0, -1])
        arch.run()
        arch.reset()
        assert arch.reg0.value == 0
        assert arch.pc.value == 0
        assert arch.phase is Phase.FETCH
        assert arch.stop_reason is None
        assert arch.memory.peek(0) == 0

    def test_reload_starts_from_address_zero(self):
        arch = _arch([9, 15, REG0, 3, REG0, REG0, 9, 1, REG2, -1])
        assert arch.run() is StopReason.HALT
        assert arch.pc.value == 10 and arch.flags.zero
        arch.load_program([9, 7, REG1, -1])
        assert arch.pc.value == 0
        assert arch.steps == 0
        assert arch.memory.peek(9) == 0
        assert arch.run() is StopReason.HALT
        assert arch.reg1.value == 7
        assert arch.reg0.value == 0 and arch.reg2.value == 0
        assert not arch.flags.zero

    def test_failed_load_keeps_previous_program(self):
        arch = _arch([9, 5, REG0, -1], memory_size=8)
        with pytest.raises(ValueError):
            arch.load_program([0] * 9)
        assert arch.memory.peek(1) == 5
        assert arch.run() is StopReason.HALT
        assert arch.reg0.value == 5
