"""
RTL Emulator - ALU

Two internal registers plus a private bus:

    reg 0 ──┐
            ├── alu bus ──  add / sub / inc  ──> reg 1
    reg 1 ──┘

  add:  reg1 ← reg0 + reg1
  sub:  reg1 ← reg0 - reg1
  inc:  reg1 ← reg1 + 1

The arithmetic operations only touch the private bus. Values enter and
leave the ALU through four transfer primitives:

  store(i) / read(i)                  external bus  ↔  reg i
  internal_store(i) / internal_read(i)  internal bus ↔ alu bus ↔ reg i

The control unit also uses the two registers as scratch space (PC
increment, building -1 for CALL), not only for arithmetic.

Flags are NOT set here. The control unit reads the result back onto a
system bus and updates the flags register from it.
"""

from .regs import Buses, Register

__all__ = ['ALU']


class ALU:
    """Arithmetic unit with two registers and a private bus."""

    def __init__(self):
        self.regs = (
            Register('ALU0', ext_bus='external', int_bus='alu'),
            Register('ALU1', ext_bus='external', int_bus='alu'),
        )

    def _reg(self, i: int) -> Register:
        return self.regs[0] if i == 0 else self.regs[1]

    # --- Arithmetic (private bus only) ---

    def add(self, buses: Buses):
        """reg1 ← reg0 + reg1"""
        self.regs[0].internal_read(buses)
        res = buses.alu.get()
        self.regs[1].internal_read(buses)
        res += buses.alu.get()
        buses.alu.put(res)
        self.regs[1].internal_store(buses)

    def sub(self, buses: Buses):
        """reg1 ← reg0 - reg1"""
        self.regs[0].internal_read(buses)
        res = buses.alu.get()
        self.regs[1].internal_read(buses)
        res -= buses.alu.get()
        buses.alu.put(res)
        self.regs[1].internal_store(buses)

    def inc(self, buses: Buses):
        """reg1 ← reg1 + 1 (in place)"""
        self.regs[1].internal_read(buses)
        buses.alu.put(buses.alu.get() + 1)
        self.regs[1].internal_store(buses)

    # --- Transfers ---

    def store(self, i: int, buses: Buses):
        """reg i ← external bus"""
        self._reg(i).store(buses)

    def read(self, i: int, buses: Buses):
        """reg i → external bus"""
        self._reg(i).read(buses)

    def internal_store(self, i: int, buses: Buses):
        """reg i ← alu bus ← internal bus"""
        buses.alu.put(buses.internal.get())
        self._reg(i).internal_store(buses)

    def internal_read(self, i: int, buses: Buses):
        """reg i → alu bus → internal bus"""
        self._reg(i).internal_read(buses)
        buses.internal.put(buses.alu.get())

    # --- Inspection (not for micro-programs) ---

    def peek(self, i: int) -> int:
        return self._reg(i).value

    def reset(self):
        for r in self.regs:
            r.value = 0
