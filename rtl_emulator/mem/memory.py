"""
RTL Emulator - Word-Addressable Memory Bank

Memory is wired to the external bus only. Every micro-program access is
two phases:

  address phase   select(buses)   latch address ← external bus
  data phase      read(buses)     external bus ← cells[latch]
                  store(buses)    cells[latch] ← external bus

The latch is validated when it is set, so an out-of-range address
raises AddressFault before any data moves.

Memory map of a loaded program (size N, V variables):

  0 .. len(program)-1   executable words (prologue, code, -1)
  ...                   free; stack grows down from N-V
  N-V .. N-1            variables (first declared at N-1)

The same class backs the 2-cell status-selection memory used for
branch-free conditional jumps; there the address comes from a flag bit
on the internal bus.
"""

import logging
from typing import Iterable, List, Optional

from ..cpu.regs import Buses, DatapathFault

logger = logging.getLogger(__name__)

DEFAULT_MEMORY_SIZE = 256


class AddressFault(DatapathFault):
    """Address outside [0, size)."""

    def __init__(self, name: str, addr: int, size: int):
        self.addr = addr
        self.size = size
        super().__init__(f"{name}: address {addr} out of range [0, {size})")


class Memory:
    """Zero-initialised array of integer words with an address latch."""

    def __init__(self, size: int = DEFAULT_MEMORY_SIZE, bus: str = 'external',
                 name: str = 'MEM'):
        if size <= 0:
            raise ValueError(f"Memory size must be positive, got {size}")
        self.name = name
        self.size = size
        self.bus = bus
        self.cells: List[int] = [0] * size
        self.address: int = 0

    def _check(self, addr: int):
        if not 0 <= addr < self.size:
            raise AddressFault(self.name, addr, self.size)

    # --- Micro-program interface ---

    def select(self, buses: Buses):
        """Address phase: latch the address on the bus."""
        addr = buses[self.bus].get()
        self._check(addr)
        self.address = addr

    def read(self, buses: Buses):
        """Data phase: cells[latch] → bus"""
        buses[self.bus].put(self.cells[self.address])

    def store(self, buses: Buses):
        """Data phase: cells[latch] ← bus"""
        self.cells[self.address] = buses[self.bus].get()

    # --- Host interface (loading / inspection) ---

    def peek(self, addr: int) -> int:
        self._check(addr)
        return self.cells[addr]

    def poke(self, addr: int, value: int):
        self._check(addr)
        self.cells[addr] = value

    def load(self, words: Iterable[int], base: int = 0):
        """Copy a word sequence into memory starting at base.

        Raises ValueError if the words do not fit.
        """
        words = list(words)
        if base < 0 or base + len(words) > self.size:
            raise ValueError(
                f"Program of {len(words)} words does not fit in "
                f"{self.size}-word memory at base {base}")
        self.cells[base:base + len(words)] = words
        logger.debug("Loaded %d words into %s at %d", len(words), self.name, base)

    def clear(self):
        self.cells = [0] * self.size
        self.address = 0

    def dump(self, start: int = 0, length: Optional[int] = None, per_line: int = 8) -> str:
        """Decimal dump, one row of `per_line` words per line."""
        if length is None:
            length = self.size - start
        end = min(start + length, self.size)
        lines = []
        for row in range(start, end, per_line):
            chunk = self.cells[row:min(row + per_line, end)]
            lines.append(f"{row:04d}: " + ' '.join(f"{w:6d}" for w in chunk))
        return '\n'.join(lines)

    def __len__(self):
        return self.size
