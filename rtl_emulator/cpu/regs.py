"""
RTL Emulator - Buses, Registers, Flags Register, Demultiplexer

Every value movement in the datapath is a bus transfer:

    source.read(buses)   →  bus.put(value)
    dest.store(buses)    →  value = bus.get()

A bus holds exactly one value and is overwritten on every put, so two
adjacent transfers that reuse the same bus must run in the order the
micro-program lists them.

Wiring is by bus NAME, not by object reference. The machine owns a single
Buses aggregate and passes it into every transfer; a register only
remembers which named bus is its "external" side and which is its
"internal" side:

    Register      external    internal
    PC/IR/REGn    internal    internal
    STKTOP/BOT    internal    internal
    ALU reg 0/1   external    alu        (see alu.py)

Register ids used by the executable format (demux selection order):
    0 IR   1 REG0   2 REG1   3 REG2   4 REG3   5 PC   6 STKTOP   7 STKBOT
"""

from typing import Dict, List, Tuple


class DatapathFault(Exception):
    """A micro-operation addressed something that does not exist.

    Raised by components, caught by the control unit, which turns it into
    a halt. Never escapes Architecture.step().
    """


# ──────────────────────────────────────────────
# Register file layout
# ──────────────────────────────────────────────

REGISTER_NAMES: Tuple[str, ...] = (
    'IR', 'REG0', 'REG1', 'REG2', 'REG3', 'PC', 'STKTOP', 'STKBOT',
)

REGISTER_IDS: Dict[str, int] = {name: i for i, name in enumerate(REGISTER_NAMES)}

# Flags register bit positions
FLAG_Z = 0
FLAG_N = 1
NUM_FLAGS = 2


def status_bits(value: int) -> Tuple[int, int]:
    """Comparator outputs for a result word: (Z, N).

    Z = result == 0
    N = result < 0
    """
    return int(value == 0), int(value < 0)


def register_id(name: str) -> int:
    """Map a register name (any case, no '%') to its executable id.

    Raises KeyError for unknown names.
    """
    return REGISTER_IDS[name.upper()]


# ──────────────────────────────────────────────
# Buses
# ──────────────────────────────────────────────

class Bus:
    """Single-slot value carrier."""

    __slots__ = ('value',)

    def __init__(self):
        self.value: int = 0

    def put(self, value: int):
        self.value = value

    def get(self) -> int:
        return self.value


class Buses:
    """The machine's buses, addressable by wiring name."""

    __slots__ = ('internal', 'external', 'alu')

    def __init__(self):
        self.internal = Bus()
        self.external = Bus()
        self.alu = Bus()  # private to the ALU

    def __getitem__(self, name: str) -> Bus:
        return getattr(self, name)

    # The two system buses are bridged; a bridge transfer is itself a
    # micro-operation and must be listed in the micro-program.

    def to_external(self):
        """external ← internal"""
        self.external.put(self.internal.get())

    def to_internal(self):
        """internal ← external"""
        self.internal.put(self.external.get())

    def reset(self):
        self.internal.put(0)
        self.external.put(0)
        self.alu.put(0)


# ──────────────────────────────────────────────
# Registers
# ──────────────────────────────────────────────

class Register:
    """One-word storage cell wired to one or two named buses."""

    __slots__ = ('name', 'value', 'ext_bus', 'int_bus')

    def __init__(self, name: str, ext_bus: str = 'internal', int_bus: str = 'internal'):
        self.name = name
        self.value: int = 0
        self.ext_bus = ext_bus
        self.int_bus = int_bus

    def store(self, buses: Buses):
        """reg ← external-side bus"""
        self.value = buses[self.ext_bus].get()

    def read(self, buses: Buses):
        """reg → external-side bus"""
        buses[self.ext_bus].put(self.value)

    def internal_store(self, buses: Buses):
        """reg ← internal-side bus"""
        self.value = buses[self.int_bus].get()

    def internal_read(self, buses: Buses):
        """reg → internal-side bus"""
        buses[self.int_bus].put(self.value)

    def __repr__(self):
        return f"Register({self.name}={self.value})"


class FlagsRegister:
    """Fixed set of single-bit flags: bit 0 = Z (zero), bit 1 = N (negative).

    Flags are only ever written from a result sitting on the register's bus
    (update_from_bus) and only ever leave as a single bit placed on that bus
    (read_bit), which is what the branch selector uses as an address.
    """

    __slots__ = ('name', 'bits', 'bus')

    def __init__(self, name: str = 'FLAGS', num_bits: int = NUM_FLAGS, bus: str = 'internal'):
        self.name = name
        self.bits: List[int] = [0] * num_bits
        self.bus = bus

    def get_bit(self, pos: int) -> int:
        return self.bits[pos]

    def set_bit(self, pos: int, bit: int):
        self.bits[pos] = bit & 1

    def update_from_bus(self, buses: Buses):
        """Recompute Z and N from the result currently on the bus."""
        zero, negative = status_bits(buses[self.bus].get())
        self.set_bit(FLAG_Z, zero)
        self.set_bit(FLAG_N, negative)

    def read_bit(self, pos: int, buses: Buses):
        """Place one flag bit on the bus."""
        buses[self.bus].put(self.bits[pos])

    @property
    def zero(self) -> bool:
        return bool(self.bits[FLAG_Z])

    @property
    def negative(self) -> bool:
        return bool(self.bits[FLAG_N])

    def reset(self):
        for i in range(len(self.bits)):
            self.bits[i] = 0


# ──────────────────────────────────────────────
# Demultiplexer
# ──────────────────────────────────────────────

class Demux:
    """Holds the currently selected register id (runtime register addressing)."""

    __slots__ = ('value', 'outputs')

    def __init__(self, outputs: int = len(REGISTER_NAMES)):
        self.value: int = 0
        self.outputs = outputs

    def set_value(self, value: int):
        self.value = value

    def selected(self) -> int:
        """Currently selected id, validated against the register file."""
        if not 0 <= self.value < self.outputs:
            raise DatapathFault(f"Register id out of range: {self.value}")
        return self.value
