# RTL Emulator - register-transfer-level simulator for the teaching computer
#
# Every instruction executes as a sequence of bus transfers between
# registers, the ALU and memory. See emu.py for the control unit and
# cpu/ + mem/ for the datapath components.

from .emu import Architecture, StopReason, Phase, parse_dxf, read_dxf
from .cpu.decoder import CommandID, disassemble
from .cpu.regs import DatapathFault, REGISTER_NAMES
from .mem.memory import AddressFault, DEFAULT_MEMORY_SIZE

__version__ = '1.0.0'

__all__ = [
    'Architecture', 'StopReason', 'Phase', 'parse_dxf', 'read_dxf',
    'CommandID', 'disassemble', 'DatapathFault', 'AddressFault',
    'REGISTER_NAMES', 'DEFAULT_MEMORY_SIZE',
]
