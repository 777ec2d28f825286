"""
RTL Assembler
=============
Two-pass assembler for the RTL teaching computer: .dsf source → .dxf words.

Pipeline:
    ┌──────────┐    ┌──────────┐    ┌──────────┐    ┌──────────┐    ┌───────────┐
    │  Source  │───>│  Lexer   │───>│  Pass 1  │───>│  Pass 2  │───>│   Link    │
    │ (.dsf)   │    │ (lines)  │    │  (vars)  │    │ (labels, │    │ (.dxf int │
    │          │    │          │    │          │    │  object) │    │  stream)  │
    └──────────┘    └──────────┘    └──────────┘    └──────────┘    └───────────┘

    - lexer.py:     comment stripping, line numbering, operand classification
    - assembler.py: both passes, the frozen object program, linker, listing
"""

__version__ = "1.0.0"

from .lexer import SourceLine, scan, classify_operand
from .assembler import (
    Assembler, AssemblerError, ParseError, LinkError,
    ObjInstruction, ObjectProgram, PROLOGUE_LENGTH,
    assemble, assemble_file, assemble_to_dxf,
)
