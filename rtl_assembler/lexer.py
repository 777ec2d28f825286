"""
Line scanner for .dsf assembly source.

Turns raw source text into numbered statements and classifies operand
tokens. Nothing here knows about symbol addresses; that is the linker's
job in assembler.py.

Statement shapes (after comment stripping and trimming):
  name          variable declaration (only before the first label/instruction)
  name:         label declaration (whitespace allowed before the colon)
  mnem ops...   instruction, whitespace separated

Operand shapes:
  %name         register      → object token '%name'
  name          memory ref    → object token '&name'
  [+-]digits    immediate     → object token 'digits' (sign kept if negative)
"""

from __future__ import annotations
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from rtl_emulator.cpu.decoder import REG, MEM, IMM, MNEMONICS

__all__ = [
    'SourceLine', 'scan', 'strip_comment', 'is_variable_decl', 'match_label',
    'classify_operand', 'IDENT_RE', 'LABEL_RE', 'REG_RE', 'IMM_RE',
]

COMMENT_CHAR = ';'

IDENT_RE = re.compile(r'^[A-Za-z][A-Za-z0-9]*$')
LABEL_RE = re.compile(r'^([A-Za-z][A-Za-z0-9]*)\s*:$')
REG_RE = re.compile(r'^%([A-Za-z][A-Za-z0-9]*)$')
IMM_RE = re.compile(r'^[+-]?[0-9]+$')


@dataclass(frozen=True)
class SourceLine:
    """One non-blank statement of source."""
    line_num: int   # 1-based, counted over the raw input
    raw: str        # original line, untouched
    text: str       # comment removed, trimmed


def strip_comment(line: str) -> str:
    pos = line.find(COMMENT_CHAR)
    if pos >= 0:
        line = line[:pos]
    return line.strip()


def scan(source: str) -> List[SourceLine]:
    """Split source into statements, dropping blank and comment-only lines."""
    lines = []
    for i, raw in enumerate(source.split('\n'), 1):
        text = strip_comment(raw)
        if text:
            lines.append(SourceLine(i, raw.rstrip('\r'), text))
    return lines


def is_variable_decl(text: str) -> bool:
    """A bare identifier that is not itself an instruction (e.g. 'ret')."""
    return bool(IDENT_RE.match(text)) and text.lower() not in MNEMONICS


def match_label(text: str) -> Optional[str]:
    m = LABEL_RE.match(text)
    return m.group(1) if m else None


def classify_operand(token: str) -> Optional[Tuple[str, str]]:
    """Return (kind, object_token) for an operand, or None if malformed."""
    m = REG_RE.match(token)
    if m:
        return REG, '%' + m.group(1)
    if IDENT_RE.match(token):
        return MEM, '&' + token
    if IMM_RE.match(token):
        return IMM, str(int(token))
    return None
