"""
Byte-level tokenizer for PDF syntax.

The lexer turns a byte buffer plus a cursor into one token at a time.
It has no notion of objects or revisions; ``parser.py`` builds values
from the token sequence.

Safety rules:
- The buffer is never indexed past its end. Running out of input inside
  a token is a PdfSyntaxError, not an IndexError.
- ``next_token`` is pure: on error nothing advances.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, Optional

from erechnung.app.errors import PdfSyntaxError
from erechnung.app.pdf.objects import Keyword, Name, PdfString


WHITESPACE = b"\x00\t\n\x0c\r "
DELIMITERS = b"()<>[]{}/%"

_REGULAR_RUN = re.compile(rb"[^\x00\t\n\x0c\r ()<>\[\]{}/%]*")
_NUMBER = re.compile(rb"[+-]?(?:\d+\.\d*|\.\d+|\d+)")
_OCTAL = re.compile(rb"[0-7]{1,3}")
_NAME_ESCAPE = re.compile(rb"#([0-9A-Fa-f]{2})")
_HEX_WHITESPACE = re.compile(rb"[\x00\t\n\x0c\r ]")
_HEX_DIGITS = re.compile(rb"[0-9A-Fa-f]*")

# Longest numeric token accepted; longer digit runs are a syntax error.
MAX_NUMBER_LENGTH = 32

_STRING_ESCAPES = {
    ord("n"): 0x0A,
    ord("r"): 0x0D,
    ord("t"): 0x09,
    ord("b"): 0x08,
    ord("f"): 0x0C,
    ord("("): 0x28,
    ord(")"): 0x29,
    ord("\\"): 0x5C,
}


class TokenKind(str, Enum):
    INTEGER = "integer"
    REAL = "real"
    STRING = "string"
    NAME = "name"
    ARRAY_START = "array_start"
    ARRAY_END = "array_end"
    DICT_START = "dict_start"
    DICT_END = "dict_end"
    KEYWORD = "keyword"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    value: Any
    start: int
    end: int

    def is_keyword(self, word: str) -> bool:
        return self.kind == TokenKind.KEYWORD and self.value == word


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def skip_whitespace(data: bytes, pos: int) -> int:
    """Advance past whitespace and comments."""
    size = len(data)
    while pos < size:
        byte = data[pos]
        if byte in WHITESPACE:
            pos += 1
        elif byte == 0x25:  # %
            while pos < size and data[pos] not in b"\r\n":
                pos += 1
        else:
            break
    return pos


def next_token(data: bytes, pos: int) -> Optional[Token]:
    """
    Read the token starting at or after ``pos``.

    Returns None at end of input. The returned token's ``end`` is the
    cursor position just past it.
    """
    pos = skip_whitespace(data, pos)
    if pos >= len(data):
        return None

    byte = data[pos]

    if byte == 0x2F:  # /
        return _read_name(data, pos)
    if byte == 0x28:  # (
        value, end = _read_literal_string(data, pos)
        return Token(TokenKind.STRING, value, pos, end)
    if byte == 0x3C:  # <
        if data.startswith(b"<<", pos):
            return Token(TokenKind.DICT_START, "<<", pos, pos + 2)
        value, end = _read_hex_string(data, pos)
        return Token(TokenKind.STRING, value, pos, end)
    if byte == 0x3E:  # >
        if data.startswith(b">>", pos):
            return Token(TokenKind.DICT_END, ">>", pos, pos + 2)
        raise PdfSyntaxError("unexpected '>'", offset=pos)
    if byte == 0x5B:
        return Token(TokenKind.ARRAY_START, "[", pos, pos + 1)
    if byte == 0x5D:
        return Token(TokenKind.ARRAY_END, "]", pos, pos + 1)
    if byte in b"{}":
        return Token(TokenKind.KEYWORD, Keyword(chr(byte)), pos, pos + 1)
    if byte == 0x29:
        raise PdfSyntaxError("unbalanced ')'", offset=pos)

    match = _REGULAR_RUN.match(data, pos)
    run = match.group()
    end = match.end()
    if _NUMBER.fullmatch(run):
        if len(run) > MAX_NUMBER_LENGTH:
            raise PdfSyntaxError(f"numeric token of {len(run)} characters", offset=pos)
        if b"." in run:
            return Token(TokenKind.REAL, float(run), pos, end)
        return Token(TokenKind.INTEGER, int(run), pos, end)
    return Token(TokenKind.KEYWORD, Keyword(run.decode("latin-1")), pos, end)


class Lexer:
    """Cursor over a buffer, yielding tokens in order."""

    def __init__(self, data: bytes, pos: int = 0) -> None:
        self.data = data
        self.pos = pos

    def next(self) -> Optional[Token]:
        token = next_token(self.data, self.pos)
        if token is not None:
            self.pos = token.end
        else:
            self.pos = len(self.data)
        return token

    def seek(self, pos: int) -> None:
        self.pos = pos

    def __iter__(self) -> Iterator[Token]:
        while True:
            token = self.next()
            if token is None:
                return
            yield token


def tokenize(data: bytes) -> Iterator[Token]:
    return iter(Lexer(data))


# ---------------------------------------------------------------------------
# Token readers
# ---------------------------------------------------------------------------

def _read_name(data: bytes, pos: int) -> Token:
    match = _REGULAR_RUN.match(data, pos + 1)
    raw = _NAME_ESCAPE.sub(lambda m: bytes([int(m.group(1), 16)]), match.group())
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        text = raw.decode("latin-1")
    return Token(TokenKind.NAME, Name(text), pos, match.end())


def _read_hex_string(data: bytes, pos: int):
    close = data.find(b">", pos + 1)
    if close == -1:
        raise PdfSyntaxError("unterminated hex string", offset=pos)

    digits = _HEX_WHITESPACE.sub(b"", data[pos + 1:close])
    if not _HEX_DIGITS.fullmatch(digits):
        raise PdfSyntaxError("invalid hex string", offset=pos)
    if len(digits) % 2:
        digits += b"0"

    return PdfString(bytes.fromhex(digits.decode("ascii")), is_hex=True), close + 1


def _read_literal_string(data: bytes, pos: int):
    start = pos
    size = len(data)
    out = bytearray()
    depth = 1
    pos += 1

    while pos < size:
        byte = data[pos]

        if byte == 0x5C:  # backslash
            pos += 1
            if pos >= size:
                break
            escaped = data[pos]
            if escaped in _STRING_ESCAPES:
                out.append(_STRING_ESCAPES[escaped])
                pos += 1
            elif 0x30 <= escaped <= 0x37:
                octal = _OCTAL.match(data, pos)
                out.append(int(octal.group(), 8) & 0xFF)
                pos = octal.end()
            elif escaped == 0x0D:
                # Line continuation, CR or CRLF
                pos += 1
                if pos < size and data[pos] == 0x0A:
                    pos += 1
            elif escaped == 0x0A:
                pos += 1
            else:
                # Unknown escape: the backslash is dropped
                out.append(escaped)
                pos += 1
            continue

        if byte == 0x28:
            depth += 1
        elif byte == 0x29:
            depth -= 1
            if depth == 0:
                return PdfString(bytes(out)), pos + 1
        elif byte == 0x0D:
            out.append(0x0A)
            pos += 1
            if pos < size and data[pos] == 0x0A:
                pos += 1
            continue

        out.append(byte)
        pos += 1

    raise PdfSyntaxError("unterminated literal string", offset=start)


__all__ = [
    "MAX_NUMBER_LENGTH",
    "Lexer",
    "Token",
    "TokenKind",
    "next_token",
    "skip_whitespace",
    "tokenize",
]
