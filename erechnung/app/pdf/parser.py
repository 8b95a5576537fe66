"""
Object parser: token stream -> PDF values.

Handles direct values, indirect object definitions
(``id gen obj ... endobj``) and stream bodies.

Stream length policy:
- /Length is trusted when the declared span fits inside the buffer and
  is followed (after optional whitespace) by ``endstream``.
- Otherwise the body runs up to the next ``endstream`` keyword, minus
  one trailing end-of-line marker.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable, Deque, NamedTuple, Optional

from erechnung.app.errors import MalformedPdfError, PdfSyntaxError
from erechnung.app.pdf.lexer import Lexer, Token, TokenKind, skip_whitespace
from erechnung.app.pdf.objects import Name, ObjectId, PdfValue, Reference, Stream


logger = logging.getLogger(__name__)

DEFAULT_MAX_NESTING = 128

LengthResolver = Callable[[Reference], Optional[int]]


class IndirectObject(NamedTuple):
    object_id: ObjectId
    value: PdfValue


class ObjectParser:
    def __init__(
        self,
        data: bytes,
        pos: int = 0,
        *,
        length_resolver: Optional[LengthResolver] = None,
        max_nesting: int = DEFAULT_MAX_NESTING,
    ) -> None:
        self._data = data
        self._lexer = Lexer(data, pos)
        self._pending: Deque[Token] = deque()
        self._length_resolver = length_resolver
        self._max_nesting = max_nesting

    @property
    def pos(self) -> int:
        """Cursor position after the last consumed token."""
        if self._pending:
            return self._pending[0].start
        return self._lexer.pos

    # ------------------------------------------------------------------
    # Token access with lookahead
    # ------------------------------------------------------------------

    def _peek(self, index: int = 0) -> Optional[Token]:
        while len(self._pending) <= index:
            try:
                token = self._lexer.next()
            except PdfSyntaxError:
                # Lookahead only; the error resurfaces if the token is consumed.
                return None
            if token is None:
                return None
            self._pending.append(token)
        return self._pending[index]

    def _next(self) -> Token:
        if self._pending:
            return self._pending.popleft()
        token = self._lexer.next()
        if token is None:
            raise PdfSyntaxError("unexpected end of input", offset=len(self._data))
        return token

    def _reset(self, pos: int) -> None:
        self._pending.clear()
        self._lexer.seek(pos)

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------

    def parse_value(self, depth: int = 0) -> PdfValue:
        if depth > self._max_nesting:
            raise PdfSyntaxError("nesting too deep", offset=self.pos)

        token = self._next()
        kind = token.kind

        if kind == TokenKind.INTEGER:
            second = self._peek(0)
            third = self._peek(1)
            if (
                second is not None
                and third is not None
                and second.kind == TokenKind.INTEGER
                and third.is_keyword("R")
            ):
                self._next()
                self._next()
                return Reference(ObjectId(token.value, second.value))
            return token.value

        if kind in (TokenKind.REAL, TokenKind.STRING, TokenKind.NAME):
            return token.value

        if kind == TokenKind.ARRAY_START:
            items = []
            while True:
                peeked = self._peek()
                if peeked is None:
                    raise PdfSyntaxError("unterminated array", offset=token.start)
                if peeked.kind == TokenKind.ARRAY_END:
                    self._next()
                    return items
                items.append(self.parse_value(depth + 1))

        if kind == TokenKind.DICT_START:
            return self._parse_dictionary_body(token, depth)

        if kind == TokenKind.KEYWORD:
            if token.value == "true":
                return True
            if token.value == "false":
                return False
            if token.value == "null":
                return None

        raise PdfSyntaxError(f"unexpected token {token.value!r}", offset=token.start)

    def _parse_dictionary_body(self, opening: Token, depth: int) -> dict:
        result = {}
        while True:
            key = self._peek()
            if key is None:
                raise PdfSyntaxError("unterminated dictionary", offset=opening.start)
            if key.kind == TokenKind.DICT_END:
                self._next()
                return result
            key = self._next()
            if key.kind != TokenKind.NAME:
                raise PdfSyntaxError("dictionary key is not a name", offset=key.start)
            result[key.value] = self.parse_value(depth + 1)

    # ------------------------------------------------------------------
    # Indirect objects
    # ------------------------------------------------------------------

    def parse_indirect_object(self) -> IndirectObject:
        number = self._next()
        generation = self._next()
        keyword = self._next()
        if (
            number.kind != TokenKind.INTEGER
            or generation.kind != TokenKind.INTEGER
            or not keyword.is_keyword("obj")
        ):
            raise PdfSyntaxError("expected 'id gen obj'", offset=number.start)

        object_id = ObjectId(number.value, generation.value)
        value = self.parse_value()

        following = self._peek()
        if following is not None and following.is_keyword("stream"):
            if not isinstance(value, dict):
                raise PdfSyntaxError("stream without dictionary", offset=following.start)
            raw, end = self._read_stream_body(value, following.end)
            self._reset(end)
            value = Stream(dictionary=value, raw=raw, object_id=object_id)
            following = self._peek()

        if following is not None and following.is_keyword("endobj"):
            self._next()
        else:
            logger.debug("object %s has no endobj", object_id)

        return IndirectObject(object_id, value)

    def _read_stream_body(self, dictionary: dict, keyword_end: int):
        data = self._data
        start = keyword_end
        if data.startswith(b"\r\n", start):
            start += 2
        elif start < len(data) and data[start] in b"\r\n":
            start += 1

        length = self._declared_length(dictionary)
        if length is not None and length >= 0 and start + length <= len(data):
            end = start + length
            after = skip_whitespace(data, end)
            if data.startswith(b"endstream", after):
                return data[start:end], after + len(b"endstream")

        marker = data.find(b"endstream", start)
        if marker == -1:
            raise PdfSyntaxError("stream without endstream", offset=keyword_end)

        logger.debug(
            "stream /Length %r inconsistent at byte %d, scanned to endstream",
            length,
            keyword_end,
        )
        end = marker
        if end - 2 >= start and data[end - 2:end] == b"\r\n":
            end -= 2
        elif end - 1 >= start and data[end - 1] in b"\r\n":
            end -= 1
        return data[start:end], marker + len(b"endstream")

    def _declared_length(self, dictionary: dict) -> Optional[int]:
        length = dictionary.get(Name("Length"))
        if isinstance(length, Reference):
            if self._length_resolver is None:
                return None
            try:
                length = self._length_resolver(length)
            except MalformedPdfError as exc:
                logger.debug("unresolvable /Length %s: %s", length, exc)
                return None
        if isinstance(length, bool) or not isinstance(length, int):
            return None
        return length


__all__ = [
    "IndirectObject",
    "LengthResolver",
    "ObjectParser",
]
