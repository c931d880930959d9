#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Literal Parser - Turns captured call-site argument text back into data.

Strict Extended JSON is tried first. Source code rarely is strict JSON, so a
small lenient parser follows that accepts JavaScript object-literal shorthand:
unquoted and $-prefixed keys, single-quoted and backtick strings, trailing
commas, comments, regex literals and the usual shell helpers (ObjectId,
ISODate, new Date, NumberLong, NumberInt, NumberDecimal).

Nothing is ever evaluated. A bare identifier (a variable reference) is a
syntax error, since its value only exists at runtime.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, List

from bson import json_util
from bson.decimal128 import Decimal128
from bson.errors import BSONError
from bson.int64 import Int64
from bson.objectid import ObjectId
from bson.regex import Regex

logger = logging.getLogger(__name__)


class LiteralSyntaxError(ValueError):
    """Argument text could not be read as a literal."""

    def __init__(self, message: str, position: int):
        super().__init__(f"{message} at position {position}")
        self.position = position


_NUMBER = re.compile(r'[+-]?(?:0[xX][0-9a-fA-F]+|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)')
_IDENTIFIER = re.compile(r'[A-Za-z_$][\w$]*')

_KEYWORDS = {
    'true': True,
    'false': False,
    'null': None,
    'undefined': None,
    'NaN': float('nan'),
    'Infinity': float('inf'),
}

_ESCAPES = {
    'n': '\n', 't': '\t', 'r': '\r', 'b': '\b', 'f': '\f', 'v': '\v', '0': '\0',
}

# Regex flags MongoDB understands; JavaScript-only flags (g, y) are dropped.
_REGEX_FLAGS = set('imsux')


def parse_arguments(text: str) -> List[Any]:
    """
    Parses a comma-separated argument list into a list of values.
    Blank text yields an empty list.
    """
    stripped = text.strip()
    if not stripped:
        return []

    try:
        values = json_util.loads('[' + stripped + ']')
        logger.debug("literal_parse strict=true args=%s", len(values))
        return values
    except (ValueError, TypeError, BSONError):
        pass

    parser = _LenientParser(stripped)
    values = parser.parse_sequence()
    logger.debug("literal_parse strict=false args=%s", len(values))
    return values


def parse_value(text: str) -> Any:
    """Parses text holding exactly one value."""
    values = parse_arguments(text)
    if len(values) != 1:
        raise LiteralSyntaxError(f"expected a single value, found {len(values)}", 0)
    return values[0]


class _LenientParser:

    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def error(self, message):
        return LiteralSyntaxError(message, self.pos)

    def parse_sequence(self) -> List[Any]:
        values = []
        self.skip_blank()
        while self.pos < len(self.text):
            values.append(self.parse_value())
            self.skip_blank()
            if self.pos >= len(self.text):
                break
            self.expect(',')
            self.skip_blank()
        return values

    # -- lexical helpers ---------------------------------------------------

    def peek(self, offset=0):
        index = self.pos + offset
        return self.text[index] if index < len(self.text) else ''

    def expect(self, char):
        if self.peek() != char:
            found = self.peek() or 'end of input'
            raise self.error(f"expected '{char}', found '{found}'")
        self.pos += 1

    def skip_blank(self):
        """Skips whitespace and both comment styles."""
        while self.pos < len(self.text):
            char = self.text[self.pos]
            if char.isspace():
                self.pos += 1
            elif self.text.startswith('//', self.pos):
                end = self.text.find('\n', self.pos)
                self.pos = len(self.text) if end == -1 else end + 1
            elif self.text.startswith('/*', self.pos):
                end = self.text.find('*/', self.pos + 2)
                if end == -1:
                    raise self.error('unterminated comment')
                self.pos = end + 2
            else:
                break

    # -- values ------------------------------------------------------------

    def parse_value(self):
        self.skip_blank()
        char = self.peek()
        if not char:
            raise self.error('unexpected end of input')
        if char == '{':
            return self.parse_object()
        if char == '[':
            return self.parse_array()
        if char in '"\'`':
            return self.parse_string()
        if char == '/':
            return self.parse_regex()
        if char.isdigit() or char in '+-.':
            return self.parse_number()
        if _IDENTIFIER.match(char):
            return self.parse_word()
        raise self.error(f"unexpected character '{char}'")

    def parse_object(self):
        self.expect('{')
        result = {}
        while True:
            self.skip_blank()
            if self.peek() == '}':
                self.pos += 1
                return result
            if self.text.startswith('...', self.pos):
                raise self.error('spread syntax is not a literal')
            key = self.parse_key()
            self.skip_blank()
            if self.peek() != ':':
                raise self.error(f"expected ':' after key '{key}'")
            self.pos += 1
            result[key] = self.parse_value()
            self.skip_blank()
            if self.peek() == ',':
                self.pos += 1
            elif self.peek() != '}':
                raise self.error("expected ',' or '}'")

    def parse_key(self):
        char = self.peek()
        if char in '"\'`':
            return self.parse_string()
        if char.isdigit():
            match = _NUMBER.match(self.text, self.pos)
            self.pos = match.end()
            return match.group(0)
        match = _IDENTIFIER.match(self.text, self.pos)
        if not match:
            raise self.error('expected an object key')
        self.pos = match.end()
        return match.group(0)

    def parse_array(self):
        self.expect('[')
        result = []
        while True:
            self.skip_blank()
            if self.peek() == ']':
                self.pos += 1
                return result
            if self.peek() == ',':
                raise self.error('array holes are not supported')
            result.append(self.parse_value())
            self.skip_blank()
            if self.peek() == ',':
                self.pos += 1
            elif self.peek() != ']':
                raise self.error("expected ',' or ']'")

    def parse_string(self):
        quote = self.peek()
        self.pos += 1
        chunks = []
        while True:
            if self.pos >= len(self.text):
                raise self.error('unterminated string')
            char = self.text[self.pos]
            if char == quote:
                self.pos += 1
                return ''.join(chunks)
            if quote == '`' and self.text.startswith('${', self.pos):
                raise self.error('template interpolation is not a literal')
            if char == '\\':
                chunks.append(self.parse_escape())
                continue
            if char == '\n' and quote != '`':
                raise self.error('newline in string')
            chunks.append(char)
            self.pos += 1

    def parse_escape(self):
        self.pos += 1
        char = self.peek()
        if not char:
            raise self.error('unterminated escape')
        self.pos += 1
        if char in _ESCAPES:
            return _ESCAPES[char]
        if char == '\n':
            return ''
        if char == 'x':
            return self.read_hex(2)
        if char == 'u':
            if self.peek() == '{':
                end = self.text.find('}', self.pos)
                if end == -1:
                    raise self.error('unterminated unicode escape')
                digits = self.text[self.pos + 1:end]
                self.pos = end + 1
                try:
                    return chr(int(digits, 16))
                except ValueError:
                    raise self.error('invalid unicode escape')
            return self.read_hex(4)
        return char

    def read_hex(self, width):
        digits = self.text[self.pos:self.pos + width]
        try:
            value = chr(int(digits, 16))
        except ValueError:
            raise self.error('invalid hex escape')
        self.pos += width
        return value

    def parse_number(self):
        if self.peek() in '+-' and self.text.startswith('Infinity', self.pos + 1):
            sign = self.peek()
            self.pos += 1 + len('Infinity')
            return float('-inf') if sign == '-' else float('inf')
        match = _NUMBER.match(self.text, self.pos)
        if not match:
            raise self.error('invalid number')
        token = match.group(0)
        self.pos = match.end()
        if self.peek() == 'n':
            self.pos += 1
        if 'x' in token or 'X' in token:
            return int(token, 16)
        if any(c in token for c in '.eE'):
            return float(token)
        return int(token)

    def parse_regex(self):
        start = self.pos
        self.pos += 1
        in_class = False
        pattern = []
        while True:
            if self.pos >= len(self.text) or self.text[self.pos] == '\n':
                self.pos = start
                raise self.error('unterminated regex literal')
            char = self.text[self.pos]
            if char == '\\':
                pattern.append(self.text[self.pos:self.pos + 2])
                self.pos += 2
                continue
            if char == '[':
                in_class = True
            elif char == ']':
                in_class = False
            elif char == '/' and not in_class:
                self.pos += 1
                break
            pattern.append(char)
            self.pos += 1
        flags_match = re.compile(r'[a-z]*').match(self.text, self.pos)
        self.pos = flags_match.end()
        flags = ''.join(f for f in flags_match.group(0) if f in _REGEX_FLAGS)
        return Regex(''.join(pattern), flags)

    def parse_word(self):
        match = _IDENTIFIER.match(self.text, self.pos)
        word = match.group(0)
        self.pos = match.end()

        if word in _KEYWORDS:
            return _KEYWORDS[word]

        if word == 'new':
            self.skip_blank()
            match = _IDENTIFIER.match(self.text, self.pos)
            if not match:
                raise self.error("expected a constructor after 'new'")
            word = match.group(0)
            self.pos = match.end()

        self.skip_blank()
        if self.peek() != '(':
            raise self.error(f"unresolved identifier '{word}'")
        return self.parse_helper_call(word)

    def parse_helper_call(self, name):
        self.expect('(')
        args = []
        self.skip_blank()
        while self.peek() != ')':
            args.append(self.parse_value())
            self.skip_blank()
            if self.peek() == ',':
                self.pos += 1
                self.skip_blank()
            elif self.peek() != ')':
                raise self.error("expected ',' or ')'")
        self.pos += 1

        try:
            if name == 'ObjectId':
                return ObjectId(*args[:1])
            if name in ('ISODate', 'Date'):
                return _to_datetime(args[0] if args else None)
            if name == 'NumberLong':
                return Int64(int(args[0]))
            if name == 'NumberInt':
                return int(args[0])
            if name == 'NumberDecimal':
                return Decimal128(str(args[0]))
        except (IndexError, TypeError, ValueError, OverflowError, OSError, BSONError) as e:
            raise self.error(f"invalid {name} argument: {e}")
        raise self.error(f"unsupported call '{name}'")


def _to_datetime(value):
    if value is None:
        return datetime.now(timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    text = str(value).strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
