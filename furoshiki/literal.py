"""
Escaping of arbitrary bytes for inclusion in generated C and Perl source.
Every site that emits a literal into generated code goes through this module.
"""

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


__all__ = ('c_identifier', 'decode_literal', 'encode_literal', 'perl_string')


def _escape(byte: int) -> bytes:
    if byte == 0x0a:
        return b'\\n'
    if byte in b'"\\?':
        # Escaping the question mark defuses trigraphs such as ??/
        return b'\\' + bytes((byte,))
    if 0x20 <= byte < 0x7f:
        return bytes((byte,))
    # Always three digits, so that a following digit can't extend the escape.
    return b'\\%03o' % byte


_ESCAPES = tuple(_escape(byte) for byte in range(256))

_SIMPLE_ESCAPES = {
    ord('n'): 0x0a,
    ord('t'): 0x09,
    ord('r'): 0x0d,
    ord('a'): 0x07,
    ord('b'): 0x08,
    ord('f'): 0x0c,
    ord('v'): 0x0b,
    ord('\\'): ord('\\'),
    ord('"'): ord('"'),
    ord("'"): ord("'"),
    ord('?'): ord('?'),
}

_WHITESPACE = re.compile(rb'\s*')
_STRING = re.compile(rb'"((?:[^"\\\n]|\\.)*)"', re.DOTALL)
_ESCAPE = re.compile(rb'\\(?:([0-7]{1,3})|x([0-9a-fA-F]+)|(.))', re.DOTALL)
_NON_IDENTIFIER = re.compile(r'[^A-Za-z0-9_]')


# --------------------------------------------------------------------------------------


def encode_literal(data: 'bytes | bytearray', width: int = 76) -> 'Iterator[bytes]':
    """
    Encode the data as a sequence of adjacent C string literals, one per line.
    A line ends after an encoded newline or once its escaped content reaches
    the given width. Since C concatenates adjacent string literals, the lines
    together denote exactly the original bytes.
    """
    if len(data) == 0:
        yield b'""\n'
        return

    pieces: list[bytes] = []
    size = 0
    for byte in data:
        piece = _ESCAPES[byte]
        pieces.append(piece)
        size += len(piece)
        if byte == 0x0a or size >= width:
            yield b'"' + b''.join(pieces) + b'"\n'
            pieces.clear()
            size = 0

    if pieces:
        yield b'"' + b''.join(pieces) + b'"\n'


def _unescape(match: 're.Match[bytes]') -> bytes:
    octal, hexadecimal, simple = match.groups()
    if octal is not None:
        value = int(octal, 8)
    elif hexadecimal is not None:
        value = int(hexadecimal, 16)
    elif simple[0] in _SIMPLE_ESCAPES:
        value = _SIMPLE_ESCAPES[simple[0]]
    else:
        raise ValueError(f'invalid escape sequence {match[0]!r}')

    if value > 0xff:
        raise ValueError(f'escape sequence {match[0]!r} is out of range')
    return bytes((value,))


def decode_literal(text: 'bytes | str') -> bytes:
    """
    Decode a sequence of adjacent C string literals separated by nothing but
    whitespace.
    """
    if isinstance(text, str):
        text = text.encode('ascii')

    result = bytearray()
    position = 0
    while True:
        gap = _WHITESPACE.match(text, position)
        assert gap is not None, 'whitespace pattern matches empty string'
        position = gap.end()
        if position == len(text):
            return bytes(result)

        token = _STRING.match(text, position)
        if token is None:
            raise ValueError(f'malformed string literal at offset {position}')
        result += _ESCAPE.sub(_unescape, token[1])
        position = token.end()


# --------------------------------------------------------------------------------------


def c_identifier(module: str) -> str:
    """Mangle a Perl package name the same way xsubpp does for boot symbols."""
    return _NON_IDENTIFIER.sub('_', module.replace('::', '__'))


def perl_string(text: str) -> str:
    escaped = text.replace('\\', '\\\\').replace("'", "\\'")
    return f"'{escaped}'"
