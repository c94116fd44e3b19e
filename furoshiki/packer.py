"""
The packed bundle format. All resources are concatenated into one buffer as
name followed by payload, ordered by name length and then name. An index of
32-bit records locates each resource:

    bits 31..25   name length - 1
    bits 24..0    offset of the name in the buffer

A trailing record holds the buffer's total length, so that the payload of
entry i spans from its name's end to the offset of entry i + 1. Consequently,
names have at most 128 bytes and the buffer has less than 32 MiB.
"""

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING

from .errors import BundleError, BundleTooLargeError
from .resource import MAX_NAME_LENGTH, validate_name

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping


__all__ = (
    'MAX_BUNDLE_SIZE',
    'OFFSET_BITS',
    'pack',
    'PackedBundle',
    'sort_key',
)

logger = logging.getLogger('furoshiki.packer')


OFFSET_BITS = 25
OFFSET_MASK = (1 << OFFSET_BITS) - 1
MAX_BUNDLE_SIZE = 1 << OFFSET_BITS

assert (MAX_NAME_LENGTH - 1) < (1 << (32 - OFFSET_BITS)), 'name length must fit record'


def sort_key(name: bytes) -> tuple[int, bytes]:
    """The bundle order: shorter names first, byte order for equal lengths."""
    return len(name), name


def pack(payloads: 'Mapping[str, bytes]') -> 'PackedBundle':
    keyed = sorted(
        ((validate_name(name), payload) for name, payload in payloads.items()),
        key=lambda item: sort_key(item[0]),
    )

    data = bytearray()
    index: list[int] = []
    for key, payload in keyed:
        index.append(((len(key) - 1) << OFFSET_BITS) | len(data))
        data += key
        data += payload
        if len(data) >= MAX_BUNDLE_SIZE:
            raise BundleTooLargeError(
                f'bundle too large: adding "{key.decode("utf8")}" grows it to '
                f'{len(data):,d} bytes, but bundles must be smaller than '
                f'{MAX_BUNDLE_SIZE:,d} bytes')
    index.append(len(data))

    logger.info('packed %d resources into %d bytes', len(keyed), len(data))
    return PackedBundle(bytes(data), tuple(index))


# ======================================================================================


@dataclass(frozen=True, slots=True)
class PackedBundle:
    data: bytes
    index: tuple[int, ...]

    def __post_init__(self) -> None:
        if len(self.index) == 0 or self.index[-1] != len(self.data):
            raise BundleError('index does not end with length of packed data')

    def __len__(self) -> int:
        return len(self.index) - 1

    def entry(self, position: int) -> tuple[int, int]:
        """Decode the record at the position into name length and offset."""
        if not 0 <= position < len(self):
            raise IndexError(f'no entry {position} in bundle with {len(self)} entries')
        record = self.index[position]
        return (record >> OFFSET_BITS) + 1, record & OFFSET_MASK

    def name(self, position: int) -> bytes:
        length, offset = self.entry(position)
        return self.data[offset:offset + length]

    def payload(self, position: int) -> bytes:
        length, offset = self.entry(position)
        end = self.index[position + 1] & OFFSET_MASK
        return self.data[offset + length:end]

    def find(self, name: 'str | bytes') -> int:
        """
        Find the position of the named entry or -1. The binary search compares
        lengths first and only compares bytes for equal lengths, exactly like
        the generated C code.
        """
        key = name.encode('utf8') if isinstance(name, str) else name
        low, high = 0, len(self)
        while low < high:
            middle = (low + high) // 2
            length, offset = self.entry(middle)
            if len(key) < length:
                high = middle
            elif len(key) > length:
                low = middle + 1
            else:
                candidate = self.data[offset:offset + length]
                if key < candidate:
                    high = middle
                elif key > candidate:
                    low = middle + 1
                else:
                    return middle
        return -1

    def lookup(self, name: 'str | bytes') -> 'None | bytes':
        position = self.find(name)
        return None if position < 0 else self.payload(position)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, (str, bytes)) and self.find(name) >= 0

    def items(self) -> 'Iterator[tuple[bytes, bytes]]':
        """List all entries as name and payload in packed order."""
        for position in range(len(self)):
            yield self.name(position), self.payload(position)

    def names(self) -> 'Iterator[bytes]':
        for position in range(len(self)):
            yield self.name(position)
