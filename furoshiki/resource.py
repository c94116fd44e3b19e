from dataclasses import dataclass
from pathlib import Path

from .errors import BundleError, NameTooLongError


__all__ = (
    'BOOT',
    'FilePath',
    'InMemoryBytes',
    'MAX_NAME_LENGTH',
    'Origin',
    'Resource',
    'validate_name',
)


MAX_NAME_LENGTH = 128

# The name under which the entry point script is bundled.
BOOT = '//boot'


@dataclass(frozen=True, slots=True)
class FilePath:
    path: Path

    def __str__(self) -> str:
        return str(self.path)


@dataclass(frozen=True, slots=True)
class InMemoryBytes:
    data: bytes

    def __str__(self) -> str:
        return f'<{len(self.data)} bytes in memory>'


Origin = FilePath | InMemoryBytes


def validate_name(name: str) -> bytes:
    """Return the name's encoded bytes, which must fit into an index record."""
    key = name.encode('utf8')
    if len(key) == 0:
        raise BundleError('resource name is empty')
    if len(key) > MAX_NAME_LENGTH:
        raise NameTooLongError(
            f'resource name "{name}" has {len(key)} bytes, '
            f'but bundles support at most {MAX_NAME_LENGTH}')
    return key


@dataclass(frozen=True, slots=True)
class Resource:
    """A named payload to be embedded in a bundle."""
    name: str
    payload: bytes
    origin: 'Origin'
    binary: bool = False

    @classmethod
    def load(cls, name: str, origin: 'Origin', binary: bool = False) -> 'Resource':
        match origin:
            case FilePath(path):
                try:
                    payload = path.read_bytes()
                except OSError as x:
                    raise BundleError(
                        f'unable to read resource "{name}" from "{path}": '
                        f'{x.strerror}') from x
            case InMemoryBytes(data):
                payload = data
            case _:
                raise TypeError(f'invalid origin {origin!r} for resource "{name}"')
        return cls(name, payload, origin, binary)

    @property
    def path(self) -> 'None | Path':
        return self.origin.path if isinstance(self.origin, FilePath) else None

    def with_payload(self, payload: bytes) -> 'Resource':
        return Resource(self.name, payload, self.origin, self.binary)

    def __repr__(self) -> str:
        kind = 'binary' if self.binary else 'text'
        return f'<Resource "{self.name}" {kind} {len(self.payload)} bytes>'
