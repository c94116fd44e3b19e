"""
Parsing of AutoSplit's autoload indices. A module split with AutoSplit keeps
each autoloaded function in its own `.al` file below `auto/`, and the
`autosplit.ix` index declares which functions exist:

    # Index created by AutoSplit for blib/lib/Foo/Bar.pm
    #    (file acts as timestamp)
    package Foo::Bar;
    sub baz ;
    sub quux ($$) ;
    1;
"""

from dataclasses import dataclass
import re
from typing import NamedTuple, TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable


__all__ = ('AutoloadEntry', 'AutoloadIndex', 'parse_autoload_index')


_PACKAGE = re.compile(r'^\s*package\s+([\w:]+)\s*;\s*$')
_SUB = re.compile(r'^\s*sub\s+(\w+)\s*(?:\([^)]*\))?\s*;\s*$')
_IGNORED = re.compile(r'^\s*(?:#.*|1?\s*;)?\s*$')


class AutoloadEntry(NamedTuple):
    package: str
    function: str

    @property
    def resource_name(self) -> str:
        return f'auto/{self.package.replace("::", "/")}/{self.function}.al'


@dataclass(frozen=True, slots=True)
class AutoloadIndex:
    entries: tuple[AutoloadEntry, ...]
    warnings: tuple[tuple[int, str], ...] = ()

    @property
    def resource_names(self) -> tuple[str, ...]:
        return tuple(entry.resource_name for entry in self.entries)


def parse_autoload_index(lines: 'Iterable[str]') -> AutoloadIndex:
    """
    Parse the lines of an autoload index. Malformed lines do not stop parsing;
    they are reported as warnings, each with its 1-based line number.
    """
    package = 'main'
    entries: list[AutoloadEntry] = []
    warnings: list[tuple[int, str]] = []

    for number, line in enumerate(lines, start=1):
        line = line.rstrip('\r\n')
        if (match := _PACKAGE.match(line)) is not None:
            package = match[1]
        elif (match := _SUB.match(line)) is not None:
            entries.append(AutoloadEntry(package, match[1]))
        elif _IGNORED.match(line) is None:
            warnings.append((number, line))

    return AutoloadIndex(tuple(entries), tuple(warnings))
