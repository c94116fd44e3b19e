"""
Discovery of the resources a set of Perl modules depends on. Starting from the
seed resources, the scanner inspects each module's `auto/` directory for
autoloaded functions, extra libraries, static archives, and distribution
manifests.
"""

from collections import deque
from dataclasses import dataclass
from enum import Enum
import logging
from pathlib import Path
import re
from types import MappingProxyType
from typing import TYPE_CHECKING

from .autoload import parse_autoload_index
from .errors import AutoloadError, BundleError, StaticLinkError
from .resource import FilePath, Resource
from .util import dedupe

if TYPE_CHECKING:
    from collections.abc import Container, Iterable, Mapping, Sequence

    from .resource import Origin


__all__ = (
    'apply_filters',
    'compile_glob',
    'GlobSet',
    'RootPolicy',
    'scan',
    'ScanResult',
)

logger = logging.getLogger('furoshiki.scanner')


MODULE_SUFFIX = '.pm'
MANIFEST_EXTENSIONS = ('.pm', '.pl', '.al', '.ix')

AUTOLOAD_INDEX = 'autosplit.ix'
EXTRA_LIBRARIES = 'extralibs.ld'
PACKLIST = '.packlist'

_GLOB_TOKEN = re.compile(r'(\*\*|\*|\?)')
_ANNOTATION = re.compile(r'\s+\w+=.*$')


# ======================================================================================


def compile_glob(pattern: str) -> 're.Pattern[str]':
    """
    Compile the glob into a regular expression. A double star matches any
    characters whereas a single star or question mark never matches a slash.
    """
    regex = []
    for part in _GLOB_TOKEN.split(pattern):
        if part == '**':
            regex.append('.*')
        elif part == '*':
            regex.append('[^/]*')
        elif part == '?':
            regex.append('[^/]')
        else:
            regex.append(re.escape(part))
    return re.compile(''.join(regex), re.DOTALL)


def apply_filters(
    names: 'Iterable[str]',
    rules: 'Sequence[tuple[bool, str]]',
) -> frozenset[str]:
    """
    Apply include and exclude rules in order. An exclude rule removes matching
    names. An include rule protects matching names, including names removed by
    an earlier exclude rule, from all later exclude rules.
    """
    present = set(names)
    excluded: set[str] = set()
    protected: set[str] = set()

    for include, pattern in rules:
        glob = compile_glob(pattern)
        if include:
            matches = {name for name in present | excluded if glob.fullmatch(name)}
            present -= matches
            excluded -= matches
            protected |= matches
        else:
            matches = {name for name in present if glob.fullmatch(name)}
            present -= matches
            excluded |= matches

    return frozenset(present | protected)


class GlobSet:
    """A set of names defined by globs, e.g., for marking resources as binary."""

    def __init__(self, patterns: 'Iterable[str]') -> None:
        self._patterns = tuple(patterns)
        self._globs = tuple(compile_glob(pattern) for pattern in self._patterns)

    def __repr__(self) -> str:
        return f'<GlobSet {", ".join(self._patterns)}>'

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and any(glob.fullmatch(name) for glob in self._globs)


# ======================================================================================


class RootPolicy(Enum):
    """How manifest entries are matched against the search roots."""
    FIRST_MATCH = 'first-match'
    FIRST_ROOT = 'first-root'


@dataclass(frozen=True, slots=True)
class ScanResult:
    resources: 'Mapping[str, Resource]'
    static_archives: tuple[Path, ...] = ()
    static_modules: tuple[str, ...] = ()
    extra_ldflags: tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.resources)


def scan(
    seeds: 'Mapping[str, Origin]',
    rules: 'Sequence[tuple[bool, str]]' = (),
    *,
    binary: 'Container[str]' = (),
    search_roots: 'Sequence[str | Path]' = (),
    follow_packlists: bool = False,
    root_policy: RootPolicy = RootPolicy.FIRST_MATCH,
    dlext: str = 'so',
) -> ScanResult:
    """Determine the complete set of resources required by the seeds."""
    kept = apply_filters(seeds, rules)
    if len(kept) < len(seeds):
        logger.info(
            'filters removed %d of %d resources', len(seeds) - len(kept), len(seeds))

    resources = {
        name: Resource.load(name, origin, name in binary)
        for name, origin in seeds.items()
        if name in kept
    }

    return _Scanner(
        resources,
        binary=binary,
        search_roots=tuple(Path(root) for root in search_roots),
        follow_packlists=follow_packlists,
        root_policy=root_policy,
        dlext=dlext,
    ).run()


# --------------------------------------------------------------------------------------


def _root_of(path: Path, name: str) -> 'None | Path':
    """Determine the directory that a resource's file path is relative to."""
    parts = tuple(name.split('/'))
    if len(path.parts) <= len(parts) or path.parts[-len(parts):] != parts:
        return None
    return Path(*path.parts[:-len(parts)])


class _Scanner:
    """The state of a single scan, which is discarded once the scan is done."""

    def __init__(
        self,
        resources: 'dict[str, Resource]',
        *,
        binary: 'Container[str]',
        search_roots: tuple[Path, ...],
        follow_packlists: bool,
        root_policy: RootPolicy,
        dlext: str,
    ) -> None:
        self._resources = resources
        self._binary = binary
        self._search_roots = search_roots
        self._follow_packlists = follow_packlists
        self._root_policy = root_policy
        self._dlext = dlext

        self._pending: deque[str] = deque(
            name for name in resources if name.endswith(MODULE_SUFFIX))
        self._static_archives: list[Path] = []
        self._static_modules: list[str] = []
        self._extra_ldflags: list[str] = []

    def run(self) -> ScanResult:
        while self._pending:
            self.scan_module(self._resources[self._pending.popleft()])

        logger.info(
            'found %d resources with %d statically linked modules',
            len(self._resources), len(self._static_modules))
        return ScanResult(
            MappingProxyType(self._resources),
            static_archives=tuple(self._static_archives),
            static_modules=tuple(self._static_modules),
            extra_ldflags=dedupe(self._extra_ldflags),
        )

    # ----------------------------------------------------------------------------------

    def add(self, name: str, origin: 'Origin', *, replace: bool) -> bool:
        if name in self._resources:
            existing = self._resources[name]
            if not replace or existing.origin == origin:
                return False
            logger.info('"%s" from %s replaces %s', name, origin, existing.origin)

        self._resources[name] = Resource.load(name, origin, name in self._binary)
        if name.endswith(MODULE_SUFFIX):
            self._pending.append(name)
        return True

    def locate_autoload_directory(self, module: Resource) -> 'None | tuple[Path, Path]':
        stem = module.name[:-len(MODULE_SUFFIX)]
        relative = Path('auto', *stem.split('/'))

        roots: list[Path] = []
        if module.path is not None and (root := _root_of(module.path, module.name)):
            roots.append(root)
        roots.extend(self._search_roots)

        for root in roots:
            directory = root / relative
            if directory.is_dir():
                return root, directory
        return None

    def scan_module(self, module: Resource) -> None:
        located = self.locate_autoload_directory(module)
        if located is None:
            return

        root, directory = located
        stem = module.name[:-len(MODULE_SUFFIX)]
        package = stem.replace('/', '::')
        base = stem.rpartition('/')[2]
        logger.debug('scanning "%s" for module %s', directory, package)

        shared_object = directory / f'{base}.{self._dlext}'
        if shared_object.exists():
            raise StaticLinkError(
                f'module {package} ("{module.name}") has dynamically loadable '
                f'object "{shared_object}", but bundled modules must be '
                f'statically linked')

        index = directory / AUTOLOAD_INDEX
        if index.is_file():
            self.add_autoloaded(root, index)

        extra_libraries = directory / EXTRA_LIBRARIES
        if extra_libraries.is_file():
            self._extra_ldflags.extend(self.read_text(extra_libraries).split())

        archive = directory / f'{base}.a'
        if archive.is_file():
            logger.debug('module %s links static archive "%s"', package, archive)
            self._static_archives.append(archive)
            self._static_modules.append(package)

        packlist = directory / PACKLIST
        if self._follow_packlists and packlist.is_file():
            self.follow_packlist(packlist)

    @staticmethod
    def read_text(path: Path) -> str:
        try:
            return path.read_text(encoding='utf8', errors='surrogateescape')
        except OSError as x:
            raise BundleError(f'unable to read "{path}": {x.strerror}') from x

    # ----------------------------------------------------------------------------------

    def add_autoloaded(self, root: Path, index: Path) -> None:
        parsed = parse_autoload_index(self.read_text(index).splitlines())
        for number, line in parsed.warnings:
            logger.warning('%s:%d: unable to parse "%s"', index, number, line)

        for entry in parsed.entries:
            path = root / entry.resource_name
            if not path.is_file():
                raise AutoloadError(
                    f'autoload index "{index}" declares {entry.package}::'
                    f'{entry.function}, but "{entry.resource_name}" does not '
                    f'exist in "{root}"')
            self.add(entry.resource_name, FilePath(path), replace=True)

        self.add(index.relative_to(root).as_posix(), FilePath(index), replace=True)

    def follow_packlist(self, packlist: Path) -> None:
        for line in self.read_text(packlist).splitlines():
            entry = _ANNOTATION.sub('', line.strip())
            if not entry.endswith(MANIFEST_EXTENSIONS):
                continue

            name = self.relative_to_search_root(entry)
            if name is None:
                logger.debug('"%s" in "%s" is outside search roots', entry, packlist)
                continue

            path = Path(entry)
            if not path.is_file():
                logger.warning('"%s" listed in "%s" does not exist', entry, packlist)
                continue
            if self.add(name, FilePath(path), replace=False):
                logger.debug('added "%s" from "%s"', name, packlist)

    def relative_to_search_root(self, entry: str) -> 'None | str':
        roots = self._search_roots
        if self._root_policy is RootPolicy.FIRST_ROOT:
            roots = roots[:1]

        for root in roots:
            prefix = str(root).rstrip('/') + '/'
            if entry.startswith(prefix):
                return entry[len(prefix):]
        return None
