"""Locating seed resources in the interpreter's search roots without running it."""

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from .errors import BundleError
from .scanner import compile_glob

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


__all__ = ('find_module', 'glob_roots', 'module_to_name')

logger = logging.getLogger('furoshiki.discovery')


def module_to_name(module: str) -> str:
    """Convert a package name such as Foo::Bar into its file name Foo/Bar.pm."""
    if not module or any(not part.isidentifier() for part in module.split('::')):
        raise BundleError(f'"{module}" is not a valid module name')
    return module.replace('::', '/') + '.pm'


def find_module(module: str, search_roots: 'Sequence[str | Path]') -> tuple[str, Path]:
    name = module_to_name(module)
    for root in search_roots:
        path = Path(root) / name
        if path.is_file():
            return name, path
    raise BundleError(f'unable to locate module {module} ("{name}") in search roots')


def _walk(root: Path) -> 'Iterator[tuple[str, Path]]':
    # Since resource names are relative paths, don't resolve symbolic links.
    for directory, _, files in os.walk(root):
        for file in files:
            path = Path(directory) / file
            yield path.relative_to(root).as_posix(), path


def glob_roots(pattern: str, search_roots: 'Sequence[str | Path]') -> dict[str, Path]:
    """
    Find all files below the search roots whose relative path matches the
    glob. If several roots contain the same name, the earlier root wins.
    """
    glob = compile_glob(pattern)
    found: dict[str, Path] = {}
    for root in search_roots:
        root = Path(root)
        if not root.is_dir():
            logger.debug('skipping missing search root "%s"', root)
            continue
        for name, path in _walk(root):
            if name not in found and glob.fullmatch(name):
                found[name] = path

    logger.debug('glob "%s" matched %d files', pattern, len(found))
    return found
