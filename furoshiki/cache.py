"""
A content-addressed cache for transformed resources. Each entry is a file
named after the SHA-256 digest of the transform parameters and the input
bytes. Entries are written once and never modified, so several builds may
safely share one cache directory.
"""

import hashlib
import json
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from .util import write_atomically

if TYPE_CHECKING:
    from collections.abc import Mapping


__all__ = ('Cache',)

logger = logging.getLogger('furoshiki.cache')


class Cache:

    ENVIRONMENT_VARIABLE = 'FUROSHIKI_CACHE'

    def __init__(self, directory: 'str | Path') -> None:
        self._directory = Path(directory)

    @classmethod
    def from_environment(cls) -> 'None | Cache':
        directory = os.environ.get(cls.ENVIRONMENT_VARIABLE)
        return None if not directory else cls(directory)

    def __repr__(self) -> str:
        return f'<furoshiki-cache {self._directory}>'

    @property
    def directory(self) -> Path:
        return self._directory

    @staticmethod
    def key(parameters: 'Mapping[str, str]', data: bytes) -> str:
        hasher = hashlib.sha256()
        hasher.update(
            json.dumps(dict(parameters), sort_keys=True, separators=(',', ':'))
            .encode('utf8'))
        hasher.update(b'\0')
        hasher.update(data)
        return hasher.hexdigest()

    def path(self, key: str) -> Path:
        return self._directory / key

    def __contains__(self, key: str) -> bool:
        return self.path(key).is_file()

    def get(self, key: str) -> 'None | bytes':
        try:
            return self.path(key).read_bytes()
        except FileNotFoundError:
            return None
        except OSError as x:
            logger.warning('unable to read cache entry "%s": %s', key, x)
            return None

    def put(self, key: str, value: bytes) -> bool:
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            write_atomically(self.path(key), value)
        except OSError as x:
            logger.warning('unable to write cache entry "%s": %s', key, x)
            return False
        return True
