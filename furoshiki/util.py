import os
from pathlib import Path
import tempfile
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable


__all__ = ('dedupe', 'file_mode', 'write_atomically')


def file_mode() -> int:
    """The mode open() would give a new file under the current umask."""
    # Reading the umask requires setting it.
    umask = os.umask(0o022)
    os.umask(umask)
    return 0o666 & ~umask


def write_atomically(path: 'str | Path', data: 'bytes | Iterable[bytes]') -> Path:
    """
    Write the data to a uniquely named temporary file in the target's directory
    and then rename it into place. Readers of the target either see the complete
    previous content or the complete new content, never a partial file.
    """
    path = Path(path)
    fd, staging = tempfile.mkstemp(
        prefix=f'.{path.name}.', suffix='.tmp', dir=path.parent)
    try:
        with os.fdopen(fd, mode='wb') as file:
            if isinstance(data, (bytes, bytearray)):
                file.write(data)
            else:
                for chunk in data:
                    file.write(chunk)
        # mkstemp() creates files only readable by their owner
        os.chmod(staging, file_mode())
        os.replace(staging, path)
    except BaseException:
        try:
            os.unlink(staging)
        except FileNotFoundError:
            pass
        raise
    return path


def dedupe(items: 'Iterable[str]') -> tuple[str, ...]:
    """Drop repeated items while preserving the order of first occurrence."""
    return tuple(dict.fromkeys(items))
