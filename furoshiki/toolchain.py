from dataclasses import dataclass
import logging
from pathlib import Path
import shlex
import subprocess
from typing import TYPE_CHECKING

from .errors import ToolchainError

if TYPE_CHECKING:
    from collections.abc import Sequence


__all__ = ('Toolchain',)

logger = logging.getLogger('furoshiki.toolchain')


@dataclass(frozen=True, slots=True)
class Toolchain:
    """The native compiler and the flags for compiling and linking a bundle."""
    cc: str = 'cc'
    cflags: tuple[str, ...] = ()
    ldflags: tuple[str, ...] = ()
    libdirs: tuple[str, ...] = ()
    # Libraries linked statically even if a shared version exists.
    force_static: tuple[str, ...] = ()

    def command(
        self,
        source: 'str | Path',
        output: 'str | Path',
        ccopts: str,
        ldopts: str,
    ) -> list[str]:
        return [
            *shlex.split(self.cc),
            *shlex.split(ccopts),
            '-DFUROSHIKI_APP',
            '-o', str(output),
            str(source),
            *shlex.split(ldopts),
        ]

    def build_executable(
        self,
        source: 'str | Path',
        ccopts_file: 'str | Path',
        ldopts_file: 'str | Path',
        output: 'str | Path',
        *,
        intermediates: 'Sequence[str | Path]' = (),
    ) -> Path:
        """
        Compile and link the generated source into an executable. Upon success,
        remove the intermediate files, which include the flag files.
        """
        try:
            ccopts = Path(ccopts_file).read_text(encoding='utf8')
            ldopts = Path(ldopts_file).read_text(encoding='utf8')
        except OSError as x:
            raise ToolchainError(f'unable to read build flags: {x}') from x

        command = self.command(source, output, ccopts, ldopts)
        logger.info('building "%s"', output)
        logger.debug('running %s', shlex.join(command))
        try:
            subprocess.run(command, check=True)
        except FileNotFoundError as x:
            raise ToolchainError(f'unable to find C compiler "{self.cc}"') from x
        except subprocess.CalledProcessError as x:
            raise ToolchainError(
                f'C compiler failed with exit status {x.returncode} '
                f'while building "{output}"') from x

        for path in (source, ccopts_file, ldopts_file, *intermediates):
            Path(path).unlink(missing_ok=True)
        return Path(output)
