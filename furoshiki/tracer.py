"""
Querying a Perl interpreter: which files loading some modules pulls in, where
it searches for modules, and which flags embedding it requires.
"""

import logging
from pathlib import Path
import shlex
import subprocess
from typing import TYPE_CHECKING

from .errors import ToolchainError

if TYPE_CHECKING:
    from collections.abc import Sequence


__all__ = ('query_embed_flags', 'query_search_roots', 'trace_modules')

logger = logging.getLogger('furoshiki.tracer')


_TRACE = r"""
my $eval = 0;
for my $arg (@ARGV) {
  if ($arg eq '--eval') { $eval = 1; next }
  if ($eval) {
    eval "package main; $arg; 1" or die $@;
  } else {
    (my $file = "$arg.pm") =~ s{::}{/}g;
    require $file;
  }
}
for my $name (sort keys %INC) {
  my $path = $INC{$name};
  print "$name\0$path\0" if defined $path && !ref $path;
}
"""

_SEARCH_ROOTS = r'print join "\0", grep { !ref } @INC'


def _run_perl(perl: str, *arguments: str) -> str:
    command = [perl, *arguments]
    logger.debug('running %s', shlex.join(command))
    try:
        completion = subprocess.run(command, check=True, capture_output=True)
    except FileNotFoundError as x:
        raise ToolchainError(f'unable to find Perl interpreter "{perl}"') from x
    except subprocess.CalledProcessError as x:
        message = x.stderr.decode('utf8', errors='replace').strip()
        raise ToolchainError(
            f'Perl interpreter "{perl}" failed with exit status {x.returncode}: '
            f'{message}') from x
    return completion.stdout.decode('utf8', errors='surrogateescape')


def trace_modules(
    perl: str,
    uses: 'Sequence[str]' = (),
    evals: 'Sequence[str]' = (),
    search_roots: 'Sequence[str | Path]' = (),
) -> dict[str, Path]:
    """
    Load the modules and evaluate the code in a Perl process, then report the
    files it loaded as resource names mapped to their paths. The search roots
    take precedence over the interpreter's own @INC.
    """
    includes = [f'-I{root}' for root in search_roots]
    output = _run_perl(perl, *includes, '-e', _TRACE, '--', *uses, '--eval', *evals)
    fields = output.split('\0')
    traced = {}
    for name, path in zip(fields[0::2], fields[1::2]):
        # Files required by absolute path have no place in a bundle.
        if name.startswith('/'):
            continue
        traced[name] = Path(path)

    logger.info('tracing %d modules loaded %d files', len(uses), len(traced))
    return traced


def query_search_roots(perl: str) -> tuple[str, ...]:
    output = _run_perl(perl, '-e', _SEARCH_ROOTS)
    return tuple(root for root in output.split('\0') if root)


def query_embed_flags(perl: str) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """Determine the compiler and linker flags for embedding Perl."""
    cflags = _run_perl(perl, '-MExtUtils::Embed', '-e', 'ccopts')
    ldflags = _run_perl(perl, '-MExtUtils::Embed', '-e', 'ldopts')
    return tuple(shlex.split(cflags)), tuple(shlex.split(ldflags))
