"""
Generation of the C source and build metadata for a packed bundle. The
generated code exposes the bundle to an embedded Perl interpreter as
Furoshiki::find and Furoshiki::list and installs an @INC hook, so that
requiring a module is satisfied from the bundle instead of the filesystem.
"""

from dataclasses import dataclass
import logging
from pathlib import Path
import re
import shlex
import sys
from textwrap import dedent
from typing import TYPE_CHECKING

from furoshiki import __version__
from .errors import BundleError
from .literal import c_identifier, encode_literal, perl_string
from .packer import OFFSET_BITS
from .resource import BOOT
from .toolchain import Toolchain
from .util import dedupe, write_atomically

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Sequence

    from .packer import PackedBundle


__all__ = (
    'Artifacts',
    'BundleGenerator',
    'compile_flags',
    'escape_flags',
    'link_flags',
    'write_artifacts',
)

logger = logging.getLogger('furoshiki.generator')

# Characters that only survive the shell or shlex.split() inside quotes.
_NEEDS_QUOTES = re.compile(r"[\s'\"\\$`]")


_BANNER = (
    '/*\n'
    ' * DO NOT EDIT! This file was automatically generated\n'
    ' * by Furoshiki {version} for bundle "{name}".\n'
    ' */\n\n')

_HEADER = """
#ifndef FUROSHIKI_BUNDLE_H
#define FUROSHIKI_BUNDLE_H

#include "EXTERN.h"
#include "perl.h"
#include "XSUB.h"

#define FUROSHIKI_BUNDLE_ENTRIES {entries}
#define FUROSHIKI_BUNDLE_SIZE {size}

typedef void (*bundle_callback) (const char *name, STRLEN name_len,
                                 const char *payload, STRLEN payload_len,
                                 void *arg);

/* Find the named resource. Returns 1 and its payload if found, 0 otherwise. */
EXTERN_C int bundle_find (const char *name, STRLEN name_len,
                          const char **payload, STRLEN *payload_len);

/* Invoke the callback on every resource in packed order. */
EXTERN_C void bundle_list (bundle_callback callback, void *arg);

/* Register DynaLoader, statically linked modules, and the bundle with Perl. */
EXTERN_C void bundle_xs_init (pTHX);

/* Install the @INC hook and run the bundled entry point, if any. */
EXTERN_C int bundle_boot (pTHX);

EXTERN_C const char bundle_name[];
EXTERN_C const char bundle_version[];
EXTERN_C const char bundle_bootstrap[];

#endif /* FUROSHIKI_BUNDLE_H */
"""

_LOOKUP = """
#define BUNDLE_OFFSET_BITS {offset_bits}
#define BUNDLE_OFFSET_MASK ((U32)((1UL << BUNDLE_OFFSET_BITS) - 1))

static void
bundle_entry (int i, const char **name, STRLEN *name_len,
              const char **payload, STRLEN *payload_len)
{{
  U32 offset = bundle_index[i] & BUNDLE_OFFSET_MASK;

  *name_len = (STRLEN)(bundle_index[i] >> BUNDLE_OFFSET_BITS) + 1;
  *name = bundle_data + offset;
  *payload = *name + *name_len;
  *payload_len = (bundle_index[i + 1] & BUNDLE_OFFSET_MASK) - offset - *name_len;
}}

/* Entries are sorted by name length first and name bytes second. */
static int
bundle_search (const char *name, STRLEN name_len)
{{
  int low = 0;
  int high = FUROSHIKI_BUNDLE_ENTRIES;

  while (low < high)
    {{
      int mid = (low + high) / 2;
      U32 record = bundle_index[mid];
      STRLEN mid_len = (STRLEN)(record >> BUNDLE_OFFSET_BITS) + 1;
      int cmp;

      if (name_len < mid_len)
        cmp = -1;
      else if (name_len > mid_len)
        cmp = 1;
      else
        cmp = memcmp (name, bundle_data + (record & BUNDLE_OFFSET_MASK), name_len);

      if (cmp < 0)
        high = mid;
      else if (cmp > 0)
        low = mid + 1;
      else
        return mid;
    }}

  return -1;
}}

int
bundle_find (const char *name, STRLEN name_len,
             const char **payload, STRLEN *payload_len)
{{
  const char *entry_name;
  STRLEN entry_name_len;
  int i = bundle_search (name, name_len);

  if (i < 0)
    return 0;

  bundle_entry (i, &entry_name, &entry_name_len, payload, payload_len);
  return 1;
}}

void
bundle_list (bundle_callback callback, void *arg)
{{
  int i;

  for (i = 0; i < FUROSHIKI_BUNDLE_ENTRIES; ++i)
    {{
      const char *name, *payload;
      STRLEN name_len, payload_len;

      bundle_entry (i, &name, &name_len, &payload, &payload_len);
      callback (name, name_len, payload, payload_len, arg);
    }}
}}

/* ---------------------------------------------------------------------------- */

XS (XS_Furoshiki_find)
{{
  dXSARGS;
  const char *name, *payload;
  STRLEN name_len, payload_len;

  if (items != 1)
    croak_xs_usage (cv, "name");

  name = SvPVbyte (ST (0), name_len);
  ST (0) = bundle_find (name, name_len, &payload, &payload_len)
         ? sv_2mortal (newSVpvn (payload, payload_len))
         : &PL_sv_undef;
  XSRETURN (1);
}}

XS (XS_Furoshiki_list)
{{
  dXSARGS;
  int i;

  if (items != 0)
    croak_xs_usage (cv, "");

  SP -= items;
  EXTEND (SP, 2 * FUROSHIKI_BUNDLE_ENTRIES);
  for (i = 0; i < FUROSHIKI_BUNDLE_ENTRIES; ++i)
    {{
      const char *name, *payload;
      STRLEN name_len, payload_len;

      bundle_entry (i, &name, &name_len, &payload, &payload_len);
      PUSHs (sv_2mortal (newSVpvn (name, name_len)));
      PUSHs (sv_2mortal (newSVpvn (payload, payload_len)));
    }}
  PUTBACK;
}}
"""

_XS_INIT_START = """
EXTERN_C void boot_DynaLoader (pTHX_ CV *cv);
{boot_declarations}
void
bundle_xs_init (pTHX)
{{
  static const char file[] = __FILE__;
  dXSUB_SYS;
  PERL_UNUSED_CONTEXT;

  newXS ("DynaLoader::boot_DynaLoader", boot_DynaLoader, file);
  newXS ("Furoshiki::find", XS_Furoshiki_find, file);
  newXS ("Furoshiki::list", XS_Furoshiki_list, file);
"""

_XS_INIT_STOP = """}

int
bundle_boot (pTHX)
{
  eval_pv (bundle_bootstrap, FALSE);
  if (SvTRUE (ERRSV))
    {
      PerlIO_printf (PerlIO_stderr (), "%s", SvPV_nolen (ERRSV));
      return 0;
    }
  return 1;
}
"""

_MAIN = """
#ifdef FUROSHIKI_APP

static PerlInterpreter *my_perl;

int
main (int argc, char **argv, char **env)
{
  int exitstatus;
  int i;
  char **args;

  PERL_SYS_INIT3 (&argc, &argv, &env);

  /* Run the bootstrap code as if it were given with -e. */
  args = (char **)malloc ((argc + 4) * sizeof (char *));
  args[0] = argv[0];
  args[1] = "-e";
  args[2] = (char *)bundle_bootstrap;
  args[3] = "--";
  for (i = 1; i < argc; ++i)
    args[i + 3] = argv[i];
  args[argc + 3] = 0;

  my_perl = perl_alloc ();
  perl_construct (my_perl);
  PL_exit_flags |= PERL_EXIT_DESTRUCT_END;

  exitstatus = perl_parse (my_perl, bundle_xs_init, argc + 3, args, env);
  if (!exitstatus)
    perl_run (my_perl);

  exitstatus = perl_destruct (my_perl);
  perl_free (my_perl);
  free (args);
  PERL_SYS_TERM ();
  return exitstatus;
}

#endif /* FUROSHIKI_APP */
"""

_HOOK = """
@INC = (sub {
  my $data = Furoshiki::find($_[1]);
  return unless defined $data;
  $INC{$_[1]} = '/furoshiki/' . $_[1];
  return sub {
    return 0 unless length $data;
    $_ = $data;
    $data = '';
    return 1;
  };
}, @INC);
"""

_BOOT = """
{{
  package main;
  my $boot = Furoshiki::find({boot});
  eval "#line 1 \\"{name}\\"\\n" . $boot . "\\n;1" or die $@;
}}
"""


# ======================================================================================


def _c_string(text: str) -> bytes:
    return b' '.join(
        line.rstrip(b'\n') for line in encode_literal(text.encode('utf8'), sys.maxsize))


class BundleGenerator:
    """Emit the header and source files for a packed bundle."""

    def __init__(
        self,
        bundle: 'PackedBundle',
        *,
        name: str = 'bundle',
        version: str = '0',
        static_modules: 'Sequence[str]' = (),
    ) -> None:
        self._bundle = bundle
        self._name = name
        self._version = version
        self._static_modules = tuple(static_modules)

    def __repr__(self) -> str:
        return f'<furoshiki-generator {self._name}>'

    @property
    def has_boot(self) -> bool:
        return BOOT in self._bundle

    def emit_banner(self) -> 'Iterator[bytes]':
        yield _BANNER.format(version=__version__, name=self._name).encode('utf8')

    def emit_header(self) -> 'Iterator[bytes]':
        yield from self.emit_banner()
        text = _HEADER.format(entries=len(self._bundle), size=len(self._bundle.data))
        yield from text.lstrip('\n').encode('utf8').splitlines(keepends=True)

    def emit_bootstrap(self) -> str:
        """The Perl code installing the @INC hook and running the entry point."""
        code = dedent(_HOOK).lstrip('\n')
        if self.has_boot:
            code += dedent(_BOOT.format(boot=perl_string(BOOT), name=BOOT))
        return code

    def emit_source(self, header_name: str = 'bundle.h') -> 'Iterator[bytes]':
        yield from self.emit_banner()
        yield b'#include <stdlib.h>\n'
        yield b'#include <string.h>\n'
        yield f'#include "{header_name}"\n\n'.encode('utf8')

        yield b'const char bundle_name[] = ' + _c_string(self._name) + b';\n'
        yield b'const char bundle_version[] = ' + _c_string(self._version) + b';\n\n'

        yield from self.emit_data()
        yield from self.emit_index()
        text = _LOOKUP.format(offset_bits=OFFSET_BITS)
        yield from text.encode('utf8').splitlines(keepends=True)
        yield from self.emit_xs_init()

        yield b'\nconst char bundle_bootstrap[] =\n'
        yield from encode_literal(self.emit_bootstrap().encode('utf8'))
        yield b';\n'
        yield from _MAIN.encode('utf8').splitlines(keepends=True)

    def emit_data(self) -> 'Iterator[bytes]':
        yield b'static const char bundle_data[] =\n'
        yield from encode_literal(self._bundle.data)
        yield b';\n\n'

    def emit_index(self) -> 'Iterator[bytes]':
        yield b'static const U32 bundle_index[FUROSHIKI_BUNDLE_ENTRIES + 1] = {\n'
        records = self._bundle.index
        for start in range(0, len(records), 6):
            line = ', '.join(f'0x{record:08x}' for record in records[start:start + 6])
            yield f'  {line},\n'.encode('ascii')
        yield b'};\n'

    def emit_xs_init(self) -> 'Iterator[bytes]':
        declarations = ''.join(
            f'EXTERN_C void boot_{c_identifier(module)} (pTHX_ CV *cv);\n'
            for module in self._static_modules
        )
        text = _XS_INIT_START.format(boot_declarations=declarations)
        yield from text.encode('utf8').splitlines(keepends=True)
        for module in self._static_modules:
            yield (
                f'  newXS ("{module}::bootstrap", boot_{c_identifier(module)}, file);\n'
                .encode('utf8'))
        yield from _XS_INIT_STOP.encode('utf8').splitlines(keepends=True)


# ======================================================================================


def _escape_flag(flag: str) -> str:
    if _NEEDS_QUOTES.search(flag):
        return shlex.quote(flag)
    return flag.replace('(', '\\(').replace(')', '\\)')


def escape_flags(flags: 'Iterable[str]') -> str:
    """
    Join the flags into one string that a shell or shlex.split() turns back
    into the same flags. Flags with whitespace or quotes are quoted, otherwise
    parentheses are escaped.
    """
    return ' '.join(_escape_flag(flag) for flag in flags)


def compile_flags(toolchain: Toolchain) -> str:
    return escape_flags(dedupe(toolchain.cflags))


def link_flags(
    toolchain: Toolchain,
    static_archives: 'Sequence[str | Path]' = (),
    extra_ldflags: 'Sequence[str]' = (),
) -> str:
    """
    Combine static archives, library directories, extra libraries, and the
    toolchain's linker flags. A library forced to be static is bracketed by
    switches to and from static linking.
    """
    flags = [
        *(str(archive) for archive in static_archives),
        *(f'-L{directory}' for directory in toolchain.libdirs),
        *extra_ldflags,
        *toolchain.ldflags,
    ]

    forced = {f'-l{library}' for library in toolchain.force_static}
    rewritten: list[str] = []
    for flag in dedupe(flags):
        if flag in forced:
            rewritten.extend(('-Wl,-Bstatic', flag, '-Wl,-Bdynamic'))
        else:
            rewritten.append(flag)
    return escape_flags(rewritten)


# --------------------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Artifacts:
    header: Path
    source: Path
    ccopts: Path
    ldopts: Path

    def __iter__(self) -> 'Iterator[Path]':
        return iter((self.header, self.source, self.ccopts, self.ldopts))


def write_artifacts(
    prefix: 'str | Path',
    generator: BundleGenerator,
    toolchain: Toolchain,
    *,
    static_archives: 'Sequence[str | Path]' = (),
    extra_ldflags: 'Sequence[str]' = (),
) -> Artifacts:
    """
    Write `<prefix>.h`, `<prefix>.c`, `<prefix>.ccopts`, and `<prefix>.ldopts`.
    Each file is fully generated before being atomically renamed into place.
    """
    prefix = Path(prefix)
    artifacts = Artifacts(
        prefix.with_name(prefix.name + '.h'),
        prefix.with_name(prefix.name + '.c'),
        prefix.with_name(prefix.name + '.ccopts'),
        prefix.with_name(prefix.name + '.ldopts'),
    )

    contents = (
        b''.join(generator.emit_header()),
        b''.join(generator.emit_source(artifacts.header.name)),
        compile_flags(toolchain).encode('utf8'),
        link_flags(toolchain, static_archives, extra_ldflags).encode('utf8'),
    )

    for path, content in zip(artifacts, contents):
        try:
            write_atomically(path, content)
        except OSError as x:
            raise BundleError(f'unable to write "{path}": {x.strerror}') from x
        logger.debug('wrote %d bytes to "%s"', len(content), path)

    return artifacts
