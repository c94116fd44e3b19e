from pathlib import Path
import shlex
import shutil
import sys

from furoshiki.errors import ToolchainError
from furoshiki.toolchain import Toolchain
from furoshiki.tracer import query_embed_flags


def plant(root: Path, files: 'dict[str, str | bytes]') -> Path:
    """Create the files below the root, which stands in for a Perl library."""
    for name, content in files.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, str):
            path.write_text(content, encoding='utf8')
        else:
            path.write_bytes(content)
    return root


FOO_BAR = {
    'Foo/Bar.pm': 'package Foo::Bar;\nuse AutoLoader;\n1;\n__END__\nsub baz { 42 }\n',
    'auto/Foo/Bar/autosplit.ix': (
        '# Index created by AutoSplit for blib/lib/Foo/Bar.pm\n'
        '#    (file acts as timestamp)\n'
        'package Foo::Bar;\n'
        'sub baz ;\n'
        'sub quux ($$) ;\n'
        '1;\n'
    ),
    'auto/Foo/Bar/baz.al': 'package Foo::Bar;\nsub baz { 42 }\n1;\n',
    'auto/Foo/Bar/quux.al': 'package Foo::Bar;\nsub quux { $_[0] + $_[1] }\n1;\n',
    'auto/Foo/Bar/extralibs.ld': '-lm -lz\n',
    'auto/Foo/Bar/Bar.a': b'!<arch>\n',
}


# A stand-in C compiler that writes its arguments into the output file.
FAKE_CC = shlex.join([sys.executable, '-c', (
    'import sys\n'
    'arguments = sys.argv[1:]\n'
    'with open(arguments[arguments.index("-o") + 1], "w") as file:\n'
    '    file.write(" ".join(arguments))\n'
)])

FAILING_CC = shlex.join([sys.executable, '-c', 'raise SystemExit(3)'])


def embedding_toolchain() -> 'None | Toolchain':
    """
    The toolchain for compiling code that embeds the Perl on the path, or None
    if there is no Perl, no C compiler, or no Perl headers.
    """
    perl = shutil.which('perl')
    if perl is None or shutil.which('cc') is None:
        return None
    try:
        cflags, ldflags = query_embed_flags(perl)
    except ToolchainError:
        return None

    headers = [Path(flag[2:]) / 'perl.h' for flag in cflags if flag.startswith('-I')]
    if not any(header.is_file() for header in headers):
        return None
    return Toolchain(cflags=cflags, ldflags=ldflags)
