#!.venv/bin/python

# mypy: disallow_any_expr = false

from argparse import ArgumentParser
from dataclasses import dataclass
from importlib import import_module
import inspect
from pathlib import Path
import subprocess
import shutil
import sys

from tests.console import Console


# ======================================================================================


@dataclass
class Options:
    test_runner: str
    console: Console
    module_name: str = ''
    verbose: bool = False

    def make_verbose(self) -> None:
        self.verbose = True
        self.console.verbose = True

    def module_command(self, module: str) -> list[str]:
        command = [sys.executable, self.test_runner, '--module', module]
        if self.verbose:
            command.append('-v')
        return command


def run_tests(options: Options) -> int:
    console = options.console
    console.info("Getting started with Furoshiki's test suite...")
    console.detail(f'Running "{sys.executable}"')
    console.detail(f' - Python {sys.version}')

    try:
        import furoshiki
        from furoshiki.literal import decode_literal
        from furoshiki.packer import pack
    except ImportError:
        console.error('Unable to import furoshiki')
        sys.exit(1)

    console.detail(f'Testing furoshiki {furoshiki.__version__}')

    cwd = Path('.').absolute()
    tmpdir = cwd / 'tmp'

    shutil.rmtree(tmpdir, ignore_errors=True)
    tmpdir.mkdir()

    # ----------------------------------------------------------------------------------

    console.info('Running unit tests...')

    for module in sorted(
        f'tests.{path.stem}' for path in (cwd / 'tests').glob('test_*.py')
    ):
        console.detail(f'╭──── {module}')
        subprocess.run(options.module_command(module), check=True)
        console.detail('╰─╼')

    # ----------------------------------------------------------------------------------

    console.info('Bundling a small library twice...')
    from tests.fixtures import FOO_BAR, plant

    plant(tmpdir / 'lib', FOO_BAR)
    (tmpdir / 'furoshiki.toml').write_text(
        '[bundle]\n'
        'name = "demo"\n'
        'query-perl = false\n'
        'search-roots = ["lib"]\n'
        'use = ["Foo::Bar"]\n'
        'transform = "pod"\n',
        encoding='utf8')

    for index in (1, 2):
        subprocess.run([
                sys.executable,
                '-m', 'furoshiki',
                '-c', str(tmpdir / 'furoshiki.toml'),
                '-o', str(tmpdir / f'demo{index}'),
            ],
            check=True
        )
        console.detail(f'Created tmp/demo{index}.c')

    # ----------------------------------------------------------------------------------

    console.info('Comparing generated bundles...')
    sources = [(tmpdir / f'demo{index}.c').read_bytes() for index in (1, 2)]
    if sources[0] != sources[1]:
        console.error('Building the same bundle twice generated different sources!')
        sys.exit(1)
    console.detail('Both bundles are byte for byte the same')

    marker = b'static const char bundle_data[] =\n'
    start = sources[0].index(marker) + len(marker)
    data = decode_literal(sources[0][start:sources[0].index(b'\n;\n\n', start)])

    expected = pack({
        name: (tmpdir / 'lib' / name).read_bytes()
        for name in ('Foo/Bar.pm', 'auto/Foo/Bar/autosplit.ix',
                     'auto/Foo/Bar/baz.al', 'auto/Foo/Bar/quux.al')
    })
    if data != expected.data:
        console.error('Embedded bundle data differs from packed resources!')
        sys.exit(1)
    console.detail('Embedded bundle data matches packed resources')

    # ----------------------------------------------------------------------------------

    console.success('W00t! All tests passed!')

    shutil.rmtree(tmpdir)
    return 0

# ======================================================================================


def list_test_functions(module_name: str) -> list[tuple[str, object]]:
    """The module's own test functions in the order they are defined."""
    module = import_module(module_name)
    functions = [
        fn for name, fn in inspect.getmembers(module, inspect.isfunction)
        if name.startswith('test_') and fn.__module__ == module.__name__
    ]
    functions.sort(key=lambda fn: fn.__code__.co_firstlineno)
    return [(fn.__name__, fn) for fn in functions]


def run_module_test(options: Options) -> int:
    console = options.console
    crashed = []

    for name, fn in list_test_functions(options.module_name):
        console.detail(f'├─ {name}')
        with console.new_prefix('│   '):
            try:
                fn(console)  # type: ignore[operator]
            except Exception as x:
                console.exception(x)
                crashed.append(name)

    if crashed:
        console.error(f'{len(crashed)} test(s) raised: {", ".join(crashed)}')
    if console.failed_assertions:
        console.error(f'{console.failed_assertions} assertion(s) failed')
    return 1 if crashed or console.failed_assertions else 0


def parse_arguments(options: Options) -> None:
    parser = ArgumentParser(description="Run Furoshiki's test suite.")
    parser.add_argument(
        '--module', metavar='NAME', help='only run test functions of this module')
    parser.add_argument('-v', '--verbose', action='store_true')
    arguments = parser.parse_args()

    if arguments.verbose:
        options.make_verbose()
    if arguments.module is not None:
        options.module_name = arguments.module


# --------------------------------------------------------------------------------------


if __name__ == '__main__':
    options = Options(sys.argv[0], Console(sys.stdout))
    parse_arguments(options)
    console = options.console

    try:
        sys.exit(run_module_test(options) if options.module_name else run_tests(options))
    except subprocess.CalledProcessError as x:
        command = ' '.join(['python', *x.cmd[1:]])
        console.error(f'command "{command}" failed with exit status {x.returncode}')
        sys.exit(1)
    except Exception as x:
        console.exception(x)
        sys.exit(1)
