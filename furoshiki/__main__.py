from argparse import ArgumentParser, HelpFormatter, RawTextHelpFormatter
from dataclasses import dataclass, field
import logging
import os
from pathlib import Path
import sys
from textwrap import dedent
import traceback

from furoshiki import __version__
from .config import BundleConfig
from .maker import BundleMaker
from .scanner import RootPolicy


def parser() -> ArgumentParser:
    try:
        width = min(os.get_terminal_size()[0], 70)
    except OSError:
        width = 70

    def width_limited_formatter(prog: str) -> HelpFormatter:
        return RawTextHelpFormatter(prog, width=width)

    parser = ArgumentParser('furoshiki',
        description=dedent("""
            Wrap Perl modules, their autoloaded functions, and data files into
            a single bundle that is compiled into a statically linked Perl.

            Furoshiki determines which files to include by loading the modules
            given with -u/--use in a Perl process and recording which files
            Perl reads. It then scans each module's auto/ directory for
            autoloaded functions, static archives, and extra libraries, and,
            with -p/--packlists, for the files installed by the same
            distribution. Modules that only have a dynamically loadable object
            cannot be bundled.

            Furoshiki writes the bundle as C source <output>.c with header
            <output>.h together with the flags for compiling and linking it in
            <output>.ccopts and <output>.ldopts. Use -a/--app to compile and
            link a standalone executable instead. If a --boot script is given,
            the executable runs it on startup.
        """),
        formatter_class=width_limited_formatter)
    parser.add_argument(
        '-c', '--config',
        metavar='FILENAME',
        help='read configuration from [bundle] table of TOML file\n'
        'or [tool.furoshiki] table of pyproject.toml')
    parser.add_argument(
        '-u', '--use',
        metavar='MODULE', action='append', default=[],
        help='bundle module and all files it loads')
    parser.add_argument(
        '-e', '--eval',
        metavar='CODE', action='append', default=[],
        help='bundle all files loaded by evaluating code')
    parser.add_argument(
        '-g', '--incglob',
        metavar='GLOB', action='append', default=[],
        help='bundle all files in search roots matching glob')
    parser.add_argument(
        '--add',
        metavar='PATH[=NAME]', action='append', default=[],
        help='bundle file under name, which defaults to path')
    parser.add_argument(
        '--binary',
        metavar='GLOB', action='append', default=[],
        help='bundle matching files without transforming them')
    parser.add_argument(
        '-i', '--include',
        metavar='GLOB', dest='filters', action='append',
        type=lambda glob: (True, glob), default=[],
        help='keep matching files despite later --exclude')
    parser.add_argument(
        '-x', '--exclude',
        metavar='GLOB', dest='filters', action='append',
        type=lambda glob: (False, glob),
        help='drop matching files')
    parser.add_argument(
        '-p', '--packlists',
        action='store_true', default=None,
        help='also bundle files listed in modules\' .packlist')
    parser.add_argument(
        '--packlist-roots',
        choices=[policy.value for policy in RootPolicy],
        help='match .packlist entries against first matching\nsearch root or '
        'only the first search root')
    parser.add_argument(
        '-s', '--strip',
        metavar='TRANSFORM', dest='transform',
        help='transform resources with "none" or "pod"')
    parser.add_argument(
        '--cache',
        metavar='DIRECTORY',
        help='cache transformed resources in directory')
    parser.add_argument(
        '--static-library',
        metavar='LIBRARY', dest='static_libraries', action='append', default=[],
        help='link library statically')
    parser.add_argument(
        '--perl',
        metavar='PERL',
        help='use this Perl interpreter')
    parser.add_argument(
        '--boot',
        metavar='FILENAME',
        help='run script when bundle starts')
    parser.add_argument(
        '-o', '--output',
        metavar='PREFIX',
        help='write bundle files with this prefix')
    parser.add_argument(
        '-a', '--app',
        metavar='FILENAME',
        help='build executable with this name')
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='enable verbose output')
    parser.add_argument(
        '-V', '--version',
        action='version', version=f'%(prog)s {__version__}')
    return parser


@dataclass
class ToolOptions:
    config: 'None | str' = None
    use: 'list[str]' = field(default_factory=list)
    eval: 'list[str]' = field(default_factory=list)
    incglob: 'list[str]' = field(default_factory=list)
    add: 'list[str]' = field(default_factory=list)
    binary: 'list[str]' = field(default_factory=list)
    filters: 'list[tuple[bool, str]]' = field(default_factory=list)
    packlists: 'None | bool' = None
    packlist_roots: 'None | str' = None
    transform: 'None | str' = None
    cache: 'None | str' = None
    static_libraries: 'list[str]' = field(default_factory=list)
    perl: 'None | str' = None
    boot: 'None | str' = None
    output: 'None | str' = None
    app: 'None | str' = None
    verbose: bool = False

    def to_config(self) -> BundleConfig:
        base = BundleConfig() if self.config is None else BundleConfig.from_toml(self.config)

        def extend(current: tuple, additions: list) -> 'None | tuple':
            return (*current, *additions) if additions else None

        additions = []
        for item in self.add:
            path, _, name = item.partition('=')
            additions.append((name or path, Path(path)))

        return base.with_overrides(
            use=extend(base.use, self.use),
            eval=extend(base.eval, self.eval),
            incglob=extend(base.incglob, self.incglob),
            add=extend(base.add, additions),
            binary=extend(base.binary, self.binary),
            filters=extend(base.filters, self.filters),
            follow_packlists=self.packlists,
            packlist_roots=None if self.packlist_roots is None else RootPolicy(
                self.packlist_roots),
            transform=self.transform,
            cache=None if self.cache is None else Path(self.cache),
            static_libraries=extend(base.static_libraries, self.static_libraries),
            perl=self.perl,
            boot=None if self.boot is None else Path(self.boot),
            output=None if self.output is None else Path(self.output),
            app=None if self.app is None else Path(self.app),
        )


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(logging.Formatter('%(message)s'))

    logger = logging.getLogger('furoshiki')
    logger.setLevel(level)
    logger.propagate = False
    logger.handlers.clear()
    logger.addHandler(handler)


def main() -> None:
    options = parser().parse_args(namespace=ToolOptions())
    configure_logging(options.verbose)

    try:
        BundleMaker(options.to_config()).run()
    except Exception as x:
        if options.verbose:
            traceback.print_exception(x)
        else:
            print(f'Error: {x}', file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
