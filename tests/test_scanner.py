from pathlib import Path
from tempfile import TemporaryDirectory

from furoshiki.errors import AutoloadError, BundleError, StaticLinkError
from furoshiki.resource import FilePath, InMemoryBytes
from furoshiki.scanner import apply_filters, compile_glob, GlobSet, RootPolicy, scan

from .console import Console
from .fixtures import FOO_BAR, plant


def test_globs(console: Console) -> None:
    console.assert_true(compile_glob('*.pm').fullmatch('Foo.pm'), '*.pm')
    console.assert_true(not compile_glob('*.pm').fullmatch('Foo/Bar.pm'), '*.pm')
    console.assert_true(compile_glob('**.pm').fullmatch('Foo/Bar.pm'), '**.pm')
    console.assert_true(compile_glob('Foo/?ar.pm').fullmatch('Foo/Bar.pm'), '?')
    console.assert_true(not compile_glob('Foo?Bar.pm').fullmatch('Foo/Bar.pm'), '?')
    console.assert_true(compile_glob('a+b.pm').fullmatch('a+b.pm'), 'literal')

    binary = GlobSet(['**.png', 'auto/**.so'])
    console.assert_op('contains', binary, 'Foo/logo.png')
    console.assert_op('contains', binary, 'Foo.pm', expected=False)
    console.assert_op('contains', GlobSet([]), 'Foo.pm', expected=False)


def test_filters(console: Console) -> None:
    names = {'a.pm', 'b.pm', 't/x.pm'}

    console.assert_eq(apply_filters(names, []), frozenset(names))
    console.assert_eq(apply_filters(names, [(False, '*.pm')]), frozenset({'t/x.pm'}))
    console.assert_eq(
        apply_filters(names, [(False, '**/*.pm')]), frozenset({'a.pm', 'b.pm'}))
    # Including after excluding brings back the excluded name.
    console.assert_eq(
        apply_filters(names, [(False, '**.pm'), (True, 'a.pm')]), frozenset({'a.pm'}))
    # Including before excluding protects the name.
    console.assert_eq(
        apply_filters(names, [(True, 'a.pm'), (False, '**')]), frozenset({'a.pm'}))
    # Including never adds names.
    console.assert_eq(apply_filters(names, [(True, 'zzz.pm')]), frozenset(names))


def test_autoload_and_static_linking(console: Console) -> None:
    with TemporaryDirectory() as tmpdir:
        root = plant(Path(tmpdir), {
            **FOO_BAR,
            'Baz.pm': 'package Baz; 1;\n',
            'auto/Baz/extralibs.ld': '-lz -lcrypt\n',
        })

        result = scan(
            {
                'Foo/Bar.pm': FilePath(root / 'Foo/Bar.pm'),
                'Baz.pm': FilePath(root / 'Baz.pm'),
            },
            binary=GlobSet(['**.al']),
            search_roots=[root],
        )

        console.assert_eq(sorted(result.resources), [
            'Baz.pm',
            'Foo/Bar.pm',
            'auto/Foo/Bar/autosplit.ix',
            'auto/Foo/Bar/baz.al',
            'auto/Foo/Bar/quux.al',
        ])
        console.assert_eq(result.static_archives, (root / 'auto/Foo/Bar/Bar.a',))
        console.assert_eq(result.static_modules, ('Foo::Bar',))
        console.assert_eq(result.extra_ldflags, ('-lm', '-lz', '-lcrypt'))

        baz = result.resources['auto/Foo/Bar/baz.al']
        console.assert_eq(baz.payload, FOO_BAR['auto/Foo/Bar/baz.al'].encode('utf8'))
        console.assert_true(baz.binary, 'binary')
        console.assert_true(not result.resources['Foo/Bar.pm'].binary, 'text')


def test_autoloaded_file_replaces_seed(console: Console) -> None:
    with TemporaryDirectory() as tmpdir:
        root = plant(Path(tmpdir), FOO_BAR)
        result = scan({
            'Foo/Bar.pm': FilePath(root / 'Foo/Bar.pm'),
            'auto/Foo/Bar/baz.al': InMemoryBytes(b'stale'),
        })

        console.assert_eq(
            result.resources['auto/Foo/Bar/baz.al'].origin,
            FilePath(root / 'auto/Foo/Bar/baz.al'))


def test_missing_autoloaded_file(console: Console) -> None:
    with TemporaryDirectory() as tmpdir:
        root = plant(Path(tmpdir), {
            'Foo.pm': 'package Foo; 1;\n',
            'auto/Foo/autosplit.ix': 'package Foo;\nsub here;\nsub gone;\n1;\n',
            'auto/Foo/here.al': 'sub here { 1 }\n',
        })

        with console.assert_raises(AutoloadError, 'auto/Foo/gone.al'):
            scan({'Foo.pm': FilePath(root / 'Foo.pm')})


def test_dynamic_objects_are_fatal(console: Console) -> None:
    with TemporaryDirectory() as tmpdir:
        root = plant(Path(tmpdir), {
            **FOO_BAR,
            'auto/Foo/Bar/Bar.so': b'\x7fELF',
            'Dyn.pm': 'package Dyn; 1;\n',
            'auto/Dyn/Dyn.bundle': b'\xcf\xfa\xed\xfe',
        })

        with console.assert_raises(StaticLinkError, 'Foo::Bar'):
            scan({'Foo/Bar.pm': FilePath(root / 'Foo/Bar.pm')})
        with console.assert_raises(StaticLinkError, 'Dyn'):
            scan({'Dyn.pm': FilePath(root / 'Dyn.pm')}, dlext='bundle')

        # The object only counts with the platform's extension.
        result = scan({'Dyn.pm': FilePath(root / 'Dyn.pm')})
        console.assert_eq(list(result.resources), ['Dyn.pm'])


def test_unreadable_seeds(console: Console) -> None:
    with TemporaryDirectory() as tmpdir:
        root = plant(Path(tmpdir), {'Foo.pm': 'package Foo; 1;\n'})
        seeds = {
            'Foo.pm': FilePath(root / 'Foo.pm'),
            'Gone.pm': FilePath(root / 'Gone.pm'),
        }

        with console.assert_raises(BundleError, 'unable to read resource "Gone.pm"'):
            scan(seeds)

        result = scan(seeds, [(False, 'Gone.pm')])
        console.assert_eq(list(result.resources), ['Foo.pm'])


# --------------------------------------------------------------------------------------


def plant_packlist(first: Path, second: Path) -> None:
    plant(first, {'Other.pm': 'package Other; 1;\n'})
    plant(second, {
        'Foo/Bar.pm': 'package Foo::Bar; 1;\n',
        'Foo/Bar/Helper.pm': 'package Foo::Bar::Helper; 1;\n',
        'auto/Foo/Bar/Helper/autosplit.ix': 'package Foo::Bar::Helper;\nsub help;\n',
        'auto/Foo/Bar/Helper/help.al': 'sub help { 1 }\n',
        'auto/Foo/Bar/.packlist': '\n'.join([
            f'{second}/Foo/Bar.pm type=file',
            f'{second}/Foo/Bar/Helper.pm type=file',
            f'{second}/Foo/Bar/README type=file',
            f'{second}/Foo/Bar/Gone.pm type=file',
            f'{first}/Other.pm',
            '/elsewhere/bin/tool.pl type=file',
            '',
        ]),
    })


def test_packlist_first_match(console: Console) -> None:
    with TemporaryDirectory() as tmpdir:
        first, second = Path(tmpdir) / 'first', Path(tmpdir) / 'second'
        plant_packlist(first, second)

        result = scan(
            {'Foo/Bar.pm': FilePath(second / 'Foo/Bar.pm')},
            search_roots=[first, second],
            follow_packlists=True,
        )

        console.assert_eq(sorted(result.resources), [
            'Foo/Bar.pm',
            'Foo/Bar/Helper.pm',
            'Other.pm',
            'auto/Foo/Bar/Helper/autosplit.ix',
            'auto/Foo/Bar/Helper/help.al',
        ])
        console.assert_eq(
            result.resources['Foo/Bar/Helper.pm'].origin,
            FilePath(second / 'Foo/Bar/Helper.pm'))


def test_packlist_first_root(console: Console) -> None:
    with TemporaryDirectory() as tmpdir:
        first, second = Path(tmpdir) / 'first', Path(tmpdir) / 'second'
        plant_packlist(first, second)

        result = scan(
            {'Foo/Bar.pm': FilePath(second / 'Foo/Bar.pm')},
            search_roots=[first, second],
            follow_packlists=True,
            root_policy=RootPolicy.FIRST_ROOT,
        )

        console.assert_eq(sorted(result.resources), ['Foo/Bar.pm', 'Other.pm'])


def test_packlist_ignored_by_default(console: Console) -> None:
    with TemporaryDirectory() as tmpdir:
        first, second = Path(tmpdir) / 'first', Path(tmpdir) / 'second'
        plant_packlist(first, second)

        result = scan(
            {'Foo/Bar.pm': FilePath(second / 'Foo/Bar.pm')},
            search_roots=[first, second],
        )
        console.assert_eq(list(result.resources), ['Foo/Bar.pm'])
