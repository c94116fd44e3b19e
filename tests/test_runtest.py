import io
import sys

from runtest import Options, list_test_functions, run_module_test

from .console import Console


def test_functions_in_definition_order(console: Console) -> None:
    names = [name for name, _ in list_test_functions('tests.test_util')]
    console.assert_eq(names, [
        'test_write_respects_umask',
        'test_write_chunks',
        'test_failed_write_keeps_previous',
        'test_dedupe',
    ])

    # Imported helpers are not collected.
    names = [name for name, _ in list_test_functions('tests.test_runtest')]
    console.assert_op('contains', names, 'list_test_functions', expected=False)
    console.assert_op('contains', names, 'run_module_test', expected=False)


def test_module_command(console: Console) -> None:
    options = Options('runtest.py', Console(io.StringIO()))
    console.assert_eq(
        options.module_command('tests.test_util'),
        [sys.executable, 'runtest.py', '--module', 'tests.test_util'])

    options.make_verbose()
    console.assert_eq(options.module_command('tests.test_util')[-1], '-v')


def test_run_module(console: Console) -> None:
    output = io.StringIO()
    options = Options('runtest.py', Console(output), module_name='tests.test_literal')
    console.assert_eq(run_module_test(options), 0)
    console.assert_eq(options.console.failed_assertions, 0)
