from collections.abc import Iterator
from contextlib import contextmanager
import itertools as it
import operator
import traceback
from typing import Callable, Self, TextIO


def textify(v: object) -> str:
    try:
        text = repr(v) if isinstance(v, (bytes, str)) else str(v)
    except Exception:
        text = object.__repr__(v)
    return text if len(text) <= 72 else text[:69] + '...'


class Console:
    """
    A console for reporting test progress. Assertions are counted instead of
    raised, so that a test function keeps checking after the first failure.
    """

    _CSI = '\x1b['
    _BOLD = '1'
    _GREY = '38;5;240'
    _GREEN = '1;32'
    _RED = '1;31'
    _RESET = '39;0'

    def __init__(self, stream: 'TextIO', verbose: bool = False) -> None:
        self._is_tty = stream.isatty()
        self._stream = stream
        self.verbose = verbose
        self._prefix_value = ''
        self._failed_assertions = 0

    def _sgr(self, code: str) -> str:
        return f'{self._CSI}{code}m' if self._is_tty else ''

    # ----------------------------------------------------------------------------------

    @contextmanager
    def new_prefix(self, prefix: str) -> 'Iterator[Console]':
        old_prefix = self._prefix_value
        try:
            self._prefix_value = prefix
            yield self
        finally:
            self._prefix_value = old_prefix

    def _line(self, message: str, style: 'None | str' = None) -> Self:
        self._stream.write(self._prefix_value)
        if style is None:
            self._stream.write(message)
        else:
            self._stream.write(f'{self._sgr(style)}{message}{self._sgr(self._RESET)}')
        self._stream.write('\n')
        return self

    # ----------------------------------------------------------------------------------

    def trace(self, message: str) -> None:
        if self.verbose:
            self._line(message, self._GREY)

    def detail(self, message: str) -> None:
        self._line(message)

    def info(self, message: str) -> None:
        self._line(message, self._BOLD)

    def success(self, message: str) -> None:
        self._line(message, self._GREEN)

    def error(self, message: str) -> None:
        self._line(message, self._RED)

    def exception(self, x: BaseException) -> None:
        for line in it.chain(*(f.splitlines() for f in traceback.format_exception(x))):
            if (
                line == ''
                or line.startswith(' ')
                or line.startswith('During handling')
                or line == 'Traceback (most recent call last):'
            ):
                self._line(line)
            else:
                self._line(line, self._RED)

    # ----------------------------------------------------------------------------------

    @property
    def failed_assertions(self) -> int:
        return self._failed_assertions

    def _record(self, failed: 'bool | BaseException', display: str) -> None:
        if not failed:
            self.trace(f'PASS: {display}')
            return

        self._failed_assertions += 1
        self.error(f'FAIL: {display}')
        if isinstance(failed, BaseException):
            self.exception(failed)

    def assert_eq(self, left: object, right: object) -> None:
        self.assert_op(operator.eq, left, right)

    def assert_true(self, value: object, label: str = 'truth') -> None:
        self._record(not value, f'{label}｟ {textify(value)} ｠')

    def assert_op(
        self,
        op: 'str | Callable[..., object]',
        /,
        *args: object,
        expected: bool = True,
    ) -> None:
        fn = getattr(operator, op) if isinstance(op, str) else op
        fn_name = getattr(fn, '__name__', str(fn))

        prefix = '' if expected else 'not '
        display = f'{prefix}{fn_name}｟ {",  ".join(textify(a) for a in args)} ｠'

        failed: bool | Exception = False
        try:
            result = bool(fn(*args))
            failed = not result if expected else result
        except Exception as x:
            failed = x

        self._record(failed, display)

    @contextmanager
    def assert_raises(
        self, kind: type[BaseException], fragment: str = ''
    ) -> 'Iterator[None]':
        """Check that the body raises the exception with message fragment."""
        display = f'raises｟ {kind.__name__},  {fragment!r} ｠'
        try:
            yield
        except kind as x:
            if fragment in str(x):
                self._record(False, display)
            else:
                self._record(True, f'{display} but message is {str(x)!r}')
        else:
            self._record(True, f'{display} but nothing was raised')
