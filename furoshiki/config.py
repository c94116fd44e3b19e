"""Bundle configuration, read from a TOML file and amended by the command line."""

from dataclasses import dataclass, field, fields, KW_ONLY, replace
from pathlib import Path
import tomllib
from typing import cast, Literal, overload, TypeVar

from packaging.version import InvalidVersion, Version as PackagingVersion

from .errors import ConfigError
from .scanner import RootPolicy


__all__ = ('BundleConfig',)


T = TypeVar('T')


def normalize_version(version: str) -> str:
    try:
        return str(PackagingVersion(version))
    except InvalidVersion as x:
        raise ConfigError(f'bundle version "{version}" is invalid') from x


@dataclass(frozen=True, slots=True)
class BundleConfig:
    name: str = 'bundle'
    version: str = '0'
    _: KW_ONLY
    perl: str = 'perl'
    query_perl: bool = True
    search_roots: tuple[str, ...] = ()
    use: tuple[str, ...] = ()
    eval: tuple[str, ...] = ()
    incglob: tuple[str, ...] = ()
    add: tuple[tuple[str, Path], ...] = ()
    binary: tuple[str, ...] = ()
    filters: tuple[tuple[bool, str], ...] = ()
    follow_packlists: bool = False
    packlist_roots: RootPolicy = RootPolicy.FIRST_MATCH
    transform: str = 'none'
    transform_parameters: tuple[tuple[str, str], ...] = ()
    cache: None | Path = None
    static_libraries: tuple[str, ...] = ()
    cc: str = 'cc'
    cflags: tuple[str, ...] = ()
    ldflags: tuple[str, ...] = ()
    libdirs: tuple[str, ...] = ()
    dlext: str = 'so'
    output: Path = field(default_factory=lambda: Path('bundle'))
    app: None | Path = None
    boot: None | Path = None
    provenance: None | str = None

    def __post_init__(self) -> None:
        object.__setattr__(self, 'version', normalize_version(self.version))

    def with_overrides(self, **changes: object) -> 'BundleConfig':
        """Replace the given settings. None means keep the current setting."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    @classmethod
    def keys(cls) -> tuple[str, ...]:
        return tuple(f.name.replace('_', '-') for f in fields(cls) if f.name not in (
            '_', 'provenance'))

    @classmethod
    def from_toml(cls, path: str | Path) -> 'BundleConfig':
        """
        Read the configuration from the `[bundle]` table of a TOML file or the
        `[tool.furoshiki]` table of a `pyproject.toml` file. Relative paths are
        resolved against the file's directory.
        """
        path = Path(path)
        try:
            with open(path, mode='rb') as file:
                metadata = cast(dict[str, object], tomllib.load(file))
        except OSError as x:
            raise ConfigError(f'unable to read "{path}": {x.strerror}') from x
        except tomllib.TOMLDecodeError as x:
            raise ConfigError(f'"{path}" is not valid TOML: {x}') from x

        if path.name == 'pyproject.toml':
            tool = metadata.get('tool')
            table = tool.get('furoshiki') if isinstance(tool, dict) else None
            section = '[tool.furoshiki]'
        else:
            table = metadata.get('bundle')
            section = '[bundle]'
        if not isinstance(table, dict):
            raise ConfigError(f'"{path}" lacks "{section}" section')

        unknown = set(table) - set(cls.keys())
        if unknown:
            raise ConfigError(
                f'"{path}" has unknown keys {", ".join(sorted(unknown))} in {section}')

        base = path.parent

        @overload
        def property(key: str, typ: type[list[str]], is_optional: bool) -> list[str]:
            ...

        @overload
        def property(key: str, typ: type[T], is_optional: Literal[False]) -> T:
            ...

        @overload
        def property(key: str, typ: type[T], is_optional: Literal[True]) -> None | T:
            ...

        def property(key: str, typ: type[T], is_optional: bool) -> None | T:
            value = table.get(key)
            if isinstance(value, typ):
                if typ is list and any(not isinstance(v, str) for v in value):
                    raise ConfigError(f'"{path}" has non-str item in "{key}"')
                return value
            if value is None:
                if typ is list:
                    return cast(T, [])
                if is_optional:
                    return None
                raise ConfigError(f'"{path}" has no "{key}" entry in {section}')
            raise ConfigError(f'"{path}" has non-{typ.__name__} "{key}" entry')

        def local_path(value: None | str) -> None | Path:
            return None if value is None else base / value

        settings: dict[str, object] = {}
        for key in ('name', 'version', 'perl', 'transform', 'cc', 'dlext'):
            if (text := property(key, str, True)) is not None:
                settings[key] = text
        for key in ('query-perl', 'follow-packlists'):
            if (flag := property(key, bool, True)) is not None:
                settings[key.replace('-', '_')] = flag
        for key in (
            'search-roots', 'use', 'eval', 'incglob', 'binary', 'static-libraries',
            'cflags', 'ldflags', 'libdirs',
        ):
            settings[key.replace('-', '_')] = tuple(property(key, list, True))
        for key in ('cache', 'output', 'app', 'boot'):
            if (location := local_path(property(key, str, True))) is not None:
                settings[key] = location

        add = property('add', dict, True) or {}
        if any(not isinstance(v, str) for v in add.values()):
            raise ConfigError(f'"{path}" has non-str value in "add"')
        settings['add'] = tuple((name, base / file) for name, file in add.items())

        parameters = property('transform-parameters', dict, True) or {}
        settings['transform_parameters'] = tuple(
            (str(k), str(v)) for k, v in parameters.items())

        rules = table.get('filters', [])
        if not isinstance(rules, list):
            raise ConfigError(f'"{path}" has non-list "filters" entry')
        filters = []
        for rule in rules:
            if (
                not isinstance(rule, list)
                or len(rule) != 2
                or rule[0] not in ('include', 'exclude')
                or not isinstance(rule[1], str)
            ):
                raise ConfigError(
                    f'"{path}" has filter {rule!r} that is not '
                    '["include", glob] or ["exclude", glob]')
            filters.append((rule[0] == 'include', rule[1]))
        settings['filters'] = tuple(filters)

        if (policy := property('packlist-roots', str, True)) is not None:
            try:
                settings['packlist_roots'] = RootPolicy(policy)
            except ValueError:
                raise ConfigError(
                    f'"{path}" has invalid "packlist-roots" value "{policy}"') from None

        return cls(**settings, provenance=str(path.absolute()))  # type: ignore[arg-type]
