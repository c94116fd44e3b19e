from dataclasses import dataclass
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from .cache import Cache
from .discovery import find_module, glob_roots
from .errors import BundleError, ConfigError
from .generator import BundleGenerator, write_artifacts
from .packer import pack
from .resource import BOOT, FilePath
from .scanner import GlobSet, scan
from .toolchain import Toolchain
from .tracer import query_embed_flags, query_search_roots, trace_modules
from .transform import TransformAdapter, TRANSFORMS

if TYPE_CHECKING:
    from .config import BundleConfig
    from .generator import Artifacts
    from .packer import PackedBundle
    from .resource import Origin
    from .scanner import ScanResult
    from .transform import Transform


__all__ = ('BuildReport', 'BundleMaker')

logger = logging.getLogger('furoshiki.maker')


@dataclass(frozen=True, slots=True)
class BuildReport:
    artifacts: 'Artifacts'
    bundle: 'PackedBundle'
    static_modules: tuple[str, ...] = ()
    executable: 'None | Path' = None


class BundleMaker:
    """
    Create a bundle: collect the seed resources, scan for their dependencies,
    transform and pack them, and then generate the C source and build flags.
    """

    def __init__(
        self,
        config: 'BundleConfig',
        *,
        transform: 'None | Transform' = None,
        cache: 'None | Cache' = None,
        toolchain: 'None | Toolchain' = None,
    ) -> None:
        self._config = config
        self._transform = transform
        self._cache = cache
        self._toolchain = toolchain
        self._repr: 'None | str' = None

    def __repr__(self) -> str:
        if self._repr is None:
            self._repr = f'<furoshiki-maker {self._config.name} {self._config.version}>'
        return self._repr

    # ----------------------------------------------------------------------------------

    def run(self) -> BuildReport:
        config = self._config
        search_roots = self.search_roots()

        result = self.scan(self.collect_seeds(search_roots), search_roots)
        transformed = self.transform_adapter().apply(result.resources)
        bundle = pack({name: resource.payload for name, resource in transformed.items()})

        toolchain = self.toolchain()
        generator = BundleGenerator(
            bundle,
            name=config.name,
            version=config.version,
            static_modules=result.static_modules,
        )

        config.output.parent.mkdir(parents=True, exist_ok=True)
        artifacts = write_artifacts(
            config.output,
            generator,
            toolchain,
            static_archives=result.static_archives,
            extra_ldflags=result.extra_ldflags,
        )
        logger.info('wrote bundle "%s" with %d resources', config.output, len(bundle))

        executable = None
        if config.app is not None:
            executable = toolchain.build_executable(
                artifacts.source,
                artifacts.ccopts,
                artifacts.ldopts,
                config.app,
                intermediates=(artifacts.header,),
            )

        return BuildReport(artifacts, bundle, result.static_modules, executable)

    # ----------------------------------------------------------------------------------

    def search_roots(self) -> tuple[str, ...]:
        config = self._config
        if config.search_roots:
            return config.search_roots
        if config.query_perl:
            return query_search_roots(config.perl)
        return ()

    def collect_seeds(self, search_roots: 'tuple[str, ...]') -> 'dict[str, Origin]':
        config = self._config
        seeds: 'dict[str, Origin]' = {}

        if config.query_perl:
            if config.use or config.eval:
                traced = trace_modules(
                    config.perl, config.use, config.eval, config.search_roots)
                seeds.update((name, FilePath(path)) for name, path in traced.items())
        else:
            if config.eval:
                raise ConfigError('evaluating code requires querying Perl')
            for module in config.use:
                name, path = find_module(module, search_roots)
                seeds[name] = FilePath(path)

        for pattern in config.incglob:
            for name, path in glob_roots(pattern, search_roots).items():
                seeds.setdefault(name, FilePath(path))

        for name, path in config.add:
            seeds[name] = FilePath(path)

        if config.boot is not None:
            seeds[BOOT] = FilePath(config.boot)

        if not seeds:
            raise BundleError('bundle would be empty; please specify some modules or files')
        logger.info('collected %d seed resources', len(seeds))
        return seeds

    def scan(
        self, seeds: 'dict[str, Origin]', search_roots: 'tuple[str, ...]'
    ) -> 'ScanResult':
        config = self._config
        return scan(
            seeds,
            config.filters,
            binary=GlobSet(config.binary),
            search_roots=search_roots,
            follow_packlists=config.follow_packlists,
            root_policy=config.packlist_roots,
            dlext=config.dlext,
        )

    def transform_adapter(self) -> TransformAdapter:
        config = self._config
        transform = self._transform
        name = None
        if transform is None:
            if config.transform not in TRANSFORMS:
                raise ConfigError(
                    f'unknown transform "{config.transform}"; '
                    f'choose one of {", ".join(TRANSFORMS)}')
            transform = TRANSFORMS[config.transform]
            name = config.transform

        cache = self._cache
        if cache is None:
            cache = Cache(config.cache) if config.cache else Cache.from_environment()

        return TransformAdapter(
            transform, dict(config.transform_parameters), cache=cache, name=name)

    def toolchain(self) -> Toolchain:
        if self._toolchain is not None:
            return self._toolchain

        config = self._config
        cflags: tuple[str, ...] = ()
        ldflags: tuple[str, ...] = ()
        if config.query_perl:
            cflags, ldflags = query_embed_flags(config.perl)

        return Toolchain(
            cc=config.cc,
            cflags=(*cflags, *config.cflags),
            ldflags=(*config.ldflags, *ldflags),
            libdirs=config.libdirs,
            force_static=config.static_libraries,
        )
