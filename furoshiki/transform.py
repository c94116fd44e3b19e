import logging
import re
from typing import Callable, TYPE_CHECKING

from .errors import TransformError

if TYPE_CHECKING:
    from collections.abc import Mapping
    from typing import TypeAlias

    from .cache import Cache
    from .resource import Resource


__all__ = ('identity', 'strip_pod', 'Transform', 'TransformAdapter', 'TRANSFORMS')

logger = logging.getLogger('furoshiki.transform')

Transform: 'TypeAlias' = Callable[[bytes, 'Mapping[str, str]'], bytes]


# ======================================================================================


def identity(data: bytes, parameters: 'Mapping[str, str]') -> bytes:
    return data


_POD_COMMAND = re.compile(rb'=[A-Za-z]')
_POD_CUT = re.compile(rb'=cut\b')
_DATA_SECTION = re.compile(rb'__(?:END|DATA)__\s*$')


def strip_pod(data: bytes, parameters: 'Mapping[str, str]') -> bytes:
    """
    Remove embedded documentation from Perl source. Anything following an
    __END__ or __DATA__ marker is data and hence preserved.
    """
    if b'\0' in data:
        raise TransformError('input contains NUL bytes and is not Perl source')

    lines = data.splitlines(keepends=True)
    kept: list[bytes] = []
    in_pod = False
    for index, line in enumerate(lines):
        if in_pod:
            if _POD_CUT.match(line):
                in_pod = False
            continue
        if _DATA_SECTION.match(line):
            kept.extend(lines[index:])
            break
        if _POD_COMMAND.match(line):
            in_pod = not _POD_CUT.match(line)
            continue
        kept.append(line)

    return b''.join(kept)


TRANSFORMS: 'dict[str, Transform]' = {
    'none': identity,
    'pod': strip_pod,
}


# ======================================================================================


class TransformAdapter:
    """
    Apply a content transform to resources. Binary resources pass through
    untouched. Results are cached by parameters and content, so that the
    transform runs at most once for the same input.
    """

    def __init__(
        self,
        transform: 'Transform',
        parameters: 'None | Mapping[str, str]' = None,
        *,
        cache: 'None | Cache' = None,
        name: 'None | str' = None,
    ) -> None:
        self._transform = transform
        self._parameters = dict(parameters or {})
        self._cache = cache
        # The transform's identity is part of the cache key.
        self._key_parameters = {
            **self._parameters,
            '//transform': name or getattr(transform, '__qualname__', repr(transform)),
        }

    def __repr__(self) -> str:
        return f'<furoshiki-transform {self._key_parameters["//transform"]}>'

    def __call__(self, resource: 'Resource') -> bytes:
        if resource.binary:
            return resource.payload

        key = None
        if self._cache is not None:
            key = self._cache.key(self._key_parameters, resource.payload)
            cached = self._cache.get(key)
            if cached is not None:
                logger.debug('cache hit for "%s"', resource.name)
                return cached

        try:
            result = self._transform(resource.payload, self._parameters)
        except TransformError as x:
            logger.warning(
                'unable to transform "%s", bundling it unchanged: %s', resource.name, x)
            return resource.payload

        if key is not None:
            assert self._cache is not None
            self._cache.put(key, result)
        return result

    def apply(self, resources: 'Mapping[str, Resource]') -> 'dict[str, Resource]':
        transformed = {}
        before = after = 0
        for name, resource in resources.items():
            payload = self(resource)
            before += len(resource.payload)
            after += len(payload)
            transformed[name] = resource.with_payload(payload)
        logger.info(
            'transformed %d resources from %d to %d bytes',
            len(transformed), before, after)
        return transformed
