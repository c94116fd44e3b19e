__all__ = (
    'AutoloadError',
    'BundleError',
    'BundleTooLargeError',
    'ConfigError',
    'NameTooLongError',
    'StaticLinkError',
    'ToolchainError',
    'TransformError',
)


class BundleError(Exception):
    """A fatal error. No bundle is better than a wrong bundle."""


class ConfigError(BundleError):
    pass


class NameTooLongError(BundleError):
    pass


class BundleTooLargeError(BundleError):
    pass


class AutoloadError(BundleError):
    pass


class StaticLinkError(BundleError):
    pass


class ToolchainError(BundleError):
    pass


class TransformError(Exception):
    """
    A content transform failed to parse its input. Unlike bundle errors, this
    error is recoverable: the resource is bundled without transformation.
    """
