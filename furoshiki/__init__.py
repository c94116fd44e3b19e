"""Bundle Perl modules and data files into a statically linked interpreter."""

__version__ = '0.3.0'
