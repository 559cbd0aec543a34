"""
Backend implementations.

Import the backends from their subpackages (`deepdiamond.infrastructure.dnnl`,
`deepdiamond.infrastructure.cudnn`); this package itself imports nothing so
that either backend can be used without the other's native library.
"""
