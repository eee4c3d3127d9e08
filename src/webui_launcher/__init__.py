from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version('webui-launcher')
except PackageNotFoundError:  # pragma: no cover
    __version__ = 'unknown'
