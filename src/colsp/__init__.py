"""colsp – language server for collector pipeline configuration files."""
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version('colsp')
except PackageNotFoundError:
    # running from a source checkout
    __version__ = '0.0.0.dev0'
