"""
Version information for the Shielded Actions prover service.
"""
import importlib.metadata
from pathlib import Path

import tomli

DISTRIBUTION = "shielded-actions"
DEFAULT_VERSION = "0.1.0"

_PYPROJECT = Path(__file__).resolve().parent.parent / "pyproject.toml"


def _source_tree_version() -> str:
    """Version declared in pyproject.toml of a source checkout"""
    try:
        with open(_PYPROJECT, "rb") as f:
            return tomli.load(f)["project"]["version"]
    except (FileNotFoundError, KeyError, tomli.TOMLDecodeError):
        return DEFAULT_VERSION


def get_version() -> str:
    """
    Installed package version, or the source tree's when running uninstalled.

    Returns:
        Version string
    """
    try:
        return importlib.metadata.version(DISTRIBUTION)
    except importlib.metadata.PackageNotFoundError:
        return _source_tree_version()


__version__ = get_version()
