"""
Version information for the batchrelay SDK.

An installed distribution reports the version from its metadata. A source
checkout without metadata reads ``[project] version`` from pyproject.toml.
"""
import importlib.metadata
import logging
import pathlib
from typing import Optional

import tomli

DISTRIBUTION = "batchrelay-sdk"
DEFAULT_VERSION = "0.1.0"
PYPROJECT_PATH = pathlib.Path(__file__).resolve().parent.parent / "pyproject.toml"

logger = logging.getLogger(__name__)


def _installed_version() -> Optional[str]:
    try:
        return importlib.metadata.version(DISTRIBUTION)
    except importlib.metadata.PackageNotFoundError:
        return None


def _source_tree_version(path: pathlib.Path = PYPROJECT_PATH) -> Optional[str]:
    """Read the project version from ``path``, or None if it cannot be read"""
    try:
        with path.open("rb") as f:
            project = tomli.load(f).get("project", {})
    except (FileNotFoundError, tomli.TOMLDecodeError) as e:
        logger.debug(f"No version readable from {path}: {e}")
        return None
    return project.get("version")


__version__ = _installed_version() or _source_tree_version() or DEFAULT_VERSION
