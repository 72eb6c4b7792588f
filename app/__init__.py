# =============================================================================
# Campus Chat Main Package - Dynamic Version Loading
# =============================================================================
"""
Campus Chat - Main Package

Version is loaded dynamically from pyproject.toml via importlib.metadata.

Single Source of Truth: pyproject.toml [project] version
"""

from __future__ import annotations


def _get_version() -> str:
    """
    Get package version from installed metadata.

    Falls back to reading pyproject.toml if the package is not installed.
    """
    try:
        from importlib.metadata import version, PackageNotFoundError
        return version("campus-chat")
    except PackageNotFoundError:
        pass  # Package not installed, try fallback

    # Fallback: Read from pyproject.toml
    try:
        import tomllib
        from pathlib import Path

        pyproject_path = Path(__file__).parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            with open(pyproject_path, "rb") as f:
                data = tomllib.load(f)
                return data["project"]["version"]
    except (OSError, KeyError, ValueError):
        pass

    return "0.1.0-unknown"


__version__: str = _get_version()
__description__: str = "Campus Chat - optimistic realtime messaging for campus, class and post threads"
__author__: str = "Campus Chat Team"

__all__ = [
    "__version__",
    "__description__",
    "__author__",
]
