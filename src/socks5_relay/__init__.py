"""SOCKS5 relay with TCP CONNECT and UDP ASSOCIATE support."""

import pathlib
import tomllib
from importlib import metadata


def get_version() -> str:
    """Read version from pyproject.toml, falling back to installed metadata."""
    current_dir = pathlib.Path(__file__).parent
    for parent in [current_dir] + list(current_dir.parents):
        pyproject_path = parent / "pyproject.toml"
        if pyproject_path.exists():
            with pyproject_path.open("rb") as f:
                pyproject_data = tomllib.load(f)
            project = pyproject_data.get("project", {})
            if project.get("name") == "socks5-relay":
                return project["version"]

    try:
        return metadata.version("socks5-relay")
    except metadata.PackageNotFoundError:
        return "0.0.0"


__version__ = get_version()
