"""Workspace path helpers shared by nodes and tools."""

from pathlib import Path


def normalize_uri(uri: str) -> str:
    """Strip a ``file://`` scheme, leaving a plain filesystem path."""
    return uri.removeprefix("file://")


def resolve_in_workspace(workspace_dir: Path, uri: str) -> Path:
    """Absolute, resolved path for uri; relative uris are taken from workspace_dir."""
    path = Path(normalize_uri(uri))
    return (path if path.is_absolute() else workspace_dir / path).resolve()


def is_within(workspace_dir: Path, path: Path) -> bool:
    return path == workspace_dir or workspace_dir in path.parents


def relative_to_workspace(workspace_dir: Path, uri: str) -> str:
    """Workspace-relative posix path, or the path itself when it lies outside."""
    path = resolve_in_workspace(workspace_dir, uri)
    if is_within(workspace_dir, path):
        return path.relative_to(workspace_dir).as_posix()
    return path.as_posix()
