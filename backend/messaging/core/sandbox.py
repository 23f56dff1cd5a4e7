"""Sandboxed file access - ensures uploaded chat media stays within the data directory."""

from pathlib import Path

from messaging.core.config import settings

UPLOAD_SUBDIR = "uploads/chat"


class SandboxError(Exception):
    pass


def upload_root() -> Path:
    return settings.data_dir.resolve() / UPLOAD_SUBDIR


def resolve_sandboxed_path(relative_path: str) -> Path:
    """Resolve a relative path within the sandbox. Raises SandboxError if path escapes."""
    data_dir = settings.data_dir.resolve()
    resolved = (data_dir / relative_path).resolve()

    if not resolved.is_relative_to(data_dir):
        raise SandboxError(f"Path '{relative_path}' escapes the sandbox")

    return resolved


def resolve_upload_path(filename: str) -> Path:
    """Resolve a stored upload filename inside the chat upload directory."""
    path = resolve_sandboxed_path(f"{UPLOAD_SUBDIR}/{filename}")
    if path.parent != upload_root():
        raise SandboxError(f"Upload name '{filename}' must not contain directories")
    return path
