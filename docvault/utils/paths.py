from __future__ import annotations

from docvault.core.errors import ValidationError

SEPARATOR = "/"


def normalize_name(name: str | None) -> str:
    """Return a trimmed resource name usable as a single path segment."""
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("Name must not be empty")
    if SEPARATOR in cleaned:
        raise ValidationError(f"Name may not contain '{SEPARATOR}'")
    if cleaned in {".", ".."}:
        raise ValidationError("Name may not be a dot segment")
    return cleaned


def department_path(name: str) -> str:
    return f"{SEPARATOR}{name}"


def join_path(parent_path: str, name: str) -> str:
    return f"{parent_path.rstrip(SEPARATOR)}{SEPARATOR}{name}"


def descendant_prefix(path: str) -> str:
    """Prefix shared by every strict descendant of ``path``."""
    return f"{path}{SEPARATOR}"


def is_same_or_descendant(path: str, ancestor_path: str) -> bool:
    """Return True when path is ancestor_path itself or lies under it."""
    if path == ancestor_path:
        return True
    return path.startswith(descendant_prefix(ancestor_path))

