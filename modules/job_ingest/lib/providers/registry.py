from __future__ import annotations

from .base import BaseProvider

# Source "type" tag (lowercase) -> provider class
_PROVIDERS: dict[str, type[BaseProvider]] = {}


def register(cls: type[BaseProvider]) -> type[BaseProvider]:
    """Class decorator: make `cls` the provider for sources of type `cls.kind`."""
    tag = (cls.kind or "").strip().lower()
    if not tag:
        raise ValueError(f"{cls.__name__} has no provider kind")
    existing = _PROVIDERS.setdefault(tag, cls)
    if existing is not cls:
        raise ValueError(f"provider kind {tag!r} is taken by {existing.__name__}")
    return cls


def lookup(kind: str) -> type[BaseProvider] | None:
    """Provider class for a source type, case-insensitive; None when unsupported."""
    return _PROVIDERS.get((kind or "").strip().lower())
