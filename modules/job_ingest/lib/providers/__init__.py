# job_ingest/providers/__init__.py
from __future__ import annotations

from .base import BaseProvider
from .greenhouse import GreenhouseProvider
from .lever import LeverProvider
from .registry import lookup, register

__all__ = [
    "BaseProvider",
    "GreenhouseProvider",
    "LeverProvider",
    "lookup",
    "register",
]
