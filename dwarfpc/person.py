"""A small record type."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class Person:
    """A named person with a number; fields default to empty."""

    name: Optional[str] = None
    number: int = 0