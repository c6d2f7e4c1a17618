"""Routers package."""

from . import (
    health,
    instruments,
)
