"""Routers package."""

from . import (
    health,
    members,
    ledger,
    stores,
    settlements,
    maintenance,
)
