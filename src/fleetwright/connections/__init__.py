"""
Fleetwright Connections Module

Connection plugins: local, SSH and the check-mode decorator.
"""

from fleetwright.connections.base import (
    CommandResult,
    Connection,
    PathAttributes,
    create_connection,
)
from fleetwright.connections.check import CheckModeConnection
from fleetwright.connections.local import LocalConnection

__all__ = [
    'CheckModeConnection',
    'CommandResult',
    'Connection',
    'LocalConnection',
    'PathAttributes',
    'create_connection',
]
