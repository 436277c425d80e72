# Copyright (c) 2024 Fleetwright Contributors
# MIT License

"""
Fleetwright: declarative task execution across a fleet of hosts.

A small configuration-management engine that applies ordered task lists
("plays") to hosts selected from an inventory, over local or SSH connections.

Features:
    - Deterministic variable blending (defaults, groups, host, facts, play, runtime)
    - Query-before-change modules with check (dry-run) mode
    - Bounded per-host concurrency with serial batches and handlers
    - Local and SSH (asyncssh) connections

This package exposes release metadata; the engine lives in ``fleetwright.engine``.
"""

from __future__ import annotations

from fleetwright.release import __version__, __author__, __codename__

__all__ = [
    "__version__",
    "__author__",
    "__codename__",
]
