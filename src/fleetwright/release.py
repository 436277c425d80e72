# Copyright (c) 2024 Fleetwright Contributors
# MIT License

"""Fleetwright release metadata."""

from __future__ import annotations

__version__ = "0.1.0"
__author__ = "Fleetwright Contributors"
__codename__ = "Keel"

# Version info tuple for programmatic comparison
VERSION_INFO = (0, 1, 0)
