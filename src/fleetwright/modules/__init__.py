"""
Fleetwright Modules

Built-in modules for task execution.
"""

from fleetwright.modules.base import Module, ModuleResult, get_module, list_modules, register_module

__all__ = [
    'Module',
    'ModuleResult',
    'get_module',
    'list_modules',
    'register_module',
]
