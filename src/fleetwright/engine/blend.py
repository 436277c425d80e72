"""
Fleetwright Variable Blending

Merges layered variable mappings into the effective mapping a task sees.
"""

import copy
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Optional


def blend_into(base: MutableMapping[str, Any], overlay: Optional[Mapping[str, Any]]) -> None:
    """
    Blend ``overlay`` into ``base`` in place.

    Two mappings at the same key merge recursively; any other value,
    lists included, replaces the existing one wholesale.

    Args:
        base: Mapping that receives the values
        overlay: Higher precedence mapping (None is ignored)
    """
    if not overlay:
        return

    for key, value in overlay.items():
        if isinstance(value, Mapping):
            current = base.get(key)
            if not isinstance(current, MutableMapping):
                current = base[key] = {}
            blend_into(current, value)
        else:
            base[key] = copy.deepcopy(value)


def blend(layers: Iterable[Optional[Mapping[str, Any]]]) -> Dict[str, Any]:
    """
    Blend an ordered sequence of mappings, lowest precedence first.

    The inputs are never mutated.

    Example:
        >>> blend([{'a': {'x': 1, 'y': 2}}, {'a': {'y': 9}}])
        {'a': {'x': 1, 'y': 9}}

    Args:
        layers: Mappings ordered from lowest to highest precedence

    Returns:
        A new dictionary with the effective values
    """
    result: Dict[str, Any] = {}
    for layer in layers:
        blend_into(result, layer)
    return result
