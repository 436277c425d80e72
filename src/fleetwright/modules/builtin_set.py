"""
Fleetwright set module

Set runtime variables on the host. They take precedence over inventory,
facts and play variables for the rest of the run.
"""

from typing import Any, Dict

from fleetwright.engine.errors import ValidationError
from fleetwright.modules.base import Module, ModuleResult, register_module


@register_module
class SetModule(Module):
    name = "set"
    free_form = True

    def check_params(self, params: Dict[str, Any]) -> None:
        if not params:
            raise ValidationError(self.name, "at least one variable is required")
        bad = sorted(k for k in params if not isinstance(k, str) or not k.isidentifier())
        if bad:
            raise ValidationError(self.name, f"invalid variable name(s): {', '.join(map(str, bad))}")

    async def execute(self, handle, params):
        return ModuleResult(
            msg=f"set {', '.join(sorted(params))}",
            variables=dict(params),
        )
