"""
Fleetwright fail module

Fail the host with a custom message.
"""

from fleetwright.modules.base import Module, ModuleResult, register_module


@register_module
class FailModule(Module):
    name = "fail"
    optional_params = {
        "msg": "Failed as requested",
    }

    async def execute(self, handle, params):
        return ModuleResult(failed=True, msg=str(params["msg"]))
