"""
Fleetwright echo module

Report a rendered message.
"""

from fleetwright.modules.base import Module, ModuleResult, register_module


@register_module
class EchoModule(Module):
    name = "echo"
    required_params = ["msg"]

    async def execute(self, handle, params):
        return ModuleResult(msg=str(params["msg"]), data={"msg": params["msg"]})
