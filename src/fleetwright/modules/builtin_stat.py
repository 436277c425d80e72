"""
Fleetwright stat module

Report attributes of a path without changing anything.
"""

from fleetwright.modules.base import Module, ModuleResult, register_module


@register_module
class StatModule(Module):
    """Gather mode, ownership, kind and checksum of a path."""

    name = "stat"
    required_params = ["path"]
    optional_params = {
        "checksum": True,
    }

    async def execute(self, handle, params):
        path = params["path"]
        attributes = await handle.connection.path_attributes(path)
        if attributes is None:
            return ModuleResult(data={"path": path, "exists": False})

        data = {
            "path": path,
            "exists": True,
            "kind": attributes.kind,
            "mode": attributes.mode,
            "owner": attributes.owner,
            "group": attributes.group,
        }
        if params["checksum"] and attributes.is_file:
            data["checksum"] = await handle.connection.file_checksum(path)
        return ModuleResult(data=data)
