"""
Fleetwright file module

Manage files and directories: existence, mode and ownership.
"""

from typing import Any, Dict, List, Optional

from fleetwright.connections.base import PathAttributes, shell_quote
from fleetwright.engine.errors import ExecutionError, ValidationError
from fleetwright.modules.base import Module, ModuleResult, normalize_mode, register_module

STATES = ('file', 'directory', 'absent')


@register_module
class FileModule(Module):
    """
    Ensure a path is a file, a directory, or absent.

    ``state: file`` creates an empty file when the path is missing.
    """

    name = "file"
    required_params = ["path"]
    optional_params = {
        "state": "file",
        "mode": None,
        "owner": None,
        "group": None,
    }

    def check_params(self, params: Dict[str, Any]) -> None:
        if params["state"] not in STATES:
            raise ValidationError(
                self.name, f"state must be one of {', '.join(STATES)}, got {params['state']!r}"
            )
        if params["state"] == 'absent' and any(params[k] for k in ("mode", "owner", "group")):
            raise ValidationError(self.name, "mode/owner/group cannot be set with state=absent")
        params["mode"] = normalize_mode(self.name, params["mode"])

    async def query(self, handle) -> Optional[PathAttributes]:
        return await handle.connection.path_attributes(handle.params["path"])

    def matches(self, current: Optional[PathAttributes], params: Dict[str, Any]) -> bool:
        if params["state"] == 'absent':
            return current is None
        if current is None or current.kind != params["state"]:
            return False
        return not self._attribute_changes(current, params)

    @staticmethod
    def _attribute_changes(current: Optional[PathAttributes], params: Dict[str, Any]) -> List[str]:
        changes = []
        for key in ("mode", "owner", "group"):
            wanted = params[key]
            if wanted is not None and (current is None or getattr(current, key) != str(wanted)):
                changes.append(key)
        return changes

    async def _check(self, handle, command: str) -> None:
        result = await handle.run(command)
        if not result.success:
            raise ExecutionError(
                self.name,
                result.stderr.strip() or f"'{command}' failed",
                rc=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
            )

    async def execute(self, handle, params):
        path = params["path"]
        state = params["state"]
        quoted = shell_quote(path)
        current = await handle.connection.path_attributes(path)

        if state == 'absent':
            if current is not None:
                await self._check(handle, f"rm -rf -- {quoted}")
            return ModuleResult(changed=current is not None, msg=f"{path} is absent", data={"path": path})

        if current is not None and current.kind != state:
            raise ExecutionError(self.name, f"{path} exists and is a {current.kind}, not a {state}")

        if current is None:
            if state == 'directory':
                await self._check(handle, f"mkdir -p -- {quoted}")
            else:
                await handle.connection.put_file(b"", path)

        for key in self._attribute_changes(current, params):
            if key == "mode":
                await self._check(handle, f"chmod {params['mode']} -- {quoted}")
            elif key == "owner":
                await self._check(handle, f"chown {shell_quote(params['owner'])} -- {quoted}")
            else:
                await self._check(handle, f"chgrp {shell_quote(params['group'])} -- {quoted}")

        return ModuleResult(changed=True, msg=f"{path} is a {state}", data={"path": path, "state": state})
