"""
Fleetwright command and shell modules

Execute commands on the target host.
"""

import shlex
from typing import Any, Dict

from fleetwright.connections.base import shell_quote
from fleetwright.engine.errors import ValidationError
from fleetwright.modules.base import Module, ModuleResult, register_module


def _with_chdir(command: str, chdir: Any) -> str:
    if not chdir:
        return command
    return f"cd {shell_quote(chdir)} && {command}"


def _command_result(result) -> ModuleResult:
    return ModuleResult(
        changed=True,  # Commands always report changed
        failed=result.exit_code != 0,
        rc=result.exit_code,
        stdout=result.stdout,
        stderr=result.stderr,
        msg=f"non-zero return code: {result.exit_code}" if result.exit_code != 0 else "",
    )


@register_module
class CommandModule(Module):
    """
    Execute a command without shell processing.

    The command line is split and re-quoted, so shell operators and
    variable expansion are passed through literally.
    """

    name = "command"
    optional_params = {
        "cmd": None,
        "argv": None,
        "chdir": None,
    }

    def check_params(self, params: Dict[str, Any]) -> None:
        if not params["cmd"] and not params["argv"]:
            raise ValidationError(self.name, "either 'cmd' or 'argv' is required")
        if params["cmd"] and params["argv"]:
            raise ValidationError(self.name, "'cmd' and 'argv' are mutually exclusive")
        if params["argv"] is not None and not isinstance(params["argv"], (list, tuple)):
            raise ValidationError(self.name, "'argv' must be a list")
        if params["cmd"]:
            try:
                params["argv"] = shlex.split(str(params["cmd"]))
            except ValueError as e:
                raise ValidationError(self.name, f"cannot parse 'cmd': {e}")
        params["argv"] = [str(a) for a in params["argv"]]

    async def execute(self, handle, params):
        command = _with_chdir(shlex.join(params["argv"]), params["chdir"])
        return _command_result(await handle.run(command))


@register_module
class ShellModule(Module):
    """Execute a command line through /bin/sh."""

    name = "shell"
    required_params = ["cmd"]
    optional_params = {
        "chdir": None,
    }

    async def execute(self, handle, params):
        command = _with_chdir(str(params["cmd"]), params["chdir"])
        return _command_result(await handle.run(command))
