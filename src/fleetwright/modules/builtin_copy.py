"""
Fleetwright copy module

Copy content to target hosts.
"""

import hashlib
from pathlib import Path
from typing import Any, Dict, Optional

from fleetwright.engine.errors import ExecutionError, ValidationError
from fleetwright.modules.base import Module, ModuleResult, normalize_mode, register_module


@register_module
class CopyModule(Module):
    """
    Copy a file from the control node, or inline content, to the host.

    Supports:
    - Content-based copying (inline content)
    - File copying with optional mode/owner/group
    - Idempotency via sha256 comparison
    """

    name = "copy"
    required_params = ["dest"]
    optional_params = {
        "src": None,
        "content": None,
        "mode": None,
        "owner": None,
        "group": None,
    }

    def check_params(self, params: Dict[str, Any]) -> None:
        if (params["src"] is None) == (params["content"] is None):
            raise ValidationError(self.name, "exactly one of 'src' or 'content' is required")
        params["mode"] = normalize_mode(self.name, params["mode"])

    def _content(self, params: Dict[str, Any]) -> bytes:
        content = params["content"]
        if content is not None:
            return content if isinstance(content, bytes) else str(content).encode('utf-8')

        src = Path(params["src"])
        try:
            return src.read_bytes()
        except OSError as e:
            raise ExecutionError(self.name, f"cannot read source {src}: {e}")

    async def query(self, handle) -> Optional[Dict[str, Any]]:
        dest = handle.params["dest"]
        attributes = await handle.connection.path_attributes(dest)
        if attributes is None:
            return None
        checksum = None
        if attributes.is_file:
            checksum = await handle.connection.file_checksum(dest)
        return {
            "kind": attributes.kind,
            "mode": attributes.mode,
            "owner": attributes.owner,
            "group": attributes.group,
            "checksum": checksum,
        }

    def matches(self, current: Optional[Dict[str, Any]], params: Dict[str, Any]) -> bool:
        if not current or current["kind"] != 'file':
            return False
        if current["checksum"] != hashlib.sha256(self._content(params)).hexdigest():
            return False
        for key in ("mode", "owner", "group"):
            if params[key] is not None and str(params[key]) != current[key]:
                return False
        return True

    async def execute(self, handle, params):
        dest = params["dest"]
        data = self._content(params)

        attributes = await handle.connection.path_attributes(dest)
        if attributes is not None and attributes.is_directory:
            raise ExecutionError(self.name, f"destination {dest} is a directory")

        await handle.connection.put_file(
            data,
            dest,
            mode=params["mode"],
            owner=params["owner"],
            group=params["group"],
        )
        return ModuleResult(
            changed=True,
            msg=f"copied to {dest}",
            data={"dest": dest, "checksum": hashlib.sha256(data).hexdigest(), "size": len(data)},
        )
