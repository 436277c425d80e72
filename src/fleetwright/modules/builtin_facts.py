"""
Fleetwright facts module

Collect minimal system facts from target hosts. The returned facts are
blended into the host's facts layer for later tasks and plays.
"""

from typing import Dict

from fleetwright.connections.check import CheckModeConnection
from fleetwright.modules.base import Module, ModuleResult, register_module

# One probe per fact, each printing a single line
FACT_PROBES: Dict[str, str] = {
    "system": "uname -s",
    "kernel": "uname -r",
    "architecture": "uname -m",
    "hostname": "hostname -s 2>/dev/null || hostname",
    "fqdn": "hostname -f 2>/dev/null || hostname",
    "user_id": "id -un",
    "os_id": ". /etc/os-release 2>/dev/null && echo \"$ID\"",
}


@register_module
class FactsModule(Module):
    """
    Gather minimal facts about the host.

    Collects system, kernel, architecture, hostname, fqdn, user_id and
    os_id (from /etc/os-release, when present). Probes that fail are left
    out rather than failing the task.

    The probes only read, so in check mode they still run on the real
    host and later tasks see the same facts as in a real run.
    """

    name = "facts"

    async def execute(self, handle, params):
        connection = handle.connection
        if isinstance(connection, CheckModeConnection):
            connection = connection.inner

        facts = {}
        for fact, command in FACT_PROBES.items():
            result = await connection.run(command, as_user=None)
            value = result.stdout.strip()
            if result.success and value:
                facts[fact] = value

        return ModuleResult(
            changed=False,  # Facts gathering never changes anything
            msg=f"gathered {len(facts)} facts",
            facts=facts,
        )
