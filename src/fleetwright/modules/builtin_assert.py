"""
Fleetwright assert module

Assert conditions during a play.
"""

from typing import Any, Dict

from fleetwright.engine.errors import ValidationError
from fleetwright.modules.base import Module, ModuleResult, register_module


@register_module
class AssertModule(Module):
    """
    Assert conditions are true.

    Each entry of ``that`` is a condition in either syntax accepted by
    ``with.condition``. An expression error fails the assertion.
    """

    name = "assert"
    required_params = ["that"]
    optional_params = {
        "fail_msg": None,
        "success_msg": None,
    }

    def check_params(self, params: Dict[str, Any]) -> None:
        that = params["that"]
        if isinstance(that, (str, bool)):
            params["that"] = [that]
        elif not isinstance(that, (list, tuple)) or not that:
            raise ValidationError(self.name, "'that' must be a condition or a list of conditions")

    async def execute(self, handle, params):
        failed_conditions = []
        for condition in params["that"]:
            if not handle.evaluate(condition):
                failed_conditions.append(str(condition))

        if failed_conditions:
            return ModuleResult(
                failed=True,
                msg=params["fail_msg"] or f"Assertion failed: {', '.join(failed_conditions)}",
                data={"failed_conditions": failed_conditions},
            )

        return ModuleResult(
            msg=params["success_msg"] or "All assertions passed",
            data={"evaluated": [str(c) for c in params["that"]]},
        )
