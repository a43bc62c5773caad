"""
Branch condition evaluation
"""

import logging

from workflow_engine.core.adb.ui_hierarchy import find_element
from workflow_engine.utils.error_handler import (
    MissingParametersError,
    UnknownConditionError,
)
from .variables import VariableStore
from .workflow_models import BranchCondition, BranchParams, StepResult

logger = logging.getLogger(__name__)

SELECTOR_CONDITIONS = (
    BranchCondition.EXISTS,
    BranchCondition.NOT_EXISTS,
    BranchCondition.TEXT_EQUALS,
    BranchCondition.TEXT_CONTAINS,
)


class BranchResolver:
    """
    Evaluates a branch step's condition.

    variable_equals is answered from the variable store alone; every other
    condition searches a freshly fetched UI hierarchy. The result is always
    tagged as a condition value.
    """

    def __init__(self, adb_bridge):
        self.adb_bridge = adb_bridge

    async def evaluate(
        self, device_id: str, params: BranchParams, variables: VariableStore
    ) -> StepResult:
        condition = params.condition or BranchCondition.EXISTS

        if condition == BranchCondition.VARIABLE_EQUALS:
            actual = variables.get(params.variable_name, "")
            expected = variables.substitute(params.expected_value)
            logger.debug(
                f"  Branch variable_equals: {params.variable_name}={actual!r} vs {expected!r}"
            )
            return StepResult.condition(actual == expected)

        if condition not in SELECTOR_CONDITIONS:
            raise UnknownConditionError(condition)

        if params.selector is None or not params.selector.value:
            raise MissingParametersError("branch", f"selector for condition {condition}")

        selector_value = variables.substitute(params.selector.value)
        root = await self.adb_bridge.get_ui_hierarchy(device_id)
        node = find_element(root, params.selector.type, selector_value, params.selector.index)

        if condition == BranchCondition.EXISTS:
            outcome = node is not None
        elif condition == BranchCondition.NOT_EXISTS:
            outcome = node is None
        elif condition == BranchCondition.TEXT_EQUALS:
            outcome = node is not None and node.text == variables.substitute(params.expected_value)
        else:
            outcome = node is not None and variables.substitute(params.expected_value) in node.text

        logger.debug(
            f"  Branch {condition} ({params.selector.type}={selector_value}) -> {outcome}"
        )
        return StepResult.condition(outcome)
