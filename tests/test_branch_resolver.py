"""Tests for workflow_engine/core/workflows/branch_resolver.py."""

import pytest

from workflow_engine.core.workflows.branch_resolver import BranchResolver
from workflow_engine.core.workflows.variables import VariableStore
from workflow_engine.core.workflows.workflow_models import BranchParams
from workflow_engine.utils.error_handler import (
    DeviceActionError,
    MissingParametersError,
    UnknownConditionError,
)
from tests.conftest import DEVICE


def _params(condition, selector_value=None, **extra):
    data = {"condition": condition, **extra}
    if selector_value is not None:
        data["selector"] = {"type": "text", "value": selector_value}
    return BranchParams.model_validate(data)


@pytest.fixture
def resolver(bridge):
    return BranchResolver(bridge)


@pytest.mark.asyncio
class TestVariableEquals:

    async def test_true_when_equal(self, resolver, bridge):
        params = _params("variable_equals", variableName="status", expectedValue="ok")
        result = await resolver.evaluate(DEVICE, params, VariableStore({"status": "ok"}))
        assert result.is_branch_result is True
        assert result.success is True
        assert bridge.calls == []

    async def test_false_when_different(self, resolver):
        params = _params("variable_equals", variableName="status", expectedValue="ok")
        result = await resolver.evaluate(DEVICE, params, VariableStore({"status": "fail"}))
        assert (result.is_branch_result, result.success) == (True, False)

    async def test_unset_variable_compares_as_empty(self, resolver):
        params = _params("variable_equals", variableName="missing", expectedValue="")
        result = await resolver.evaluate(DEVICE, params, VariableStore())
        assert result.success is True

    async def test_expected_value_is_substituted(self, resolver):
        params = _params("variable_equals", variableName="a", expectedValue="{{b}}")
        result = await resolver.evaluate(DEVICE, params, VariableStore({"a": "7", "b": "7"}))
        assert result.success is True


@pytest.mark.asyncio
class TestSelectorConditions:

    async def test_exists(self, resolver):
        result = await resolver.evaluate(DEVICE, _params("exists", "Login"), VariableStore())
        assert result.success is True

    async def test_not_exists(self, resolver):
        result = await resolver.evaluate(DEVICE, _params("not_exists", "Logout"), VariableStore())
        assert result.success is True

    async def test_text_equals(self, resolver):
        params = _params("text_equals", "Login", expectedValue="Login")
        assert (await resolver.evaluate(DEVICE, params, VariableStore())).success is True

    async def test_text_contains_with_variables(self, resolver):
        params = BranchParams.model_validate(
            {
                "condition": "text_contains",
                "selector": {"type": "id", "value": "{{field}}"},
                "expectedValue": "{{amount}}",
            }
        )
        variables = VariableStore({"field": "balance", "amount": "42.50"})
        assert (await resolver.evaluate(DEVICE, params, variables)).success is True

    async def test_text_equals_missing_element_is_false(self, resolver):
        params = _params("text_equals", "Logout", expectedValue="Logout")
        result = await resolver.evaluate(DEVICE, params, VariableStore())
        assert (result.is_branch_result, result.success) == (True, False)

    async def test_empty_condition_defaults_to_exists(self, resolver):
        result = await resolver.evaluate(DEVICE, _params("", "Login"), VariableStore())
        assert result.success is True

    async def test_dump_failure_propagates(self, resolver, bridge):
        bridge.fail["get_ui_hierarchy"] = "offline"
        with pytest.raises(DeviceActionError):
            await resolver.evaluate(DEVICE, _params("exists", "Login"), VariableStore())


@pytest.mark.asyncio
class TestConfigurationErrors:

    async def test_unknown_condition(self, resolver, bridge):
        with pytest.raises(UnknownConditionError):
            await resolver.evaluate(DEVICE, _params("is_shiny", "Login"), VariableStore())
        assert bridge.calls == []

    async def test_missing_selector(self, resolver):
        with pytest.raises(MissingParametersError):
            await resolver.evaluate(DEVICE, _params("exists"), VariableStore())
