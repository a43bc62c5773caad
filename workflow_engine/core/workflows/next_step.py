"""
Next-step resolution policy

Priority order:
    1. Branch condition result -> trueStepId / falseStepId
    2. Success -> successStepId
    3. Wired errorStepId -> errorStepId
    4. onError == "continue" -> successStepId
    5. Nothing ("")
An empty id ends the run.
"""

from .workflow_models import OnErrorPolicy, StepBase, StepResult, StepType


def should_stop_on_error(step: StepBase) -> bool:
    """A wired error connection always takes precedence over the stop policy"""
    if step.connections.error_step_id:
        return False
    return step.common.on_error != OnErrorPolicy.CONTINUE


def resolve_next_step(step: StepBase, result: StepResult) -> str:
    connections = step.connections

    if step.type == StepType.BRANCH and result.is_branch_result:
        return connections.true_step_id if result.success else connections.false_step_id

    if result.success:
        return connections.success_step_id

    if connections.error_step_id:
        return connections.error_step_id

    if step.common.on_error == OnErrorPolicy.CONTINUE:
        return connections.success_step_id

    return ""
