"""Lifecycle blocks: conditional skip, retry, failure handlers and grouping containers."""

from typing import TYPE_CHECKING, Any, Dict

from ..context import format_value
from ..errors import SkipTest
from .base import BaseBlock, BlockInput, BlockKind, BranchRequest, RetryRequest, as_bool, as_number

if TYPE_CHECKING:
    from ..context import ExecutionContext


class SkipIfBlock(BaseBlock):
    type = "lifecycle_skip_if"
    category = "Lifecycle"
    description = "Skip the rest of the test if the condition is true"
    inputs = [
        BlockInput("CONDITION", kind=BlockKind.VALUE, field_type="Boolean", required=True),
        BlockInput("REASON", default="Condition not met"),
    ]

    def validate_params(self, params: Dict[str, Any]) -> None:
        if "CONDITION" not in params:
            raise ValueError(f"Block '{self.type}' requires 'CONDITION' field")

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        if as_bool(context.resolve(params.get("CONDITION"))):
            reason = format_value(context.resolve(params.get("REASON") or "Condition not met"))
            context.logger.info(f"Skipping test: {reason}")
            raise SkipTest(reason)
        return False


class RetryBlock(BaseBlock):
    type = "lifecycle_retry"
    category = "Lifecycle"
    description = "Retry the contained steps until they pass"
    inputs = [
        BlockInput("TIMES", field_type="number", default=3),
        BlockInput("DELAY", field_type="number", default=1000),
        BlockInput("DO", kind=BlockKind.STATEMENT),
    ]

    def validate_params(self, params: Dict[str, Any]) -> None:
        times = as_number(params.get("TIMES"), default=-1)
        if times <= 0:
            raise ValueError(f"'TIMES' must be a positive integer, got {params.get('TIMES')}")
        delay = as_number(params.get("DELAY"), default=-1)
        if delay < 0:
            raise ValueError(f"'DELAY' must be a non-negative number, got {params.get('DELAY')}")

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        return RetryRequest(
            times=int(as_number(params["TIMES"])),
            delay_ms=int(as_number(params["DELAY"])),
        )


class GroupBlock(BaseBlock):
    """Setup/teardown grouping container that simply runs its DO statement."""

    category = "Lifecycle"
    inputs = [
        BlockInput("DESCRIPTION", default=""),
        BlockInput("DO", kind=BlockKind.STATEMENT),
    ]

    def __init__(self, block_type: str, description: str):
        self.type = block_type
        self.description = description

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        if params.get("DESCRIPTION"):
            context.logger.debug(f"{self.description}: {params['DESCRIPTION']}")
        return BranchRequest("DO")


class OnFailureBlock(BaseBlock):
    """Register steps to run if the current test fails.

    Handlers run after the test body, before ``afterEach``, in the order
    they were registered. Nothing runs when the test passes.
    """

    type = "lifecycle_on_failure"
    category = "Lifecycle"
    description = "Run steps only if the test fails"
    inputs = [BlockInput("DO", kind=BlockKind.STATEMENT)]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        step = context.current_step
        body = list(step.children.get("DO", [])) if step else []
        if body:
            context.failure_handlers.append(body)
        return len(context.failure_handlers)


LIFECYCLE_BLOCKS = [
    SkipIfBlock(),
    RetryBlock(),
    GroupBlock("lifecycle_setup", "Setup"),
    GroupBlock("lifecycle_teardown", "Teardown"),
    OnFailureBlock(),
]
