"""Variables, values, comparisons and control-flow blocks."""

import json
from typing import TYPE_CHECKING, Any, Dict

from ..context import format_value
from ..errors import StepFailedError
from .base import (
    BaseBlock,
    BlockInput,
    BlockKind,
    BranchRequest,
    LoopRequest,
    TryCatchRequest,
    as_bool,
    as_number,
)

if TYPE_CHECKING:
    from ..context import ExecutionContext


def values_equal(a: Any, b: Any) -> bool:
    """Compare two values, falling back to their text form when one side is a string.

    Placeholders always resolve to text, so ``"5"`` and ``5`` compare equal.
    """
    if a == b:
        return True
    if isinstance(a, str) != isinstance(b, str):
        return format_value(a) == format_value(b)
    return False


def _decode_json_field(text: Any, expected: type) -> Any:
    if isinstance(text, expected):
        return text
    try:
        value = json.loads(text)
    except (TypeError, json.JSONDecodeError) as e:
        raise ValueError(f"Invalid JSON: {e}") from e
    if not isinstance(value, expected):
        raise ValueError(f"Expected a JSON {expected.__name__}, got {type(value).__name__}")
    return value


class SetVariableBlock(BaseBlock):
    type = "logic_set_variable"
    category = "Logic"
    description = "Set a variable value"
    inputs = [
        BlockInput("NAME", required=True),
        BlockInput("VALUE", kind=BlockKind.VALUE, required=True),
    ]

    def validate_params(self, params: Dict[str, Any]) -> None:
        if not params.get("NAME"):
            raise ValueError(f"Block '{self.type}' requires 'NAME' field")

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        name = params["NAME"]
        value = context.resolve(params.get("VALUE"))
        context.set(name, value)
        context.logger.debug(f"Set variable {name} = {format_value(value)}")
        return value


class GetVariableBlock(BaseBlock):
    type = "logic_get_variable"
    category = "Logic"
    description = "Get a variable value"
    inputs = [BlockInput("NAME", required=True)]
    output = "Any"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        return context.get(params["NAME"])


class IfBlock(BaseBlock):
    type = "logic_if"
    category = "Logic"
    description = "Execute blocks if condition is true"
    inputs = [
        BlockInput("CONDITION", kind=BlockKind.VALUE, field_type="Boolean"),
        BlockInput("DO", kind=BlockKind.STATEMENT),
        BlockInput("ELSE", kind=BlockKind.STATEMENT),
    ]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        condition = as_bool(context.resolve(params.get("CONDITION")))
        return BranchRequest("DO" if condition else "ELSE", value=condition)


class CompareBlock(BaseBlock):
    type = "logic_compare"
    category = "Logic"
    description = "Compare two values"
    inputs = [
        BlockInput("A", kind=BlockKind.VALUE),
        BlockInput(
            "OP",
            field_type="dropdown",
            default="eq",
            options=["eq", "neq", "lt", "lte", "gt", "gte", "contains"],
        ),
        BlockInput("B", kind=BlockKind.VALUE),
    ]
    output = "Boolean"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        a = context.resolve(params.get("A"))
        b = context.resolve(params.get("B"))
        op = params.get("OP") or "eq"

        if op == "eq":
            return values_equal(a, b)
        if op == "neq":
            return not values_equal(a, b)
        if op == "contains":
            if isinstance(a, str):
                return format_value(b) in a
            if isinstance(a, (list, tuple)):
                return any(values_equal(item, b) for item in a)
            if isinstance(a, dict):
                return b in a
            return False
        if op in ("lt", "lte", "gt", "gte"):
            left, right = as_number(a), as_number(b)
            return {
                "lt": left < right,
                "lte": left <= right,
                "gt": left > right,
                "gte": left >= right,
            }[op]
        raise ValueError(f"Unknown comparison operator: {op}")


class BooleanOpBlock(BaseBlock):
    type = "logic_boolean_op"
    category = "Logic"
    description = "Combine boolean values"
    inputs = [
        BlockInput("A", kind=BlockKind.VALUE, field_type="Boolean"),
        BlockInput("OP", field_type="dropdown", default="and", options=["and", "or"]),
        BlockInput("B", kind=BlockKind.VALUE, field_type="Boolean"),
    ]
    output = "Boolean"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        a = as_bool(context.resolve(params.get("A")))
        b = as_bool(context.resolve(params.get("B")))
        if params.get("OP") == "or":
            return a or b
        return a and b


class NotBlock(BaseBlock):
    type = "logic_not"
    category = "Logic"
    description = "Negate a boolean value"
    inputs = [BlockInput("VALUE", kind=BlockKind.VALUE, field_type="Boolean")]
    output = "Boolean"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        return not as_bool(context.resolve(params.get("VALUE")))


class RepeatBlock(BaseBlock):
    type = "logic_repeat"
    category = "Logic"
    description = "Repeat blocks a number of times"
    inputs = [
        BlockInput("TIMES", field_type="number", default=10, required=True),
        BlockInput("DO", kind=BlockKind.STATEMENT),
    ]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        times = int(as_number(context.resolve(params.get("TIMES")), default=0))
        return LoopRequest(items=range(max(times, 0)), variable=None, index_variable="_index")


class ForEachBlock(BaseBlock):
    type = "logic_foreach"
    category = "Logic"
    description = "Run blocks for each item of an array"
    inputs = [
        BlockInput("ARRAY", kind=BlockKind.VALUE, field_type="Array", required=True),
        BlockInput("VAR", default="item", required=True),
        BlockInput("DO", kind=BlockKind.STATEMENT),
    ]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        items = context.resolve(params.get("ARRAY"))
        if isinstance(items, str):
            items = _decode_json_field(items, list)
        if isinstance(items, dict):
            items = list(items.values())
        if not isinstance(items, (list, tuple)):
            raise ValueError(f"foreach expects an array, got {type(items).__name__}")
        return LoopRequest(items=list(items), variable=params.get("VAR") or "item")


class TryCatchBlock(BaseBlock):
    type = "logic_try_catch"
    category = "Logic"
    description = "Run blocks and handle failures"
    inputs = [
        BlockInput("TRY", kind=BlockKind.STATEMENT),
        BlockInput("CATCH", kind=BlockKind.STATEMENT),
    ]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        return TryCatchRequest()


class LogBlock(BaseBlock):
    type = "logic_log"
    category = "Logic"
    description = "Log a message"
    inputs = [
        BlockInput(
            "LEVEL", field_type="dropdown", default="info", options=["info", "warn", "error", "debug"]
        ),
        BlockInput("MESSAGE", required=True),
    ]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        message = format_value(context.resolve(params["MESSAGE"]))
        level = params.get("LEVEL") or "info"
        log = getattr(context.logger, level, context.logger.info)
        log(message)
        return message


class CommentBlock(BaseBlock):
    type = "logic_comment"
    category = "Logic"
    description = "A comment (does nothing)"
    inputs = [BlockInput("TEXT", default="Comment")]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        return None


class TextBlock(BaseBlock):
    type = "logic_text"
    category = "Logic"
    inputs = [BlockInput("TEXT", default="")]
    output = "String"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        return context.resolve(params.get("TEXT", ""))


class NumberBlock(BaseBlock):
    type = "logic_number"
    category = "Logic"
    inputs = [BlockInput("NUM", field_type="number", default=0)]
    output = "Number"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        return as_number(context.resolve(params.get("NUM", 0)))


class BooleanBlock(BaseBlock):
    type = "logic_boolean"
    category = "Logic"
    inputs = [BlockInput("BOOL", field_type="dropdown", default="true", options=["true", "false"])]
    output = "Boolean"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        return as_bool(params.get("BOOL"))


class ObjectBlock(BaseBlock):
    type = "logic_object"
    category = "Logic"
    description = "Create a JSON object"
    inputs = [BlockInput("JSON", default="{}")]
    output = "Object"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        return _decode_json_field(context.resolve(params.get("JSON") or "{}"), dict)


class ArrayBlock(BaseBlock):
    type = "logic_array"
    category = "Logic"
    description = "Create an array"
    inputs = [BlockInput("JSON", default="[]")]
    output = "Array"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        return _decode_json_field(context.resolve(params.get("JSON") or "[]"), list)


class FailBlock(BaseBlock):
    type = "logic_fail"
    category = "Logic"
    description = "Fail the test with a message"
    inputs = [BlockInput("MESSAGE", default="Test failed")]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        raise StepFailedError(format_value(context.resolve(params.get("MESSAGE") or "Test failed")))


class AssertBlock(BaseBlock):
    type = "logic_assert"
    category = "Logic"
    description = "Assert a condition is true"
    inputs = [
        BlockInput("CONDITION", kind=BlockKind.VALUE, field_type="Boolean", required=True),
        BlockInput("MESSAGE", default="Assertion failed"),
    ]

    def validate_params(self, params: Dict[str, Any]) -> None:
        # False is a legitimate condition value
        if "CONDITION" not in params:
            raise ValueError(f"Block '{self.type}' requires 'CONDITION' field")

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        condition = as_bool(context.resolve(params.get("CONDITION")))
        message = format_value(context.resolve(params.get("MESSAGE") or "Assertion failed"))
        if context.check(condition, message, expected=True, actual=condition):
            context.logger.info("Assertion passed")
        return condition


LOGIC_BLOCKS = [
    SetVariableBlock(),
    GetVariableBlock(),
    IfBlock(),
    CompareBlock(),
    BooleanOpBlock(),
    NotBlock(),
    RepeatBlock(),
    ForEachBlock(),
    TryCatchBlock(),
    LogBlock(),
    CommentBlock(),
    TextBlock(),
    NumberBlock(),
    BooleanBlock(),
    ObjectBlock(),
    ArrayBlock(),
    FailBlock(),
    AssertBlock(),
]
