"""Procedure definition, call, return and parameter blocks."""

import json
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..config import Procedure, ProcedureParam, Step
from ..context import PARAM_PREFIX
from ..extraction import new_step_id
from .base import (
    BaseBlock,
    BlockInput,
    BlockKind,
    CompoundAction,
    MapRequest,
    ProcedureCall,
    ProcedureReturn,
)

if TYPE_CHECKING:
    from ..context import ExecutionContext

# Prefix of the synthetic block registered for each procedure
CUSTOM_BLOCK_PREFIX = "custom_"

INLINE_PROCEDURE_NAME = "<inline>"


def parse_param_list(text: str) -> List[ProcedureParam]:
    """Parse ``"username, count:number"`` into declared parameters."""
    params: List[ProcedureParam] = []
    for raw in (text or "").split(","):
        raw = raw.strip()
        if not raw:
            continue
        name, _, param_type = raw.partition(":")
        params.append(ProcedureParam(name=name.strip(), type=param_type.strip() or "any"))
    return params


def _decode(value: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def parse_call_args(text: Any, name: str) -> ProcedureCall:
    """Parse call arguments given as a JSON object or comma-separated values.

    Comma-separated values are JSON-decoded when possible and bound to the
    procedure's parameters in declaration order.
    """
    if isinstance(text, dict):
        return ProcedureCall(name=name, args=dict(text))

    text = "" if text is None else str(text)
    if not text.strip():
        return ProcedureCall(name=name)

    decoded = _decode(text)
    if isinstance(decoded, dict):
        return ProcedureCall(name=name, args=decoded)

    return ProcedureCall(name=name, positional=[_decode(v.strip()) for v in text.split(",")])


class ProcedureDefineBlock(BaseBlock):
    type = "procedure_define"
    category = "Procedures"
    description = "Define a reusable procedure with parameters"
    inputs = [
        BlockInput("NAME", required=True),
        BlockInput("DESCRIPTION", default=""),
        BlockInput("PARAMS", default=""),
        BlockInput("DO", kind=BlockKind.STATEMENT),
    ]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        step = context.current_step
        body = list(step.children.get("DO", [])) if step else []
        procedure = Procedure(
            name=params["NAME"],
            description=params.get("DESCRIPTION") or "",
            params=parse_param_list(params.get("PARAMS") or ""),
            steps=body,
        )
        context.procedures[procedure.name] = procedure
        context.logger.debug(
            f"Defined procedure: {procedure.name}({', '.join(p.name for p in procedure.params)})"
        )
        return procedure.name


class ProcedureCallBlock(BaseBlock):
    type = "procedure_call"
    category = "Procedures"
    description = "Call a defined procedure"
    inputs = [
        BlockInput("NAME", required=True),
        BlockInput("ARGS", default=""),
    ]
    expect_return = False

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        call = parse_call_args(context.resolve(params.get("ARGS")), params["NAME"])
        call.expect_return = self.expect_return
        context.logger.info(f"Calling procedure: {call.name}")
        return call


class ProcedureCallWithReturnBlock(ProcedureCallBlock):
    type = "procedure_call_with_return"
    description = "Call a procedure and get its return value"
    output = "Any"
    expect_return = True


class ProcedureReturnBlock(BaseBlock):
    type = "procedure_return"
    category = "Procedures"
    description = "Return a value from a procedure"
    inputs = [BlockInput("VALUE", kind=BlockKind.VALUE)]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        return ProcedureReturn(context.resolve(params.get("VALUE")))


class ProcedureGetParamBlock(BaseBlock):
    type = "procedure_get_param"
    category = "Procedures"
    description = "Get a procedure parameter value"
    inputs = [BlockInput("NAME", required=True)]
    output = "Any"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        name = params["NAME"]
        if context.has(f"{PARAM_PREFIX}{name}"):
            return context.get(f"{PARAM_PREFIX}{name}")
        return context.get(name)


class ProcedureInlineBlock(BaseBlock):
    """Anonymous procedure value, usable wherever a procedure is expected."""

    type = "procedure_inline"
    category = "Procedures"
    description = "Define an anonymous procedure inline"
    inputs = [
        BlockInput("PARAMS", default=""),
        BlockInput("DO", kind=BlockKind.STATEMENT),
    ]
    output = "Procedure"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        step = context.current_step
        return Procedure(
            name=INLINE_PROCEDURE_NAME,
            params=parse_param_list(params.get("PARAMS") or ""),
            steps=list(step.children.get("DO", [])) if step else [],
        )


class ProcedureMapBlock(BaseBlock):
    type = "procedure_map"
    category = "Procedures"
    description = "Call a procedure for each item of an array and collect the results"
    inputs = [
        BlockInput("ARRAY", kind=BlockKind.VALUE, field_type="Array", required=True),
        BlockInput("PROCEDURE", required=True),
        BlockInput("ITEM_PARAM", default="item"),
    ]
    output = "Array"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        items = context.resolve(params["ARRAY"])
        if isinstance(items, str):
            items = json.loads(items)
        if not isinstance(items, list):
            raise ValueError(f"procedure_map expects an array, got {type(items).__name__}")
        return MapRequest(
            items=items,
            procedure=params["PROCEDURE"],
            item_param=params.get("ITEM_PARAM") or "item",
        )


# =============================================================================
# Compound actions
# =============================================================================


def _inline_step(step_type: str, **params: Any) -> Step:
    return Step(id=new_step_id(), type=step_type, params=params)


class LoginBlock(BaseBlock):
    type = "procedure_login"
    category = "Procedures"
    requires = frozenset({"browser"})
    description = "Common login action with username and password"
    inputs = [
        BlockInput("USERNAME_SELECTOR", default="#username"),
        BlockInput("PASSWORD_SELECTOR", default="#password"),
        BlockInput("SUBMIT_SELECTOR", default='button[type="submit"]'),
        BlockInput("USERNAME", kind=BlockKind.VALUE, required=True),
        BlockInput("PASSWORD", kind=BlockKind.VALUE, required=True),
    ]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        return CompoundAction(
            label="login",
            steps=[
                _inline_step("web_fill", SELECTOR=params["USERNAME_SELECTOR"], VALUE=params["USERNAME"]),
                _inline_step("web_fill", SELECTOR=params["PASSWORD_SELECTOR"], VALUE=params["PASSWORD"]),
                _inline_step("web_click", SELECTOR=params["SUBMIT_SELECTOR"]),
            ],
        )


class WaitAndClickBlock(BaseBlock):
    type = "procedure_wait_and_click"
    category = "Procedures"
    requires = frozenset({"browser"})
    description = "Wait for element to be visible then click"
    inputs = [
        BlockInput("SELECTOR", required=True),
        BlockInput("TIMEOUT", field_type="number", default=30000),
    ]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        return CompoundAction(
            label="waitAndClick",
            steps=[
                _inline_step(
                    "web_wait_for_element",
                    SELECTOR=params["SELECTOR"],
                    STATE="visible",
                    TIMEOUT=params["TIMEOUT"],
                ),
                _inline_step("web_click", SELECTOR=params["SELECTOR"]),
            ],
        )


class FillFormBlock(BaseBlock):
    type = "procedure_fill_form"
    category = "Procedures"
    requires = frozenset({"browser"})
    description = "Fill multiple form fields from a selector -> value object"
    inputs = [BlockInput("FIELDS", kind=BlockKind.VALUE, field_type="Object", required=True)]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        fields = context.resolve(params["FIELDS"])
        if isinstance(fields, str):
            fields = json.loads(fields)
        if not isinstance(fields, dict):
            raise ValueError("FIELDS must be an object mapping selectors to values")
        return CompoundAction(
            label="fillForm",
            steps=[_inline_step("web_fill", SELECTOR=sel, VALUE=val) for sel, val in fields.items()],
        )


# =============================================================================
# Synthetic per-procedure blocks
# =============================================================================


class ProcedureBlock(BaseBlock):
    """Block type generated for an authored procedure (``custom_<name>``).

    Each declared parameter becomes an input of the same name, so the
    procedure can be placed in a test as an ordinary step.
    """

    category = "Custom"

    def __init__(self, procedure: Procedure, block_type: Optional[str] = None):
        self.procedure = procedure
        self.type = block_type or procedure_block_type(procedure.name)
        self.description = procedure.description
        self.inputs = [
            BlockInput(p.name, kind=BlockKind.VALUE, field_type=p.type, default=p.default)
            for p in procedure.params
        ]
        self.output = "Any" if procedure.return_type else None

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        # The procedure visible to this run may differ from the one the
        # block was generated from when two files share a procedure name.
        procedure = context.procedures.get(self.procedure.name) or self.procedure
        args = {
            p.name: params[p.name]
            for p in procedure.params
            if params.get(p.name) is not None
        }
        for key, value in params.items():
            if key not in args and value is not None:
                args[key] = value
        return ProcedureCall(
            name=procedure.name,
            args=args,
            expect_return=procedure.return_type is not None,
        )


def procedure_block_type(name: str) -> str:
    """Block type name for a procedure (``Log In`` -> ``custom_log_in``)."""
    slug = "".join(c if c.isalnum() else "_" for c in name.strip().lower())
    return f"{CUSTOM_BLOCK_PREFIX}{slug}"


PROCEDURE_BLOCKS = [
    ProcedureDefineBlock(),
    ProcedureCallBlock(),
    ProcedureCallWithReturnBlock(),
    ProcedureReturnBlock(),
    ProcedureGetParamBlock(),
    ProcedureInlineBlock(),
    ProcedureMapBlock(),
    LoginBlock(),
    WaitAndClickBlock(),
    FillFormBlock(),
]
