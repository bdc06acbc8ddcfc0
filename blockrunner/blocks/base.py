"""Base block abstraction and control outcomes for executable steps."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, List, Optional, Sequence, Union

if TYPE_CHECKING:
    from ..config import Procedure, Step
    from ..context import ExecutionContext


class BlockKind(str, Enum):
    """How a block input is connected in the authoring graph."""

    FIELD = "field"
    VALUE = "value"
    STATEMENT = "statement"


@dataclass
class BlockInput:
    """Declared input of a block.

    Attributes:
        name: Parameter name (e.g. ``SELECTOR``, ``DO``)
        kind: Field literal, nested value step, or statement list
        field_type: Editor type hint (text, number, checkbox, dropdown...)
        default: Value used when the parameter is absent
        required: Whether validation rejects a missing value
        options: Allowed values for dropdown fields
    """

    name: str
    kind: BlockKind = BlockKind.FIELD
    field_type: str = "text"
    default: Any = None
    required: bool = False
    options: Optional[List[str]] = None


# =============================================================================
# Control outcomes
# =============================================================================


@dataclass
class ProcedureCall:
    """Request to invoke a named procedure with arguments.

    ``positional`` values, when given, are matched to the procedure's
    declared parameters in order once the procedure has been looked up.
    """

    name: str
    args: Dict[str, Any] = field(default_factory=dict)
    positional: Optional[List[Any]] = None
    expect_return: bool = False
    procedure: Optional["Procedure"] = None


@dataclass
class CompoundAction:
    """Request to run a list of sub-steps in place of the current step."""

    steps: List["Step"]
    label: Optional[str] = None


@dataclass
class LoopRequest:
    """Request to run a statement list once per item.

    Each item is bound to ``variable`` (when set) and the zero-based
    iteration number to ``index_variable``.
    """

    items: Sequence[Any]
    variable: Optional[str] = None
    index_variable: Optional[str] = "_index"
    statement: str = "DO"


@dataclass
class BranchRequest:
    """Request to run one named statement list (None runs nothing)."""

    statement: Optional[str]
    value: Any = None


@dataclass
class TryCatchRequest:
    """Request to run TRY and, on failure, bind the error and run CATCH."""

    try_statement: str = "TRY"
    catch_statement: str = "CATCH"
    error_variable: str = "error"


@dataclass
class RetryRequest:
    """Request to re-run a statement list until it passes."""

    times: int
    delay_ms: int = 0
    statement: str = "DO"


@dataclass
class MapRequest:
    """Request to call a procedure once per item, collecting the return values.

    ``procedure`` is a procedure name or an inline ``Procedure``.
    """

    items: Sequence[Any]
    procedure: Union[str, "Procedure"]
    item_param: str = "item"


@dataclass
class ProcedureReturn:
    """Explicit return from the enclosing procedure."""

    value: Any = None


ControlOutcome = Union[
    ProcedureCall,
    CompoundAction,
    LoopRequest,
    BranchRequest,
    TryCatchRequest,
    RetryRequest,
    MapRequest,
    ProcedureReturn,
]

CONTROL_OUTCOMES = (
    ProcedureCall,
    CompoundAction,
    LoopRequest,
    BranchRequest,
    TryCatchRequest,
    RetryRequest,
    MapRequest,
    ProcedureReturn,
)


class BaseBlock(ABC):
    """Abstract base class for all executable block types.

    To add a new block:
    1. Create a new class inheriting from BaseBlock
    2. Set ``type``, ``category``, ``inputs`` (and ``output`` for value blocks)
    3. Implement ``execute``
    4. Register an instance in ``blocks/__init__.py`` or through a plugin
    """

    type: str = ""
    category: str = ""
    description: str = ""
    inputs: List[BlockInput] = []
    # Output type of a value-producing block; None for statements
    output: Optional[str] = None
    # Driver sessions the block needs ("browser", "http")
    requires: FrozenSet[str] = frozenset()

    @property
    def is_value_block(self) -> bool:
        return self.output is not None

    def statement_inputs(self) -> FrozenSet[str]:
        """Names of the inputs that hold statement lists."""
        return frozenset(i.name for i in self.inputs if i.kind == BlockKind.STATEMENT)

    def apply_defaults(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Return params with declared defaults filled in for missing inputs."""
        merged = dict(params)
        for block_input in self.inputs:
            if block_input.kind == BlockKind.STATEMENT:
                continue
            if merged.get(block_input.name) is None and block_input.default is not None:
                merged[block_input.name] = block_input.default
        return merged

    def validate_params(self, params: Dict[str, Any]) -> None:
        """Validate resolved parameters.

        Raises:
            ValueError: If a required input is missing or empty
        """
        for block_input in self.inputs:
            if not block_input.required or block_input.kind == BlockKind.STATEMENT:
                continue
            value = params.get(block_input.name)
            if value is None or value == "":
                raise ValueError(f"Block '{self.type}' requires '{block_input.name}' field")

    @abstractmethod
    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        """Execute the block.

        Args:
            params: Resolved parameters (nested value steps already evaluated)
            context: Execution context of the running test

        Returns:
            A plain value or a control outcome
        """
        pass


def as_bool(value: Any) -> bool:
    """Interpret a field value (``"TRUE"``, ``"false"``, 1, ...) as a boolean."""
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def as_number(value: Any, default: float = 0) -> float:
    """Interpret a field value as a number, returning ``default`` when impossible."""
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (int, float)):
        return value
    try:
        text = str(value).strip()
        return int(text) if text.lstrip("-").isdigit() else float(text)
    except (TypeError, ValueError):
        return default
