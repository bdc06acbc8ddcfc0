"""Blocks reading the active data row and building inline data sets."""

import json
from typing import TYPE_CHECKING, Any, Dict

from ..data_loader import parse_csv
from .base import BaseBlock, BlockInput, BlockKind, LoopRequest, as_number

if TYPE_CHECKING:
    from ..context import ExecutionContext


class DataGetCurrentBlock(BaseBlock):
    type = "data_get_current"
    category = "Data"
    description = "Get a value from the current data set"
    inputs = [BlockInput("KEY", required=True)]
    output = "Any"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        key = params["KEY"]
        if context.current_data is None:
            raise ValueError("No data set available. This block must be used inside a data-driven test.")
        if key not in context.current_data.values:
            context.logger.warn(f'Data key "{key}" not found in current data set')
        return context.current_data.values.get(key)


class DataGetIndexBlock(BaseBlock):
    type = "data_get_index"
    category = "Data"
    description = "Get the current data iteration index (0-based)"
    output = "Number"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        return context.data_index or 0


class DataGetNameBlock(BaseBlock):
    type = "data_get_name"
    category = "Data"
    description = "Get the name of the current data set"
    output = "String"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        if context.current_data is not None and context.current_data.name:
            return context.current_data.name
        return f"Iteration {(context.data_index or 0) + 1}"


class DataForEachBlock(BaseBlock):
    type = "data_foreach"
    category = "Data"
    description = "Run steps for each item in a data set"
    inputs = [
        BlockInput("DATA", kind=BlockKind.VALUE, field_type="Array", required=True),
        BlockInput("ITEM_VAR", default="item"),
        BlockInput("INDEX_VAR", default="index"),
        BlockInput("DO", kind=BlockKind.STATEMENT),
    ]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        data = context.resolve(params["DATA"])
        if isinstance(data, str):
            data = json.loads(data)
        if not isinstance(data, list):
            raise ValueError(f"data_foreach expects an array, got {type(data).__name__}")
        return LoopRequest(
            items=data,
            variable=params.get("ITEM_VAR") or "item",
            index_variable=params.get("INDEX_VAR") or "index",
        )


class DataCsvBlock(BaseBlock):
    type = "data_csv"
    category = "Data"
    description = "Parse CSV-style data (first row as headers)"
    inputs = [BlockInput("CSV", default="name,value\ntest1,100\ntest2,200")]
    output = "Array"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        rows = parse_csv(context.resolve(params.get("CSV") or ""))
        return [{"name": row.name, "values": dict(row.values)} for row in rows]


class DataRangeBlock(BaseBlock):
    type = "data_range"
    category = "Data"
    description = "Generate a range of numbers as data"
    inputs = [
        BlockInput("START", field_type="number", default=1),
        BlockInput("END", field_type="number", default=10),
        BlockInput("STEP", field_type="number", default=1),
        BlockInput("VAR_NAME", default="n"),
    ]
    output = "Array"

    def validate_params(self, params: Dict[str, Any]) -> None:
        if as_number(params.get("STEP"), default=0) <= 0:
            raise ValueError(f"'STEP' must be a positive number, got {params.get('STEP')}")

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        start = as_number(params["START"])
        end = as_number(params["END"])
        step = as_number(params["STEP"])
        var_name = params.get("VAR_NAME") or "n"

        rows = []
        current = start
        while current <= end:
            rows.append({"name": f"{var_name}={current}", "values": {var_name: current}})
            current += step
        return rows


def _loads(text: Any, context: "ExecutionContext") -> Any:
    if isinstance(text, (dict, list)):
        return context.resolve_object(text)
    return json.loads(context.resolve(str(text)))


def _cell(text: str) -> Any:
    text = text.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


class DataDefineBlock(BaseBlock):
    type = "data_define"
    category = "Data"
    description = "Define inline test data as a JSON array"
    inputs = [BlockInput("DATA_JSON", default='[{"name": "test1", "value": 1}]')]
    output = "Array"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        return _loads(params["DATA_JSON"], context)


class DataFromVariableBlock(BaseBlock):
    type = "data_from_variable"
    category = "Data"
    description = "Use a variable's list as data"
    inputs = [BlockInput("NAME", required=True)]
    output = "Array"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        return context.get(params["NAME"]) or []


class DataRowBlock(BaseBlock):
    type = "data_row"
    category = "Data"
    description = "A single named data row"
    inputs = [BlockInput("NAME", default=""), BlockInput("JSON", default="{}")]
    output = "Object"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        return {"name": params.get("NAME") or None, "values": _loads(params["JSON"], context)}


class DataTableBlock(BaseBlock):
    """Rows of comma-separated cells under a comma-separated header line.

    Cells are JSON-decoded when possible, so ``true`` and ``3`` keep their types.
    """

    type = "data_table"
    category = "Data"
    description = "Define data as a table of headers and rows"
    inputs = [
        BlockInput("HEADERS", default="username, password, expected"),
        BlockInput("ROWS", default="user1, pass1, true\nuser2, pass2, false"),
    ]
    output = "Array"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        headers = [h.strip() for h in str(params.get("HEADERS") or "").split(",")]
        lines = [line for line in context.resolve(str(params.get("ROWS") or "")).split("\n") if line.strip()]

        rows = []
        for index, line in enumerate(lines):
            cells = [_cell(value) for value in line.split(",")]
            values = {header: cells[i] if i < len(cells) else None for i, header in enumerate(headers)}
            rows.append({"name": f"Row {index + 1}", "values": values})
        return rows


DATA_BLOCKS = [
    DataGetCurrentBlock(),
    DataGetIndexBlock(),
    DataGetNameBlock(),
    DataForEachBlock(),
    DataCsvBlock(),
    DataRangeBlock(),
    DataDefineBlock(),
    DataFromVariableBlock(),
    DataRowBlock(),
    DataTableBlock(),
]
