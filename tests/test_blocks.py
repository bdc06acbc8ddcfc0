"""Tests for the block registry and the built-in block types."""

import itertools
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from blockrunner.blocks import BlockRegistry, create_default_registry
from blockrunner.blocks.api import extract_xpath, get_value_by_path, parse_headers
from blockrunner.blocks.base import BaseBlock, BlockInput, BlockKind, as_bool, as_number
from blockrunner.blocks.logic import values_equal
from blockrunner.blocks.procedures import (
    ProcedureBlock,
    parse_call_args,
    parse_param_list,
    procedure_block_type,
)
from blockrunner.blocks.web import resolve_selector, resolve_url
from blockrunner.config import DataSet, Procedure, ProcedureParam, Step
from blockrunner.context import ExecutionContext
from blockrunner.drivers.base import HttpResponse
from blockrunner.errors import UnknownStepTypeError
from blockrunner.results import StepStatus

_ids = itertools.count(1)


def _step(step_type: str, children: Optional[Dict[str, List[Step]]] = None, **params: Any) -> Step:
    return Step(id=f"s{next(_ids)}", type=step_type, params=params, children=children or {})


class _EchoBlock(BaseBlock):
    type = "test_echo"
    category = "Test"
    inputs = [BlockInput("VALUE", default="echo")]

    def execute(self, params, context):
        return params["VALUE"]


# =============================================================================
# Registry
# =============================================================================


class TestBlockRegistry:
    """Tests for block registration and lookup."""

    def test_default_registry_has_builtin_categories(self) -> None:
        registry = create_default_registry()
        for block_type in ("logic_if", "lifecycle_retry", "procedure_call", "data_get_current", "api_get", "web_click"):
            assert block_type in registry

    def test_register_is_idempotent(self) -> None:
        """The first registration of a type wins."""
        registry = BlockRegistry()
        first, second = _EchoBlock(), _EchoBlock()

        assert registry.register(first) is True
        assert registry.register(second) is False
        assert registry.get("test_echo") is first
        assert len(registry) == 1

    def test_unregister_frees_the_type(self) -> None:
        registry = BlockRegistry()
        block = _EchoBlock()
        registry.register(block)

        assert registry.unregister("test_echo") is block
        assert "test_echo" not in registry
        assert registry.unregister("test_echo") is None
        assert registry.register(_EchoBlock()) is True

    def test_register_all_counts_new_blocks(self) -> None:
        registry = BlockRegistry([_EchoBlock()])
        assert registry.register_all([_EchoBlock()]) == 0

    def test_unknown_type_raises(self) -> None:
        with pytest.raises(UnknownStepTypeError, match="Unknown block type: nope"):
            BlockRegistry().get("nope")

    def test_find_returns_none(self) -> None:
        assert BlockRegistry().find("nope") is None

    def test_block_without_type_rejected(self) -> None:
        block = _EchoBlock()
        block.type = ""
        with pytest.raises(ValueError):
            BlockRegistry().register(block)


class TestBaseBlock:
    def test_apply_defaults_skips_statements(self) -> None:
        block = _EchoBlock()
        block.inputs = [BlockInput("VALUE", default="x"), BlockInput("DO", kind=BlockKind.STATEMENT, default=[])]
        assert block.apply_defaults({}) == {"VALUE": "x"}

    def test_validate_required(self) -> None:
        block = _EchoBlock()
        block.inputs = [BlockInput("VALUE", required=True)]
        with pytest.raises(ValueError, match="requires 'VALUE' field"):
            block.validate_params({"VALUE": ""})

    def test_statement_inputs(self) -> None:
        block = create_default_registry().get("logic_if")
        assert block.statement_inputs() == frozenset({"DO", "ELSE"})


class TestCoercion:
    @pytest.mark.parametrize("value,expected", [("TRUE", True), ("false", False), ("1", True), (0, False), (None, False)])
    def test_as_bool(self, value, expected) -> None:
        assert as_bool(value) is expected

    def test_as_number(self) -> None:
        assert as_number("42") == 42
        assert as_number("-3") == -3
        assert as_number("2.5") == 2.5
        assert as_number("abc", default=7) == 7
        assert as_number(True) == 1

    def test_values_equal_text_fallback(self) -> None:
        assert values_equal("5", 5)
        assert values_equal(True, "true")
        assert not values_equal(1, 2)
        assert not values_equal([1], (1,))


# =============================================================================
# Logic Blocks
# =============================================================================


class TestLogicBlocks:
    """Tests for variables, values and comparisons."""

    def test_set_variable_resolves_placeholders(self, interpreter, context) -> None:
        context.set("name", "Ann")
        result = interpreter.run_step(_step("logic_set_variable", NAME="greeting", VALUE="Hi ${name}"), context)

        assert result.status == StepStatus.PASSED
        assert context.get("greeting") == "Hi Ann"

    def test_set_variable_from_nested_value_step(self, interpreter, context) -> None:
        step = _step("logic_set_variable", NAME="n", VALUE=_step("logic_number", NUM="12"))
        interpreter.run_step(step, context)
        assert context.get("n") == 12

    def test_get_variable(self, interpreter, context) -> None:
        context.set("x", [1, 2])
        assert interpreter.run_step(_step("logic_get_variable", NAME="x"), context).output == [1, 2]

    @pytest.mark.parametrize(
        "a,op,b,expected",
        [
            ("5", "eq", 5, True),
            ("a", "neq", "b", True),
            ("3", "lt", "10", True),
            (10, "gte", 10, True),
            ("hello world", "contains", "world", True),
            ([1, 2], "contains", "2", True),
            (2, "gt", 3, False),
        ],
    )
    def test_compare(self, interpreter, context, a, op, b, expected) -> None:
        result = interpreter.run_step(_step("logic_compare", A=a, OP=op, B=b), context)
        assert result.output is expected

    def test_boolean_op_and_not(self, interpreter, context) -> None:
        assert interpreter.run_step(_step("logic_boolean_op", A="true", OP="or", B="false"), context).output is True
        assert interpreter.run_step(_step("logic_boolean_op", A="true", B="false"), context).output is False
        assert interpreter.run_step(_step("logic_not", VALUE="false"), context).output is True

    def test_object_and_array(self, interpreter, context) -> None:
        context.set("id", "7")
        assert interpreter.run_step(_step("logic_object", JSON='{"id": "${id}"}'), context).output == {"id": "7"}
        assert interpreter.run_step(_step("logic_array", JSON="[1, 2]"), context).output == [1, 2]

    def test_invalid_json_fails_step(self, interpreter, context) -> None:
        result = interpreter.run_step(_step("logic_array", JSON="{}"), context)
        assert result.status == StepStatus.FAILED
        assert "Expected a JSON list" in result.error.message

    def test_log_uses_level(self, interpreter) -> None:
        logger = MagicMock()
        ctx = ExecutionContext(logger=logger, variables={"who": "bob"})
        interpreter.run_step(_step("logic_log", LEVEL="warn", MESSAGE="hi ${who}"), ctx)
        logger.warn.assert_called_once_with("hi bob")

    def test_fail(self, interpreter, context) -> None:
        result = interpreter.run_step(_step("logic_fail", MESSAGE="boom"), context)
        assert result.status == StepStatus.FAILED
        assert result.error.message == "boom"

    def test_assert_false_fails(self, interpreter, context) -> None:
        result = interpreter.run_step(_step("logic_assert", CONDITION=False, MESSAGE="must hold"), context)
        assert result.status == StepStatus.FAILED
        assert result.error.code == "AssertionFailure"

    def test_missing_required_field_fails(self, interpreter, context) -> None:
        result = interpreter.run_step(_step("logic_set_variable", VALUE="x"), context)
        assert result.status == StepStatus.FAILED
        assert "requires 'NAME' field" in result.error.message


# =============================================================================
# Lifecycle Blocks
# =============================================================================


class TestLifecycleBlocks:
    def test_skip_if_false_passes(self, interpreter, context) -> None:
        result = interpreter.run_step(_step("lifecycle_skip_if", CONDITION="false"), context)
        assert result.status == StepStatus.PASSED

    def test_retry_rejects_non_positive_times(self, interpreter, context) -> None:
        result = interpreter.run_step(_step("lifecycle_retry", TIMES=0), context)
        assert result.status == StepStatus.FAILED
        assert "'TIMES' must be a positive integer" in result.error.message

    def test_setup_group_runs_children(self, interpreter, context) -> None:
        step = _step("lifecycle_setup", children={"DO": [_step("logic_set_variable", NAME="ready", VALUE=True)]})
        interpreter.run_step(step, context)
        assert context.get("ready") is True


# =============================================================================
# Procedure Blocks
# =============================================================================


class TestProcedureHelpers:
    def test_parse_param_list(self) -> None:
        params = parse_param_list("username, count:number, ")
        assert [(p.name, p.type) for p in params] == [("username", "any"), ("count", "number")]

    def test_parse_call_args_json_object(self) -> None:
        call = parse_call_args('{"user": "ann"}', "login")
        assert call.args == {"user": "ann"}
        assert call.positional is None

    def test_parse_call_args_positional(self) -> None:
        call = parse_call_args('ann, 3, "x"', "login")
        assert call.positional == ["ann", 3, "x"]

    def test_parse_call_args_empty(self) -> None:
        call = parse_call_args("", "login")
        assert call.args == {}
        assert call.positional is None

    def test_procedure_block_type(self) -> None:
        assert procedure_block_type("Log In") == "custom_log_in"

    def test_procedure_block_inputs_and_call(self, context) -> None:
        procedure = Procedure(
            name="greet",
            params=[ProcedureParam("who"), ProcedureParam("punct", default="!")],
            return_type="string",
        )
        block = ProcedureBlock(procedure)

        call = block.execute({"who": "ann", "punct": None}, context)

        assert block.type == "custom_greet"
        assert [i.name for i in block.inputs] == ["who", "punct"]
        assert block.is_value_block
        assert call.name == "greet"
        assert call.args == {"who": "ann"}
        assert call.expect_return is True

    def test_procedure_block_uses_procedure_of_running_file(self, context) -> None:
        block = ProcedureBlock(Procedure(name="greet", params=[ProcedureParam("who")]))
        context.procedures["greet"] = Procedure(name="greet", params=[ProcedureParam("name")])

        call = block.execute({"name": "bob"}, context)

        assert call.args == {"name": "bob"}
        assert call.expect_return is False


class TestProcedureBlocks:
    def test_define_registers_in_context(self, interpreter, context) -> None:
        body = [_step("logic_log", MESSAGE="inside")]
        step = _step("procedure_define", NAME="helper", PARAMS="a, b", children={"DO": body})

        interpreter.run_step(step, context)

        procedure = context.procedures["helper"]
        assert [p.name for p in procedure.params] == ["a", "b"]
        assert procedure.steps == body

    def test_get_param_prefers_binding(self, interpreter, context) -> None:
        context.update({"user": "outer", "__param_user": "inner"})
        assert interpreter.run_step(_step("procedure_get_param", NAME="user"), context).output == "inner"

    def test_login_expands_to_web_steps(self, interpreter, fake_browser) -> None:
        ctx = ExecutionContext(browser=fake_browser)
        step = _step("procedure_login", USERNAME="ann", PASSWORD="pw")

        result = interpreter.run_step(step, ctx)

        assert result.status == StepStatus.PASSED
        assert fake_browser.calls == [
            ("fill", "#username", "ann"),
            ("fill", "#password", "pw"),
            ("click", 'button[type="submit"]'),
        ]
        assert [c.step_type for c in result.children] == ["web_fill", "web_fill", "web_click"]

    def test_fill_form(self, interpreter, fake_browser) -> None:
        ctx = ExecutionContext(browser=fake_browser)
        interpreter.run_step(_step("procedure_fill_form", FIELDS='{"#a": "1", "#b": "2"}'), ctx)
        assert fake_browser.calls == [("fill", "#a", "1"), ("fill", "#b", "2")]

    def test_map_calls_named_procedure_per_item(self, interpreter, context) -> None:
        context.procedures["shout"] = Procedure(
            name="shout",
            params=[ProcedureParam("word")],
            steps=[_step("procedure_return", VALUE="${word}!")],
        )
        step = _step("procedure_map", ARRAY='["hi", "bye"]', PROCEDURE="shout", ITEM_PARAM="word")

        result = interpreter.run_step(step, context)

        assert result.status == StepStatus.PASSED
        assert result.output == ["hi!", "bye!"]
        assert not context.has("word")

    def test_map_with_inline_procedure(self, interpreter, context) -> None:
        inline = _step(
            "procedure_inline",
            PARAMS="item",
            children={"DO": [_step("procedure_return", VALUE="<${item}>")]},
        )
        step = _step("procedure_map", ARRAY=["a", "b"], PROCEDURE=inline)

        assert interpreter.run_step(step, context).output == ["<a>", "<b>"]

    def test_map_rejects_non_array(self, interpreter, context) -> None:
        result = interpreter.run_step(_step("procedure_map", ARRAY='{"a": 1}', PROCEDURE="shout"), context)
        assert result.status == StepStatus.FAILED
        assert result.error.message == "procedure_map expects an array, got dict"


# =============================================================================
# Data Blocks
# =============================================================================


class TestDataBlocks:
    def test_get_current(self, interpreter) -> None:
        ctx = ExecutionContext(current_data=DataSet(values={"email": "a@x"}, name="first"), data_index=0)
        assert interpreter.run_step(_step("data_get_current", KEY="email"), ctx).output == "a@x"
        assert interpreter.run_step(_step("data_get_name"), ctx).output == "first"
        assert interpreter.run_step(_step("data_get_index"), ctx).output == 0

    def test_get_current_without_data_fails(self, interpreter, context) -> None:
        result = interpreter.run_step(_step("data_get_current", KEY="email"), context)
        assert result.status == StepStatus.FAILED
        assert "No data set available" in result.error.message

    def test_get_name_fallback(self, interpreter) -> None:
        ctx = ExecutionContext(current_data=DataSet(values={}), data_index=2)
        assert interpreter.run_step(_step("data_get_name"), ctx).output == "Iteration 3"

    def test_range(self, interpreter, context) -> None:
        rows = interpreter.run_step(_step("data_range", START=1, END=3, VAR_NAME="i"), context).output
        assert [r["values"]["i"] for r in rows] == [1, 2, 3]

    def test_foreach_binds_item_and_index(self, interpreter, context) -> None:
        body = [_step("logic_set_variable", NAME="last", VALUE="${row}-${i}")]
        step = _step("data_foreach", DATA='["a", "b"]', ITEM_VAR="row", INDEX_VAR="i", children={"DO": body})

        interpreter.run_step(step, context)

        assert context.get("last") == "b-1"
        assert not context.has("row")

    def test_define_resolves_placeholders(self, interpreter, context) -> None:
        context.set("user", "ann")
        step = _step("data_define", DATA_JSON='[{"name": "${user}"}]')
        assert interpreter.run_step(step, context).output == [{"name": "ann"}]

    def test_from_variable(self, interpreter, context) -> None:
        context.set("rows", [1, 2])
        assert interpreter.run_step(_step("data_from_variable", NAME="rows"), context).output == [1, 2]
        assert interpreter.run_step(_step("data_from_variable", NAME="missing"), context).output == []

    def test_row(self, interpreter, context) -> None:
        output = interpreter.run_step(_step("data_row", NAME="admin", JSON='{"role": "admin"}'), context).output
        assert output == {"name": "admin", "values": {"role": "admin"}}

    def test_table_decodes_cells_and_pads_short_rows(self, interpreter, context) -> None:
        step = _step("data_table", HEADERS="user, age, active", ROWS="ann, 30, true\n\nbob, 41")

        rows = interpreter.run_step(step, context).output

        assert rows == [
            {"name": "Row 1", "values": {"user": "ann", "age": 30, "active": True}},
            {"name": "Row 2", "values": {"user": "bob", "age": 41, "active": None}},
        ]


# =============================================================================
# API Blocks
# =============================================================================


class TestApiHelpers:
    def test_parse_headers_pairs(self, context) -> None:
        context.set("token", "abc")
        headers = parse_headers("Authorization: Bearer ${token}; X-Trace: 1", context)
        assert headers == {"Authorization": "Bearer abc", "X-Trace": "1"}

    def test_parse_headers_json(self, context) -> None:
        assert parse_headers('{"Accept": "application/json"}', context) == {"Accept": "application/json"}

    def test_get_value_by_path(self) -> None:
        body = {"data": {"items": [{"id": 1}, {"id": 2}]}}
        assert get_value_by_path(body, "data.items[1].id") == 2
        assert get_value_by_path(body, "data.items.0.id") == 1
        assert get_value_by_path(body, "data.missing.id") is None

    def test_extract_xpath_text_and_attribute(self) -> None:
        document = '<feed><entry id="1"><title>One</title></entry><entry id="2"><title>Two</title></entry></feed>'

        assert extract_xpath(document, "//title/text()") == ["One", "Two"]
        assert extract_xpath(document, "/feed/entry[@id='2']/title") == "Two"
        assert extract_xpath(document, "//entry/@id") == ["1", "2"]
        assert extract_xpath(document, "//missing") is None


class TestApiBlocks:
    """Tests for HTTP request and response assertion blocks."""

    def test_get_stores_response(self, interpreter, fake_http) -> None:
        ctx = ExecutionContext(http=fake_http, variables={"id": "9"})

        result = interpreter.run_step(_step("api_get", URL="/users/${id}"), ctx)

        assert result.status == StepStatus.PASSED
        assert fake_http.requests[0]["method"] == "GET"
        assert fake_http.requests[0]["url"] == "/users/9"
        assert ctx.last_response.status == 200

    def test_post_sends_json_body_and_set_headers(self, interpreter, fake_http) -> None:
        ctx = ExecutionContext(http=fake_http)
        interpreter.run_step(_step("api_set_header", NAME="X-Key", VALUE="k1"), ctx)
        interpreter.run_step(_step("api_post", URL="/items", BODY='{"name": "x"}'), ctx)

        request = fake_http.requests[0]
        assert request["body"] == {"name": "x"}
        assert request["headers"] == {"X-Key": "k1"}

    def test_assert_status_mismatch(self, interpreter, fake_http) -> None:
        fake_http.responses.append(HttpResponse(status=404, body="missing"))
        ctx = ExecutionContext(http=fake_http)
        interpreter.run_step(_step("api_get", URL="/x"), ctx)

        result = interpreter.run_step(_step("api_assert_status", STATUS=200), ctx)

        assert result.status == StepStatus.FAILED
        assert result.error.message == "Expected status 200 but got 404"

    def test_extract_and_body_contains(self, interpreter, fake_http) -> None:
        fake_http.responses.append(HttpResponse(status=200, body={"user": {"name": "Ann"}}))
        ctx = ExecutionContext(http=fake_http)
        interpreter.run_step(_step("api_get", URL="/me"), ctx)

        interpreter.run_step(_step("api_extract", PATH="user.name", VARIABLE="name"), ctx)
        contains = interpreter.run_step(_step("api_assert_body_contains", PATH="user", VALUE="Ann"), ctx)

        assert ctx.get("name") == "Ann"
        assert contains.status == StepStatus.PASSED

    def test_assertion_without_response_fails(self, interpreter, context) -> None:
        result = interpreter.run_step(_step("api_assert_status", STATUS=200), context)
        assert result.status == StepStatus.FAILED
        assert "No response available" in result.error.message

    def test_request_without_http_driver_is_error(self, interpreter, context) -> None:
        result = interpreter.run_step(_step("api_get", URL="/x"), context)
        assert result.status == StepStatus.ERROR

    def test_set_headers_merges_json_object(self, interpreter, fake_http) -> None:
        ctx = ExecutionContext(http=fake_http, variables={"token": "t1"})
        interpreter.run_step(_step("api_set_header", NAME="X-Key", VALUE="k1"), ctx)
        interpreter.run_step(_step("api_set_headers", HEADERS='{"Authorization": "Bearer ${token}"}'), ctx)
        interpreter.run_step(_step("api_get", URL="/x"), ctx)

        assert fake_http.requests[0]["headers"] == {"X-Key": "k1", "Authorization": "Bearer t1"}

    def test_set_headers_rejects_invalid_json(self, interpreter, context) -> None:
        result = interpreter.run_step(_step("api_set_headers", HEADERS="not json"), context)
        assert result.status == StepStatus.FAILED
        assert result.error.message == "Invalid JSON for headers: not json"

    @pytest.mark.parametrize(
        "auth_type,expected",
        [
            ("bearer", {"Authorization": "Bearer secret"}),
            ("basic", {"Authorization": "Basic c2VjcmV0"}),
            ("apikey", {"X-API-Key": "secret"}),
            ("none", {}),
        ],
    )
    def test_headers_auth_types(self, interpreter, context, auth_type: str, expected: Dict[str, str]) -> None:
        step = _step("api_headers", AUTH_TYPE=auth_type, AUTH_VALUE="secret")
        assert interpreter.run_step(step, context).output == expected

    def test_headers_keep_custom_entries(self, interpreter, context) -> None:
        step = _step("api_headers", AUTH_TYPE="bearer", AUTH_VALUE="x", CUSTOM='{"Accept": "text/xml"}')
        assert interpreter.run_step(step, context).output == {"Accept": "text/xml", "Authorization": "Bearer x"}

    def test_json_body_as_request_body(self, interpreter, fake_http) -> None:
        ctx = ExecutionContext(http=fake_http)
        body = _step("api_json_body", JSON='{"ids": [1, 2]}')

        interpreter.run_step(_step("api_post", URL="/items", BODY=body), ctx)

        assert fake_http.requests[0]["body"] == {"ids": [1, 2]}

    def test_extract_jsonpath(self, interpreter, fake_http) -> None:
        fake_http.responses.append(HttpResponse(status=200, body={"data": {"items": [{"id": 7}, {"id": 8}]}}))
        ctx = ExecutionContext(http=fake_http)
        interpreter.run_step(_step("api_get", URL="/items"), ctx)

        one = interpreter.run_step(_step("api_extract_jsonpath", JSONPATH="$.data.items[0].id", VARIABLE="first"), ctx)
        many = interpreter.run_step(_step("api_extract_jsonpath", JSONPATH="$.data.items[*].id", VARIABLE="ids"), ctx)

        assert one.output == 7
        assert ctx.get("first") == 7
        assert many.output == [7, 8]

    def test_extract_jsonpath_invalid_expression(self, interpreter, fake_http) -> None:
        ctx = ExecutionContext(http=fake_http)
        interpreter.run_step(_step("api_get", URL="/items"), ctx)

        result = interpreter.run_step(_step("api_extract_jsonpath", JSONPATH="$[", VARIABLE="x"), ctx)

        assert result.status == StepStatus.FAILED
        assert result.error.message.startswith("Invalid JSONPath expression: $[.")

    def test_extract_xpath_from_xml_body(self, interpreter, fake_http) -> None:
        fake_http.responses.append(HttpResponse(status=200, body="<page><title>Hello</title></page>"))
        ctx = ExecutionContext(http=fake_http)
        interpreter.run_step(_step("api_get", URL="/page"), ctx)

        result = interpreter.run_step(_step("api_extract_xpath", XPATH="//title/text()", VARIABLE="title"), ctx)

        assert result.output == "Hello"
        assert ctx.get("title") == "Hello"

    def test_extract_xpath_from_non_xml_body_fails(self, interpreter, fake_http) -> None:
        ctx = ExecutionContext(http=fake_http)
        interpreter.run_step(_step("api_get", URL="/x"), ctx)

        result = interpreter.run_step(_step("api_extract_xpath", XPATH="//title", VARIABLE="t"), ctx)

        assert result.status == StepStatus.FAILED
        assert result.error.message.startswith("XPath extraction failed: //title.")


# =============================================================================
# Web Blocks
# =============================================================================


class TestWebBlocks:
    """Tests for browser blocks against a fake browser."""

    def test_resolve_selector_testid(self) -> None:
        ctx = ExecutionContext(test_id_attribute="data-qa")
        assert resolve_selector("testid:submit", ctx) == '[data-qa="submit"]'
        assert resolve_selector("#plain", ctx) == "#plain"

    def test_resolve_url_base(self) -> None:
        ctx = ExecutionContext(base_url="https://app.test/")
        assert resolve_url("/login", ctx) == "https://app.test/login"
        assert resolve_url("https://other.test", ctx) == "https://other.test"

    def test_navigate_and_click(self, interpreter, fake_browser) -> None:
        ctx = ExecutionContext(browser=fake_browser, base_url="https://app.test")
        interpreter.run_step(_step("web_navigate", URL="/home"), ctx)
        interpreter.run_step(_step("web_click", SELECTOR="testid:go"), ctx)

        assert fake_browser.calls == [("navigate", "https://app.test/home"), ("click", '[data-testid="go"]')]

    def test_get_text_stores_variable(self, interpreter, fake_browser) -> None:
        fake_browser.texts["h1"] = "Welcome"
        ctx = ExecutionContext(browser=fake_browser)

        result = interpreter.run_step(_step("web_get_text", SELECTOR="h1", VARIABLE="heading"), ctx)

        assert result.output == "Welcome"
        assert ctx.get("heading") == "Welcome"

    def test_text_assertion_failure_attaches_screenshot(self, interpreter, fake_browser) -> None:
        fake_browser.texts["h1"] = "Hello"
        ctx = ExecutionContext(browser=fake_browser)

        result = interpreter.run_step(_step("web_assert_text_equals", SELECTOR="h1", TEXT="Bye"), ctx)

        assert result.status == StepStatus.FAILED
        assert result.error.message == 'Expected h1 to equal "Bye" but got "Hello"'
        assert result.screenshot.startswith("data:image/png;base64,")

    def test_title_and_url_assertions(self, interpreter, fake_browser) -> None:
        fake_browser.title = "Dashboard"
        fake_browser.url = "https://app.test/dash"
        ctx = ExecutionContext(browser=fake_browser)

        title = interpreter.run_step(_step("web_assert_title_equals", TITLE="Dashboard"), ctx)
        url = interpreter.run_step(_step("web_assert_url_contains", TEXT="/dash"), ctx)

        assert title.status == StepStatus.PASSED
        assert url.status == StepStatus.PASSED

    def test_missing_browser_is_error(self, interpreter, context) -> None:
        result = interpreter.run_step(_step("web_click", SELECTOR="#x"), context)
        assert result.status == StepStatus.ERROR
        assert "No browser driver available" in result.error.message

    def test_interaction_blocks_call_driver(self, interpreter, fake_browser) -> None:
        ctx = ExecutionContext(browser=fake_browser, variables={"file": "/tmp/a.txt"})

        interpreter.run_step(_step("web_press_key", SELECTOR="#q", KEY="Tab"), ctx)
        interpreter.run_step(_step("web_checkbox", SELECTOR="#terms"), ctx)
        interpreter.run_step(_step("web_checkbox", SELECTOR="#news", ACTION="uncheck"), ctx)
        interpreter.run_step(_step("web_focus", SELECTOR="#q"), ctx)
        interpreter.run_step(_step("web_scroll_into_view", SELECTOR="footer"), ctx)
        interpreter.run_step(_step("web_drag_and_drop", SELECTOR="#card", TARGET="testid:done"), ctx)
        interpreter.run_step(_step("web_upload_file", SELECTOR="#upload", FILE_PATH="${file}"), ctx)

        assert fake_browser.calls == [
            ("press", "#q", "Tab"),
            ("set_checked", "#terms", True),
            ("set_checked", "#news", False),
            ("focus", "#q"),
            ("scroll_into_view", "footer"),
            ("drag_and_drop", "#card", '[data-testid="done"]'),
            ("set_input_files", "#upload", "/tmp/a.txt"),
        ]

    def test_count_elements_stores_variable(self, interpreter, fake_browser) -> None:
        fake_browser.counts["li"] = 3
        ctx = ExecutionContext(browser=fake_browser)

        result = interpreter.run_step(_step("web_count_elements", SELECTOR="li", VARIABLE="items"), ctx)

        assert result.output == 3
        assert ctx.get("items") == 3

    def test_title_contains(self, interpreter, fake_browser) -> None:
        fake_browser.title = "Dashboard - Acme"
        ctx = ExecutionContext(browser=fake_browser)

        passed = interpreter.run_step(_step("web_assert_title_contains", TEXT="Dashboard"), ctx)
        failed = interpreter.run_step(_step("web_assert_title_contains", TEXT="Login"), ctx)

        assert passed.status == StepStatus.PASSED
        assert failed.status == StepStatus.FAILED


class TestWebStateAssertions:
    """Tests for assertions that poll element state until their timeout."""

    @pytest.mark.parametrize(
        "block_type,state_attr,passes_when_present",
        [
            ("web_assert_visible", "visible", True),
            ("web_assert_not_visible", "visible", False),
            ("web_assert_enabled", "enabled", True),
            ("web_assert_disabled", "enabled", False),
            ("web_assert_checked", "checked", True),
            ("web_assert_editable", "editable", True),
        ],
    )
    def test_state_assertions(
        self, interpreter, fake_browser, block_type: str, state_attr: str, passes_when_present: bool
    ) -> None:
        ctx = ExecutionContext(browser=fake_browser)
        getattr(fake_browser, state_attr).add("#present")

        present = interpreter.run_step(_step(block_type, SELECTOR="#present", TIMEOUT=0), ctx)
        absent = interpreter.run_step(_step(block_type, SELECTOR="#absent", TIMEOUT=0), ctx)

        expected = (StepStatus.PASSED, StepStatus.FAILED)
        if not passes_when_present:
            expected = expected[::-1]
        assert (present.status, absent.status) == expected

    def test_failure_message_names_state(self, interpreter, fake_browser) -> None:
        ctx = ExecutionContext(browser=fake_browser)

        result = interpreter.run_step(_step("web_assert_visible", SELECTOR="#banner", TIMEOUT=0), ctx)

        assert result.error.message == "Expected #banner to be visible"

    def test_checked_with_expected_false(self, interpreter, fake_browser) -> None:
        ctx = ExecutionContext(browser=fake_browser)
        step = _step("web_assert_checked", SELECTOR="#news", EXPECTED=False, TIMEOUT=0)

        result = interpreter.run_step(step, ctx)

        assert result.status == StepStatus.PASSED

    def test_attached_and_empty(self, interpreter, fake_browser) -> None:
        fake_browser.counts["#toast"] = 1
        fake_browser.texts["#toast"] = "Saved"
        ctx = ExecutionContext(browser=fake_browser)

        attached = interpreter.run_step(_step("web_assert_attached", SELECTOR="#toast", TIMEOUT=0), ctx)
        empty = interpreter.run_step(_step("web_assert_empty", SELECTOR="#toast", TIMEOUT=0), ctx)

        assert attached.status == StepStatus.PASSED
        assert empty.status == StepStatus.FAILED

    def test_state_is_polled_until_it_holds(self, interpreter, fake_browser) -> None:
        ctx = ExecutionContext(browser=fake_browser)
        reads = []

        def becomes_visible(selector: str) -> bool:
            reads.append(selector)
            return len(reads) >= 3

        fake_browser.is_visible = becomes_visible

        result = interpreter.run_step(_step("web_assert_visible", SELECTOR="#late", TIMEOUT=5000), ctx)

        assert result.status == StepStatus.PASSED
        assert len(reads) == 3

    def test_soft_state_failure_is_recorded(self, interpreter, fake_browser) -> None:
        ctx = ExecutionContext(browser=fake_browser, soft_assertions=True)

        result = interpreter.run_step(_step("web_assert_enabled", SELECTOR="#save", TIMEOUT=0), ctx)

        assert result.status == StepStatus.PASSED
        assert [e.message for e in ctx.soft_assertion_errors] == ["Expected #save to be enabled"]

    def test_count(self, interpreter, fake_browser) -> None:
        fake_browser.counts["li"] = 2
        ctx = ExecutionContext(browser=fake_browser)

        passed = interpreter.run_step(_step("web_assert_count", SELECTOR="li", COUNT=2, TIMEOUT=0), ctx)
        failed = interpreter.run_step(_step("web_assert_count", SELECTOR="li", COUNT=5, TIMEOUT=0), ctx)

        assert passed.status == StepStatus.PASSED
        assert failed.error.message == "Expected 5 elements matching li but found 2"

    def test_attribute_id_and_class(self, interpreter, fake_browser) -> None:
        fake_browser.get_attribute = MagicMock(
            side_effect=lambda selector, attribute, timeout=None: {
                "href": "/home",
                "id": "main",
                "class": "btn btn-primary",
            }.get(attribute)
        )
        ctx = ExecutionContext(browser=fake_browser)

        href = interpreter.run_step(
            _step("web_assert_attribute", SELECTOR="a", ATTRIBUTE="href", VALUE="/home", TIMEOUT=0), ctx
        )
        element_id = interpreter.run_step(_step("web_assert_id", SELECTOR="a", ID="main", TIMEOUT=0), ctx)
        token = interpreter.run_step(_step("web_assert_class", SELECTOR="a", CLASS="btn-primary", TIMEOUT=0), ctx)
        partial = interpreter.run_step(_step("web_assert_class", SELECTOR="a", CLASS="primary", TIMEOUT=0), ctx)

        assert [r.status for r in (href, element_id, token)] == [StepStatus.PASSED] * 3
        assert partial.status == StepStatus.FAILED
        assert partial.error.message == 'Expected a class to be "primary" but got "btn btn-primary"'
