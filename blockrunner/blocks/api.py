"""HTTP request, header, extraction and assertion blocks.

Requests go through ``context.http``. The latest response is stored in the
``__lastResponse`` variable and headers set by ``api_set_header`` in
``__requestHeaders``; both are plain variables of the running test.
"""

import base64
import json
import re
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from xml.etree import ElementTree

from jsonpath_ng.exceptions import JsonPathLexerError, JsonPathParserError
from jsonpath_ng.ext import parse as jsonpath_parse

from ..context import LAST_RESPONSE_VARIABLE, format_value
from .base import BaseBlock, BlockInput, BlockKind, as_number

if TYPE_CHECKING:
    from ..context import ExecutionContext
    from ..drivers.base import HttpResponse

REQUEST_HEADERS_VARIABLE = "__requestHeaders"

_INDEXED_SEGMENT = re.compile(r"^(\w+)\[(\d+)\]$")
_XPATH_ATTRIBUTE = re.compile(r"/@([\w:.-]+)$")


def parse_headers(text: Any, context: "ExecutionContext") -> Dict[str, str]:
    """Parse headers given as a JSON object or ``Key: value`` pairs.

    Pairs are separated by ``;`` or newlines.
    """
    if isinstance(text, dict):
        return {str(k): format_value(v) for k, v in context.resolve_object(text).items()}
    if not text or not str(text).strip():
        return {}

    resolved = context.resolve(str(text))
    try:
        parsed = json.loads(resolved)
    except json.JSONDecodeError:
        parsed = None
    if isinstance(parsed, dict):
        return {str(k): format_value(v) for k, v in parsed.items()}

    headers: Dict[str, str] = {}
    for pair in re.split(r"[;\n]", resolved):
        key, sep, value = pair.partition(":")
        if sep and key.strip():
            headers[key.strip()] = value.strip()
    return headers


def get_value_by_path(obj: Any, path: str) -> Any:
    """Get a value by dot path, supporting ``items[0]`` and ``items.0`` indexing."""
    if not path:
        return obj

    current = obj
    for part in path.split("."):
        if current is None:
            return None
        match = _INDEXED_SEGMENT.match(part)
        if match:
            key, index = match.group(1), int(match.group(2))
            current = current.get(key) if isinstance(current, dict) else None
            if isinstance(current, list) and index < len(current):
                current = current[index]
            else:
                return None
        elif isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else None
        else:
            return None
    return current


def get_last_response(context: "ExecutionContext") -> "HttpResponse":
    response = context.last_response
    if response is None:
        raise ValueError("No response available. Make sure to call an API request first.")
    return response


def _decode_body(text: Any, context: "ExecutionContext") -> Any:
    if text is None or text == "":
        return None
    if isinstance(text, (dict, list)):
        return context.resolve_object(text)
    resolved = context.resolve(str(text))
    try:
        return json.loads(resolved)
    except json.JSONDecodeError:
        return resolved


class ApiRequestBlock(BaseBlock):
    """Send one HTTP request and store the response."""

    category = "API"
    requires = frozenset({"http"})

    def __init__(self, method: str, with_body: bool):
        self.method = method
        self.with_body = with_body
        self.type = f"api_{method.lower()}"
        self.description = f"Perform HTTP {method} request and store response"
        self.inputs = [
            BlockInput("URL", required=True),
            BlockInput("HEADERS", default=""),
        ]
        if with_body:
            self.inputs.append(BlockInput("BODY", default=""))

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        http = context.require_http()
        url = context.resolve(params["URL"])
        headers = dict(context.get(REQUEST_HEADERS_VARIABLE) or {})
        headers.update(parse_headers(params.get("HEADERS"), context))
        body = _decode_body(params.get("BODY"), context) if self.with_body else None

        context.logger.info(f"{self.method} {url}")
        response = http.request(
            self.method, url, headers=headers, body=body, cancellation=context.cancellation
        )
        context.set(LAST_RESPONSE_VARIABLE, response)
        context.logger.debug(f"Response status: {response.status}")
        return response.to_dict()


class ApiSetHeaderBlock(BaseBlock):
    type = "api_set_header"
    category = "API"
    description = "Set a request header (applies to subsequent requests)"
    inputs = [
        BlockInput("NAME", default="Authorization", required=True),
        BlockInput("VALUE", default="Bearer token", required=True),
    ]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        name = params["NAME"]
        value = format_value(context.resolve(params["VALUE"]))
        headers = dict(context.get(REQUEST_HEADERS_VARIABLE) or {})
        headers[name] = value
        context.set(REQUEST_HEADERS_VARIABLE, headers)
        context.logger.info(f"Set header: {name}")
        return {"name": name, "value": value}


class ApiClearHeadersBlock(BaseBlock):
    type = "api_clear_headers"
    category = "API"
    description = "Clear all headers set with api_set_header"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        context.delete(REQUEST_HEADERS_VARIABLE)
        return None


class ApiSetHeadersBlock(BaseBlock):
    type = "api_set_headers"
    category = "API"
    description = "Set several request headers from a JSON object"
    inputs = [BlockInput("HEADERS", default='{"Content-Type": "application/json"}', required=True)]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        raw = params["HEADERS"]
        if isinstance(raw, dict):
            new_headers = context.resolve_object(raw)
        else:
            resolved = context.resolve(str(raw))
            try:
                new_headers = json.loads(resolved)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON for headers: {resolved}") from e
            if not isinstance(new_headers, dict):
                raise ValueError(f"Invalid JSON for headers: {resolved}")

        headers = dict(context.get(REQUEST_HEADERS_VARIABLE) or {})
        headers.update({str(k): format_value(v) for k, v in new_headers.items()})
        context.set(REQUEST_HEADERS_VARIABLE, headers)
        context.logger.info(f"Set headers: {', '.join(new_headers)}")
        return new_headers


class ApiHeadersBlock(BaseBlock):
    """Build a header object with an optional auth header, for use as a request's HEADERS."""

    type = "api_headers"
    category = "API"
    description = "Build request headers with authentication"
    inputs = [
        BlockInput(
            "AUTH_TYPE",
            field_type="dropdown",
            default="none",
            options=["none", "bearer", "basic", "apikey"],
        ),
        BlockInput("AUTH_VALUE", default=""),
        BlockInput("CUSTOM", kind=BlockKind.VALUE, field_type="Object"),
    ]
    output = "Object"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        auth_value = format_value(context.resolve(params.get("AUTH_VALUE") or ""))
        custom = params.get("CUSTOM") or {}
        if isinstance(custom, str):
            custom = json.loads(context.resolve(custom))
        headers = {str(k): format_value(v) for k, v in custom.items()}

        auth_type = params["AUTH_TYPE"]
        if auth_type == "bearer":
            headers["Authorization"] = f"Bearer {auth_value}"
        elif auth_type == "basic":
            token = base64.b64encode(auth_value.encode("utf-8")).decode("ascii")
            headers["Authorization"] = f"Basic {token}"
        elif auth_type == "apikey":
            headers["X-API-Key"] = auth_value
        return headers


class ApiJsonBodyBlock(BaseBlock):
    type = "api_json_body"
    category = "API"
    description = "Parse JSON text into a request body"
    inputs = [BlockInput("JSON", default="{}")]
    output = "Object"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        raw = params["JSON"]
        if isinstance(raw, (dict, list)):
            return context.resolve_object(raw)
        return json.loads(context.resolve(str(raw)))


class ApiAssertStatusBlock(BaseBlock):
    type = "api_assert_status"
    category = "API"
    description = "Assert that the last response has the expected status code"
    inputs = [BlockInput("STATUS", field_type="number", default=200, required=True)]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        response = get_last_response(context)
        expected = int(as_number(context.resolve(params["STATUS"])))
        if context.check(
            response.status == expected,
            f"Expected status {expected} but got {response.status}",
            expected=expected,
            actual=response.status,
        ):
            context.logger.info(f"Status is {expected}")
        return {"expected": expected, "actual": response.status}


class ApiAssertBodyContainsBlock(BaseBlock):
    type = "api_assert_body_contains"
    category = "API"
    description = "Assert that the last response body contains a value"
    inputs = [
        BlockInput("PATH", default=""),
        BlockInput("VALUE", required=True),
    ]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        response = get_last_response(context)
        path: Optional[str] = params.get("PATH") or None
        expected = format_value(context.resolve(params["VALUE"]))

        actual = get_value_by_path(response.body, path) if path else response.body
        actual_text = actual if isinstance(actual, str) else json.dumps(actual, default=str)
        label = path or "body"
        if context.check(
            expected in actual_text,
            f'Expected {label} to contain "{expected}" but got "{actual_text}"',
            expected=expected,
            actual=actual_text,
        ):
            context.logger.info(f'{label} contains "{expected}"')
        return {"path": label, "expected": expected}


class ApiExtractBlock(BaseBlock):
    type = "api_extract"
    category = "API"
    description = "Extract a value from the last response body (e.g. data.user.name)"
    inputs = [
        BlockInput("PATH", required=True),
        BlockInput("VARIABLE", required=True),
    ]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        response = get_last_response(context)
        path = context.resolve(params["PATH"])
        value = get_value_by_path(response.body, path)
        context.set(params["VARIABLE"], value)
        context.logger.info(f"Extracted {path} -> {params['VARIABLE']} = {format_value(value)}")
        return value


def _summarize(value: Any) -> str:
    text = json.dumps(value, default=str)
    return text if len(text) <= 50 else text[:50] + "..."


def _single_or_list(values: List[Any]) -> Any:
    if not values:
        return None
    return values[0] if len(values) == 1 else values


class ApiExtractJsonPathBlock(BaseBlock):
    type = "api_extract_jsonpath"
    category = "API"
    description = "Extract from the last response body with a JSONPath expression"
    inputs = [
        BlockInput("JSONPATH", default="$.data.id", required=True),
        BlockInput("VARIABLE", required=True),
    ]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        response = get_last_response(context)
        expression = format_value(context.resolve(params["JSONPATH"]))
        try:
            matches = jsonpath_parse(expression).find(response.body)
        except (JsonPathLexerError, JsonPathParserError) as e:
            raise ValueError(f"Invalid JSONPath expression: {expression}. Error: {e}") from e

        values = [match.value for match in matches]
        # One match is unwrapped; anything else stays a list
        value = values[0] if len(values) == 1 else values
        context.set(params["VARIABLE"], value)
        context.logger.info(f"Extracted (JSONPath) {expression} -> {params['VARIABLE']} = {_summarize(value)}")
        return value


def extract_xpath(document: str, expression: str) -> Any:
    """Evaluate the ElementTree subset of XPath against an XML document.

    Supports absolute (``/a/b``) and descendant (``//b``) paths with
    predicates ElementTree understands, ending optionally in ``/text()`` or
    ``/@attribute``. An element yields its full text content.

    Returns:
        None for no match, the value for one match, else a list of values

    Raises:
        SyntaxError: If the document or the expression cannot be parsed
    """
    root = ElementTree.fromstring(document)
    path = expression.strip()

    attribute: Optional[str] = None
    text_only = False
    if path.endswith("/text()"):
        path, text_only = path[: -len("/text()")], True
    else:
        match = _XPATH_ATTRIBUTE.search(path)
        if match:
            path, attribute = path[: match.start()], match.group(1)

    # Wrapping the root lets absolute paths name it as a child
    document_node = ElementTree.Element("document")
    document_node.append(root)
    nodes = document_node.findall("." + path if path.startswith("/") else path)

    if attribute is not None:
        values = [node.get(attribute) for node in nodes if node.get(attribute) is not None]
    elif text_only:
        values = [node.text or "" for node in nodes]
    else:
        values = ["".join(node.itertext()) for node in nodes]
    return _single_or_list(values)


class ApiExtractXPathBlock(BaseBlock):
    type = "api_extract_xpath"
    category = "API"
    description = "Extract from an XML response body with an XPath expression"
    inputs = [
        BlockInput("XPATH", default="//title/text()", required=True),
        BlockInput("VARIABLE", required=True),
    ]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        response = get_last_response(context)
        expression = format_value(context.resolve(params["XPATH"]))
        body = response.body if isinstance(response.body, str) else json.dumps(response.body)
        try:
            value = extract_xpath(body, expression)
        except SyntaxError as e:
            raise ValueError(f"XPath extraction failed: {expression}. Error: {e}") from e

        context.set(params["VARIABLE"], value)
        context.logger.info(f"Extracted (XPath) {expression} -> {params['VARIABLE']} = {_summarize(value)}")
        return value


API_BLOCKS = [
    ApiRequestBlock("GET", with_body=False),
    ApiRequestBlock("POST", with_body=True),
    ApiRequestBlock("PUT", with_body=True),
    ApiRequestBlock("PATCH", with_body=True),
    ApiRequestBlock("DELETE", with_body=False),
    ApiSetHeaderBlock(),
    ApiClearHeadersBlock(),
    ApiSetHeadersBlock(),
    ApiHeadersBlock(),
    ApiJsonBodyBlock(),
    ApiAssertStatusBlock(),
    ApiAssertBodyContainsBlock(),
    ApiExtractBlock(),
    ApiExtractJsonPathBlock(),
    ApiExtractXPathBlock(),
]
