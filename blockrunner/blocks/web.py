"""Browser navigation, interaction, retrieval and assertion blocks."""

import time
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Tuple

from ..context import format_value
from .base import BaseBlock, BlockInput, as_bool, as_number

if TYPE_CHECKING:
    from ..context import ExecutionContext

TEST_ID_PREFIX = "testid:"
POLL_INTERVAL_MS = 100


def resolve_selector(raw: Any, context: "ExecutionContext") -> str:
    """Resolve placeholders and expand ``testid:<value>`` to an attribute selector."""
    selector = format_value(context.resolve(raw))
    if selector.startswith(TEST_ID_PREFIX):
        value = selector[len(TEST_ID_PREFIX):]
        return f'[{context.test_id_attribute}="{value}"]'
    return selector


def resolve_url(raw: Any, context: "ExecutionContext") -> str:
    """Resolve placeholders and prefix relative paths with the run's base URL."""
    url = format_value(context.resolve(raw))
    if context.base_url and url.startswith("/"):
        return context.base_url.rstrip("/") + url
    return url


def _timeout(params: Dict[str, Any], context: "ExecutionContext") -> int:
    if params.get("TIMEOUT") not in (None, ""):
        return int(as_number(params["TIMEOUT"], default=context.timeout_ms))
    return context.timeout_ms


class WebBlock(BaseBlock):
    """Common base of ``web_*`` blocks: a selector input and browser access."""

    category = "Web"
    requires = frozenset({"browser"})
    inputs = [BlockInput("SELECTOR", required=True)]

    def selector(self, params: Dict[str, Any], context: "ExecutionContext") -> str:
        return resolve_selector(params["SELECTOR"], context)


def _store(params: Dict[str, Any], context: "ExecutionContext", value: Any) -> Any:
    """Store a retrieved value in the optional VARIABLE field and return it."""
    if params.get("VARIABLE"):
        context.set(params["VARIABLE"], value)
    return value


# =============================================================================
# Navigation
# =============================================================================


class NavigateBlock(WebBlock):
    type = "web_navigate"
    description = "Navigate to a URL"
    inputs = [
        BlockInput("URL", required=True),
        BlockInput(
            "WAIT_UNTIL",
            field_type="dropdown",
            default="load",
            options=["load", "domcontentloaded", "networkidle"],
        ),
    ]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        url = resolve_url(params["URL"], context)
        context.logger.info(f"Navigate to {url}")
        context.require_browser().navigate(
            url, wait_until=params["WAIT_UNTIL"], timeout=context.timeout_ms
        )
        return url


class WaitBlock(WebBlock):
    type = "web_wait"
    description = "Wait for a fixed time"
    inputs = [BlockInput("MILLISECONDS", field_type="number", default=1000)]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        milliseconds = int(as_number(context.resolve(params["MILLISECONDS"])))
        context.require_browser().wait(milliseconds)
        return milliseconds


class WaitForElementBlock(WebBlock):
    type = "web_wait_for_element"
    description = "Wait for an element to reach a state"
    inputs = [
        BlockInput("SELECTOR", required=True),
        BlockInput(
            "STATE",
            field_type="dropdown",
            default="visible",
            options=["visible", "hidden", "attached", "detached"],
        ),
        BlockInput("TIMEOUT", field_type="number"),
    ]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        selector = self.selector(params, context)
        context.require_browser().wait_for_selector(
            selector, state=params["STATE"], timeout=_timeout(params, context)
        )
        return selector


class WaitForUrlBlock(WebBlock):
    type = "web_wait_for_url"
    description = "Wait until the page URL matches"
    inputs = [BlockInput("URL", required=True)]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        pattern = format_value(context.resolve(params["URL"]))
        context.require_browser().wait_for_url(pattern, timeout=context.timeout_ms)
        return pattern


class ScreenshotBlock(WebBlock):
    type = "web_screenshot"
    description = "Capture a screenshot"
    inputs = [
        BlockInput("NAME", default="screenshot"),
        BlockInput("FULL_PAGE", field_type="checkbox", default=False),
    ]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        image = context.require_browser().screenshot(full_page=as_bool(params["FULL_PAGE"]))
        context.logger.info(f"Screenshot captured: {params['NAME']}")
        return {"name": params["NAME"], "size": len(image)}


# =============================================================================
# Interaction
# =============================================================================


class ClickBlock(WebBlock):
    type = "web_click"
    description = "Click an element"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        selector = self.selector(params, context)
        context.logger.info(f"Click {selector}")
        context.require_browser().click(selector, timeout=context.timeout_ms)
        return selector


class FillBlock(WebBlock):
    type = "web_fill"
    description = "Fill an input field"
    inputs = [BlockInput("SELECTOR", required=True), BlockInput("VALUE", required=True)]

    def validate_params(self, params: Dict[str, Any]) -> None:
        # An empty string clears the field
        if not params.get("SELECTOR"):
            raise ValueError(f"Block '{self.type}' requires 'SELECTOR' field")
        if params.get("VALUE") is None:
            raise ValueError(f"Block '{self.type}' requires 'VALUE' field")

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        selector = self.selector(params, context)
        value = format_value(context.resolve(params["VALUE"]))
        context.logger.info(f"Fill {selector}")
        context.require_browser().fill(selector, value, timeout=context.timeout_ms)
        return selector


class TypeBlock(WebBlock):
    type = "web_type"
    description = "Type text character by character"
    inputs = [
        BlockInput("SELECTOR", required=True),
        BlockInput("TEXT", required=True),
        BlockInput("DELAY", field_type="number", default=50),
    ]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        selector = self.selector(params, context)
        text = format_value(context.resolve(params["TEXT"]))
        context.require_browser().type(
            selector, text, delay=int(as_number(params["DELAY"])), timeout=context.timeout_ms
        )
        return selector


class SelectBlock(WebBlock):
    type = "web_select"
    description = "Select an option from a dropdown"
    inputs = [BlockInput("SELECTOR", required=True), BlockInput("VALUE", required=True)]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        selector = self.selector(params, context)
        value = format_value(context.resolve(params["VALUE"]))
        context.require_browser().select(selector, value, timeout=context.timeout_ms)
        return value


class HoverBlock(WebBlock):
    type = "web_hover"
    description = "Hover over an element"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        selector = self.selector(params, context)
        context.require_browser().hover(selector, timeout=context.timeout_ms)
        return selector


class CheckboxBlock(WebBlock):
    type = "web_checkbox"
    description = "Check or uncheck a checkbox"
    inputs = [
        BlockInput("SELECTOR", required=True),
        BlockInput("ACTION", field_type="dropdown", default="check", options=["check", "uncheck"]),
    ]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        selector = self.selector(params, context)
        checked = params["ACTION"] != "uncheck"
        context.logger.info(f"{'Check' if checked else 'Uncheck'} {selector}")
        context.require_browser().set_checked(selector, checked, timeout=context.timeout_ms)
        return checked


class PressKeyBlock(WebBlock):
    type = "web_press_key"
    description = "Press a keyboard key on an element"
    inputs = [
        BlockInput("SELECTOR", required=True),
        BlockInput(
            "KEY",
            field_type="dropdown",
            default="Enter",
            options=[
                "Enter",
                "Tab",
                "Escape",
                "Backspace",
                "ArrowUp",
                "ArrowDown",
                "ArrowLeft",
                "ArrowRight",
            ],
        ),
    ]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        selector = self.selector(params, context)
        key = format_value(context.resolve(params["KEY"]))
        context.logger.info(f"Press {key} on {selector}")
        context.require_browser().press(selector, key, timeout=context.timeout_ms)
        return key


class FocusBlock(WebBlock):
    type = "web_focus"
    description = "Focus an element"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        selector = self.selector(params, context)
        context.require_browser().focus(selector, timeout=context.timeout_ms)
        return selector


class ScrollIntoViewBlock(WebBlock):
    type = "web_scroll_into_view"
    description = "Scroll an element into view"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        selector = self.selector(params, context)
        context.require_browser().scroll_into_view(selector, timeout=context.timeout_ms)
        return selector


class DragAndDropBlock(WebBlock):
    type = "web_drag_and_drop"
    description = "Drag an element onto another"
    inputs = [BlockInput("SELECTOR", required=True), BlockInput("TARGET", required=True)]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        source = self.selector(params, context)
        target = resolve_selector(params["TARGET"], context)
        context.logger.info(f"Drag {source} to {target}")
        context.require_browser().drag_and_drop(source, target, timeout=context.timeout_ms)
        return target


class UploadFileBlock(WebBlock):
    type = "web_upload_file"
    description = "Set the file of a file input"
    inputs = [BlockInput("SELECTOR", required=True), BlockInput("FILE_PATH", required=True)]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        selector = self.selector(params, context)
        path = format_value(context.resolve(params["FILE_PATH"]))
        context.logger.info(f'Upload "{path}" to {selector}')
        context.require_browser().set_input_files(selector, path, timeout=context.timeout_ms)
        return path


# =============================================================================
# Retrieval
# =============================================================================


class GetTextBlock(WebBlock):
    type = "web_get_text"
    description = "Get the text content of an element"
    inputs = [BlockInput("SELECTOR", required=True), BlockInput("VARIABLE")]
    output = "String"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        selector = self.selector(params, context)
        text = context.require_browser().get_text(selector, timeout=context.timeout_ms)
        context.logger.debug(f'Text content of {selector}: "{text}"')
        return _store(params, context, text)


class GetAttributeBlock(WebBlock):
    type = "web_get_attribute"
    description = "Get an attribute of an element"
    inputs = [
        BlockInput("SELECTOR", required=True),
        BlockInput("ATTRIBUTE", required=True),
        BlockInput("VARIABLE"),
    ]
    output = "String"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        selector = self.selector(params, context)
        value = context.require_browser().get_attribute(
            selector, params["ATTRIBUTE"], timeout=context.timeout_ms
        )
        return _store(params, context, value)


class GetInputValueBlock(WebBlock):
    type = "web_get_input_value"
    description = "Get the current value of an input"
    inputs = [BlockInput("SELECTOR", required=True), BlockInput("VARIABLE")]
    output = "String"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        selector = self.selector(params, context)
        value = context.require_browser().get_input_value(selector, timeout=context.timeout_ms)
        return _store(params, context, value)


class GetTitleBlock(WebBlock):
    type = "web_get_title"
    description = "Get the page title"
    inputs = [BlockInput("VARIABLE")]
    output = "String"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        return _store(params, context, context.require_browser().get_title())


class GetUrlBlock(WebBlock):
    type = "web_get_url"
    description = "Get the page URL"
    inputs = [BlockInput("VARIABLE")]
    output = "String"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        return _store(params, context, context.require_browser().get_url())


class CountElementsBlock(WebBlock):
    type = "web_count_elements"
    description = "Count the elements matching a selector"
    inputs = [BlockInput("SELECTOR", required=True), BlockInput("VARIABLE")]
    output = "Number"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        selector = self.selector(params, context)
        count = context.require_browser().count(selector)
        context.logger.debug(f"Found {count} elements matching {selector}")
        return _store(params, context, count)


# =============================================================================
# Assertions
# =============================================================================


class TextAssertionBlock(WebBlock):
    """Compare an element's text (or value) against an expected string."""

    contains = False
    read_value = False

    def __init__(self, block_type: str, field: str, contains: bool, read_value: bool = False):
        self.type = block_type
        self.field = field
        self.contains = contains
        self.read_value = read_value
        self.inputs = [BlockInput("SELECTOR", required=True), BlockInput(field, required=True)]
        self.description = (
            f"Assert element {'value' if read_value else 'text'} "
            f"{'contains' if contains else 'equals'} the expected string"
        )

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        selector = self.selector(params, context)
        expected = format_value(context.resolve(params[self.field]))
        browser = context.require_browser()
        if self.read_value:
            actual = browser.get_input_value(selector, timeout=context.timeout_ms)
        else:
            actual = browser.get_text(selector, timeout=context.timeout_ms)

        if self.contains:
            passed = expected in actual
            message = f'Expected {selector} to contain "{expected}" but got "{actual}"'
        else:
            passed = actual.strip() == expected.strip()
            message = f'Expected {selector} to equal "{expected}" but got "{actual}"'
        if context.check(passed, message, expected=expected, actual=actual):
            context.logger.info(f"{selector} matches \"{expected}\"")
        return passed


class PageAssertionBlock(WebBlock):
    """Compare the page title or URL against an expected string."""

    def __init__(self, block_type: str, field: str, target: str, contains: bool):
        self.type = block_type
        self.field = field
        self.target = target
        self.contains = contains
        self.inputs = [BlockInput(field, required=True)]
        self.description = f"Assert page {target} {'contains' if contains else 'equals'} a string"

    def _actual(self, context: "ExecutionContext") -> Optional[str]:
        browser = context.require_browser()
        return browser.get_title() if self.target == "title" else browser.get_url()

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        expected = format_value(context.resolve(params[self.field]))
        actual = self._actual(context) or ""
        passed = expected in actual if self.contains else actual == expected
        verb = "contain" if self.contains else "equal"
        if context.check(
            passed,
            f'Expected page {self.target} to {verb} "{expected}" but got "{actual}"',
            expected=expected,
            actual=actual,
        ):
            context.logger.info(f'Page {self.target} matches "{expected}"')
        return passed


def _poll(
    read: Callable[[], Any],
    accept: Callable[[Any], bool],
    timeout_ms: int,
    context: "ExecutionContext",
) -> Tuple[bool, Any]:
    """Re-read a page value until ``accept`` holds or ``timeout_ms`` passes.

    The value is read at least once. Cancellation interrupts the wait.

    Returns:
        Whether the value was accepted, and the last value read
    """
    deadline = time.monotonic() + timeout_ms / 1000
    while True:
        actual = read()
        if accept(actual):
            return True, actual
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return False, actual
        if context.cancellation.wait(min(POLL_INTERVAL_MS / 1000, remaining)):
            context.check_cancelled()


class StateAssertionBlock(WebBlock):
    """Assert a boolean element state such as visibility, waiting up to TIMEOUT."""

    def __init__(
        self,
        block_type: str,
        state: str,
        expected: bool = True,
        read: Optional[Callable[[Any, str], bool]] = None,
        expected_field: Optional[str] = None,
    ):
        self.type = block_type
        self.state = state
        self.expected = expected
        self.read = read or (lambda browser, selector: getattr(browser, f"is_{state}")(selector))
        self.expected_field = expected_field
        self.inputs = [BlockInput("SELECTOR", required=True), BlockInput("TIMEOUT", field_type="number")]
        if expected_field:
            self.inputs.append(BlockInput(expected_field, field_type="checkbox", default=expected))
        self.description = f"Assert element is {'' if expected else 'not '}{state}"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        selector = self.selector(params, context)
        expected = self.expected
        if self.expected_field:
            expected = as_bool(context.resolve(params[self.expected_field]))
        browser = context.require_browser()
        passed, actual = _poll(
            lambda: bool(self.read(browser, selector)),
            lambda value: value == expected,
            _timeout(params, context),
            context,
        )
        label = self.state if expected else f"not {self.state}"
        if context.check(passed, f"Expected {selector} to be {label}", expected=expected, actual=actual):
            context.logger.info(f"{selector} is {label}")
        return passed


class CountAssertionBlock(WebBlock):
    type = "web_assert_count"
    description = "Assert the number of elements matching a selector"
    inputs = [
        BlockInput("SELECTOR", required=True),
        BlockInput("COUNT", field_type="number", required=True, default=1),
        BlockInput("TIMEOUT", field_type="number"),
    ]

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        selector = self.selector(params, context)
        expected = int(as_number(context.resolve(params["COUNT"])))
        browser = context.require_browser()
        passed, actual = _poll(
            lambda: browser.count(selector),
            lambda value: value == expected,
            _timeout(params, context),
            context,
        )
        if context.check(
            passed,
            f"Expected {expected} elements matching {selector} but found {actual}",
            expected=expected,
            actual=actual,
        ):
            context.logger.info(f"{selector} matches {expected} elements")
        return passed


class AttributeAssertionBlock(WebBlock):
    """Assert an attribute value; ``class`` matches one whitespace-separated token."""

    def __init__(self, block_type: str, field: str, attribute: Optional[str] = None):
        self.type = block_type
        self.field = field
        self.attribute = attribute
        self.inputs = [BlockInput("SELECTOR", required=True)]
        if attribute is None:
            self.inputs.append(BlockInput("ATTRIBUTE", required=True))
        self.inputs += [BlockInput(field, required=True), BlockInput("TIMEOUT", field_type="number")]
        self.description = f"Assert element {attribute or 'attribute'} has a value"

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        selector = self.selector(params, context)
        attribute = self.attribute or format_value(context.resolve(params["ATTRIBUTE"]))
        expected = format_value(context.resolve(params[self.field]))
        browser = context.require_browser()

        def accept(value: Optional[str]) -> bool:
            if value is None:
                return False
            if attribute == "class":
                return expected in value.split()
            return value == expected

        passed, actual = _poll(
            lambda: browser.get_attribute(selector, attribute, timeout=context.timeout_ms),
            accept,
            _timeout(params, context),
            context,
        )
        if context.check(
            passed,
            f'Expected {selector} {attribute} to be "{expected}" but got "{actual}"',
            expected=expected,
            actual=actual,
        ):
            context.logger.info(f'{selector} {attribute} is "{expected}"')
        return passed


WEB_BLOCKS = [
    NavigateBlock(),
    WaitBlock(),
    WaitForElementBlock(),
    WaitForUrlBlock(),
    ScreenshotBlock(),
    ClickBlock(),
    FillBlock(),
    TypeBlock(),
    SelectBlock(),
    HoverBlock(),
    CheckboxBlock(),
    PressKeyBlock(),
    FocusBlock(),
    ScrollIntoViewBlock(),
    DragAndDropBlock(),
    UploadFileBlock(),
    GetTextBlock(),
    GetAttributeBlock(),
    GetInputValueBlock(),
    GetTitleBlock(),
    GetUrlBlock(),
    CountElementsBlock(),
    TextAssertionBlock("web_assert_text_equals", "TEXT", contains=False),
    TextAssertionBlock("web_assert_text_contains", "TEXT", contains=True),
    TextAssertionBlock("web_assert_value", "VALUE", contains=False, read_value=True),
    TextAssertionBlock("web_assert_value_contains", "VALUE", contains=True, read_value=True),
    PageAssertionBlock("web_assert_title_equals", "TITLE", "title", contains=False),
    PageAssertionBlock("web_assert_title_contains", "TEXT", "title", contains=True),
    PageAssertionBlock("web_assert_url_contains", "TEXT", "url", contains=True),
    PageAssertionBlock("web_assert_url_equals", "URL", "url", contains=False),
    StateAssertionBlock("web_assert_visible", "visible"),
    StateAssertionBlock("web_assert_not_visible", "visible", expected=False),
    StateAssertionBlock("web_assert_enabled", "enabled"),
    StateAssertionBlock("web_assert_disabled", "enabled", expected=False),
    StateAssertionBlock("web_assert_checked", "checked", expected_field="EXPECTED"),
    StateAssertionBlock("web_assert_editable", "editable"),
    StateAssertionBlock(
        "web_assert_attached", "attached", read=lambda browser, selector: browser.count(selector) > 0
    ),
    StateAssertionBlock(
        "web_assert_empty", "empty", read=lambda browser, selector: not browser.get_text(selector).strip()
    ),
    CountAssertionBlock(),
    AttributeAssertionBlock("web_assert_attribute", "VALUE"),
    AttributeAssertionBlock("web_assert_id", "ID", attribute="id"),
    AttributeAssertionBlock("web_assert_class", "CLASS", attribute="class"),
]
