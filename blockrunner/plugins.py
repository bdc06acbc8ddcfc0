"""Plugin contract: extra blocks plus optional lifecycle hooks.

A plugin is registered on an ``EngineRuntime``; its blocks join the block
registry and its hooks are called in registration order around suites,
tests and steps. A hook that raises propagates into the surrounding test's
error.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from .blocks.base import BaseBlock, BlockInput

if TYPE_CHECKING:
    from .config import Step, TestCase, TestFile
    from .context import ExecutionContext
    from .results import StepResult, TestResult

# Hook names in the order they fire during a run
HOOK_NAMES = (
    "before_all",
    "before_test",
    "before_step",
    "after_step",
    "after_test",
    "after_all",
)


@dataclass
class PluginHooks:
    """Optional lifecycle callbacks.

    Signatures:
        before_all(context, test_file)
        after_all(context, test_file, results)
        before_test(context, test)
        after_test(context, test, result)
        before_step(context, step)
        after_step(context, step, result)
    """

    before_all: Optional[Callable[["ExecutionContext", "TestFile"], None]] = None
    after_all: Optional[Callable[["ExecutionContext", "TestFile", List["TestResult"]], None]] = None
    before_test: Optional[Callable[["ExecutionContext", "TestCase"], None]] = None
    after_test: Optional[Callable[["ExecutionContext", "TestCase", "TestResult"], None]] = None
    before_step: Optional[Callable[["ExecutionContext", "Step"], None]] = None
    after_step: Optional[Callable[["ExecutionContext", "Step", "StepResult"], None]] = None


@dataclass
class Plugin:
    name: str
    version: str = "0.0.0"
    description: str = ""
    blocks: List[BaseBlock] = field(default_factory=list)
    hooks: PluginHooks = field(default_factory=PluginHooks)


class PluginTable:
    """Ordered collection of registered plugins."""

    def __init__(self) -> None:
        self._plugins: Dict[str, Plugin] = {}

    def register(self, plugin: Plugin) -> bool:
        """Add a plugin; a name that is already registered is ignored."""
        if plugin.name in self._plugins:
            return False
        self._plugins[plugin.name] = plugin
        return True

    def get(self, name: str) -> Optional[Plugin]:
        return self._plugins.get(name)

    def all(self) -> List[Plugin]:
        return list(self._plugins.values())

    def run_hook(self, hook_name: str, *args: Any) -> None:
        """Invoke ``hook_name`` on every plugin that defines it, in registration order."""
        if hook_name not in HOOK_NAMES:
            raise ValueError(f"Unknown plugin hook: {hook_name}")
        for plugin in self._plugins.values():
            hook = getattr(plugin.hooks, hook_name)
            if hook is not None:
                hook(*args)

    def __len__(self) -> int:
        return len(self._plugins)


# =============================================================================
# Block factories
# =============================================================================


class FunctionBlock(BaseBlock):
    """Block whose behavior is a plain ``execute(params, context)`` function."""

    def __init__(
        self,
        block_type: str,
        execute: Callable[[Dict[str, Any], "ExecutionContext"], Any],
        inputs: Optional[List[BlockInput]] = None,
        category: str = "Plugins",
        output: Optional[str] = None,
        description: str = "",
    ):
        self.type = block_type
        self.category = category
        self.inputs = list(inputs or [])
        self.output = output
        self.description = description
        self._execute = execute

    def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> Any:
        return self._execute(params, context)


def create_plugin(
    name: str,
    version: str = "0.0.0",
    description: str = "",
    blocks: Optional[List[BaseBlock]] = None,
    hooks: Optional[PluginHooks] = None,
) -> Plugin:
    return Plugin(
        name=name,
        version=version,
        description=description,
        blocks=list(blocks or []),
        hooks=hooks or PluginHooks(),
    )


def create_action_block(
    block_type: str,
    execute: Callable[[Dict[str, Any], "ExecutionContext"], Any],
    inputs: Optional[List[BlockInput]] = None,
    category: str = "Plugins",
    description: str = "",
) -> BaseBlock:
    """Create a statement block that performs an action."""
    return FunctionBlock(block_type, execute, inputs, category=category, description=description)


def create_value_block(
    block_type: str,
    execute: Callable[[Dict[str, Any], "ExecutionContext"], Any],
    inputs: Optional[List[BlockInput]] = None,
    output: str = "Any",
    category: str = "Plugins",
    description: str = "",
) -> BaseBlock:
    """Create a value-producing block usable as a nested parameter."""
    return FunctionBlock(
        block_type, execute, inputs, category=category, output=output, description=description
    )


def create_assertion_block(
    block_type: str,
    assert_fn: Callable[[Dict[str, Any], "ExecutionContext"], Tuple[bool, Optional[str]]],
    inputs: Optional[List[BlockInput]] = None,
    category: str = "Assertions",
    description: str = "",
) -> BaseBlock:
    """Create an assertion block from a ``(passed, message)`` check function.

    Failures go through ``context.check`` so they honor soft-assertion mode.
    """

    def execute(params: Dict[str, Any], context: "ExecutionContext") -> Any:
        passed, message = assert_fn(params, context)
        if context.check(passed, message or f"Assertion failed: {block_type}"):
            context.logger.info(description or block_type)
        return passed

    return FunctionBlock(block_type, execute, inputs, category=category, description=description)
