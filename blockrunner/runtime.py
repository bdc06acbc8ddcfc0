"""Engine runtime: the block, procedure and plugin tables shared by a run."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .blocks import BlockRegistry, ProcedureBlock, create_default_registry
from .config import Procedure
from .display import ConsoleLogger
from .errors import MaxCallDepthError
from .plugins import Plugin, PluginTable

DEFAULT_MAX_CALL_DEPTH = 50


@dataclass
class CallStack:
    """Tracks nested procedure calls for depth limiting.

    Recursion is allowed; only the total nesting depth is bounded.

    Attributes:
        frames: Names of the procedures currently executing
        max_depth: Maximum allowed nesting depth
    """

    frames: List[str] = field(default_factory=list)
    max_depth: int = DEFAULT_MAX_CALL_DEPTH

    def push(self, name: str) -> None:
        """Push a procedure onto the stack.

        Raises:
            MaxCallDepthError: If max depth would be exceeded
        """
        if len(self.frames) >= self.max_depth:
            raise MaxCallDepthError(
                f"Maximum procedure call depth ({self.max_depth}) exceeded "
                f"while calling '{name}'. Innermost calls: "
                f"{' → '.join(self.frames[-5:])}",
                depth=len(self.frames),
                max_depth=self.max_depth,
            )
        self.frames.append(name)

    def pop(self) -> str:
        return self.frames.pop()

    @property
    def depth(self) -> int:
        """Current nesting depth."""
        return len(self.frames)

    @property
    def current(self) -> Optional[str]:
        return self.frames[-1] if self.frames else None


class EngineRuntime:
    """Owns the tables consulted while executing steps.

    One runtime is typically shared by every ``TestExecutor`` of a process;
    nothing here is module-global, so independent runtimes never interfere.

    Args:
        registry: Block registry (defaults to all built-in blocks)
        procedures: Project-level procedures
        plugins: Plugins to register
        max_call_depth: Maximum nested procedure call depth
    """

    def __init__(
        self,
        registry: Optional[BlockRegistry] = None,
        procedures: Optional[Dict[str, Procedure]] = None,
        plugins: Optional[Iterable[Plugin]] = None,
        max_call_depth: int = DEFAULT_MAX_CALL_DEPTH,
        logger: Optional[ConsoleLogger] = None,
    ):
        self.registry = registry if registry is not None else create_default_registry()
        self.procedures: Dict[str, Procedure] = {}
        self.plugins = PluginTable()
        self.max_call_depth = max_call_depth
        self.logger = logger or ConsoleLogger()

        for procedure in (procedures or {}).values():
            self.register_procedure(procedure)
        for plugin in plugins or []:
            self.register_plugin(plugin)

    def register_plugin(self, plugin: Plugin) -> bool:
        """Register a plugin and its blocks.

        Returns:
            False if a plugin with the same name was already registered
        """
        if not self.plugins.register(plugin):
            self.logger.warn(f'Plugin "{plugin.name}" is already registered')
            return False
        added = self.registry.register_all(plugin.blocks)
        self.logger.debug(f"Plugin registered: {plugin.name} v{plugin.version} ({added} blocks)")
        return True

    def register_procedure(self, procedure: Procedure) -> bool:
        """Register a project-level procedure and its synthetic block.

        An existing procedure of the same name is kept.
        """
        if procedure.name in self.procedures:
            return False
        self.procedures[procedure.name] = procedure
        self.registry.register(ProcedureBlock(procedure))
        return True

    def find_procedure(self, name: str) -> Optional[Procedure]:
        return self.procedures.get(name)

    def new_call_stack(self) -> CallStack:
        return CallStack(max_depth=self.max_call_depth)
