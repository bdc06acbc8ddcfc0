"""Conversion of serialized authoring graphs into executable steps.

Three input shapes are accepted:

- Blockly workspace serialization: ``{"blocks": {"blocks": [...]}}`` where each
  top-level block may continue through a ``next`` chain
- A list of flat step dictionaries (``{"id", "type", "params", "children"}``)
  or of raw Blockly block dictionaries
- A list of ``Step`` objects, returned as-is
"""

import uuid
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, List, Optional

from .config import Step

if TYPE_CHECKING:
    from .blocks import BlockRegistry


def new_step_id() -> str:
    return f"step-{uuid.uuid4().hex[:8]}"


def _is_blockly_block(data: Dict[str, Any]) -> bool:
    return "fields" in data or "inputs" in data or "next" in data


def _next_block(block: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    link = block.get("next")
    if isinstance(link, dict) and isinstance(link.get("block"), dict):
        return link["block"]
    return None


class StepExtractor:
    """Walks a Blockly block graph and builds ``Step`` trees.

    The registry, when provided, tells which connected inputs are statement
    sockets. Without it, a connected chain that has a ``next`` link is
    treated as a statement.
    """

    def __init__(self, registry: Optional["BlockRegistry"] = None):
        self.registry = registry

    def _statement_inputs(self, block_type: str) -> FrozenSet[str]:
        if self.registry is None:
            return frozenset()
        block = self.registry.find(block_type)
        if block is None:
            return frozenset()
        return block.statement_inputs()

    def chain_to_steps(self, block: Optional[Dict[str, Any]], path: FrozenSet[str]) -> List[Step]:
        """Convert a block and everything reachable through ``next`` links."""
        steps: List[Step] = []
        seen = set(path)
        current = block
        while isinstance(current, dict):
            block_id = current.get("id")
            if block_id and block_id in seen:
                break
            step = self.block_to_step(current, frozenset(seen))
            if step is not None:
                steps.append(step)
            if block_id:
                seen.add(block_id)
            current = _next_block(current)
        return steps

    def block_to_step(self, block: Dict[str, Any], path: FrozenSet[str]) -> Optional[Step]:
        """Convert one block (fields and connected inputs) to a step."""
        if not isinstance(block, dict) or not block.get("type"):
            return None

        block_id = str(block.get("id") or new_step_id())
        inner_path = path | {block_id}
        block_type = str(block["type"])
        step = Step(id=block_id, type=block_type)

        fields = block.get("fields")
        if isinstance(fields, dict):
            step.params.update(fields)

        inputs = block.get("inputs")
        if isinstance(inputs, dict):
            statements = self._statement_inputs(block_type)
            for name, connection in inputs.items():
                if not isinstance(connection, dict):
                    continue
                connected = connection.get("block")
                if not isinstance(connected, dict):
                    continue
                if connected.get("id") in inner_path:
                    continue

                is_statement = name in statements or (
                    not statements and _next_block(connected) is not None
                )
                if is_statement:
                    step.children[name] = self.chain_to_steps(connected, inner_path)
                else:
                    nested = self.block_to_step(connected, inner_path)
                    if nested is not None:
                        step.params[name] = nested

        return step

    def extract(self, state: Any) -> List[Step]:
        if not state:
            return []

        if isinstance(state, dict):
            blocks = state.get("blocks")
            if isinstance(blocks, dict) and isinstance(blocks.get("blocks"), list):
                return self._extract_list(blocks["blocks"])
            return []

        if isinstance(state, list):
            return self._extract_list(state)

        return []

    def _extract_list(self, items: List[Any]) -> List[Step]:
        steps: List[Step] = []
        for item in items:
            if isinstance(item, Step):
                steps.append(item)
            elif isinstance(item, dict) and _is_blockly_block(item):
                steps.extend(self.chain_to_steps(item, frozenset()))
            elif isinstance(item, dict):
                step = Step.from_dict(item)
                if step is not None:
                    steps.append(step)
        return steps


def extract_steps(state: Any, registry: Optional["BlockRegistry"] = None) -> List[Step]:
    """Extract an ordered step list from any supported serialization.

    Type-less or malformed nodes are skipped. Blocks whose id is already on
    the current path are not followed again.

    Args:
        state: Blockly workspace state, list of step dicts, or list of Steps
        registry: Optional block registry used to recognize statement inputs

    Returns:
        Ordered list of steps
    """
    return StepExtractor(registry).extract(state)
