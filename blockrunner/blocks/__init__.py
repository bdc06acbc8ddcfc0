"""Block registry and exports for built-in block types."""

from typing import Dict, Iterable, List, Optional

from ..errors import UnknownStepTypeError
from .api import API_BLOCKS
from .base import (
    BaseBlock,
    BlockInput,
    BlockKind,
    BranchRequest,
    CompoundAction,
    ControlOutcome,
    LoopRequest,
    MapRequest,
    ProcedureCall,
    ProcedureReturn,
    RetryRequest,
    TryCatchRequest,
)
from .data import DATA_BLOCKS
from .lifecycle import LIFECYCLE_BLOCKS
from .logic import LOGIC_BLOCKS
from .procedures import PROCEDURE_BLOCKS, ProcedureBlock, procedure_block_type
from .web import WEB_BLOCKS


class BlockRegistry:
    """Registry mapping step type names to block handlers.

    Registration is idempotent: re-registering a type that is already
    present is a no-op, so the first registration wins.
    """

    def __init__(self, blocks: Optional[Iterable[BaseBlock]] = None):
        self._blocks: Dict[str, BaseBlock] = {}
        for block in blocks or []:
            self.register(block)

    def register(self, block: BaseBlock) -> bool:
        """Register a block instance.

        Returns:
            True if the block was added, False if its type was already taken
        """
        if not block.type:
            raise ValueError(f"Block {type(block).__name__} has no type")
        if block.type in self._blocks:
            return False
        self._blocks[block.type] = block
        return True

    def unregister(self, block_type: str) -> Optional[BaseBlock]:
        """Remove a block type, returning the removed block if it was present."""
        return self._blocks.pop(block_type, None)

    def register_all(self, blocks: Iterable[BaseBlock]) -> int:
        """Register several blocks, returning how many were added."""
        return sum(1 for block in blocks if self.register(block))

    def get(self, block_type: str) -> BaseBlock:
        """Get a block by type name.

        Raises:
            UnknownStepTypeError: If the type is not registered
        """
        if block_type not in self._blocks:
            raise UnknownStepTypeError(block_type)
        return self._blocks[block_type]

    def find(self, block_type: str) -> Optional[BaseBlock]:
        return self._blocks.get(block_type)

    def available(self) -> List[str]:
        """List all registered block types."""
        return list(self._blocks.keys())

    def __contains__(self, block_type: str) -> bool:
        return block_type in self._blocks

    def __len__(self) -> int:
        return len(self._blocks)


BUILTIN_BLOCKS: List[BaseBlock] = [
    *LOGIC_BLOCKS,
    *LIFECYCLE_BLOCKS,
    *PROCEDURE_BLOCKS,
    *DATA_BLOCKS,
    *API_BLOCKS,
    *WEB_BLOCKS,
]


def create_default_registry() -> BlockRegistry:
    """Create a registry holding every built-in block."""
    return BlockRegistry(BUILTIN_BLOCKS)


__all__ = [
    "BaseBlock",
    "BlockInput",
    "BlockKind",
    "BlockRegistry",
    "BranchRequest",
    "CompoundAction",
    "ControlOutcome",
    "LoopRequest",
    "MapRequest",
    "ProcedureBlock",
    "ProcedureCall",
    "ProcedureReturn",
    "RetryRequest",
    "TryCatchRequest",
    "BUILTIN_BLOCKS",
    "create_default_registry",
    "procedure_block_type",
]
