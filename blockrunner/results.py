"""Result records produced by the interpreter and consumed by reporters."""

from __future__ import annotations

import traceback
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class StepStatus(str, Enum):
    """Outcome of a step or a test."""

    PASSED = "passed"
    FAILED = "failed"
    ERROR = "error"
    SKIPPED = "skipped"

    @property
    def is_failure(self) -> bool:
        return self in (StepStatus.FAILED, StepStatus.ERROR)


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ErrorInfo:
    """Serializable error description."""

    message: str
    stack: Optional[str] = None
    code: Optional[str] = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> ErrorInfo:
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return cls(message=str(exc), stack=stack, code=type(exc).__name__)


@dataclass
class SoftAssertionError:
    """An assertion failure recorded while soft assertions are enabled."""

    message: str
    step_id: Optional[str] = None
    step_type: Optional[str] = None
    expected: Any = None
    actual: Any = None
    timestamp: str = field(default_factory=now_iso)


@dataclass
class StepResult:
    """Result of executing a single step."""

    step_id: str
    step_type: str
    status: StepStatus
    duration: int = 0  # milliseconds
    output: Any = None
    error: Optional[ErrorInfo] = None
    screenshot: Optional[str] = None
    # Results of steps run inside this one (branches, loops, procedure bodies)
    children: List[StepResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_id": self.step_id,
            "step_type": self.step_type,
            "status": self.status.value,
            "duration": self.duration,
            "output": self.output,
            "error": asdict(self.error) if self.error else None,
            "screenshot": self.screenshot,
            "children": [child.to_dict() for child in self.children],
        }


@dataclass
class DataIteration:
    """Describes which data row produced a test result."""

    index: int
    name: Optional[str]
    data: Dict[str, Any]


@dataclass
class TestResult:
    """Aggregated result of one test (or one data iteration, or one lifecycle phase)."""

    __test__ = False

    test_id: str
    test_name: str
    status: StepStatus
    duration: int = 0  # milliseconds
    steps: List[StepResult] = field(default_factory=list)
    error: Optional[ErrorInfo] = None
    started_at: str = field(default_factory=now_iso)
    finished_at: str = field(default_factory=now_iso)
    data_iteration: Optional[DataIteration] = None
    is_lifecycle: bool = False
    lifecycle_type: Optional[str] = None
    soft_assertion_errors: List[SoftAssertionError] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.status == StepStatus.PASSED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_id": self.test_id,
            "test_name": self.test_name,
            "status": self.status.value,
            "duration": self.duration,
            "steps": [step.to_dict() for step in self.steps],
            "error": asdict(self.error) if self.error else None,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "data_iteration": asdict(self.data_iteration) if self.data_iteration else None,
            "is_lifecycle": self.is_lifecycle,
            "lifecycle_type": self.lifecycle_type,
            "soft_assertion_errors": [asdict(e) for e in self.soft_assertion_errors],
        }
