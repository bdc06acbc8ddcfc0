"""Custom exceptions for the block execution engine."""

from typing import Any, Optional


class BlockRunnerError(Exception):
    """Base exception for all engine errors."""

    pass


class SkipTest(BlockRunnerError):
    """Raised by a step to skip the rest of the current test.

    Attributes:
        reason: Human-readable skip reason
    """

    def __init__(self, reason: str = "Skipped"):
        self.reason = reason
        super().__init__(reason)


class AssertionFailure(BlockRunnerError):
    """Raised when an assertion-style step finds a mismatch.

    Attributes:
        expected: The expected value (if known)
        actual: The actual value (if known)
        step_type: Type of the step that asserted
    """

    def __init__(
        self,
        message: str,
        expected: Any = None,
        actual: Any = None,
        step_type: Optional[str] = None,
    ):
        self.expected = expected
        self.actual = actual
        self.step_type = step_type
        super().__init__(message)


class StepFailedError(BlockRunnerError):
    """Raised by a step that explicitly fails the test (e.g. ``logic_fail``)."""

    pass


class UnknownStepTypeError(BlockRunnerError):
    """Raised when no handler is registered for a step type.

    Attributes:
        step_type: The unregistered type name
    """

    def __init__(self, step_type: str, available: Optional[list] = None):
        self.step_type = step_type
        message = f"Unknown block type: {step_type}"
        if available:
            message += f". Available: {', '.join(sorted(available))}"
        super().__init__(message)


class ProcedureNotFoundError(BlockRunnerError):
    """Raised when a procedure is absent from both the file and project tables."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Procedure not found: {name}")


class ProcedureFailedError(BlockRunnerError):
    """Raised when a step inside a procedure body fails.

    Attributes:
        name: Procedure name
        error: The underlying error message
    """

    def __init__(self, name: str, error: str):
        self.name = name
        self.error = error
        super().__init__(f"Procedure {name} failed: {error}")


class MaxCallDepthError(BlockRunnerError):
    """Raised when nested procedure calls exceed the maximum depth.

    Attributes:
        depth: The depth at which the error occurred
        max_depth: The maximum allowed depth
    """

    def __init__(self, message: str, depth: Optional[int] = None, max_depth: Optional[int] = None):
        self.depth = depth
        self.max_depth = max_depth
        super().__init__(message)


class DriverError(BlockRunnerError):
    """Raised when the browser or HTTP backend fails an operation."""

    pass


class DriverUnavailableError(DriverError):
    """Raised when a step needs a driver the current run did not start."""

    def __init__(self, capability: str):
        self.capability = capability
        super().__init__(
            f"No {capability} driver available. "
            f"Make sure the run was started with a {capability} session."
        )


class HookFailure(BlockRunnerError):
    """Raised when a setup hook (beforeAll/beforeEach) fails.

    Attributes:
        phase: Lifecycle phase name (e.g. 'beforeEach', 'test.beforeEach')
        error: The underlying error message
    """

    def __init__(self, phase: str, error: str):
        self.phase = phase
        self.error = error
        super().__init__(f"{phase} failed: {error}")


class CancelledError(BlockRunnerError):
    """Raised when the run's cancellation signal has been triggered."""

    def __init__(self, reason: str = "Run cancelled"):
        self.reason = reason
        super().__init__(reason)


class TestFileError(BlockRunnerError):
    """Raised when a test file cannot be found or parsed.

    Attributes:
        file_path: Path to the offending file
    """

    __test__ = False

    def __init__(self, file_path: str, message: str):
        self.file_path = file_path
        super().__init__(f"{message}: {file_path}")


class DataFileError(BlockRunnerError):
    """Raised when a data file for a data-driven test cannot be loaded."""

    pass
