"""Visual-block test automation runner package."""

from .blocks import (
    BaseBlock,
    BlockInput,
    BlockKind,
    BlockRegistry,
    ProcedureBlock,
    create_default_registry,
)
from .config import (
    DataSet,
    ExecutorOptions,
    FolderHooks,
    Procedure,
    ProcedureParam,
    ProjectConfig,
    Step,
    TestCase,
    TestFile,
    load_folder_hooks,
    load_project_config,
    load_test_file,
    merge_folder_hooks,
    parse_test_file,
)
from .context import CancellationSignal, ExecutionContext
from .data_loader import load_data_file
from .display import ConsoleLogger, console
from .errors import (
    AssertionFailure,
    BlockRunnerError,
    CancelledError,
    DataFileError,
    DriverError,
    DriverUnavailableError,
    HookFailure,
    MaxCallDepthError,
    ProcedureFailedError,
    ProcedureNotFoundError,
    SkipTest,
    StepFailedError,
    TestFileError,
    UnknownStepTypeError,
)
from .executor import RunState, TestExecutor
from .extraction import extract_steps
from .interpreter import StepInterpreter
from .plugins import (
    Plugin,
    PluginHooks,
    create_action_block,
    create_assertion_block,
    create_plugin,
    create_value_block,
)
from .results import ErrorInfo, StepResult, StepStatus, TestResult
from .runtime import CallStack, EngineRuntime

__all__ = [
    # Blocks
    "BaseBlock",
    "BlockInput",
    "BlockKind",
    "BlockRegistry",
    "ProcedureBlock",
    "create_default_registry",
    # Config
    "DataSet",
    "ExecutorOptions",
    "FolderHooks",
    "Procedure",
    "ProcedureParam",
    "ProjectConfig",
    "Step",
    "TestCase",
    "TestFile",
    "load_folder_hooks",
    "load_project_config",
    "load_test_file",
    "merge_folder_hooks",
    "parse_test_file",
    # Context
    "CancellationSignal",
    "ExecutionContext",
    # Data
    "load_data_file",
    # Display
    "ConsoleLogger",
    "console",
    # Errors
    "AssertionFailure",
    "BlockRunnerError",
    "CancelledError",
    "DataFileError",
    "DriverError",
    "DriverUnavailableError",
    "HookFailure",
    "MaxCallDepthError",
    "ProcedureFailedError",
    "ProcedureNotFoundError",
    "SkipTest",
    "StepFailedError",
    "TestFileError",
    "UnknownStepTypeError",
    # Execution
    "RunState",
    "TestExecutor",
    "StepInterpreter",
    "extract_steps",
    # Plugins
    "Plugin",
    "PluginHooks",
    "create_action_block",
    "create_assertion_block",
    "create_plugin",
    "create_value_block",
    # Results
    "ErrorInfo",
    "StepResult",
    "StepStatus",
    "TestResult",
    # Runtime
    "CallStack",
    "EngineRuntime",
]
