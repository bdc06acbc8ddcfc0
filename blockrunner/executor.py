"""Suite execution: lifecycle hooks, data fan-out, driver sessions and results."""

from __future__ import annotations

import time
from dataclasses import replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from .blocks import ProcedureBlock
from .config import (
    DataSet,
    ExecutorOptions,
    Step,
    TestCase,
    TestFile,
    load_folder_hooks,
    load_test_file,
    merge_folder_hooks,
    resolve_variable_defaults,
)
from .context import CancellationSignal, ExecutionContext
from .data_loader import load_data_file
from .display import (
    ConsoleLogger,
    indent,
    print_file_start,
    print_lifecycle,
    print_summary,
    print_test_result,
    print_test_skipped,
    print_test_start,
)
from .drivers import BrowserDriver, HttpDriver, HttpxDriver, launch_browser
from .errors import (
    CancelledError,
    DataFileError,
    DriverError,
    HookFailure,
    SkipTest,
    TestFileError,
)
from .interpreter import ReturnSignal, StepInterpreter
from .results import DataIteration, ErrorInfo, StepResult, StepStatus, TestResult, now_iso
from .runtime import EngineRuntime

BrowserFactory = Callable[[ExecutorOptions], BrowserDriver]
HttpFactory = Callable[[ExecutorOptions], HttpDriver]


class RunState(str, Enum):
    """Progress of a test file through its lifecycle."""

    NOT_STARTED = "not_started"
    RUNNING_BEFORE_ALL = "running_before_all"
    RUNNING_TESTS = "running_tests"
    RUNNING_AFTER_ALL = "running_after_all"
    DONE = "done"


def _default_browser_factory(options: ExecutorOptions) -> BrowserDriver:
    return launch_browser(
        headless=options.headless,
        timeout_ms=options.timeout_ms,
        viewport=options.viewport,
        locale=options.locale,
        base_url=options.base_url,
    )


def _default_http_factory(options: ExecutorOptions) -> HttpDriver:
    return HttpxDriver(base_url=options.base_url, timeout_ms=options.timeout_ms)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _first_failure(results: List[StepResult]) -> Optional[StepResult]:
    for result in results:
        if result.status.is_failure:
            return result
    return None


def format_soft_failures(errors: List[Any]) -> str:
    """Format accumulated soft assertion failures as one error message."""
    lines = [f"{len(errors)} soft assertion(s) failed:"]
    lines.extend(f"  {i}. {error.message}" for i, error in enumerate(errors, 1))
    return "\n".join(lines)


def iteration_name(test: TestCase, data_set: DataSet, index: int) -> str:
    """Result name of one data row: ``"<test> [<row name or index+1>]"``."""
    return f"{test.name} [{data_set.name or index + 1}]"


class TestExecutor:
    """Runs test files against browser and HTTP sessions.

    Each executor owns its sessions and cancellation signal; independent
    executors may run concurrently on separate threads.

    Args:
        runtime: Block, procedure and plugin tables (a default runtime if omitted)
        options: Run-wide options
        browser_factory: Creates the browser session for a file that needs one
        http_factory: Creates the HTTP session for a file that needs one
        cancellation: Signal checked before every step
    """

    __test__ = False

    def __init__(
        self,
        runtime: Optional[EngineRuntime] = None,
        options: Optional[ExecutorOptions] = None,
        browser_factory: Optional[BrowserFactory] = None,
        http_factory: Optional[HttpFactory] = None,
        cancellation: Optional[CancellationSignal] = None,
    ) -> None:
        self.runtime = runtime or EngineRuntime()
        self.options = options or ExecutorOptions()
        self.browser_factory = browser_factory or _default_browser_factory
        self.http_factory = http_factory or _default_http_factory
        self.cancellation = cancellation or CancellationSignal()
        self.state = RunState.NOT_STARTED

        self.browser: Optional[BrowserDriver] = None
        self.http: Optional[HttpDriver] = None

    def cancel(self, reason: str = "Run cancelled") -> None:
        """Request cancellation; the running step finishes, the next one is refused."""
        self.cancellation.cancel(reason)

    # =========================================================================
    # Paths
    # =========================================================================

    def run_paths(self, paths: Iterable[Path], stop_dir: Optional[Path] = None) -> List[TestResult]:
        """Run several test files in order and print a summary."""
        started = time.monotonic()
        results: List[TestResult] = []
        for path in paths:
            results.extend(self.run_path(Path(path), stop_dir=stop_dir))

        print_summary(
            passed=sum(1 for r in results if r.status == StepStatus.PASSED),
            failed=sum(1 for r in results if r.status.is_failure),
            skipped=sum(1 for r in results if r.status == StepStatus.SKIPPED),
            duration_ms=_elapsed_ms(started),
        )
        return results

    def run_path(self, path: Path, stop_dir: Optional[Path] = None) -> List[TestResult]:
        """Load a test file with its folder hooks and run it.

        A file that cannot be loaded (or whose data files cannot be read)
        yields a single ``error`` result instead of raising.
        """
        try:
            test_file = load_test_file(path, self.runtime.registry)
            folder_hooks = load_folder_hooks(path, stop_dir, self.runtime.registry)
            test_file = merge_folder_hooks(test_file, folder_hooks)
            test_file = self._load_data_files(test_file)
        except (TestFileError, DataFileError) as e:
            self.runtime.logger.error(f"Could not load {path}: {e}")
            result = TestResult(
                test_id=f"file:{path}",
                test_name=path.name,
                status=StepStatus.ERROR,
                error=ErrorInfo.from_exception(e),
            )
            print_test_result(result)
            return [result]
        return self.run_file(test_file)

    def _load_data_files(self, test_file: TestFile) -> TestFile:
        base_dir = test_file.source_path.parent if test_file.source_path else None
        tests = []
        for test in test_file.tests:
            if test.data is None and test.data_file and not test.disabled:
                test = replace(test, data=load_data_file(test.data_file, base_dir))
            tests.append(test)
        return replace(test_file, tests=tests)

    # =========================================================================
    # Files
    # =========================================================================

    def run_file(self, test_file: TestFile) -> List[TestResult]:
        """Run every test of a file, returning results in execution order.

        Disabled tests are reported as skipped first. When no test is enabled
        the file's hooks never run and no driver session is opened.
        """
        self.state = RunState.NOT_STARTED
        results: List[TestResult] = []
        print_file_start(test_file.name, len(test_file.tests))

        enabled = [test for test in test_file.tests if not test.disabled]
        for test in test_file.tests:
            if test.disabled:
                results.append(self._skipped_result(test, "Test is disabled", disabled=True))

        if not enabled:
            self.state = RunState.DONE
            return results

        registered = [
            block.type
            for block in map(ProcedureBlock, test_file.procedures.values())
            if self.runtime.registry.register(block)
        ]

        try:
            with indent():
                try:
                    self._open_sessions(test_file)
                except DriverError as e:
                    self.runtime.logger.error(str(e))
                    results.extend(self._error_result(test, e) for test in enabled)
                    return results
                base_context = self._create_context(test_file)
                try:
                    self._run_suite(test_file, enabled, base_context, results)
                finally:
                    self._run_after_all(test_file, base_context, results)
        finally:
            for block_type in registered:
                self.runtime.registry.unregister(block_type)
            self._close_sessions()
            self.state = RunState.DONE
        return results

    def _run_suite(
        self,
        test_file: TestFile,
        tests: List[TestCase],
        base_context: ExecutionContext,
        results: List[TestResult],
    ) -> None:
        self.state = RunState.RUNNING_BEFORE_ALL
        started_at = now_iso()
        started = time.monotonic()
        try:
            self.runtime.plugins.run_hook("before_all", base_context, test_file)
        except Exception as e:
            base_context.logger.error(f"Plugin beforeAll hook failed: {e}")
            results.append(self._lifecycle_error_result("beforeAll", e, [], started_at, started))
            return

        if test_file.before_all:
            print_lifecycle("beforeAll")
            steps: List[StepResult] = []
            try:
                failure = self._run_sequence(test_file.before_all, base_context, steps)
            except SkipTest as e:
                for test in tests:
                    results.append(self._skipped_result(test, e.reason))
                return
            except Exception as e:
                base_context.logger.error(f"beforeAll stopped: {e}")
                results.append(self._lifecycle_error_result("beforeAll", e, steps, started_at, started))
                return
            if failure is not None:
                base_context.logger.error(f"beforeAll failed: {failure.error.message}")
                results.append(
                    self._lifecycle_result(
                        "beforeAll", failure.status, failure, steps, started_at, started
                    )
                )
                return

        self.state = RunState.RUNNING_TESTS
        shared = dict(base_context.variables)
        for test in tests:
            results.extend(self.run_test_case(test, test_file, shared))

    def _run_after_all(
        self,
        test_file: TestFile,
        base_context: ExecutionContext,
        results: List[TestResult],
    ) -> None:
        self.state = RunState.RUNNING_AFTER_ALL
        started_at = now_iso()
        started = time.monotonic()
        if test_file.after_all:
            print_lifecycle("afterAll")
            steps: List[StepResult] = []
            try:
                failure = self._run_sequence(test_file.after_all, base_context, steps)
            except (SkipTest, CancelledError) as e:
                base_context.logger.warn(f"afterAll stopped: {e}")
                failure = None
            except Exception as e:
                base_context.logger.error(f"afterAll failed: {e}")
                results.append(self._lifecycle_error_result("afterAll", e, steps, started_at, started))
                failure = None
            if failure is not None:
                base_context.logger.error(f"afterAll failed: {failure.error.message}")
                results.append(
                    self._lifecycle_result(
                        "afterAll", StepStatus.ERROR, failure, steps, started_at, started
                    )
                )

        try:
            self.runtime.plugins.run_hook("after_all", base_context, test_file, results)
        except Exception as e:
            base_context.logger.error(f"Plugin afterAll hook failed: {e}")
            results.append(self._lifecycle_error_result("afterAll", e, [], started_at, started))

    # =========================================================================
    # Tests
    # =========================================================================

    def run_test_case(
        self,
        test: TestCase,
        test_file: TestFile,
        shared_variables: Optional[Dict[str, Any]] = None,
    ) -> List[TestResult]:
        """Run a test once, or once per data row when it is data-driven."""
        data = test.data
        if data is None and test.data_file:
            base_dir = test_file.source_path.parent if test_file.source_path else None
            try:
                data = load_data_file(test.data_file, base_dir)
            except DataFileError as e:
                return [self._error_result(test, e)]

        if not data:
            return [self.run_test(test, test_file, shared_variables)]
        return [
            self.run_test(test, test_file, shared_variables, data_set=data_set, data_index=i)
            for i, data_set in enumerate(data)
        ]

    def run_test(
        self,
        test: TestCase,
        test_file: TestFile,
        shared_variables: Optional[Dict[str, Any]] = None,
        data_set: Optional[DataSet] = None,
        data_index: Optional[int] = None,
    ) -> TestResult:
        """Run one test (or one data row of it) in a fresh context.

        Order: plugin ``before_test``, suite and test ``beforeEach``, steps,
        then always test and suite ``afterEach`` and plugin ``after_test``.
        """
        name = test.name
        data_iteration = None
        if data_set is not None:
            index = data_index or 0
            name = iteration_name(test, data_set, index)
            data_iteration = DataIteration(index=index, name=data_set.name, data=dict(data_set.values))

        print_test_start(name)
        started_at = now_iso()
        started = time.monotonic()

        context = self._create_context(test_file, test, data_set, data_index, shared_variables)
        context.test_name = name
        steps: List[StepResult] = []
        status = StepStatus.PASSED
        error: Optional[ErrorInfo] = None

        try:
            self.runtime.plugins.run_hook("before_test", context, test)
            status, error = self._run_test_body(test, test_file, context, steps)
        except SkipTest as e:
            status = StepStatus.SKIPPED
            error = ErrorInfo(message=e.reason, code=type(e).__name__)
        except Exception as e:
            status = StepStatus.ERROR
            error = ErrorInfo.from_exception(e)
        finally:
            if status.is_failure or context.soft_assertion_errors:
                for handler in context.failure_handlers:
                    self._run_teardown("onFailure", handler, context, steps)
            for phase, hook in (
                ("test.afterEach", test.after_each),
                ("afterEach", test_file.after_each),
            ):
                self._run_teardown(phase, hook, context, steps)

        if context.soft_assertion_errors and status == StepStatus.PASSED:
            status = StepStatus.FAILED
            error = ErrorInfo(
                message=format_soft_failures(context.soft_assertion_errors),
                code="SoftAssertionError",
            )

        result = TestResult(
            test_id=test.id,
            test_name=name,
            status=status,
            duration=_elapsed_ms(started),
            steps=steps,
            error=error,
            started_at=started_at,
            finished_at=now_iso(),
            data_iteration=data_iteration,
            soft_assertion_errors=list(context.soft_assertion_errors),
        )

        try:
            self.runtime.plugins.run_hook("after_test", context, test, result)
        except Exception as e:
            result.status = StepStatus.ERROR
            result.error = ErrorInfo.from_exception(e)

        print_test_result(result)
        return result

    def _run_test_body(
        self,
        test: TestCase,
        test_file: TestFile,
        context: ExecutionContext,
        steps: List[StepResult],
    ) -> Tuple[StepStatus, Optional[ErrorInfo]]:
        for phase, hook in (("beforeEach", test_file.before_each), ("test.beforeEach", test.before_each)):
            failure = self._run_sequence(hook, context, steps)
            if failure is not None:
                hook_error = HookFailure(phase, failure.error.message if failure.error else "")
                return failure.status, ErrorInfo(
                    message=str(hook_error),
                    stack=failure.error.stack if failure.error else None,
                    code=type(hook_error).__name__,
                )

        failure = self._run_sequence(test.steps, context, steps)
        if failure is not None:
            return failure.status, failure.error
        return StepStatus.PASSED, None

    def _run_teardown(
        self,
        phase: str,
        steps: List[Step],
        context: ExecutionContext,
        sink: List[StepResult],
    ) -> None:
        if not steps:
            return
        try:
            failure = self._run_sequence(steps, context, sink)
        except Exception as e:
            context.logger.error(f"{phase} failed: {e}")
            return
        if failure is not None and failure.error is not None:
            context.logger.error(f"{phase} failed: {failure.error.message}")

    # =========================================================================
    # Helpers
    # =========================================================================

    def _run_sequence(
        self,
        steps: List[Step],
        context: ExecutionContext,
        sink: List[StepResult],
    ) -> Optional[StepResult]:
        """Run steps into ``sink`` and return the first failing result, if any.

        A top-level procedure return simply ends the sequence.
        """
        start = len(sink)
        interpreter = StepInterpreter(self.runtime)
        try:
            interpreter.run_steps(steps, context, sink)
        except ReturnSignal:
            pass
        return _first_failure(sink[start:])

    def _create_context(
        self,
        test_file: TestFile,
        test: Optional[TestCase] = None,
        data_set: Optional[DataSet] = None,
        data_index: Optional[int] = None,
        shared_variables: Optional[Dict[str, Any]] = None,
    ) -> ExecutionContext:
        """Build a context seeded with file defaults, run variables and data values.

        Values produced by ``beforeAll`` are inherited only for keys that are
        unset or empty, or that are internal (``__`` prefixed).
        """
        variables = dict(test_file.variables)
        variables.update(resolve_variable_defaults(self.options.variables))

        for key, value in (shared_variables or {}).items():
            if key not in variables or variables[key] in ("", None) or key.startswith("__"):
                variables[key] = value

        if data_set is not None:
            variables.update(data_set.values)

        return ExecutionContext(
            variables=variables,
            current_data=data_set,
            data_index=data_index,
            procedures=dict(test_file.procedures),
            plugins=self.runtime.plugins,
            logger=ConsoleLogger(debug_enabled=self.options.debug or None),
            browser=self.browser,
            http=self.http,
            cancellation=self.cancellation,
            timeout_ms=self.options.timeout_ms,
            test_id_attribute=self.options.test_id_attribute,
            base_url=self.options.base_url,
            soft_assertions=test.soft_assertions if test is not None else False,
        )

    def _skipped_result(self, test: TestCase, reason: str, disabled: bool = False) -> TestResult:
        print_test_skipped(test.name, reason)
        return TestResult(
            test_id=test.id,
            test_name=test.name,
            status=StepStatus.SKIPPED,
            duration=0,
            error=ErrorInfo(message=reason, code="Disabled" if disabled else "SkipTest"),
        )

    def _error_result(self, test: TestCase, error: Exception) -> TestResult:
        result = TestResult(
            test_id=test.id,
            test_name=test.name,
            status=StepStatus.ERROR,
            error=ErrorInfo.from_exception(error),
        )
        print_test_result(result)
        return result

    @staticmethod
    def _lifecycle_result(
        phase: str,
        status: StepStatus,
        failure: StepResult,
        steps: List[StepResult],
        started_at: str,
        started: float,
    ) -> TestResult:
        hook_error = HookFailure(phase, failure.error.message if failure.error else "")
        return TestResult(
            test_id=f"lifecycle-{phase}",
            test_name=phase,
            status=status,
            duration=_elapsed_ms(started),
            steps=steps,
            error=ErrorInfo(
                message=str(hook_error),
                stack=failure.error.stack if failure.error else None,
                code=type(hook_error).__name__,
            ),
            started_at=started_at,
            finished_at=now_iso(),
            is_lifecycle=True,
            lifecycle_type=phase,
        )

    @staticmethod
    def _lifecycle_error_result(
        phase: str,
        error: Exception,
        steps: List[StepResult],
        started_at: str,
        started: float,
    ) -> TestResult:
        """Result of a lifecycle phase aborted by an exception rather than a failed step."""
        result = TestResult(
            test_id=f"lifecycle-{phase}",
            test_name=phase,
            status=StepStatus.ERROR,
            duration=_elapsed_ms(started),
            steps=steps,
            error=ErrorInfo.from_exception(error),
            started_at=started_at,
            finished_at=now_iso(),
            is_lifecycle=True,
            lifecycle_type=phase,
        )
        print_test_result(result)
        return result

    # =========================================================================
    # Sessions
    # =========================================================================

    def required_capabilities(self, test_file: TestFile) -> Set[str]:
        """Driver sessions needed by any step of the file's enabled tests and hooks.

        Nested children, nested value steps and procedure bodies are included.
        """
        lists: List[List[Step]] = [
            test_file.before_all,
            test_file.after_all,
            test_file.before_each,
            test_file.after_each,
        ]
        for test in test_file.tests:
            if not test.disabled:
                lists.extend([test.steps, test.before_each, test.after_each])
        for procedure in list(test_file.procedures.values()) + list(self.runtime.procedures.values()):
            lists.append(procedure.steps)

        needed: Set[str] = set()
        for steps in lists:
            for step in steps:
                for nested in step.walk():
                    needed |= self._step_capabilities(nested)
        return needed

    def _step_capabilities(self, step: Step) -> Set[str]:
        block = self.runtime.registry.find(step.type)
        needed = set(block.requires) if block is not None else set()
        if step.type.startswith("web_"):
            needed.add("browser")
        elif step.type.startswith("api_"):
            needed.add("http")
        return needed

    def _open_sessions(self, test_file: TestFile) -> None:
        needed = self.required_capabilities(test_file)
        if "browser" in needed and self.browser is None:
            self.runtime.logger.debug("Opening browser session")
            self.browser = self.browser_factory(self.options)
        if "http" in needed and self.http is None:
            self.runtime.logger.debug("Opening HTTP session")
            self.http = self.http_factory(self.options)

    def _close_sessions(self) -> None:
        browser, self.browser = self.browser, None
        http, self.http = self.http, None
        try:
            if browser is not None:
                browser.close()
        finally:
            if http is not None:
                http.close()
