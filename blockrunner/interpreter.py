"""Step interpreter: dispatches steps to blocks and carries out control outcomes."""

from __future__ import annotations

import base64
import time
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from .blocks.base import (
    CONTROL_OUTCOMES,
    BaseBlock,
    BranchRequest,
    CompoundAction,
    LoopRequest,
    MapRequest,
    ProcedureCall,
    ProcedureReturn,
    RetryRequest,
    TryCatchRequest,
)
from .config import Procedure, Step
from .context import PARAM_PREFIX
from .errors import (
    AssertionFailure,
    BlockRunnerError,
    CancelledError,
    DriverError,
    MaxCallDepthError,
    ProcedureFailedError,
    ProcedureNotFoundError,
    SkipTest,
    StepFailedError,
    UnknownStepTypeError,
)
from .results import ErrorInfo, StepResult, StepStatus

if TYPE_CHECKING:
    from .context import ExecutionContext
    from .runtime import CallStack, EngineRuntime


class ReturnSignal(Exception):
    """Carries a procedure return value up through nested statement lists."""

    def __init__(self, value: Any):
        self.value = value
        super().__init__("procedure return")


class ChildStepFailed(BlockRunnerError):
    """Raised when a step inside a statement list fails.

    Attributes:
        result: The failing child's step result
    """

    def __init__(self, result: StepResult):
        self.result = result
        super().__init__(result.error.message if result.error else f"Step {result.step_id} failed")


# Errors that mark a step as "error" rather than "failed"
_ERROR_STATUS_TYPES = (
    UnknownStepTypeError,
    ProcedureNotFoundError,
    MaxCallDepthError,
    DriverError,
    CancelledError,
)


def status_for_exception(exc: BaseException) -> StepStatus:
    """Map an exception to the status of the step that raised it."""
    if isinstance(exc, ChildStepFailed):
        return exc.result.status
    if isinstance(exc, ProcedureFailedError) and isinstance(exc.__cause__, ChildStepFailed):
        return exc.__cause__.result.status
    if isinstance(exc, _ERROR_STATUS_TYPES):
        return StepStatus.ERROR
    return StepStatus.FAILED


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class StepInterpreter:
    """Executes steps against an execution context.

    Nested value steps in ``params`` are evaluated before their parent runs.
    Statement children run through the control outcome the parent's block
    returns (branch, loop, try/catch, retry, compound action, procedure call).

    Args:
        runtime: Engine runtime providing blocks, project procedures and plugins
        call_stack: Procedure call stack (a fresh one by default)
    """

    def __init__(self, runtime: "EngineRuntime", call_stack: Optional["CallStack"] = None):
        self.runtime = runtime
        self.call_stack = call_stack or runtime.new_call_stack()

    @property
    def registry(self):
        return self.runtime.registry

    # =========================================================================
    # Sequences
    # =========================================================================

    def run_steps(
        self,
        steps: Sequence[Step],
        context: "ExecutionContext",
        results: Optional[List[StepResult]] = None,
    ) -> List[StepResult]:
        """Run steps in order, appending each result to ``results``.

        A failed or errored step stops the sequence unless the context is in
        soft-assertion mode. ``SkipTest``, ``CancelledError`` and procedure
        returns propagate to the caller; results gathered so far stay in
        ``results``.
        """
        if results is None:
            results = []
        for step in steps:
            result = self.run_step(step, context, results)
            if result.status.is_failure and not context.soft_assertions:
                break
        return results

    def _run_children(
        self,
        steps: Sequence[Step],
        context: "ExecutionContext",
        sink: List[StepResult],
    ) -> None:
        """Run a statement list, raising ``ChildStepFailed`` on its first failure."""
        start = len(sink)
        self.run_steps(steps, context, sink)
        for result in sink[start:]:
            if result.status.is_failure:
                raise ChildStepFailed(result)

    # =========================================================================
    # Single step
    # =========================================================================

    def run_step(
        self,
        step: Step,
        context: "ExecutionContext",
        sink: Optional[List[StepResult]] = None,
    ) -> StepResult:
        """Execute one step and record its result.

        Block errors become a failed/error ``StepResult``. Soft assertion
        failures are recorded on the context and the step passes.
        """
        context.check_cancelled()
        if context.plugins is not None:
            context.plugins.run_hook("before_step", context, step)

        started = time.monotonic()
        children: List[StepResult] = []
        status = StepStatus.PASSED
        output: Any = None
        error: Optional[ErrorInfo] = None
        screenshot: Optional[str] = None
        signal: Optional[BaseException] = None

        try:
            output = self._evaluate(step, context, children)
        except ReturnSignal as e:
            output = e.value
            signal = e
        except SkipTest as e:
            status = StepStatus.SKIPPED
            error = ErrorInfo(message=e.reason, code=type(e).__name__)
            signal = e
        except CancelledError as e:
            status = StepStatus.ERROR
            error = ErrorInfo.from_exception(e)
            signal = e
        except AssertionFailure as e:
            if context.soft_assertions:
                context.record_soft_failure(e)
            else:
                status = StepStatus.FAILED
                error = ErrorInfo.from_exception(e)
                screenshot = self._capture_screenshot(context)
        except ChildStepFailed as e:
            status = e.result.status
            error = e.result.error
        except Exception as e:
            status = status_for_exception(e)
            error = ErrorInfo.from_exception(e)
            screenshot = self._capture_screenshot(context)

        result = StepResult(
            step_id=step.id,
            step_type=step.type,
            status=status,
            duration=_elapsed_ms(started),
            output=output,
            error=error,
            screenshot=screenshot,
            children=children,
        )
        if sink is not None:
            sink.append(result)

        if status.is_failure and error is not None:
            context.logger.error(f"{step.type} failed: {error.message}")
        else:
            context.logger.debug(f"{step.type} {status.value} ({result.duration}ms)")

        if context.plugins is not None:
            context.plugins.run_hook("after_step", context, step, result)

        if signal is not None:
            raise signal
        return result

    def evaluate_value(self, step: Step, context: "ExecutionContext") -> Any:
        """Evaluate a nested value step and return what it produces."""
        context.check_cancelled()
        return self._evaluate(step, context, [])

    def resolve_params(
        self, step: Step, block: BaseBlock, context: "ExecutionContext"
    ) -> Dict[str, Any]:
        """Evaluate nested value steps and fill in declared defaults."""
        params: Dict[str, Any] = {}
        for name, value in step.params.items():
            if isinstance(value, Step):
                params[name] = self.evaluate_value(value, context)
            else:
                params[name] = value
        return block.apply_defaults(params)

    def _evaluate(
        self, step: Step, context: "ExecutionContext", children: List[StepResult]
    ) -> Any:
        block = self.registry.get(step.type)
        params = self.resolve_params(step, block, context)
        block.validate_params(params)

        previous_step = context.current_step
        context.current_step = step
        try:
            outcome = block.execute(params, context)
            if isinstance(outcome, CONTROL_OUTCOMES):
                return self._dispatch(step, outcome, context, children)
            return outcome
        finally:
            context.current_step = previous_step

    # =========================================================================
    # Control outcomes
    # =========================================================================

    def _dispatch(
        self,
        step: Step,
        outcome: Any,
        context: "ExecutionContext",
        children: List[StepResult],
    ) -> Any:
        if isinstance(outcome, ProcedureCall):
            return self.call_procedure(outcome, context, children)

        if isinstance(outcome, ProcedureReturn):
            raise ReturnSignal(outcome.value)

        if isinstance(outcome, CompoundAction):
            self._run_children(outcome.steps, context, children)
            return outcome.label

        if isinstance(outcome, BranchRequest):
            if outcome.statement:
                self._run_children(step.children.get(outcome.statement, []), context, children)
            return outcome.value

        if isinstance(outcome, LoopRequest):
            return self._run_loop(step, outcome, context, children)

        if isinstance(outcome, TryCatchRequest):
            return self._run_try_catch(step, outcome, context, children)

        if isinstance(outcome, RetryRequest):
            return self._run_retry(step, outcome, context, children)

        if isinstance(outcome, MapRequest):
            return self._run_map(outcome, context, children)

        raise TypeError(f"Unsupported control outcome: {type(outcome).__name__}")

    def _run_loop(
        self,
        step: Step,
        loop: LoopRequest,
        context: "ExecutionContext",
        children: List[StepResult],
    ) -> int:
        """Run the loop body once per item, restoring loop variables afterwards."""
        body = step.children.get(loop.statement, [])
        names = [n for n in (loop.variable, loop.index_variable) if n]
        saved = {n: context.variables[n] for n in names if n in context.variables}

        count = 0
        try:
            for index, item in enumerate(loop.items):
                context.check_cancelled()
                if loop.variable:
                    context.set(loop.variable, item)
                if loop.index_variable:
                    context.set(loop.index_variable, index)
                self._run_children(body, context, children)
                count += 1
        finally:
            for name in names:
                if name in saved:
                    context.set(name, saved[name])
                else:
                    context.delete(name)
        return count

    def _run_try_catch(
        self,
        step: Step,
        request: TryCatchRequest,
        context: "ExecutionContext",
        children: List[StepResult],
    ) -> bool:
        """Run TRY; if a step in it fails, bind the error message and run CATCH.

        Returns:
            True if TRY completed without failure
        """
        try:
            self._run_children(step.children.get(request.try_statement, []), context, children)
            return True
        except ChildStepFailed as failure:
            message = failure.result.error.message if failure.result.error else "Step failed"
            context.logger.warn(f"Caught error: {message}")
            context.set(request.error_variable, message)
        self._run_children(step.children.get(request.catch_statement, []), context, children)
        return False

    def _run_retry(
        self,
        step: Step,
        request: RetryRequest,
        context: "ExecutionContext",
        children: List[StepResult],
    ) -> int:
        """Re-run the DO statement until an attempt passes.

        Binds ``_attempt`` (1-based) for each attempt and waits ``delay_ms``
        between attempts.

        Returns:
            The attempt number that passed

        Raises:
            StepFailedError: If every attempt failed
        """
        body = step.children.get(request.statement, [])
        last_error: Optional[str] = None

        for attempt in range(1, request.times + 1):
            context.set("_attempt", attempt)
            try:
                self._run_children(body, context, children)
                if attempt > 1:
                    context.logger.info(f"Succeeded on attempt {attempt}/{request.times}")
                return attempt
            except ChildStepFailed as failure:
                last_error = failure.result.error.message if failure.result.error else "Step failed"
                context.logger.warn(f"Attempt {attempt}/{request.times} failed: {last_error}")

            if attempt < request.times and request.delay_ms > 0:
                # Cancellation interrupts the delay
                if context.cancellation.wait(request.delay_ms / 1000):
                    context.check_cancelled()

        raise StepFailedError(
            f"Retry failed after {request.times} attempts. Last error: {last_error}"
        )

    def _run_map(
        self,
        request: MapRequest,
        context: "ExecutionContext",
        children: List[StepResult],
    ) -> List[Any]:
        """Call the procedure once per item and return the list of return values."""
        inline = request.procedure if isinstance(request.procedure, Procedure) else None
        name = inline.name if inline is not None else request.procedure
        results: List[Any] = []
        for item in request.items:
            context.check_cancelled()
            call = ProcedureCall(
                name=name,
                args={request.item_param: item},
                expect_return=True,
                procedure=inline,
            )
            results.append(self.call_procedure(call, context, children))
        return results

    # =========================================================================
    # Procedures
    # =========================================================================

    def find_procedure(self, name: str, context: "ExecutionContext") -> Procedure:
        """Look up a procedure in the file table, then the project table.

        Raises:
            ProcedureNotFoundError: If neither table has the procedure
        """
        procedure = context.procedures.get(name) or self.runtime.find_procedure(name)
        if procedure is None:
            raise ProcedureNotFoundError(name)
        return procedure

    def bind_arguments(
        self, procedure: Procedure, call: ProcedureCall, context: "ExecutionContext"
    ) -> Dict[str, Any]:
        """Build the argument map: positional or named values plus declared defaults.

        Placeholders in argument values are resolved against the caller.
        """
        if call.positional is not None:
            args = {
                param.name: value
                for param, value in zip(procedure.params, call.positional)
            }
        else:
            args = dict(call.args)

        for param in procedure.params:
            if args.get(param.name) is None and param.default is not None:
                args[param.name] = param.default

        return {name: context.resolve_object(value) for name, value in args.items()}

    def call_procedure(
        self,
        call: ProcedureCall,
        context: "ExecutionContext",
        sink: Optional[List[StepResult]] = None,
    ) -> Any:
        """Invoke a procedure against the caller's context.

        Each argument is bound both as ``name`` and ``__param_<name>``. Prior
        bindings of those names are restored (or removed) when the call ends,
        however it ends.

        Returns:
            The value of the procedure's return step, or None

        Raises:
            ProcedureNotFoundError: If the procedure does not exist
            ProcedureFailedError: If a step in the procedure body fails
            MaxCallDepthError: If nesting exceeds the call stack limit
        """
        if sink is None:
            sink = []
        procedure = call.procedure or self.find_procedure(call.name, context)
        args = self.bind_arguments(procedure, call, context)

        self.call_stack.push(procedure.name)
        bound: List[str] = []
        saved: Dict[str, Any] = {}
        try:
            for name, value in args.items():
                for key in (name, f"{PARAM_PREFIX}{name}"):
                    if key in context.variables and key not in saved:
                        saved[key] = context.variables[key]
                    bound.append(key)
                    context.set(key, value)

            context.logger.debug(
                f"Procedure {procedure.name} (depth {self.call_stack.depth}) args: {args}"
            )
            try:
                self._run_children(procedure.steps, context, sink)
            except ReturnSignal as signal:
                return signal.value
            except ChildStepFailed as failure:
                raise ProcedureFailedError(procedure.name, str(failure)) from failure
            return None
        finally:
            for key in bound:
                if key in saved:
                    context.set(key, saved[key])
                else:
                    context.delete(key)
            self.call_stack.pop()

    # =========================================================================
    # Screenshots
    # =========================================================================

    def _capture_screenshot(self, context: "ExecutionContext") -> Optional[str]:
        """Capture a full-page PNG as a data URL when a browser is attached."""
        if context.browser is None:
            return None
        try:
            image = context.browser.screenshot(full_page=True)
        except Exception as e:
            context.logger.debug(f"Screenshot capture failed: {e}")
            return None
        return "data:image/png;base64," + base64.b64encode(image).decode("ascii")
