"""
Single-flight rule execution engine.

Rule batches from overlapping edits are queued and executed one at a time by
a single worker coroutine, so no two batches ever interleave. Each batch
reads the state current when it is dequeued, folds its rules in priority
order (each rule sees the previous rule's committed result) and applies
each rule's effects strictly in declared order.

Failures are isolated: a failing effect is reported and its siblings still
run, an unknown rule is reported and skipped, and a batch that exceeds the
execution timeout is abandoned without committing the interrupted rule.

The engine never resolves triggers itself, so rules changing fields cannot
re-trigger rules from inside a batch.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .attributes import AttributeOverlay
from .conditions import evaluate_conditions
from .context_vars import current_rule
from .effects import apply_effect, resolve_operand
from .exceptions import FormRulesError, RuleExecutionError, RuleNotFoundError
from .execution_context import ExecutionContext
from .paths import MISSING
from .registry import RuleRegistry
from .schema import EffectBase, FormSchema, RuleDefinition
from .state import StateManager

logger = logging.getLogger(__name__)

ErrorReporter = Callable[[Exception, ExecutionContext], None]


class EngineStatus(str, Enum):
    """Worker status."""

    IDLE = "idle"
    EXECUTING = "executing"


@dataclass
class ExecutionReport:
    """
    Outcome of one queued batch.

    Attributes:
        execution_id: Change cycle the batch belongs to
        executed: Rules whose effects ran, in execution order
        skipped: Rules whose top-level condition was false
        errors: Reported errors (effects, unknown rules, timeout)
        changed_fields: Top-level state keys committed by the batch
        state: State after the batch
        timed_out: True if the batch was abandoned at the timeout
    """

    execution_id: int
    executed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[Exception] = field(default_factory=list)
    changed_fields: list[str] = field(default_factory=list)
    state: dict[str, Any] = field(default_factory=dict)
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.errors


@dataclass
class _Batch:
    rules: list[str | RuleDefinition]
    context: ExecutionContext
    future: asyncio.Future[ExecutionReport]


class RuleExecutionEngine:
    """
    Sequential execution queue for rule batches.

    Architecture:
    - Single worker coroutine processes batches in FIFO order
    - Callers await a Future for the batch's ExecutionReport
    - Each batch runs under `timeout` seconds
    - StateManager is the only writer; one commit per rule

    Usage:
        engine = RuleExecutionEngine(registry, state_manager, schema=schema)
        await engine.start()
        report = await engine.execute_all(["calcTotal"], context)
        await engine.stop()
    """

    def __init__(
        self,
        registry: RuleRegistry,
        state_manager: StateManager,
        *,
        schema: FormSchema | None = None,
        overlay: AttributeOverlay | None = None,
        timeout: float = 30.0,
        on_error: ErrorReporter | None = None,
    ) -> None:
        self.registry = registry
        self.state_manager = state_manager
        self.schema = schema
        self.overlay = overlay if overlay is not None else AttributeOverlay()
        self.timeout = timeout
        self.on_error = on_error
        self._queue: asyncio.Queue[_Batch] = asyncio.Queue()
        self._worker_task: asyncio.Task[None] | None = None
        self._running = False
        self._status = EngineStatus.IDLE
        self._stats = {
            "total_batches": 0,
            "successful_batches": 0,
            "failed_batches": 0,
            "timed_out_batches": 0,
            "rules_executed": 0,
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def status(self) -> EngineStatus:
        return self._status

    @property
    def queue_size(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        """Start the worker coroutine."""
        if self._running:
            logger.warning("RuleExecutionEngine already running")
            return

        self._running = True
        self._worker_task = asyncio.create_task(self._worker())
        logger.info("RuleExecutionEngine started")

    async def stop(self) -> None:
        """Stop the worker after the queue drains."""
        if not self._running:
            return

        self._running = False

        try:
            await asyncio.wait_for(self._queue.join(), timeout=self.timeout)
        except TimeoutError:
            logger.warning(f"Rule queue drain timeout ({self.timeout}s) - forcing shutdown")

        if self._worker_task:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            self._worker_task = None

        logger.info(
            f"RuleExecutionEngine stopped. Stats: {self._stats['total_batches']} batches, "
            f"{self._stats['rules_executed']} rules executed, "
            f"{self._stats['failed_batches']} with errors"
        )

    # =========================================================================
    # Submission
    # =========================================================================

    async def execute_rule(self, name: str, context: ExecutionContext) -> ExecutionReport:
        """
        Execute one named rule.

        Raises:
            RuleNotFoundError: If no rule with that name is registered
            RuleExecutionError: If called from inside a running rule
        """
        rule = self.registry.get(name)
        return await self.submit([rule], context)

    async def execute_all(
        self, names: Iterable[str], context: ExecutionContext
    ) -> ExecutionReport:
        """
        Execute rules as one batch, folding state from rule to rule.

        Unknown names are reported through the error channel and skipped.
        """
        return await self.submit(list(names), context)

    async def submit(
        self, rules: list[str | RuleDefinition], context: ExecutionContext
    ) -> ExecutionReport:
        """Queue a batch and wait for its report."""
        if not self._running:
            raise RuntimeError("RuleExecutionEngine not started. Call start() first.")

        running = current_rule.get()
        if running is not None:
            raise RuleExecutionError(
                f"Re-entrant rule execution requested from inside rule '{running}'",
                rule_name=running,
                execution_id=context.execution_id,
            )

        future: asyncio.Future[ExecutionReport] = asyncio.get_running_loop().create_future()
        await self._queue.put(_Batch(rules=rules, context=context, future=future))
        return await future

    # =========================================================================
    # Worker
    # =========================================================================

    async def _worker(self) -> None:
        """Worker coroutine - processes batches sequentially."""
        logger.info("RuleExecutionEngine worker started")

        while True:
            try:
                timeout = 1.0 if self._running else 0.1
                try:
                    batch = await asyncio.wait_for(self._queue.get(), timeout=timeout)
                except TimeoutError:
                    if not self._running:
                        break
                    continue

                self._stats["total_batches"] += 1
                self._status = EngineStatus.EXECUTING
                report = ExecutionReport(execution_id=batch.context.execution_id)

                try:
                    await asyncio.wait_for(self._run_batch(batch, report), timeout=self.timeout)
                except TimeoutError:
                    report.timed_out = True
                    self._stats["timed_out_batches"] += 1
                    self._fail(
                        RuleExecutionError(
                            f"Rule execution timed out after {self.timeout}s",
                            execution_id=batch.context.execution_id,
                        ),
                        batch.context,
                        report,
                    )
                except Exception as e:
                    logger.error(f"Rule batch failed unexpectedly: {e}", exc_info=True)
                    self._fail(e, batch.context, report)
                finally:
                    report.state = self.state_manager.get_state()
                    if report.errors:
                        self._stats["failed_batches"] += 1
                    else:
                        self._stats["successful_batches"] += 1
                    if not batch.future.done():
                        batch.future.set_result(report)
                    self._status = EngineStatus.IDLE
                    self._queue.task_done()

            except asyncio.CancelledError:
                logger.info("RuleExecutionEngine worker cancelled")
                break
            except Exception as e:
                logger.error(f"RuleExecutionEngine worker error: {e}", exc_info=True)

        logger.info("RuleExecutionEngine worker stopped")

    async def _run_batch(self, batch: _Batch, report: ExecutionReport) -> None:
        rules: list[RuleDefinition] = []
        for entry in batch.rules:
            if isinstance(entry, RuleDefinition):
                rules.append(entry)
                continue
            try:
                rules.append(self.registry.get(entry))
            except RuleNotFoundError as e:
                self._fail(e, batch.context, report)

        # sorted() is stable: equal priorities keep trigger order
        for rule in sorted(rules, key=lambda r: r.priority):
            try:
                await self._run_rule(rule, batch.context, report)
            except FormRulesError as e:
                self._fail(e, batch.context, report)

    async def _run_rule(
        self, rule: RuleDefinition, context: ExecutionContext, report: ExecutionReport
    ) -> None:
        state = self.state_manager.get_state()
        rule_context = context.with_state(state)

        if rule.condition_list and not evaluate_conditions(
            rule.condition_list, rule.mode, rule_context.state, default_field=context.changed_field
        ):
            logger.debug(f"Rule '{rule.name}' skipped: condition not met")
            report.skipped.append(rule.name)
            return

        logger.debug(f"Executing rule '{rule.name}' ({len(rule.effects)} effect(s))")
        working = state
        patches: dict[str, dict[str, Any]] = {}

        token = current_rule.set(rule.name)
        try:
            for index, effect in enumerate(rule.effects):
                step_context = rule_context.with_state(working)
                try:
                    operand = await resolve_operand(effect, step_context)
                    outcome = apply_effect(
                        effect,
                        working,
                        schema=self.schema,
                        operand=operand,
                        attributes=self._current_attributes(
                            effect, working, patches, context.changed_field
                        ),
                        anchor=context.changed_field,
                    )
                except RuleExecutionError as e:
                    self._fail(
                        e.with_context(
                            rule_name=rule.name,
                            effect_index=index,
                            execution_id=context.execution_id,
                        ),
                        context,
                        report,
                    )
                    continue
                except Exception as e:
                    error = RuleExecutionError(
                        f"Effect failed: {e}",
                        rule_name=rule.name,
                        effect_index=index,
                        target_field=effect.target_field,
                        execution_id=context.execution_id,
                    )
                    error.__cause__ = e
                    self._fail(error, context, report)
                    continue

                working = {**working, **outcome.values}
                for path, attributes in outcome.attributes.items():
                    patches.setdefault(path, {}).update(attributes)
        finally:
            current_rule.reset(token)

        changed = {key: value for key, value in working.items() if state.get(key, MISSING) != value}
        if changed:
            self.state_manager.set_state(changed)
            for key in changed:
                if key not in report.changed_fields:
                    report.changed_fields.append(key)
        if patches:
            self.overlay.patch(patches)

        report.executed.append(rule.name)
        self._stats["rules_executed"] += 1

    def _current_attributes(
        self,
        effect: EffectBase,
        working: Mapping[str, Any],
        patches: Mapping[str, Mapping[str, Any]],
        anchor: str | None = None,
    ) -> dict[str, Any] | None:
        """Effective attributes of an attribute effect's target, including pending patches."""
        if not effect.is_attribute:
            return None
        path = effect.target_field
        attributes: dict[str, Any] = {}
        if self.schema is not None:
            path = self.schema.resolve_target(effect.target_field, anchor) or effect.target_field
            definition = self.schema.find_field(path)
            if definition is not None:
                attributes = self.overlay.resolve(definition, path, working)
        else:
            attributes = self.overlay.get(path)
        attributes.update(patches.get(path, {}))
        return attributes

    def _fail(self, error: Exception, context: ExecutionContext, report: ExecutionReport) -> None:
        """Record an error and pass it to the error channel; never raises."""
        report.errors.append(error)
        logger.warning(f"[execution {context.execution_id}] {type(error).__name__}: {error}")
        if self.on_error is None:
            return
        try:
            self.on_error(error, context)
        except Exception as e:
            logger.error(f"Error callback failed: {e}", exc_info=True)

    def get_stats(self) -> dict[str, Any]:
        """Get engine statistics."""
        return {
            **self._stats,
            "queue_size": self._queue.qsize(),
            "status": self._status.value,
        }
