"""
Form change handling.

FormHandler owns every component of one form instance (schema, rule
registry, state manager, attribute overlay, trigger resolver and execution
engine) and runs the change cycle:

1. Normalize the change event
2. Commit the raw edit to the form state
3. Resolve the triggers of the changed field against the post-edit state
4. Execute the matched rules as one queued batch
5. Optionally cascade: resolve triggers of fields the rules changed (bounded)
6. Optionally validate the touched fields
7. Report errors through the logger and the on_error callback

Instances are created by the caller; nothing here is a module-level singleton.
"""

import itertools
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .config import FormConfig
from .engine.attributes import AttributeOverlay
from .engine.context_vars import current_rule
from .engine.exceptions import (
    CascadeDepthExceededError,
    FormRulesError,
    SchemaValidationError,
    StateUpdateError,
)
from .engine.execution_context import ExecutionContext
from .engine.loader import load_form_from_file
from .engine.paths import get_path, schema_path, set_path
from .engine.registry import RuleRegistry
from .engine.rule_engine import ExecutionReport, RuleExecutionEngine
from .engine.schema import FieldDefinition, FormSchema, RuleDefinition
from .engine.state import FormState, Listener, StateManager
from .engine.triggers import TriggerResolver
from .engine.validation import validate_form

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[Exception, ExecutionContext], None]


@dataclass(frozen=True)
class ChangeEvent:
    """A field edit: the field name (or dotted path) and its new value."""

    name: str
    value: Any = None

    @classmethod
    def from_raw(cls, event: Any) -> "ChangeEvent":
        """
        Normalize the change shapes emitted by input components.

        Accepts a ChangeEvent, a (name, value) tuple, a {name, value} mapping,
        a {target: {name, value}} mapping, or any object exposing `name` and
        `value` directly or on a `target` attribute.

        Raises:
            SchemaValidationError: If no field name can be found
        """
        if isinstance(event, ChangeEvent):
            return event
        if isinstance(event, tuple) and len(event) == 2:
            name, value = event
        elif isinstance(event, Mapping):
            target = event.get("target")
            source = target if isinstance(target, Mapping) else event
            name, value = source.get("name"), source.get("value")
        else:
            target = getattr(event, "target", event)
            name, value = getattr(target, "name", None), getattr(target, "value", None)

        if not isinstance(name, str) or not name:
            raise SchemaValidationError(f"Change event has no field name: {event!r}")
        return cls(name=name, value=value)


@dataclass
class ChangeResult:
    """
    Outcome of one change cycle.

    Attributes:
        execution_id: Id of the cycle
        changed_field: Field path that was edited
        value: Value that was written
        state: Form state after the cycle
        executed_rules: Rules that ran, in execution order (all cascade hops)
        skipped_rules: Rules whose top-level condition was false
        attributes: Effective attributes of every field after the cycle
        field_errors: Current per-field validation messages
        errors: Engine errors reported during the cycle
    """

    execution_id: int
    changed_field: str
    value: Any
    state: FormState
    executed_rules: list[str] = field(default_factory=list)
    skipped_rules: list[str] = field(default_factory=list)
    attributes: dict[str, dict[str, Any]] = field(default_factory=dict)
    field_errors: dict[str, str] = field(default_factory=dict)
    errors: list[Exception] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class FormHandler:
    """
    One live form: state, rules and the change cycle.

    Example:
        async with create_form(schema) as form:
            result = await form.handle_change({"target": {"name": "quantity", "value": 5}})
            print(result.state["total"])
    """

    def __init__(
        self,
        schema: FormSchema | Mapping[str, Any],
        initial_state: Mapping[str, Any] | None = None,
        *,
        rules: list[RuleDefinition | Mapping[str, Any]] | None = None,
        on_error: ErrorCallback | None = None,
        config: FormConfig | None = None,
    ) -> None:
        self.config = config if config is not None else FormConfig.from_env()
        self.schema = _coerce_schema(schema)
        self.on_error = on_error

        self.registry = RuleRegistry(self.schema.rules)
        if rules:
            self.registry.register_many(rules)

        initial = {**self.schema.initial_values(), **dict(initial_state or {})}
        self.state_manager = StateManager(initial, history_limit=self.config.history_limit)
        self.overlay = AttributeOverlay()
        self.trigger_resolver = TriggerResolver(self.schema)
        self.engine = RuleExecutionEngine(
            self.registry,
            self.state_manager,
            schema=self.schema,
            overlay=self.overlay,
            timeout=self.config.execution_timeout,
            on_error=self._notify_error,
        )
        self._execution_ids = itertools.count(1)
        self._field_errors: dict[str, str] = {}

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        if not self.engine.is_running:
            await self.engine.start()

    async def close(self) -> None:
        await self.engine.stop()

    async def __aenter__(self) -> "FormHandler":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # =========================================================================
    # Change cycle
    # =========================================================================

    async def handle_change(self, event: Any) -> ChangeResult:
        """
        Run one change cycle.

        Never raises for engine errors unless the form is configured strict;
        errors are logged, passed to on_error and returned in the result.

        Raises:
            SchemaValidationError: If the event carries no field name
            FormRulesError: In strict mode, the first error of the cycle
        """
        raw = ChangeEvent.from_raw(event)
        change = ChangeEvent(self.schema.resolve_path(raw.name) or raw.name, raw.value)
        await self.start()

        execution_id = next(self._execution_ids)
        errors: list[Exception] = []
        executed: list[str] = []
        skipped: list[str] = []

        running = current_rule.get()
        if running is not None:
            context = ExecutionContext.create(
                self.state_manager.get_state(), change.name, change.value, execution_id
            )
            error = StateUpdateError(
                f"Field '{change.name}' cannot be changed from inside rule '{running}'"
            )
            self._fail(error, context, errors)
            return self._finish(change, execution_id, executed, skipped, errors, touched=[])

        try:
            state = self.state_manager.set_state(
                lambda prev: set_path(prev, change.name, change.value)
            )
        except (KeyError, ValueError, StateUpdateError) as e:
            context = ExecutionContext.create(
                self.state_manager.get_state(), change.name, change.value, execution_id
            )
            failure: Exception = e
            if not isinstance(e, FormRulesError):
                failure = StateUpdateError(f"Cannot write field '{change.name}': {e}")
            self._fail(failure, context, errors)
            return self._finish(change, execution_id, executed, skipped, errors, touched=[])

        context = ExecutionContext.create(state, change.name, change.value, execution_id)
        touched = [change.name]

        rule_names = self.trigger_resolver.resolve(change.name, change.value, state, context)
        if rule_names:
            logger.debug(f"[execution {execution_id}] '{change.name}' -> {rule_names}")
            report = await self.engine.execute_all(rule_names, context)
            self._collect(report, executed, skipped, errors, touched)

            if self.config.max_cascade_depth > 0 and report.changed_fields:
                fired = {(schema_path(touched[0]), name) for name in rule_names}
                await self._cascade(
                    report.changed_fields, context, fired, executed, skipped, errors, touched
                )

        return self._finish(change, execution_id, executed, skipped, errors, touched)

    async def _cascade(
        self,
        changed_fields: list[str],
        context: ExecutionContext,
        fired: set[tuple[str, str]],
        executed: list[str],
        skipped: list[str],
        errors: list[Exception],
        touched: list[str],
    ) -> None:
        """
        Re-resolve triggers for fields changed by rules, hop by hop.

        A (field, rule) pair fires at most once per cycle, which breaks
        cycles; rules still pending when the depth limit is reached are
        reported as CascadeDepthExceededError.
        """
        max_depth = self.config.max_cascade_depth
        pending = list(changed_fields)
        depth = 0

        while pending:
            hop_state = self.state_manager.get_state()
            batch: list[str] = []
            pairs: list[tuple[str, str]] = []
            for changed in pending:
                value = get_path(hop_state, changed, None)
                for name in self.trigger_resolver.resolve(changed, value, hop_state):
                    pair = (schema_path(changed), name)
                    if pair in fired:
                        continue
                    pairs.append(pair)
                    if name not in batch:
                        batch.append(name)
            if not batch:
                return

            if depth >= max_depth:
                self._fail(
                    CascadeDepthExceededError(max_depth, batch, context.execution_id),
                    context,
                    errors,
                )
                return

            depth += 1
            fired.update(pairs)
            logger.debug(f"[execution {context.execution_id}] cascade hop {depth}: {batch}")
            hop_context = context.with_state(hop_state).with_depth(depth)
            report = await self.engine.execute_all(batch, hop_context)
            self._collect(report, executed, skipped, errors, touched)
            pending = report.changed_fields

    def _collect(
        self,
        report: ExecutionReport,
        executed: list[str],
        skipped: list[str],
        errors: list[Exception],
        touched: list[str],
    ) -> None:
        executed.extend(report.executed)
        skipped.extend(report.skipped)
        errors.extend(report.errors)
        touched.extend(name for name in report.changed_fields if name not in touched)

    def _finish(
        self,
        change: ChangeEvent,
        execution_id: int,
        executed: list[str],
        skipped: list[str],
        errors: list[Exception],
        touched: list[str],
    ) -> ChangeResult:
        state = self.state_manager.get_state()
        if self.config.validate_on_change and touched:
            self._revalidate(state, touched)

        result = ChangeResult(
            execution_id=execution_id,
            changed_field=change.name,
            value=change.value,
            state=state,
            executed_rules=executed,
            skipped_rules=skipped,
            attributes=self.overlay.resolve_all(self.schema, state),
            field_errors=dict(self._field_errors),
            errors=errors,
        )
        if errors and self.config.strict:
            raise errors[0]
        return result

    # =========================================================================
    # Error channel
    # =========================================================================

    def _notify_error(self, error: Exception, context: ExecutionContext) -> None:
        """Forward an engine error to the on_error callback (engine already logged it)."""
        if self.on_error is None:
            return
        try:
            self.on_error(error, context)
        except Exception as e:
            logger.error(f"on_error callback failed: {e}", exc_info=True)

    def _fail(self, error: Exception, context: ExecutionContext, errors: list[Exception]) -> None:
        errors.append(error)
        logger.warning(f"[execution {context.execution_id}] {type(error).__name__}: {error}")
        self._notify_error(error, context)

    # =========================================================================
    # Direct operations
    # =========================================================================

    async def set_value(self, name: str, value: Any) -> ChangeResult:
        """Shortcut for handle_change(ChangeEvent(name, value))."""
        return await self.handle_change(ChangeEvent(name, value))

    async def execute_rule(self, name: str) -> ExecutionReport:
        """
        Execute one rule outside a change cycle.

        Raises:
            RuleNotFoundError: If the rule is not registered
        """
        await self.start()
        context = ExecutionContext.create(
            self.state_manager.get_state(), execution_id=next(self._execution_ids)
        )
        return await self.engine.execute_rule(name, context)

    def register_rule(self, rule: RuleDefinition | Mapping[str, Any]) -> RuleDefinition:
        return self.registry.register(rule)

    def undo(self) -> bool:
        return self.state_manager.undo()

    def redo(self) -> bool:
        return self.state_manager.redo()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.state_manager.subscribe(listener)

    # =========================================================================
    # Reads
    # =========================================================================

    @property
    def state(self) -> FormState:
        return self.state_manager.get_state()

    @property
    def field_errors(self) -> dict[str, str]:
        return dict(self._field_errors)

    def attributes(self, name: str) -> dict[str, Any]:
        """
        Effective attributes of a field: static < conditions < rule overlay.

        Raises:
            KeyError: If the field is not part of the schema
        """
        path = self.schema.resolve_path(name)
        definition = self.schema.find_field(name) if path is not None else None
        if path is None or definition is None:
            raise KeyError(f"Field '{name}' not found in form schema")
        return self.overlay.resolve(definition, path, self.state_manager.get_state())

    def all_attributes(self) -> dict[str, dict[str, Any]]:
        return self.overlay.resolve_all(self.schema, self.state_manager.get_state())

    def validate(self) -> dict[str, str]:
        """Validate the whole form and replace the stored field errors."""
        state = self.state_manager.get_state()
        self._field_errors = validate_form(self.schema, state, self._attributes_for(state))
        return dict(self._field_errors)

    def _attributes_for(
        self, state: FormState
    ) -> Callable[[FieldDefinition, str], dict[str, Any]]:
        def attributes_for(definition: FieldDefinition, path: str) -> dict[str, Any]:
            return self.overlay.resolve(definition, path, state)

        return attributes_for

    def _revalidate(self, state: FormState, touched: list[str]) -> None:
        """Refresh stored errors for touched fields (and their children)."""
        current = validate_form(self.schema, state, self._attributes_for(state))

        def under(path: str) -> bool:
            return any(path == t or path.startswith(f"{t}.") for t in touched)

        errors = {path: msg for path, msg in self._field_errors.items() if not under(path)}
        errors.update({path: msg for path, msg in current.items() if under(path)})
        self._field_errors = errors

    def __repr__(self) -> str:
        name = self.schema.name or "<unnamed>"
        return f"FormHandler(form={name!r}, rules={len(self.registry)})"


def _coerce_schema(schema: FormSchema | Mapping[str, Any]) -> FormSchema:
    if isinstance(schema, FormSchema):
        return schema
    try:
        return FormSchema.model_validate(schema)
    except ValidationError as e:
        messages = [
            f"{'.'.join(str(loc) for loc in err['loc']) or '<form>'}: {err['msg']}"
            for err in e.errors()
        ]
        raise SchemaValidationError(f"Invalid form schema:\n{e}", errors=messages) from e


def create_form(
    schema: FormSchema | Mapping[str, Any] | str | Path,
    initial_state: Mapping[str, Any] | None = None,
    **kwargs: Any,
) -> FormHandler:
    """
    Create a form handler from a schema object, mapping or document path.

    Raises:
        SchemaValidationError: If the schema cannot be loaded or is invalid
    """
    if isinstance(schema, (str, Path)):
        result = load_form_from_file(schema)
        if not result.is_success:
            raise SchemaValidationError(result.error or "Failed to load form", source=str(schema))
        schema = result.unwrap()
    return FormHandler(schema, initial_state, **kwargs)


__all__ = ["ChangeEvent", "ChangeResult", "FormHandler", "create_form"]
