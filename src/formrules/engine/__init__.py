"""Form rule engine core components.

Key Components:

- FormSchema: Pydantic v2 schema for form documents (fields, triggers, rules)
- Condition evaluator: total, fail-closed predicates over field values
- ExpressionResolver: Jinja2 sandbox for `{{ }}` effect operands
- Effect operators: pure (effect, state) -> partial update functions
- RuleRegistry: name -> rule mapping with validation
- TriggerResolver: field change -> matching rule names
- RuleExecutionEngine: single-flight FIFO queue executing rule batches
- StateManager: sole writer of form state, subscribers, bounded undo/redo
- AttributeOverlay: per-field attribute patches produced by rules
- ExecutionContext: read-only snapshot for one change cycle
- LoadResult: Error monad for loader/registry safe file operations

Architecture:
- One change cycle flows in one direction: raw commit -> trigger resolution
  -> queued rule batch -> per-rule commit -> subscriber notification
- Effects never mutate state; StateManager merges their partial updates
- Errors inside rules are reported, never propagated through the queue
- Legacy field modifiers compile to rules + triggers at load time
"""

from .attributes import AttributeOverlay
from .conditions import ConditionOperator, evaluate, evaluate_conditions, normalize_operator
from .effects import EffectOutcome, apply_effect, resolve_operand
from .exceptions import (
    CascadeDepthExceededError,
    ExpressionError,
    FormRulesError,
    RuleExecutionError,
    RuleNotFoundError,
    RuleValidationError,
    SchemaValidationError,
    StateUpdateError,
)
from .execution_context import ExecutionContext
from .expressions import ExpressionResolver, to_number
from .load_result import LoadResult, LoadStatus
from .loader import (
    discover_forms,
    load_form_from_file,
    load_form_from_yaml,
    load_rules_from_file,
    load_rules_from_yaml,
)
from .registry import RuleRegistry
from .rule_engine import EngineStatus, ExecutionReport, RuleExecutionEngine
from .schema import (
    ArithmeticEffect,
    ConcatEffect,
    Condition,
    EffectDefinition,
    FieldConditions,
    FieldDefinition,
    FormSchema,
    LegacyModifier,
    ReplaceEffect,
    RuleDefinition,
    SourceField,
    TriggerDefinition,
)
from .state import StateManager
from .triggers import TriggerResolver, resolve_triggers
from .validation import validate_field, validate_form

__all__ = [
    # Schema
    "FormSchema",
    "FieldDefinition",
    "FieldConditions",
    "Condition",
    "TriggerDefinition",
    "RuleDefinition",
    "EffectDefinition",
    "ArithmeticEffect",
    "ReplaceEffect",
    "ConcatEffect",
    "SourceField",
    "LegacyModifier",
    # Loading
    "LoadResult",
    "LoadStatus",
    "load_form_from_file",
    "load_form_from_yaml",
    "load_rules_from_file",
    "load_rules_from_yaml",
    "discover_forms",
    # Evaluation
    "ConditionOperator",
    "evaluate",
    "evaluate_conditions",
    "normalize_operator",
    "ExpressionResolver",
    "to_number",
    "EffectOutcome",
    "apply_effect",
    "resolve_operand",
    # Execution
    "ExecutionContext",
    "RuleRegistry",
    "TriggerResolver",
    "resolve_triggers",
    "RuleExecutionEngine",
    "EngineStatus",
    "ExecutionReport",
    "StateManager",
    "AttributeOverlay",
    "validate_field",
    "validate_form",
    # Errors
    "FormRulesError",
    "SchemaValidationError",
    "RuleValidationError",
    "RuleNotFoundError",
    "RuleExecutionError",
    "ExpressionError",
    "CascadeDepthExceededError",
    "StateUpdateError",
]
