"""formrules - declarative form rule engine.

Keeps a form state synchronized with user edits: each change is committed,
the changed field's triggers are resolved, and the matching rules run on a
single-flight queue whose results are merged back into the state.
"""

from .config import FormConfig
from .engine import (
    AttributeOverlay,
    CascadeDepthExceededError,
    Condition,
    ExecutionContext,
    ExecutionReport,
    ExpressionError,
    FieldDefinition,
    FormRulesError,
    FormSchema,
    RuleDefinition,
    RuleExecutionEngine,
    RuleExecutionError,
    RuleNotFoundError,
    RuleRegistry,
    RuleValidationError,
    SchemaValidationError,
    StateManager,
    StateUpdateError,
    TriggerDefinition,
    TriggerResolver,
    load_form_from_file,
    load_form_from_yaml,
)
from .form import ChangeEvent, ChangeResult, FormHandler, create_form

__version__ = "0.1.0"

__all__ = [
    "FormConfig",
    "FormHandler",
    "ChangeEvent",
    "ChangeResult",
    "create_form",
    "FormSchema",
    "FieldDefinition",
    "RuleDefinition",
    "TriggerDefinition",
    "Condition",
    "RuleRegistry",
    "TriggerResolver",
    "RuleExecutionEngine",
    "ExecutionReport",
    "StateManager",
    "AttributeOverlay",
    "ExecutionContext",
    "load_form_from_file",
    "load_form_from_yaml",
    "FormRulesError",
    "SchemaValidationError",
    "RuleValidationError",
    "RuleNotFoundError",
    "RuleExecutionError",
    "ExpressionError",
    "CascadeDepthExceededError",
    "StateUpdateError",
]
