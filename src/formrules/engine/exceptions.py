"""Form rule engine exceptions.

Hierarchy:
    FormRulesError
    ├── SchemaValidationError (ValueError)
    │   └── RuleValidationError
    ├── RuleNotFoundError (LookupError)
    ├── RuleExecutionError
    │   ├── ExpressionError
    │   └── CascadeDepthExceededError
    └── StateUpdateError
"""

from __future__ import annotations

from typing import Any


class FormRulesError(Exception):
    """Base class for every error raised by the form rule engine."""


class SchemaValidationError(FormRulesError, ValueError):
    """
    Structurally invalid form schema, field definition or rule document.

    Attributes:
        errors: Individual validation messages (one per failing location)
        source: Where the document came from (file path or "<string>")
    """

    def __init__(self, message: str, errors: list[str] | None = None, source: str = "<string>"):
        self.errors = errors or []
        self.source = source
        super().__init__(message)

    def __repr__(self) -> str:
        """Developer-friendly representation."""
        return f"{type(self).__name__}(source={self.source!r}, errors={len(self.errors)})"


class RuleValidationError(SchemaValidationError):
    """Rule definition rejected at registration (empty name, no effects, bad effect)."""

    def __init__(self, rule_name: str | None, message: str, errors: list[str] | None = None):
        self.rule_name = rule_name
        label = f"'{rule_name}'" if rule_name else "<unnamed>"
        super().__init__(f"Invalid rule {label}: {message}", errors=errors)

    def __repr__(self) -> str:
        """Developer-friendly representation."""
        return f"RuleValidationError(rule={self.rule_name!r}, errors={len(self.errors)})"


class RuleNotFoundError(FormRulesError, LookupError):
    """Requested rule name is not registered."""

    def __init__(self, rule_name: str, available: list[str] | None = None):
        self.rule_name = rule_name
        self.available = available or []
        message = f"Rule '{rule_name}' not found in registry"
        if self.available:
            message += f". Available: {', '.join(sorted(self.available))}"
        super().__init__(message)

    def __repr__(self) -> str:
        """Developer-friendly representation."""
        return f"RuleNotFoundError(rule={self.rule_name!r})"


class RuleExecutionError(FormRulesError):
    """
    A rule or one of its effects failed to execute.

    Reported through the handler's error channel; never aborts sibling
    effects, sibling rules or the execution queue.

    Attributes:
        rule_name: Rule being executed (None outside a rule)
        effect_index: Position of the failing effect in the rule (None for rule-level errors)
        target_field: Field the failing effect targeted
        execution_id: Change cycle the failure belongs to
    """

    def __init__(
        self,
        message: str,
        *,
        rule_name: str | None = None,
        effect_index: int | None = None,
        target_field: str | None = None,
        execution_id: int | None = None,
    ):
        self.rule_name = rule_name
        self.effect_index = effect_index
        self.target_field = target_field
        self.execution_id = execution_id
        super().__init__(message)

    def with_context(self, **details: Any) -> RuleExecutionError:
        """Fill in missing location details and return self."""
        for key, value in details.items():
            if getattr(self, key, None) is None:
                setattr(self, key, value)
        return self

    def __str__(self) -> str:
        message = super().__str__()
        location = []
        if self.rule_name is not None:
            location.append(f"rule={self.rule_name}")
        if self.effect_index is not None:
            location.append(f"effect={self.effect_index}")
        if self.target_field is not None:
            location.append(f"target={self.target_field}")
        if location:
            return f"{message} ({', '.join(location)})"
        return message

    def __repr__(self) -> str:
        """Developer-friendly representation."""
        return (
            f"{type(self).__name__}(rule={self.rule_name!r}, effect={self.effect_index}, "
            f"target={self.target_field!r})"
        )


class ExpressionError(RuleExecutionError):
    """A `{{ }}` operand expression failed to compile or evaluate."""

    def __init__(self, expression: str, reason: str, available: list[str] | None = None):
        self.expression = expression
        self.reason = reason
        self.available = available or []
        message = f"Failed to evaluate expression: {expression}\nError: {reason}"
        if self.available:
            message += f"\nAvailable variables: {self.available}"
        super().__init__(message)


class CascadeDepthExceededError(RuleExecutionError):
    """
    Cascading rule execution exceeded the configured depth.

    Only raised when cascading is enabled (max_cascade_depth > 0) and rules
    are still pending after the last allowed hop. The rules that already ran
    keep their committed results.

    Attributes:
        max_depth: Configured maximum cascade depth
        pending: Rule names that were not executed
    """

    def __init__(self, max_depth: int, pending: list[str], execution_id: int | None = None):
        self.max_depth = max_depth
        self.pending = pending
        super().__init__(
            f"Cascade depth limit exceeded (limit: {max_depth}). "
            f"Pending rules: {', '.join(pending)}\n\n"
            f"This may indicate rules that keep re-triggering each other. To increase the "
            f"limit, set the FORMRULES_MAX_CASCADE_DEPTH environment variable.",
            execution_id=execution_id,
        )

    def __repr__(self) -> str:
        """Developer-friendly representation."""
        return f"CascadeDepthExceededError(limit={self.max_depth}, pending={self.pending!r})"


class StateUpdateError(FormRulesError):
    """Rejected state update: re-entrant call or malformed updater result."""
