"""
Rule registry for named rule definitions.

Features:
- Register rules with structural validation
- Last-write-wins replacement of existing names (logged)
- Retrieve rules by name with a clear not-found error
- Load rules from YAML/JSON files in a directory
- Source tracking for each rule loaded from disk
"""

import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .exceptions import RuleNotFoundError, RuleValidationError
from .load_result import LoadResult
from .loader import DOCUMENT_PATTERNS, load_rules_from_file
from .schema import RuleDefinition

logger = logging.getLogger(__name__)


class RuleRegistry:
    """
    Name -> rule mapping owned by one form handler.

    Registration validates the rule (non-empty name, at least one effect,
    structurally valid effects). Registering an existing name replaces the
    previous rule.

    Example:
        registry = RuleRegistry()
        registry.register(
            {
                "name": "double",
                "effects": [{"type": "multiply", "targetField": "amount", "value": 2}],
            }
        )
        rule = registry.get("double")
    """

    def __init__(self, rules: Iterable[RuleDefinition | Mapping[str, Any]] | None = None) -> None:
        self._rules: dict[str, RuleDefinition] = {}
        self._rule_sources: dict[str, Path] = {}
        if rules is not None:
            self.register_many(rules)

    def register(
        self,
        rule: RuleDefinition | Mapping[str, Any],
        source: Path | None = None,
    ) -> RuleDefinition:
        """
        Validate and register a rule.

        Args:
            rule: RuleDefinition or an equivalent mapping (camelCase or snake_case keys)
            source: Optional file the rule was loaded from

        Returns:
            The registered RuleDefinition

        Raises:
            RuleValidationError: If the rule is structurally invalid
        """
        if not isinstance(rule, RuleDefinition):
            name = rule.get("name") if isinstance(rule, Mapping) else None
            try:
                rule = RuleDefinition.model_validate(rule)
            except ValidationError as e:
                messages = [
                    f"{'.'.join(str(loc) for loc in err['loc']) or '<rule>'}: {err['msg']}"
                    for err in e.errors()
                ]
                raise RuleValidationError(name, "; ".join(messages), errors=messages) from e

        if rule.name in self._rules:
            logger.info(f"Replacing rule: {rule.name}")
        else:
            logger.info(f"Registered rule: {rule.name}")

        self._rules[rule.name] = rule
        if source is not None:
            self._rule_sources[rule.name] = source
        else:
            self._rule_sources.pop(rule.name, None)
        return rule

    def register_many(self, rules: Iterable[RuleDefinition | Mapping[str, Any]]) -> None:
        for rule in rules:
            self.register(rule)

    def unregister(self, name: str) -> None:
        """
        Unregister a rule by name.

        Raises:
            RuleNotFoundError: If rule not found
        """
        if name not in self._rules:
            raise RuleNotFoundError(name, list(self._rules))

        del self._rules[name]
        self._rule_sources.pop(name, None)
        logger.info(f"Unregistered rule: {name}")

    def get(self, name: str) -> RuleDefinition:
        """
        Get rule by name.

        Raises:
            RuleNotFoundError: If rule not found
        """
        if name not in self._rules:
            raise RuleNotFoundError(name, list(self._rules))
        return self._rules[name]

    def has(self, name: str) -> bool:
        return name in self._rules

    def get_source(self, name: str) -> Path | None:
        return self._rule_sources.get(name)

    def list_all(self) -> list[RuleDefinition]:
        return list(self._rules.values())

    def list_names(self) -> list[str]:
        """Sorted list of registered rule names."""
        return sorted(self._rules)

    def clear(self) -> None:
        """Clear all registered rules (useful for testing)."""
        self._rules.clear()
        self._rule_sources.clear()
        logger.info("Cleared all rules from registry")

    def load_from_directory(self, directory: str | Path) -> LoadResult[int]:
        """
        Load all rule files (*.yaml, *.yml, *.json) from a directory.

        Files that fail to load are skipped with a warning; their errors are
        listed in `metadata["errors"]`.

        Returns:
            LoadResult.success(count) with the number of rules registered
            LoadResult.failure(error) if the directory is missing
        """
        dir_path = Path(directory)

        if not dir_path.exists():
            return LoadResult.failure(f"Directory not found: {directory}")

        if not dir_path.is_dir():
            return LoadResult.failure(f"Path is not a directory: {directory}")

        count = 0
        errors: list[str] = []
        for pattern in DOCUMENT_PATTERNS:
            for rule_file in sorted(dir_path.glob(pattern)):
                result = load_rules_from_file(rule_file)
                if not result.is_success or result.value is None:
                    errors.append(f"{rule_file.name}: {result.error}")
                    continue
                for rule in result.value:
                    self.register(rule, source=rule_file)
                    count += 1

        if errors:
            logger.warning(f"{len(errors)} rule file(s) failed to load:")
            for error in errors:
                logger.warning(f"  - {error}")

        logger.info(f"Loaded {count} rule(s) from {dir_path}")
        return LoadResult.success(count, metadata={"errors": errors})

    def __len__(self) -> int:
        """Return number of registered rules."""
        return len(self._rules)

    def __contains__(self, name: object) -> bool:
        """Check if rule exists using 'in' operator."""
        return name in self._rules

    def __repr__(self) -> str:
        """String representation of registry."""
        return f"RuleRegistry(rules={len(self._rules)})"
