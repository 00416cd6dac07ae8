"""
YAML/JSON loader for form schemas and rule files.

This module provides utilities for loading and validating form documents
using the FormSchema Pydantic models.

Features:
- Load forms from YAML or JSON files or strings (JSON is parsed as YAML)
- Load standalone rule files (a list of rules or a mapping with a `rules` key)
- Comprehensive validation with clear error messages
- Directory discovery that skips invalid documents with warnings
"""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import TypeAdapter, ValidationError

from .load_result import LoadResult
from .schema import FormSchema, RuleDefinition

logger = logging.getLogger(__name__)

DOCUMENT_PATTERNS = ("*.yaml", "*.yml", "*.json")

_RULES_ADAPTER = TypeAdapter(list[RuleDefinition])


def _read_document(file_path: str | Path, kind: str) -> LoadResult[str]:
    path = Path(file_path)

    if not path.exists():
        return LoadResult.failure(f"{kind} file not found: {file_path}")

    if not path.is_file():
        return LoadResult.failure(f"Path is not a file: {file_path}")

    try:
        with open(path, encoding="utf-8") as f:
            return LoadResult.success(f.read())
    except OSError as e:
        return LoadResult.failure(f"Failed to read file '{file_path}': {e}")


def _parse_document(content: str, source: str) -> LoadResult[Any]:
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        return LoadResult.failure(f"Invalid YAML syntax in {source}: {e}")
    if data is None:
        return LoadResult.failure(f"Document {source} is empty")
    return LoadResult.success(data)


def load_form_from_file(file_path: str | Path) -> LoadResult[FormSchema]:
    """
    Load and validate a form schema from a YAML or JSON file.

    Args:
        file_path: Path to the form document

    Returns:
        LoadResult.success(FormSchema) if valid
        LoadResult.failure(error_message) with validation errors

    Example:
        result = load_form_from_file("forms/order.yaml")
        if result.is_success:
            form = create_form(result.value)
        else:
            print(f"Failed to load: {result.error}")
    """
    content = _read_document(file_path, "Form")
    if not content.is_success:
        return LoadResult.failure(content.error or "unknown read error")
    return load_form_from_yaml(content.unwrap(), source=str(file_path))


def load_form_from_yaml(yaml_content: str, source: str = "<string>") -> LoadResult[FormSchema]:
    """
    Load and validate a form schema from a YAML (or JSON) string.

    Example:
        yaml_str = '''
        name: order
        fields:
          - name: quantity
            triggers: [calcTotal]
          - name: price
          - name: total
        rules:
          - name: calcTotal
            effects:
              - type: replace
                targetField: total
                value: "{{ quantity * price }}"
        '''
        result = load_form_from_yaml(yaml_str)
    """
    parsed = _parse_document(yaml_content, source)
    if not parsed.is_success:
        return LoadResult.failure(parsed.error or "unknown parse error")

    data = parsed.value
    if not isinstance(data, dict):
        return LoadResult.failure(
            f"Form {source} must be a YAML dictionary, got {type(data).__name__}"
        )

    schema_result = FormSchema.validate_yaml_dict(data)
    if not schema_result.is_success:
        return LoadResult.failure(f"Form validation failed in {source}:\n{schema_result.error}")

    return LoadResult.success(schema_result.unwrap(), metadata={"source": source})


def load_rules_from_file(file_path: str | Path) -> LoadResult[list[RuleDefinition]]:
    """Load and validate a standalone rule file."""
    content = _read_document(file_path, "Rule")
    if not content.is_success:
        return LoadResult.failure(content.error or "unknown read error")
    return load_rules_from_yaml(content.unwrap(), source=str(file_path))


def load_rules_from_yaml(
    yaml_content: str, source: str = "<string>"
) -> LoadResult[list[RuleDefinition]]:
    """
    Load and validate rules from a YAML (or JSON) string.

    Accepts either a top-level list of rules or a mapping with a `rules` list.
    """
    parsed = _parse_document(yaml_content, source)
    if not parsed.is_success:
        return LoadResult.failure(parsed.error or "unknown parse error")

    data = parsed.value
    if isinstance(data, dict):
        data = data.get("rules")
    if not isinstance(data, list):
        return LoadResult.failure(f"Rule file {source} must contain a list of rules")

    try:
        rules = _RULES_ADAPTER.validate_python(data)
    except ValidationError as e:
        return LoadResult.failure(f"Rule validation failed in {source}:\n{e}")

    return LoadResult.success(rules, metadata={"source": source})


def discover_forms(directory: str | Path) -> LoadResult[list[FormSchema]]:
    """
    Discover and load all form documents in a directory.

    Searches for *.yaml, *.yml and *.json files. Invalid documents are
    skipped with warnings; their errors are listed in `metadata["errors"]`.
    """
    dir_path = Path(directory)

    if not dir_path.exists():
        return LoadResult.failure(f"Directory not found: {directory}")

    if not dir_path.is_dir():
        return LoadResult.failure(f"Path is not a directory: {directory}")

    forms: list[FormSchema] = []
    errors: list[str] = []

    for pattern in DOCUMENT_PATTERNS:
        for document in sorted(dir_path.glob(pattern)):
            result = load_form_from_file(document)
            if result.is_success and result.value is not None:
                forms.append(result.value)
            else:
                errors.append(f"{document.name}: {result.error}")

    if errors:
        logger.warning(f"{len(errors)} form(s) failed to load:")
        for error in errors:
            logger.warning(f"  - {error}")

    return LoadResult.success(forms, metadata={"errors": errors})
