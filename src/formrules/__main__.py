"""Validate form documents using the same loading path as the library.

Usage:
    python -m formrules <form_file_or_directory>
    python -m formrules forms/order.yaml
    python -m formrules forms/

Each document is loaded with load_form_from_file(), its rules are registered
into a fresh RuleRegistry, and a summary of fields, rules and triggers is
printed. Exit status is 1 if any document fails.
"""

import logging
import sys
from pathlib import Path

from .config import get_log_level
from .engine.loader import DOCUMENT_PATTERNS, load_form_from_file
from .engine.registry import RuleRegistry

logger = logging.getLogger(__name__)


def validate_form_file(file_path: Path) -> tuple[bool, str]:
    """Validate a single form document.

    Returns:
        Tuple of (success, message)
    """
    if file_path.suffix not in {".yaml", ".yml", ".json"}:
        return False, f"Not a YAML/JSON file: {file_path}"

    result = load_form_from_file(file_path)
    if not result.is_success:
        return False, f"Load failed: {result.error}"

    schema = result.unwrap()
    registry = RuleRegistry(schema.rules)
    triggers = sum(len(field.triggers) for _, field in schema.iter_fields())
    unknown = sorted(
        {
            trigger.rule_name
            for _, field in schema.iter_fields()
            for trigger in field.triggers
            if trigger.rule_name not in registry
        }
    )

    name = schema.name or file_path.stem
    message = (
        f"✓ Valid form: {name} "
        f"({len(list(schema.iter_fields()))} fields, {len(registry)} rules, {triggers} triggers)"
    )
    if unknown:
        message += f"\n  ! Triggers reference unregistered rules: {', '.join(unknown)}"
    return True, message


def validate_directory(dir_path: Path) -> dict[str, tuple[bool, str]]:
    """Validate every form document under a directory (recursive)."""
    documents = sorted(
        document for pattern in DOCUMENT_PATTERNS for document in dir_path.glob(f"**/{pattern}")
    )
    if not documents:
        return {"error": (False, f"No form documents found in: {dir_path}")}
    return {str(document): validate_form_file(document) for document in documents}


def main() -> None:
    logging.basicConfig(
        level=get_log_level(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)

    target_path = Path(sys.argv[1])

    print("Form Validation Tool")
    print("=" * 80)

    if target_path.is_file():
        print(f"Validating file: {target_path}")
        print("-" * 80)
        results = {str(target_path): validate_form_file(target_path)}
    elif target_path.is_dir():
        print(f"Validating directory: {target_path}")
        print("-" * 80)
        results = validate_directory(target_path)
    else:
        print(f"Error: Path not found: {target_path}")
        sys.exit(1)

    success_count = 0
    failure_count = 0
    for file_path, (success, message) in results.items():
        print(f"\n{file_path}")
        print(f"  {message}")
        if success:
            success_count += 1
        else:
            failure_count += 1

    print(f"\n{'=' * 80}")
    print(f"Summary: {success_count} valid, {failure_count} failed")

    if failure_count > 0:
        sys.exit(1)


if __name__ == "__main__":
    main()
