#!/usr/bin/env python3
"""Generate schema.json from Pydantic models.

This script regenerates the form document schema file:
- schema.json - JSON Schema of a form document (fields, triggers, rules)

Usage:
    python scripts/generate_schema.py
"""

import json
from pathlib import Path

from formrules.engine.schema import FormSchema


def main() -> None:
    """Generate and save the schema file."""
    print("Generating form schema...")

    schema = FormSchema.model_json_schema(by_alias=True)

    schema_path = Path(__file__).parent.parent / "schema.json"
    with open(schema_path, "w") as f:
        json.dump(schema, f, indent=2)
        f.write("\n")

    print(f"✓ Complete schema: {schema_path}")
    print(f"  Definitions: {len(schema.get('$defs', {}))}")
    print(f"  Size: {schema_path.stat().st_size:,} bytes")


if __name__ == "__main__":
    main()
