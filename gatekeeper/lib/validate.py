"""
Schema validation for gatekeeper documents.

Three documents cross a process boundary and are checked against the
JSON schemas in gatekeeper/schemas:
- config: the merged configuration, before it is frozen
- phase: each phase history line and the phase.json marker
- report: a check run report, before it lands in reports/

Validators are built once per schema. When a document has several
problems the most relevant one is reported and the rest are counted.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import jsonschema
from jsonschema.exceptions import best_match
from jsonschema.validators import validator_for

SCHEMAS_DIR = Path(__file__).resolve().parent.parent / "schemas"
SCHEMA_NAMES = ("config", "phase", "report")


class ValidationError(Exception):
    """A document did not match its schema."""

    def __init__(self, schema_name: str, message: str, path: Optional[str] = None):
        self.schema_name = schema_name
        self.message = message
        self.path = path
        super().__init__(f"[{schema_name}] {message}" + (f" at {path}" if path else ""))


@lru_cache(maxsize=None)
def _validator(schema_name: str):
    if schema_name not in SCHEMA_NAMES:
        raise ValidationError(schema_name, f"Unknown schema (expected one of {', '.join(SCHEMA_NAMES)})")
    schema_path = SCHEMAS_DIR / f"{schema_name}.schema.json"
    schema = json.loads(schema_path.read_text())
    cls = validator_for(schema)
    cls.check_schema(schema)
    return cls(schema)


def _location(error: jsonschema.ValidationError) -> str:
    return ".".join(str(p) for p in error.absolute_path) or "(root)"


def validate(data: Any, schema_name: str) -> None:
    """
    Check data against a named schema.

    Raises:
        ValidationError: carrying the best-matching violation and its
            dotted location; other violations are counted in the message
    """
    errors = list(_validator(schema_name).iter_errors(data))
    if not errors:
        return
    primary = best_match(errors)
    message = primary.message
    if len(errors) > 1:
        message += f" (+{len(errors) - 1} more)"
    raise ValidationError(schema_name, message, _location(primary))


def validate_file(filepath: Path, schema_name: str) -> dict:
    """Read a JSON document from disk and validate it."""
    try:
        data = json.loads(filepath.read_text())
    except FileNotFoundError:
        raise ValidationError(schema_name, f"File not found: {filepath}") from None
    except json.JSONDecodeError as e:
        raise ValidationError(schema_name, f"{filepath} is not JSON: {e}") from None

    validate(data, schema_name)
    return data


def validate_before_write(data: dict, schema_name: str, filepath: Path) -> None:
    """Refuse to persist a document that would not read back cleanly."""
    try:
        validate(data, schema_name)
    except ValidationError as e:
        raise ValidationError(schema_name, f"not writing {filepath.name}: {e.message}", e.path) from None
