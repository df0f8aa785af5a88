"""Test that all JSON schemas in specs/ are valid Draft 2020-12 schemas."""

import json
from pathlib import Path

import pytest
from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError
from jsonschema.validators import validator_for

SPECS_DIR = Path(__file__).parent.parent / "specs"
EXPECTED_SCHEMA_URI = "https://json-schema.org/draft/2020-12/schema"
EXPECTED_ID_PREFIX = "https://scribe-pipeline.local/specs/"


def discover_schema_files() -> list[Path]:
    """Discover all schema files in the specs directory."""
    return sorted(SPECS_DIR.glob("*.schema.json"))


@pytest.mark.parametrize(
    "schema_path",
    discover_schema_files(),
    ids=lambda p: p.name,
)
def test_schema_parses_as_draft202012(schema_path: Path) -> None:
    """Verify each contract file is a well-formed Draft 2020-12 schema.

    Checks:
    1. Loads as UTF-8 JSON
    2. Declares the Draft 2020-12 $schema URI
    3. Carries an $id naming its own file
    4. Passes check_schema() of the resolved validator
    """
    try:
        schema = json.loads(schema_path.read_text(encoding="utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        pytest.fail(f"{schema_path.name}: not readable as JSON: {e}")

    if schema.get("$schema") != EXPECTED_SCHEMA_URI:
        pytest.fail(
            f"{schema_path.name}: Expected $schema='{EXPECTED_SCHEMA_URI}', "
            f"got '{schema.get('$schema')}'"
        )

    if schema.get("$id") != EXPECTED_ID_PREFIX + schema_path.name:
        pytest.fail(f"{schema_path.name}: $id does not name the file: {schema.get('$id')}")

    validator_cls = validator_for(schema)
    if validator_cls is not Draft202012Validator:
        pytest.fail(
            f"{schema_path.name}: Expected Draft202012Validator, got {validator_cls.__name__}"
        )

    try:
        validator_cls.check_schema(schema)
    except SchemaError as e:
        pytest.fail(f"{schema_path.name}: Schema self-validation failed: {e.message}")


def test_task_contracts_present() -> None:
    """The Task Registry request and event contracts must both be published."""
    names = {p.name for p in discover_schema_files()}
    assert {"task_request.schema.json", "task_event.schema.json"} <= names
