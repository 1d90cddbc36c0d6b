"""Request validation against the JSON schemas shipped in ``bidgate/schemas``."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

from jsonschema import Draft202012Validator


class RequestValidationError(ValueError):
    def __init__(self, schema_name: str, problems: list[str]) -> None:
        super().__init__(f"{schema_name}: {'; '.join(problems)}")
        self.schema_name = schema_name
        self.problems = problems


def _describe(error) -> str:
    location = ".".join(str(part) for part in error.absolute_path)
    return f"{location}: {error.message}" if location else error.message


class SchemaRegistry:
    def __init__(self, schema_dir: Path) -> None:
        self._schema_dir = schema_dir
        self._validators: dict[str, Draft202012Validator] = {}
        for schema_path in sorted(schema_dir.glob("*.json")):
            data = json.loads(schema_path.read_text())
            Draft202012Validator.check_schema(data)
            self._validators[schema_path.stem] = Draft202012Validator(
                data,
                format_checker=Draft202012Validator.FORMAT_CHECKER,
            )

    def names(self) -> list[str]:
        return sorted(self._validators)

    def validate(self, schema_name: str, payload: Any) -> None:
        """Raise ``RequestValidationError`` listing every problem in ``payload``."""
        try:
            validator = self._validators[schema_name]
        except KeyError as exc:
            raise ValueError(f"unknown schema {schema_name}") from exc
        problems = sorted(_describe(error) for error in validator.iter_errors(payload))
        if problems:
            raise RequestValidationError(schema_name, problems)


@lru_cache(maxsize=1)
def get_schema_registry() -> SchemaRegistry:
    schema_dir = Path(__file__).resolve().parent.parent / "schemas"
    return SchemaRegistry(schema_dir)
