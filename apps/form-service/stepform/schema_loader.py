import json
import logging
from pathlib import Path
from typing import Any, Mapping, Union

from pydantic import ValidationError

from stepform.models import FormSchema

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA_PATH = Path(__file__).resolve().parent / "data" / "schema.json"


class SchemaError(ValueError):
    """The form schema is missing or malformed; nothing can be rendered."""


def parse_schema(payload: Mapping[str, Any]) -> FormSchema:
    if not isinstance(payload, Mapping):
        raise SchemaError("Schema document must be a JSON object")
    try:
        return FormSchema.model_validate(payload)
    except ValidationError as exc:
        raise SchemaError(f"Invalid form schema: {exc}") from exc


def load_schema(path: Union[str, Path, None] = None) -> FormSchema:
    schema_path = Path(path) if path else DEFAULT_SCHEMA_PATH
    try:
        raw = schema_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SchemaError(f"Unable to read schema file {schema_path}") from exc

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise SchemaError(f"Schema file {schema_path} is not valid JSON") from exc

    schema = parse_schema(payload)
    logger.info(
        "Loaded form schema from %s with %d steps (%d editable)",
        schema_path,
        len(schema.steps),
        len(schema.editable_steps),
    )
    return schema
