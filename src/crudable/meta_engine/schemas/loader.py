from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import pydantic
import yaml

from crudable.config import get_settings
from crudable.exceptions import ConfigurationError
from crudable.meta_engine.schemas.definitions import SchemaDef

logger = logging.getLogger(__name__)

_schema: Optional[SchemaDef] = None


def parse_schema(document: Dict[str, Any]) -> SchemaDef:
    """Validate a raw schema mapping into a ``SchemaDef``."""
    if not isinstance(document, dict):
        raise ConfigurationError("Schema document must be a mapping")
    try:
        return SchemaDef.model_validate(document)
    except pydantic.ValidationError as exc:
        raise ConfigurationError(
            f"Invalid schema document: {exc.error_count()} error(s)",
            errors=[
                {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                for err in exc.errors()
            ],
        ) from exc


def read_schema_file(path: Union[str, Path]) -> SchemaDef:
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Schema file not found: {path}", config_key="SCHEMA_PATH")

    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            document = json.loads(text)
        else:
            document = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Cannot parse schema file {path}: {exc}") from exc

    schema = parse_schema(document or {})
    logger.info(
        "Loaded schema %s: %d roles, %d tables", path, len(schema.roles), len(schema.tables)
    )
    return schema


def load_schema(source: Union[str, Path, Dict[str, Any], SchemaDef, None] = None) -> SchemaDef:
    """
    Load the process-wide schema once.

    ``source`` may be a path, an already-parsed mapping or a ``SchemaDef``;
    by default ``Settings.SCHEMA_PATH`` is read.
    """
    global _schema
    if isinstance(source, SchemaDef):
        schema = source
    elif isinstance(source, dict):
        schema = parse_schema(source)
    else:
        schema = read_schema_file(source or get_settings().SCHEMA_PATH)
    _schema = schema
    return schema


def get_schema() -> SchemaDef:
    if _schema is None:
        return load_schema()
    return _schema


def reset_schema() -> None:
    global _schema
    _schema = None
