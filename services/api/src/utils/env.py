"""Environment variable specs, parsing and startup validation."""

import os
from typing import Any, Callable, List, Optional, Tuple

from pydantic import BaseModel, ValidationError, create_model

from . import log

logger = log.get_logger(__name__)


class EnvVarSpec(BaseModel):
    id: str
    default: Optional[str] = None
    parse: Callable[[str], Any] = lambda x: x
    type: Tuple[Any, Any] = (str, ...)
    is_optional: bool = False
    is_secret: bool = False


def parse(var: EnvVarSpec) -> Any:
    """Read and parse a variable; unset optional variables parse to None."""
    value = os.environ.get(var.id, var.default)
    if value is None or value == "":
        if var.is_optional:
            return None
        value = var.default
    if value is None:
        return None
    return var.parse(value)


def validate(env_vars: List[EnvVarSpec]) -> bool:
    """Check every variable parses to its declared type, logging each failure."""
    fields = {}
    values = {}
    for var in env_vars:
        field_type, field_default = var.type
        if var.is_optional:
            fields[var.id] = (Optional[field_type], None)
        else:
            fields[var.id] = (field_type, field_default)
        try:
            values[var.id] = parse(var)
        except (TypeError, ValueError) as e:
            logger.error(f"Env var {var.id} could not be parsed: {e}")
            return False

    model = create_model("EnvVars", **fields)
    try:
        model(**values)
    except ValidationError as e:
        for error in e.errors():
            name = error["loc"][0] if error["loc"] else "?"
            logger.error(f"Env var {name} is invalid: {error['msg']}")
        return False
    return True
