from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Type, TypeVar

from pydantic import BaseModel, ValidationError

from invoicing.errors import ValidationFailedError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def build(model: Type[T], data: Mapping[str, Any], entity: str) -> T:
    """Validate user input; pydantic errors become a 400 for the caller."""
    try:
        return model.model_validate(dict(data))
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ValidationFailedError(
            f"Invalid {entity}: {fields}", errors=e.errors(include_url=False, include_context=False)
        ) from e


def hydrate(model: Type[T], rows: Iterable[Dict[str, Any]]) -> List[T]:
    """Stored rows -> models, skipping the ones that no longer validate."""
    out: List[T] = []
    for d in rows:
        try:
            out.append(model.model_validate(d))
        except ValidationError as e:
            logger.warning("Skipping invalid %s row %s: %s", model.__name__, d.get("id"), e.error_count())
            continue
    return out


def merge(current: BaseModel, changes: Mapping[str, Any], protected: Iterable[str] = ()) -> Dict[str, Any]:
    """Apply ``changes`` over a stored model, leaving ``protected`` keys alone."""
    payload = current.model_dump()
    skip = {"id", "owner_id", "created_at", "updated_at", *protected}
    payload.update({k: v for k, v in changes.items() if k not in skip})
    return payload
