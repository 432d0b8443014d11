"""Input schemas for every mutating and lookup operation.

Each store method runs its arguments through one of these schemas before
touching storage, so a rejected request never performs a partial write.
"""

from __future__ import annotations

import uuid
from typing import Annotated, Any, TypeVar

from pydantic import AfterValidator, BaseModel, Field, StringConstraints, model_validator
from pydantic import ValidationError as PydanticValidationError

from interfold.exceptions import ValidationError

MAX_NAME_LENGTH = 200
MAX_CONTENT_LENGTH = 5000
MAX_ATOMIC_SETS = 20


def _canonical_uuid(value: str) -> str:
    try:
        return str(uuid.UUID(value))
    except ValueError:
        raise ValueError(f"Invalid id: {value!r}") from None


EntityId = Annotated[str, AfterValidator(_canonical_uuid)]
UserId = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
AtomicSetName = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=MAX_NAME_LENGTH)
]
NodeContent = Annotated[
    str, StringConstraints(strip_whitespace=True, min_length=1, max_length=MAX_CONTENT_LENGTH)
]


def _require_unique(ids: list[str], label: str) -> None:
    if len(set(ids)) != len(ids):
        raise ValueError(f"{label} must not contain duplicates")


# --- Atomic sets ---


class FindOrCreateAtomicSetInput(BaseModel):
    name: AtomicSetName
    metadata: dict[str, Any] | None = None


class AtomicSetNameInput(BaseModel):
    name: AtomicSetName


class UpdateAtomicSetMetadataInput(BaseModel):
    id: EntityId
    metadata: dict[str, Any]


# --- Intersections ---


class CreateIntersectionInput(BaseModel):
    atomic_set_ids: list[EntityId] = Field(min_length=1, max_length=MAX_ATOMIC_SETS)
    created_via_path: list[EntityId] = Field(min_length=1)
    content: str | None = Field(default=None, max_length=MAX_CONTENT_LENGTH)

    @model_validator(mode="after")
    def _check_path_against_members(self) -> CreateIntersectionInput:
        _require_unique(self.atomic_set_ids, "atomic_set_ids")
        _require_unique(self.created_via_path, "created_via_path")
        stray = [i for i in self.created_via_path if i not in set(self.atomic_set_ids)]
        if stray:
            raise ValueError(f"created_via_path references ids outside atomic_set_ids: {stray}")
        return self


class UpdateIntersectionContentInput(BaseModel):
    id: EntityId
    content: Annotated[str, StringConstraints(min_length=1, max_length=MAX_CONTENT_LENGTH)]


class FindByAtomicSetsInput(BaseModel):
    atomic_set_ids: list[EntityId] = Field(min_length=1)
    exact_match: bool = False


# --- Outline nodes ---


class CreateNodeInput(BaseModel):
    parent_id: EntityId | None = None
    content: NodeContent
    order_index: int | None = Field(default=None, ge=0)
    intersection_id: EntityId | None = None


class UpdateNodeContentInput(BaseModel):
    id: EntityId
    content: NodeContent


class MoveNodeInput(BaseModel):
    id: EntityId
    new_parent_id: EntityId | None = None
    new_order_index: int = Field(ge=0)


class ReorderNodesInput(BaseModel):
    parent_id: EntityId | None = None
    node_ids: list[EntityId] = Field(min_length=1)

    @model_validator(mode="after")
    def _check_unique(self) -> ReorderNodesInput:
        _require_unique(self.node_ids, "node_ids")
        return self


class LinkIntersectionInput(BaseModel):
    id: EntityId
    intersection_id: EntityId | None = None


class IdInput(BaseModel):
    id: EntityId


class UserInput(BaseModel):
    user_id: UserId


M = TypeVar("M", bound=BaseModel)


def parse(schema: type[M], **data: Any) -> M:
    """Validate keyword arguments against ``schema``.

    Raises:
        ValidationError: With the first offending field and a readable message.
    """
    try:
        return schema.model_validate(data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or None
        message = first["msg"].removeprefix("Value error, ")
        raise ValidationError(
            f"{field}: {message}" if field else message, field=field
        ) from exc


def parse_id(value: str) -> str:
    """Validate a single entity id and return its canonical form."""
    return parse(IdInput, id=value).id


def parse_user(value: str) -> str:
    """Validate a caller identity and return it trimmed."""
    return parse(UserInput, user_id=value).user_id
