"""
Schema extraction for exportable record types.

A record type is a pydantic model whose fields declare their spreadsheet
column header through ``Field(title=...)``. Fields typed as another model are
embedded records: their columns are spliced in place, depth-first, so a
composite record exports as one flat row.
"""
import inspect
import logging
import types
from dataclasses import dataclass
from enum import Enum
from functools import cached_property, lru_cache
from typing import Any, Iterator, Optional, Tuple

from pydantic import BaseModel

from utils.errors import SchemaError

logger = logging.getLogger(__name__)


class FieldKind(str, Enum):
    SCALAR = "scalar"
    NESTED = "nested"


class UntaggedFieldPolicy(str, Enum):
    """What to do with a scalar field that declares no display name."""
    FIELD_NAME = "field_name"
    SKIP = "skip"


@dataclass(frozen=True)
class FieldDescriptor:
    """
    One field of a record type.

    Attributes:
        display_name: Column header (for nested fields, the declared field name)
        path: Attribute names leading from the record root to this field
        kind: Scalar leaf or embedded record
        children: Descriptors of an embedded record, empty for scalars
    """
    display_name: str
    path: Tuple[str, ...]
    kind: FieldKind = FieldKind.SCALAR
    children: Tuple["FieldDescriptor", ...] = ()

    @property
    def name(self) -> str:
        return self.path[-1]

    def leaves(self) -> Iterator["FieldDescriptor"]:
        if self.kind is FieldKind.SCALAR:
            yield self
            return
        for child in self.children:
            yield from child.leaves()


@dataclass(frozen=True)
class Schema:
    """
    Ordered field descriptors of a record type.

    ``fields`` keeps the declared tree; iterating, indexing and ``len()``
    work on the flattened scalar columns.
    """
    record_type: type
    fields: Tuple[FieldDescriptor, ...]

    @cached_property
    def columns(self) -> Tuple[FieldDescriptor, ...]:
        return tuple(leaf for field in self.fields for leaf in field.leaves())

    @cached_property
    def headers(self) -> Tuple[str, ...]:
        return tuple(column.display_name for column in self.columns)

    def __len__(self) -> int:
        return len(self.columns)

    def __iter__(self) -> Iterator[FieldDescriptor]:
        return iter(self.columns)

    def __getitem__(self, position: int) -> FieldDescriptor:
        return self.columns[position]


def is_embedded_record(annotation: Any) -> bool:
    # list[int] and friends pass isinstance(..., type) before Python 3.11
    if not inspect.isclass(annotation) or isinstance(annotation, types.GenericAlias):
        return False
    return issubclass(annotation, BaseModel)


def extract_schema(record_type: Optional[type], policy: UntaggedFieldPolicy = UntaggedFieldPolicy.FIELD_NAME) -> Schema:
    """
    Build the export schema of a record type.

    The result depends only on the type and the policy and is cached, so
    repeated calls return the same Schema object.

    Args:
        record_type: A pydantic model class
        policy: How to name fields without a declared title

    Returns:
        Schema: Flattened, declaration-ordered columns

    Raises:
        SchemaError: If the type is missing, not a model, declares a
            malformed title, embeds itself or has no exportable column
    """
    if record_type is None:
        raise SchemaError("record type is None")
    if not is_embedded_record(record_type):
        raise SchemaError(f"{record_type!r} is not a pydantic model class")
    return _extract_schema(record_type, UntaggedFieldPolicy(policy))


@lru_cache(maxsize=None)
def _extract_schema(record_type: type, policy: UntaggedFieldPolicy) -> Schema:
    fields = _describe_fields(record_type, (), policy, (record_type,))
    schema = Schema(record_type=record_type, fields=fields)
    if len(schema) == 0:
        raise SchemaError(f"{record_type.__name__} has no exportable fields")
    logger.debug(f"Extracted schema for {record_type.__name__}: {list(schema.headers)}")
    return schema


def _describe_fields(record_type: type, prefix: Tuple[str, ...], policy: UntaggedFieldPolicy, seen: Tuple[type, ...]) -> Tuple[FieldDescriptor, ...]:
    descriptors = []
    for name, info in record_type.model_fields.items():
        path = prefix + (name,)

        if is_embedded_record(info.annotation):
            nested_type = info.annotation
            if nested_type in seen:
                raise SchemaError(f"{record_type.__name__}.{name} embeds {nested_type.__name__} recursively")
            children = _describe_fields(nested_type, path, policy, seen + (nested_type,))
            descriptors.append(FieldDescriptor(name, path, FieldKind.NESTED, children))
            continue

        title = info.title
        if title is None:
            if policy is UntaggedFieldPolicy.SKIP:
                continue
            title = name
        elif not isinstance(title, str) or not title.strip():
            raise SchemaError(f"{record_type.__name__}.{name} declares a malformed display name: {title!r}")

        descriptors.append(FieldDescriptor(title, path))
    return tuple(descriptors)
