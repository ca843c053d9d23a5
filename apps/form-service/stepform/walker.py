import logging
from collections.abc import Mapping
from dataclasses import dataclass, field as dataclass_field
from typing import Dict, Iterable, List, Optional

from stepform.dependencies import is_active
from stepform.models import CHOICE_TYPES, FieldSchema, FieldValue, RenderedField
from stepform.options import has_exhausted_options, options_for
from stepform.state import FormState, is_blank

logger = logging.getLogger(__name__)


def field_path(prefix: str, key: str) -> str:
    return f"{prefix}.{key}" if prefix else key


def parent_path(path: str) -> str:
    return path.rpartition(".")[0]


class FieldVisitor:
    """Strategy driven by :func:`walk`; subclasses override what they need."""

    def enter_group(self, field: FieldSchema, path: str) -> None:
        pass

    def leave_group(self, field: FieldSchema, path: str) -> None:
        pass

    def visit_leaf(self, field: FieldSchema, path: str, options: List[str]) -> None:
        raise NotImplementedError


def is_field_active(field: FieldSchema, values: Mapping) -> bool:
    return is_active(field, values) and not has_exhausted_options(field, values)


def walk(
    fields: Iterable[FieldSchema],
    values: Mapping,
    visitor: FieldVisitor,
    prefix: str = "",
    honor_activity: bool = True,
) -> None:
    """Visit ``fields`` depth-first in schema order.

    With ``honor_activity`` inactive fields (and everything below an inactive
    group) are skipped, so every strategy sees the same filtered tree.
    """
    for field in fields:
        path = field_path(prefix, field.key)
        if honor_activity and not is_field_active(field, values):
            continue
        if field.is_group:
            visitor.enter_group(field, path)
            walk(field.fields, values, visitor, path, honor_activity)
            visitor.leave_group(field, path)
        else:
            visitor.visit_leaf(field, path, options_for(field, values))


class RenderCollector(FieldVisitor):
    def __init__(self, values: Mapping, errors: Optional[Mapping] = None):
        self.values = values
        self.errors = errors or {}
        self.rendered: List[RenderedField] = []

    def visit_leaf(self, field: FieldSchema, path: str, options: List[str]) -> None:
        self.rendered.append(
            RenderedField(
                path=path,
                key=field.key,
                label=field.label,
                type=field.type,
                required=field.required,
                value=self.values.get(path),
                options=options if field.type in CHOICE_TYPES else [],
                error=self.errors.get(path),
            )
        )


class RequiredAuditor(FieldVisitor):
    """Collect labels of active required leaves that are still blank."""

    def __init__(self, values: Mapping):
        self.values = values
        self.missing: List[str] = []

    def visit_leaf(self, field: FieldSchema, path: str, options: List[str]) -> None:
        if field.required and is_blank(self.values.get(path)):
            self.missing.append(field.label)


class PathIndex(FieldVisitor):
    def __init__(self):
        self.by_path: Dict[str, FieldSchema] = {}

    def visit_leaf(self, field: FieldSchema, path: str, options: List[str]) -> None:
        self.by_path[path] = field


def render_fields(
    fields: Iterable[FieldSchema], values: Mapping, errors: Optional[Mapping] = None
) -> List[RenderedField]:
    collector = RenderCollector(values, errors)
    walk(fields, values, collector)
    return collector.rendered


def missing_required(fields: Iterable[FieldSchema], values: Mapping) -> List[str]:
    auditor = RequiredAuditor(values)
    walk(fields, values, auditor)
    return auditor.missing


def index_fields(fields: Iterable[FieldSchema]) -> Dict[str, FieldSchema]:
    """Map every leaf path to its descriptor, active or not."""
    index = PathIndex()
    walk(fields, {}, index, honor_activity=False)
    return index.by_path


@dataclass
class EditResult:
    path: str
    changed: bool
    cleared: List[str] = dataclass_field(default_factory=list)
    revalidate: List[str] = dataclass_field(default_factory=list)


def apply_edit(field: FieldSchema, path: str, state: FormState, value: FieldValue) -> EditResult:
    """Write one user edit and run the field's invalidation rule."""
    previous = state.get(path)
    state.set_field(path, value)
    changed = previous != value or type(previous) is not type(value)
    result = EditResult(path=path, changed=changed)
    if not changed or not field.clears:
        return result

    if field.preserve_on_change:
        result.revalidate = list(field.clears)
        logger.debug("Edit of %s keeps %s for revalidation", path, field.clears)
        return result

    for target in field.clears:
        state.set_field(target, "")
        result.cleared.append(target)
    logger.debug("Edit of %s cleared %s", path, result.cleared)
    return result
