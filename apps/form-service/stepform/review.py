from collections.abc import Mapping
from typing import List

from stepform.models import FieldSchema, FieldValue, FormSchema, ReviewEntry, ReviewSection
from stepform.state import as_bool, as_text
from stepform.walker import FieldVisitor, walk

NOT_PROVIDED = "Not provided"


def display_value(field: FieldSchema, value: FieldValue) -> str:
    if field.type == "checkbox":
        return "Yes" if as_bool(value) else "No"
    if value is None or value == "":
        return NOT_PROVIDED
    return as_text(value)


class ReviewCollector(FieldVisitor):
    def __init__(self, values: Mapping):
        self.values = values
        self.entries: List[ReviewEntry] = []
        self._stack: List[List[ReviewEntry]] = [self.entries]

    def enter_group(self, field: FieldSchema, path: str) -> None:
        group = ReviewEntry(path=path, label=field.label)
        self._stack[-1].append(group)
        self._stack.append(group.entries)

    def leave_group(self, field: FieldSchema, path: str) -> None:
        self._stack.pop()

    def visit_leaf(self, field: FieldSchema, path: str, options: List[str]) -> None:
        self._stack[-1].append(
            ReviewEntry(path=path, label=field.label, value=display_value(field, self.values.get(path)))
        )


def build_review(schema: FormSchema, values: Mapping) -> List[ReviewSection]:
    """Summarize every editable step for the confirmation page.

    All fields are listed, including ones hidden by their dependencies, so the
    reviewer sees the complete record that will be submitted.
    """
    sections: List[ReviewSection] = []
    for index, step in enumerate(schema.editable_steps):
        collector = ReviewCollector(values)
        walk(step.fields, values, collector, honor_activity=False)
        sections.append(ReviewSection(step_index=index, title=step.title, entries=collector.entries))
    return sections
