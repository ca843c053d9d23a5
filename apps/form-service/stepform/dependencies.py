from collections.abc import Mapping

from stepform.models import FieldDependency, FieldSchema, FieldValue


def _strictly_equal(left: FieldValue, right: FieldValue) -> bool:
    # bool is an int subclass; True must not match 1.
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    if type(left) is not type(right) and not (
        isinstance(left, (int, float)) and isinstance(right, (int, float))
    ):
        return False
    return left == right


def dependency_holds(dependency: FieldDependency, values: Mapping) -> bool:
    current = values.get(dependency.key)
    if dependency.has_equals:
        return _strictly_equal(current, dependency.equals)
    if dependency.not_empty:
        return current is not None and current != ""
    return True


def is_active(field: FieldSchema, values: Mapping) -> bool:
    """Return True when every dependency clause of ``field`` holds right now."""
    return all(dependency_holds(dependency, values) for dependency in field.dependencies)
