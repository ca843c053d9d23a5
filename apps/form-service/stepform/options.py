from collections.abc import Mapping
from typing import List

from stepform.models import FieldSchema


def options_for(field: FieldSchema, values: Mapping) -> List[str]:
    """Resolve the selectable options of ``field`` against the current values.

    Static ``options`` apply unless an ``optionSource`` is declared. A dynamic
    source yields nothing until the source field holds a value present in its
    map.
    """
    source = field.option_source
    if source is None:
        return list(field.options)

    source_value = values.get(source.key)
    if source_value is None or isinstance(source_value, bool):
        return []
    choices = source.map.get(str(source_value))
    if not choices:
        return []
    return list(choices)


def has_exhausted_options(field: FieldSchema, values: Mapping) -> bool:
    """A dynamically sourced field with nothing to choose from is inactive."""
    return field.option_source is not None and not options_for(field, values)
