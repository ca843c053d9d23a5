import logging
import math
from collections.abc import Mapping
from typing import Dict, Iterator, Optional

from stepform.models import FieldValue

logger = logging.getLogger(__name__)

_VALUE_TYPES = (bool, int, float, str)


def is_unset(value: FieldValue) -> bool:
    return value is None


def is_blank(value: FieldValue) -> bool:
    """True for values a required field treats as "not filled in"."""
    if value is None or value is False:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False


def as_text(value: FieldValue) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    return str(value)


def as_bool(value: FieldValue) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip().lower() in {"true", "on", "yes", "1"}
    return value != 0


def as_number(value: FieldValue) -> Optional[float]:
    """Return the numeric reading of a value, or None when it has none."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


class FormState(Mapping):
    """Field path -> value mapping shared by the walker and the validators.

    ``set_field`` is the only write path; readers treat the mapping as a
    snapshot of the current values.
    """

    def __init__(self, values: Optional[Mapping] = None):
        self._values: Dict[str, FieldValue] = {}
        for path, value in (values or {}).items():
            self.set_field(path, value)

    def __getitem__(self, path: str) -> FieldValue:
        return self._values[path]

    def get(self, path: str, default: FieldValue = None) -> FieldValue:
        return self._values.get(path, default)

    def set_field(self, path: str, value: FieldValue) -> None:
        if value is not None and not isinstance(value, _VALUE_TYPES):
            raise TypeError(f"unsupported value for '{path}': {type(value).__name__}")
        self._values[path] = value
        logger.debug("Set %s=%r", path, value)

    def snapshot(self) -> Dict[str, FieldValue]:
        return dict(self._values)

    def clear(self) -> None:
        self._values.clear()

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)
