import re
from collections.abc import Mapping
from typing import Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from stepform.models import CHOICE_TYPES, FieldSchema, FieldValue
from stepform.state import as_number, as_text
from stepform.walker import FieldVisitor, parent_path, walk

COUNTRY_CODE_DIGITS: Dict[str, int] = {
    "+966": 7,  # Saudi Arabia
    "+1": 10,  # US/Canada
    "+44": 11,  # UK
    "+971": 9,  # UAE
}
PHONE_MIN_DIGITS = 7
PHONE_MAX_DIGITS = 15
COUNTRY_CODE_KEY = "countryCode"

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
DIGITS_PATTERN = re.compile(r"^\d+$")

CUSTOM_MESSAGES: Dict[str, Dict[str, str]] = {
    "email": {
        "required": "Please enter your email address",
        "invalid": "Please enter a valid email address",
    },
    "firstName": {
        "required": "First name is required",
        "invalid": "Please enter a valid first name",
    },
    "lastName": {
        "required": "Last name is required",
        "invalid": "Please enter a valid last name",
    },
    "propertyType": {"required": "Please select a property type"},
    "category": {"required": "Please select a category"},
    "subCategory": {"required": "Please select a subcategory"},
    "price": {
        "required": "Price is required",
        "invalid": "Please enter a valid price",
    },
    "date": {
        "required": "Date is required",
        "invalid": "Please enter a valid date",
    },
    "phone": {"required": "Phone number is required"},
}

# (value, all values) -> error message or None
Rule = Callable[[FieldValue, Mapping], Optional[str]]


def error_message(key: str, label: str, error_type: str) -> str:
    custom = CUSTOM_MESSAGES.get(key, {}).get(error_type)
    if custom:
        return custom
    if error_type == "required":
        return f"{label} is required"
    return f"Please enter a valid {label.lower()}"


def is_email_field(field: FieldSchema) -> bool:
    return "email" in field.key.lower() or "email" in field.label.lower()


def is_phone_field(field: FieldSchema) -> bool:
    return "phone" in field.key.lower() or field.label.strip().lower() == "phone number"


def find_country_code(values: Mapping, phone_path: str) -> Optional[str]:
    """Locate the dialing code that governs the phone number at ``phone_path``.

    Looks in the phone's own group first, then at the form root, then at any
    country-ish field holding a "+" prefixed value.
    """
    group = parent_path(phone_path)
    if group:
        scoped = values.get(f"{group}.{COUNTRY_CODE_KEY}")
        if isinstance(scoped, str) and scoped:
            return scoped

    root = values.get(COUNTRY_CODE_KEY)
    if isinstance(root, str) and root:
        return root

    for path, value in values.items():
        if "country" in path.lower() and isinstance(value, str) and value.startswith("+"):
            return value
    return None


def _optional(rule: Rule) -> Rule:
    def check(value: FieldValue, values: Mapping) -> Optional[str]:
        if not as_text(value).strip():
            return None
        return rule(value, values)

    return check


def _text_rule(field: FieldSchema) -> Rule:
    def check(value: FieldValue, values: Mapping) -> Optional[str]:
        if not as_text(value).strip():
            return error_message(field.key, field.label, "required")
        return None

    return check


def _email_rule(field: FieldSchema) -> Rule:
    def check(value: FieldValue, values: Mapping) -> Optional[str]:
        text = as_text(value).strip()
        if not text:
            return error_message(field.key, field.label, "required")
        if not EMAIL_PATTERN.match(text):
            return error_message(field.key, field.label, "invalid")
        return None

    return check


def _phone_rule(field: FieldSchema, path: str) -> Rule:
    def check(value: FieldValue, values: Mapping) -> Optional[str]:
        digits = as_text(value).strip()
        if not digits:
            return error_message(field.key, field.label, "required")
        if not DIGITS_PATTERN.match(digits):
            return "Phone number must contain only digits"

        country_code = find_country_code(values, path)
        required_digits = COUNTRY_CODE_DIGITS.get(country_code) if country_code else None
        if required_digits is not None:
            if len(digits) != required_digits:
                return f"Phone number must be exactly {required_digits} digits for {country_code}"
        elif not PHONE_MIN_DIGITS <= len(digits) <= PHONE_MAX_DIGITS:
            return f"Phone number must be between {PHONE_MIN_DIGITS} and {PHONE_MAX_DIGITS} digits"
        return None

    return check


def _number_rule(field: FieldSchema) -> Rule:
    def check(value: FieldValue, values: Mapping) -> Optional[str]:
        if not as_text(value).strip():
            return error_message(field.key, field.label, "required")
        number = as_number(value)
        if number is None or number < 0:
            return error_message(field.key, field.label, "invalid")
        return None

    return check


def _date_rule(field: FieldSchema) -> Rule:
    # Presence only; calendar validity is not checked.
    def check(value: FieldValue, values: Mapping) -> Optional[str]:
        if not as_text(value).strip():
            return error_message(field.key, field.label, "required")
        return None

    return check


def _choice_rule(field: FieldSchema, options: List[str]) -> Rule:
    allowed = list(options)

    def check(value: FieldValue, values: Mapping) -> Optional[str]:
        if not as_text(value).strip():
            return error_message(field.key, field.label, "required")
        if isinstance(value, bool) or as_text(value) not in allowed:
            return error_message(field.key, field.label, "invalid")
        return None

    return check


def _checkbox_rule(field: FieldSchema) -> Rule:
    def check(value: FieldValue, values: Mapping) -> Optional[str]:
        if field.required and value is not True:
            return error_message(field.key, field.label, "required")
        return None

    return check


def compile_rule(field: FieldSchema, path: str, options: List[str]) -> Rule:
    if field.type == "checkbox":
        return _checkbox_rule(field)

    if field.type == "text":
        if is_email_field(field):
            rule = _email_rule(field)
        elif is_phone_field(field):
            rule = _phone_rule(field, path)
        else:
            rule = _text_rule(field)
    elif field.type == "number":
        rule = _number_rule(field)
    elif field.type == "date":
        rule = _date_rule(field)
    elif field.type in CHOICE_TYPES:
        rule = _choice_rule(field, options)
    else:
        raise ValueError(f"no validation rule for field type {field.type}")

    return rule if field.required else _optional(rule)


class ValidationResult(BaseModel):
    valid: bool
    field_errors: Dict[str, str] = Field(default_factory=dict)


class StepValidator:
    """Rules compiled for the active leaves of one step."""

    def __init__(self, rules: Dict[str, Rule]):
        self._rules = rules

    @property
    def paths(self) -> List[str]:
        return list(self._rules)

    def run(self, values: Mapping) -> ValidationResult:
        errors: Dict[str, str] = {}
        for path, rule in self._rules.items():
            message = rule(values.get(path), values)
            if message:
                errors[path] = message
        return ValidationResult(valid=not errors, field_errors=errors)


class RuleCompiler(FieldVisitor):
    def __init__(self):
        self.rules: Dict[str, Rule] = {}

    def visit_leaf(self, field: FieldSchema, path: str, options: List[str]) -> None:
        self.rules[path] = compile_rule(field, path, options)


def build_validator(fields: Iterable[FieldSchema], values: Mapping) -> StepValidator:
    """Compile a validator over the fields of a step that are active in ``values``.

    Groups contribute only through their children; a group's own ``required``
    flag adds no rule.
    """
    compiler = RuleCompiler()
    walk(fields, values, compiler)
    return StepValidator(compiler.rules)
