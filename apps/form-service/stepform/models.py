from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

FieldType = Literal["text", "number", "select", "checkbox", "radio", "date", "group"]

# None stands for "unset"; everything a form control can produce fits the rest.
FieldValue = Union[bool, int, float, str, None]

CHOICE_TYPES = ("select", "radio")


class SchemaBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class FieldDependency(SchemaBase):
    key: str
    equals: FieldValue = None
    not_empty: bool = Field(default=False, alias="notEmpty")

    @property
    def has_equals(self) -> bool:
        return "equals" in self.model_fields_set


class OptionSource(SchemaBase):
    key: str
    map: Dict[str, List[str]] = Field(default_factory=dict)


class FieldSchema(SchemaBase):
    key: str
    label: str
    type: FieldType = "text"
    required: bool = False
    options: List[str] = Field(default_factory=list)
    option_source: Optional[OptionSource] = Field(default=None, alias="optionSource")
    dependencies: List[FieldDependency] = Field(default_factory=list)
    fields: List["FieldSchema"] = Field(default_factory=list)
    clears: List[str] = Field(default_factory=list)
    preserve_on_change: bool = Field(default=False, alias="preserveOnChange")

    @property
    def is_group(self) -> bool:
        return self.type == "group"

    @model_validator(mode="after")
    def _check_shape(self) -> "FieldSchema":
        if self.is_group:
            if self.options or self.option_source is not None:
                raise ValueError(f"group field '{self.key}' cannot declare options")
        elif self.fields:
            raise ValueError(f"field '{self.key}' of type {self.type} cannot declare sub-fields")
        if "." in self.key or not self.key:
            raise ValueError(f"invalid field key '{self.key}'")
        _ensure_unique_keys(self.fields, self.key)
        return self


class StepSchema(SchemaBase):
    title: str
    fields: List[FieldSchema] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_keys(self) -> "StepSchema":
        _ensure_unique_keys(self.fields, self.title)
        return self


class FormSchema(SchemaBase):
    steps: List[StepSchema] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_steps(self) -> "FormSchema":
        if len(self.steps) < 2:
            raise ValueError("schema needs at least one editable step and a review step")
        return self

    @property
    def last_step(self) -> int:
        return len(self.steps) - 1

    @property
    def editable_steps(self) -> List[StepSchema]:
        """Every step except the trailing confirmation step."""
        return self.steps[:-1]


def _ensure_unique_keys(fields: List[FieldSchema], owner: str) -> None:
    seen: set[str] = set()
    for field in fields:
        if field.key in seen:
            raise ValueError(f"duplicate field key '{field.key}' in '{owner}'")
        seen.add(field.key)


class RenderedField(BaseModel):
    path: str
    key: str
    label: str
    type: FieldType
    required: bool = False
    value: FieldValue = None
    options: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class ReviewEntry(BaseModel):
    path: str
    label: str
    value: Optional[str] = None
    entries: List["ReviewEntry"] = Field(default_factory=list)


class ReviewSection(BaseModel):
    step_index: int
    title: str
    entries: List[ReviewEntry] = Field(default_factory=list)


FieldSchema.model_rebuild()
ReviewEntry.model_rebuild()
