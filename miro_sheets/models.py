"""Request/response contracts shared by the reader, the writers and the HTTP handler."""

from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field as PydanticField

DATATYPES = (
    "Entero",
    "Decimal",
    "Porcentaje",
    "Texto Corto",
    "Texto Largo",
    "True/False",
    "Fecha",
    "Fecha Inicial / Fecha Final",
    "Link",
)

NUMBER_TYPE = "Número"
TEXT_TYPE = "Texto"

SKIP_REASONS = ("empty", "boolean", "date", "formula", "error", "unsupported")


# ── Template schema ──────────────────────────────────────────
class Field(BaseModel):
    name: str
    # Not restricted to DATATYPES: unknown values get no validation rule.
    datatype: str
    required: bool = False
    validate_with: Optional[str] = None
    # Cells hold comma-separated values, read back as a list.
    multiple: bool = False
    comment: Optional[str] = None


class Validator(BaseModel):
    name: str
    values: List[dict] = PydanticField(default_factory=list)


class FilledField(BaseModel):
    field_name: str
    values: List[Any] = PydanticField(default_factory=list)


class TemplateSchema(BaseModel):
    name: str
    file_name: str
    file_description: Optional[str] = None
    fields: List[Field]
    validators: List[Validator] = PydanticField(default_factory=list)


class TemplateRequest(BaseModel):
    template: TemplateSchema
    filled_data: Optional[List[FilledField]] = None
    include_help: bool = True


class MergedRequest(BaseModel):
    title: str
    file_name: str
    records: List[dict]
    validators: List[Validator] = PydanticField(default_factory=list)


# ── Reader output ────────────────────────────────────────────
class KeptCell(BaseModel):
    kind: Literal["kept"] = "kept"
    row: int
    value: Union[int, float, str]


class SkippedCell(BaseModel):
    kind: Literal["skipped"] = "skipped"
    row: int
    reason: Literal["empty", "boolean", "date", "formula", "error", "unsupported"]


class Column(BaseModel):
    name: str
    is_validator: bool = False
    type: Literal["Número", "Texto"] = TEXT_TYPE
    values: List[Union[int, float, str]] = PydanticField(default_factory=list)
    cells: List[Union[KeptCell, SkippedCell]] = PydanticField(default_factory=list)

    @property
    def is_ragged(self):
        """True when at least one data row was skipped for this column."""
        return any(cell.kind == "skipped" for cell in self.cells)

    def value_at(self, row):
        """Return the retained value at sheet row ``row`` or None."""
        for cell in self.cells:
            if cell.row == row:
                return cell.value if cell.kind == "kept" else None
        return None
