"""
Exportable record types.

Each model declares its spreadsheet headers with ``Field(title=...)``.
Models are frozen: exporters only ever read them.
"""
from collections.abc import Mapping
from datetime import date
from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from record_schema import is_embedded_record

R = TypeVar("R", bound=BaseModel)


class ExportRecord(BaseModel):
    model_config = ConfigDict(frozen=True)


class Salary(ExportRecord):
    employee_id: int = Field(title="Employee ID")
    amount: float = Field(title="Amount")
    from_date: date = Field(title="From Date")
    to_date: date = Field(title="To Date")


class Title(ExportRecord):
    employee_id: int = Field(title="Employee ID")
    title: str = Field(title="Title")
    from_date: date = Field(title="From Date")
    to_date: Optional[date] = Field(default=None, title="To Date")


class Employee(ExportRecord):
    id: int = Field(title="ID")
    birth_date: date = Field(title="Birth Date")
    first_name: str = Field(title="First Name")
    last_name: str = Field(title="Last Name")
    gender: str = Field(title="Gender")
    hire_date: date = Field(title="Hire Date")


class EmployeeSalary(ExportRecord):
    """One salary period of an employee together with the title held."""
    employee: Employee
    salary: Salary
    title: Title


class NetflixShow(ExportRecord):
    show_id: str = Field(title="Id")
    type: str = Field(title="Type")
    title: str = Field(title="Title")
    director: Optional[str] = Field(default=None, title="Director")
    cast_members: Optional[str] = Field(default=None, title="Cast Members")
    country: Optional[str] = Field(default=None, title="Country")
    date_added: Optional[date] = Field(default=None, title="Date Added")
    release_year: int = Field(title="Release Year")
    rating: Optional[str] = Field(default=None, title="Rating")
    duration: Optional[str] = Field(default=None, title="Duration")
    listed_in: Optional[str] = Field(default=None, title="Listed In")
    description: Optional[str] = Field(default=None, title="Description")


def hydrate(record_type: Type[R], row: Mapping, prefix: str = "") -> R:
    """
    Build a record from a row mapping.

    Embedded records are read either from a nested mapping under the field
    name (JSON payloads) or from flat keys labelled ``"<field>.<child>"``
    (SQL result columns). Scalar fields fall back to the bare field name.

    Raises:
        pydantic.ValidationError: If the row does not fit the record type
    """
    values: dict = {}
    for name, info in record_type.model_fields.items():
        key = prefix + name
        if is_embedded_record(info.annotation):
            nested: Any = row.get(key)
            if isinstance(nested, Mapping):
                values[name] = hydrate(info.annotation, nested)
            else:
                values[name] = hydrate(info.annotation, row, key + ".")
        elif key in row:
            values[name] = row[key]
        elif name in row:
            values[name] = row[name]
    return record_type.model_validate(values)
