from dataclasses import dataclass
from typing import Any, Dict, Optional, Type

from pydantic import BaseModel

from records import Employee, EmployeeSalary, NetflixShow, Salary, Title
from utils.errors import ValidationError


@dataclass(frozen=True)
class Dataset:
    """
    A named export.

    Attributes:
        name: Value of the ``dataset`` query parameter
        record_type: Record model rows are hydrated into
        query: SQL select, without WHERE or ORDER BY
        order_by: ORDER BY clause keeping exports deterministic
        filename: Attachment filename
        sheet_title: Worksheet title
        filter_column: Column compared with ``filter_id``; None disables filtering
        filter_type: Type the raw ``filter_id`` is converted to
    """
    name: str
    record_type: Type[BaseModel]
    query: str
    order_by: str
    filename: str
    sheet_title: str
    filter_column: Optional[str] = None
    filter_type: type = int

    def parse_filter(self, raw: Optional[str]) -> Any:
        if raw is None or raw == "":
            return None
        if self.filter_column is None:
            raise ValidationError(f"Dataset '{self.name}' does not support filter_id")
        try:
            return self.filter_type(raw)
        except (TypeError, ValueError):
            raise ValidationError(f"filter_id must be of type {self.filter_type.__name__} for dataset '{self.name}'")

    def sql(self, filtered: bool) -> str:
        statement = self.query
        if filtered:
            statement += f" WHERE {self.filter_column} = :filter_id"
        return f"{statement} ORDER BY {self.order_by}"


_EMPLOYEE_SALARY_QUERY = """
SELECT
    e.id AS "employee.id",
    e.birth_date AS "employee.birth_date",
    e.first_name AS "employee.first_name",
    e.last_name AS "employee.last_name",
    e.gender AS "employee.gender",
    e.hire_date AS "employee.hire_date",
    s.employee_id AS "salary.employee_id",
    s.amount AS "salary.amount",
    s.from_date AS "salary.from_date",
    s.to_date AS "salary.to_date",
    t.employee_id AS "title.employee_id",
    t.title AS "title.title",
    t.from_date AS "title.from_date",
    t.to_date AS "title.to_date"
FROM employee e
JOIN salary s ON s.employee_id = e.id
JOIN title t ON t.employee_id = e.id
    AND t.from_date <= s.from_date
    AND (t.to_date IS NULL OR t.to_date >= s.from_date)
""".strip()


DATASETS: Dict[str, Dataset] = {
    dataset.name: dataset
    for dataset in (
        Dataset(
            name="salaries",
            record_type=Salary,
            query="SELECT employee_id, amount, from_date, to_date FROM salary",
            order_by="employee_id, from_date",
            filename="salaries.xlsx",
            sheet_title="Salaries",
            filter_column="employee_id",
        ),
        Dataset(
            name="titles",
            record_type=Title,
            query="SELECT employee_id, title, from_date, to_date FROM title",
            order_by="employee_id, from_date",
            filename="titles.xlsx",
            sheet_title="Titles",
            filter_column="employee_id",
        ),
        Dataset(
            name="employees",
            record_type=Employee,
            query="SELECT id, birth_date, first_name, last_name, gender, hire_date FROM employee",
            order_by="id",
            filename="employees.xlsx",
            sheet_title="Employees",
            filter_column="id",
        ),
        Dataset(
            name="employee-salaries",
            record_type=EmployeeSalary,
            query=_EMPLOYEE_SALARY_QUERY,
            order_by="e.id, s.from_date",
            filename="employee_salaries.xlsx",
            sheet_title="Employee Salaries",
            filter_column="e.id",
        ),
        Dataset(
            name="netflix-shows",
            record_type=NetflixShow,
            query=(
                "SELECT show_id, type, title, director, cast_members, country, date_added,"
                " release_year, rating, duration, listed_in, description FROM netflix_shows"
            ),
            order_by="show_id",
            filename="netflix_shows.xlsx",
            sheet_title="Netflix Shows",
            filter_column="show_id",
            filter_type=str,
        ),
    )
}


def get_dataset(name: Optional[str]) -> Dataset:
    """
    Look up a dataset by name.

    Raises:
        ValidationError: If the name is missing or unknown
    """
    if name is None or not name.strip():
        raise ValidationError("Missing required query parameter: dataset")
    try:
        return DATASETS[name.strip()]
    except KeyError:
        raise ValidationError(f"Unknown dataset '{name}'. Available: {', '.join(sorted(DATASETS))}")
