"""
Pytest configuration file.

This file is automatically loaded by pytest and provides global test configuration.
It ensures the project's source directory is added to the Python path so that
modules can be imported properly during test execution, and provides a
SQLite database file seeded with a handful of employees.
"""
import os
import sys

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

# Add the current directory to the Python path
# This ensures imports work correctly when running tests
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))

SCHEMA_STATEMENTS = [
    """CREATE TABLE employee (
        id INTEGER PRIMARY KEY, birth_date DATE, first_name TEXT,
        last_name TEXT, gender TEXT, hire_date DATE)""",
    """CREATE TABLE salary (
        employee_id INTEGER, amount REAL, from_date DATE, to_date DATE)""",
    """CREATE TABLE title (
        employee_id INTEGER, title TEXT, from_date DATE, to_date DATE)""",
    """CREATE TABLE netflix_shows (
        show_id TEXT PRIMARY KEY, type TEXT, title TEXT, director TEXT,
        cast_members TEXT, country TEXT, date_added DATE, release_year INTEGER,
        rating TEXT, duration TEXT, listed_in TEXT, description TEXT)""",
]

SEED_STATEMENTS = [
    """INSERT INTO employee VALUES
        (10001, '1953-09-02', 'Georgi', 'Facello', 'M', '1986-06-26'),
        (10002, '1964-06-02', 'Bezalel', 'Simmel', 'F', '1985-11-21')""",
    """INSERT INTO salary VALUES
        (10001, 60117.0, '1986-06-26', '1987-06-26'),
        (10001, 62102.0, '1987-06-26', '1988-06-25'),
        (10002, 65828.0, '1996-08-03', '1997-08-03')""",
    """INSERT INTO title VALUES
        (10001, 'Senior Engineer', '1986-06-26', NULL),
        (10002, 'Staff', '1996-08-03', NULL)""",
    """INSERT INTO netflix_shows VALUES
        ('s1', 'Movie', 'Dick Johnson Is Dead', 'Kirsten Johnson', NULL, 'United States',
         '2021-09-25', 2020, 'PG-13', '90 min', 'Documentaries', 'A filmmaker honors her father.'),
        ('s2', 'TV Show', 'Blood & Water', NULL, 'Ama Qamata, Khosi Ngema', 'South Africa',
         '2021-09-24', 2021, 'TV-MA', '2 Seasons', 'International TV Shows', 'A teen crosses paths.')""",
]


@pytest.fixture
def sqlite_path(tmp_path):
    """
    Fixture providing a seeded SQLite database file.

    Returns:
        pathlib.Path: Path of the database file
    """
    path = tmp_path / "employees.db"
    engine = create_engine(f"sqlite:///{path}")
    with engine.begin() as connection:
        for statement in SCHEMA_STATEMENTS + SEED_STATEMENTS:
            connection.execute(text(statement))
    engine.dispose()
    return path


@pytest.fixture
def sqlite_engine(sqlite_path):
    """
    Fixture providing an asyncio engine on the seeded database.

    Connections are not pooled, so no connection outlives the event loop
    that opened it.

    Returns:
        sqlalchemy.ext.asyncio.AsyncEngine: Engine bound to the seeded database
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{sqlite_path}", poolclass=NullPool)
    yield engine
    engine.sync_engine.dispose()
