"""Shared fixtures for the spreadsheet core tests."""

from typing import Any, Callable, List

import pytest

from sheetcore.core.config import Settings
from sheetcore.engine.loader import SheetLoader
from sheetcore.engine.models import CellCollection

TableFactory = Callable[[List[str], List[List[Any]]], CellCollection]


@pytest.fixture
def make_table() -> TableFactory:
    """Factory for cell collections with headers in row 1 and records below."""

    def _make(headers: List[str], rows: List[List[Any]]) -> CellCollection:
        return SheetLoader.from_rows([headers] + rows)

    return _make


@pytest.fixture
def test_settings() -> Settings:
    """Settings with defaults, ignoring any local .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def sales_cells(make_table: TableFactory) -> CellCollection:
    """Small sales table: Region / Product / Amount / Qty."""
    return make_table(
        ["Region", "Product", "Amount", "Qty"],
        [
            ["East", "Widget", 100, 1],
            ["West", "Widget", 200, 2],
            ["East", "Gadget", 50, 3],
            ["North", "Gadget", 75, 4],
            ["West", "Gadget", 25, 5],
        ],
    )


@pytest.fixture
def lookup_cells() -> CellCollection:
    """Lookup table in A1:B3 with a value to look up in D1."""
    return SheetLoader.from_rows(
        [
            [1, "one", None, 2],
            [2, "two"],
            [3, "three"],
        ]
    )
