"""Shared pytest fixtures: a throwaway pipeline database and a stub reference lookup."""

import os
import tempfile
from unittest.mock import AsyncMock, MagicMock

import pytest

from models.refs import DepartmentRef, ReferenceProduct
from reference_resolver import ReferenceResolver
from storage.repositories import Repositories


@pytest.fixture
def db_path():
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    yield path
    os.unlink(path)


@pytest.fixture
def repos(db_path):
    return Repositories.from_path(db_path)


def make_lookup(products=None, legacy=None, departments=None):
    """Stub reference lookup backed by dicts."""
    products = products or {}
    legacy = legacy or {}
    departments = departments or {}

    lookup = MagicMock()
    lookup.get_product_by_code = AsyncMock(side_effect=lambda code: products.get(code))
    lookup.get_product_by_legacy_code = AsyncMock(side_effect=lambda code: legacy.get(code))
    lookup.get_department = AsyncMock(side_effect=lambda branch: departments.get(branch))
    return lookup


@pytest.fixture
def lookup():
    return make_lookup(
        products={
            "ITEM01": ReferenceProduct(code="ITEM01", material_code="MAT01", product_type="SKIN", unit="Hộp"),
            "ITEM02": ReferenceProduct(code="ITEM02", material_code="MAT02", product_type="TPCN",
                                       unit="Hộp", track_batch=True),
        },
        departments={
            "HN01": DepartmentRef(branch_code="HN01", department_code="HN01", unit_code="MN01", brand="menard"),
        },
    )


@pytest.fixture
def resolver(lookup):
    return ReferenceResolver(lookup, batch_size=10)
