"""Shared fixtures for the KinCanvas tests."""

import os
import sys

import pytest

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models import Member, Relationship, RelationshipType, Tree
from services import MemoryStore, StoreError


TREE_ID = "tree-1"


def member(member_id: str, name: str, **kwargs) -> Member:
    return Member(id=member_id, tree_id=TREE_ID, name=name, **kwargs)


def parent(rel_id: str, parent_id: str, child_id: str) -> Relationship:
    return Relationship(
        id=rel_id, tree_id=TREE_ID, source_id=parent_id, target_id=child_id,
        type=RelationshipType.PARENT,
    )


def spouse(rel_id: str, a: str, b: str) -> Relationship:
    return Relationship(
        id=rel_id, tree_id=TREE_ID, source_id=a, target_id=b,
        type=RelationshipType.SPOUSE,
    )


class FlakyStore(MemoryStore):
    """MemoryStore whose chosen operations fail like a refused remote call."""

    def __init__(self):
        super().__init__()
        self.failing: set[tuple[str, str]] = set()
        self.calls: list[tuple[str, str]] = []

    def fail(self, operation: str, table: str) -> None:
        self.failing.add((operation, table))

    def _check(self, operation: str, table: str) -> None:
        self.calls.append((operation, table))
        if (operation, table) in self.failing:
            raise StoreError(table, operation, "permission denied")

    async def insert(self, table, values):
        self._check("insert", table)
        return await super().insert(table, values)

    async def update(self, table, row_id, values):
        self._check("update", table)
        return await super().update(table, row_id, values)

    async def delete(self, table, row_id):
        self._check("delete", table)
        return await super().delete(table, row_id)

    async def delete_relationships_touching(self, member_id):
        self._check("delete", "relationships")
        return await super().delete_relationships_touching(member_id)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def tree():
    return Tree(id=TREE_ID, owner_id="user-1", name="My Family Tree")


@pytest.fixture
def family():
    """Alice and Bob married, Carol their daughter via Alice only."""
    members = [
        member("1", "Alice"),
        member("2", "Bob"),
        member("3", "Carol"),
    ]
    relationships = [
        spouse("r1", "1", "2"),
        parent("r2", "1", "3"),
    ]
    return members, relationships


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def seeded_store(store, tree):
    """FlakyStore holding the tree plus Alice (m1), Bob (m2) and Carol (m3)."""
    store.tables["trees"][tree.id] = tree.model_dump()
    for index, name in enumerate(("Alice", "Bob", "Carol"), start=1):
        row = member(f"m{index}", name, created_at=f"2024-01-0{index}T00:00:00+00:00")
        store.tables["members"][row.id] = row.model_dump()
    return store
