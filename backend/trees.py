"""Tree listing and creation for a signed-in owner."""

import logging

from models import Tree
from services import RecordStore

logger = logging.getLogger("kincanvas.trees")

DEFAULT_TREE_NAME = "My Family Tree"
NEW_TREE_NAME = "New Family Tree"


async def list_trees(store: RecordStore, owner_id: str) -> list[Tree]:
    rows = await store.select("trees", {"owner_id": owner_id}, order_by="created_at")
    return [Tree(**row) for row in rows]


async def get_tree(store: RecordStore, tree_id: str) -> Tree | None:
    """Fetch a tree; None when it is missing or belongs to someone else."""
    row = await store.select_one("trees", tree_id)
    return Tree(**row) if row else None


async def create_tree(store: RecordStore, owner_id: str, name: str = NEW_TREE_NAME) -> Tree:
    row = await store.insert("trees", {"owner_id": owner_id, "name": name})
    logger.info(f"Created tree {row['id']} ('{name}') for {owner_id}")
    return Tree(**row)


async def ensure_default_tree(store: RecordStore, owner_id: str) -> list[Tree]:
    """List the owner's trees, creating the default one on first visit."""
    trees = await list_trees(store, owner_id)
    if not trees:
        logger.info(f"No trees for {owner_id}, creating default tree")
        trees = [await create_tree(store, owner_id, DEFAULT_TREE_NAME)]
    return trees
