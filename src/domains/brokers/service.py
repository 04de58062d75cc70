# src/domains/brokers/service.py
import asyncio
import logging
from typing import List, Optional

from prisma import Prisma
from src.core.settings import settings
from src.domains.brokers.models import (
    BrokerContext,
    BrokerHierarchyInfo,
    BrokerResponse,
    BrokerSummary,
    HierarchyStats,
)
from src.shared.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# Root broker at level 0, children of each level joined until the cap.
DESCENDANTS_QUERY = """
WITH RECURSIVE broker_hierarchy AS (
    SELECT id, parent_id, 0 AS level
    FROM brokers
    WHERE id = $1

    UNION ALL

    SELECT b.id, b.parent_id, bh.level + 1
    FROM brokers b
    INNER JOIN broker_hierarchy bh ON b.parent_id = bh.id
    WHERE bh.level < $2::int
)
SELECT id FROM broker_hierarchy
ORDER BY level
"""

# Walks parent links upward; rows come back root first, queried broker last.
ANCESTORS_QUERY = """
WITH RECURSIVE broker_hierarchy AS (
    SELECT id, parent_id, 0 AS level
    FROM brokers
    WHERE id = $1

    UNION ALL

    SELECT b.id, b.parent_id, bh.level + 1
    FROM brokers b
    INNER JOIN broker_hierarchy bh ON bh.parent_id = b.id
    WHERE bh.level < $2::int
)
SELECT id FROM broker_hierarchy
ORDER BY level DESC
"""


class BrokerHierarchyService:
    """
    Hierarchy queries over the self-referencing broker tree.

    A broker may act on itself and on anything beneath it, never above or
    sideways. Read queries degrade to the queried broker alone when the
    database fails; cycle validation fails closed.
    """

    def __init__(self, db: Prisma, max_depth: Optional[int] = None):
        self.db = db
        self.max_depth = max_depth or settings.BROKER_HIERARCHY_MAX_DEPTH

    async def _query_hierarchy(self, query: str, broker_id: str) -> List[str]:
        rows = await self.db.query_raw(query, broker_id, self.max_depth)
        # A corrupted tree can revisit a node; keep first occurrence only
        return list(dict.fromkeys(str(row["id"]) for row in rows))

    async def get_descendant_broker_ids(self, broker_id: str) -> List[str]:
        """
        Get a broker and all of its descendants, ordered by depth.

        Args:
            broker_id: Root of the subtree

        Returns:
            Broker IDs with the root first. Empty for an empty ID, and just
            the root when the hierarchy query fails.
        """
        if not broker_id:
            logger.warning("get_descendant_broker_ids called with empty broker_id")
            return []

        try:
            broker_ids = await self._query_hierarchy(DESCENDANTS_QUERY, broker_id)
        except Exception as e:
            logger.error(
                f"Failed to get descendant brokers for {broker_id}: {e}",
                exc_info=True,
            )
            logger.warning(
                f"Fallback: returning only root broker {broker_id} "
                "due to hierarchy query error"
            )
            return [broker_id]

        logger.debug(
            f"Resolved {len(broker_ids)} descendant brokers for {broker_id}"
        )
        return broker_ids

    async def get_ancestor_broker_ids(self, broker_id: str) -> List[str]:
        """
        Get the chain of brokers from the tree root down to ``broker_id``.

        The queried broker is always last. Falls back to ``[broker_id]`` when
        the hierarchy query fails.
        """
        if not broker_id:
            logger.warning("get_ancestor_broker_ids called with empty broker_id")
            return []

        try:
            broker_ids = await self._query_hierarchy(ANCESTORS_QUERY, broker_id)
        except Exception as e:
            logger.error(
                f"Failed to get ancestor brokers for {broker_id}: {e}",
                exc_info=True,
            )
            return [broker_id]

        logger.debug(f"Resolved {len(broker_ids)} ancestor brokers for {broker_id}")
        return broker_ids

    async def validate_no_cycles(self, parent_id: str, child_id: str) -> bool:
        """
        Check that making ``parent_id`` the parent of ``child_id`` keeps the
        tree acyclic.

        Returns:
            False for self-parenting, for a parent already below the child, or
            when the check itself cannot be completed
        """
        if not parent_id or not child_id:
            return True

        if parent_id == child_id:
            logger.warning(
                f"Cycle detection: broker {child_id} cannot be its own parent"
            )
            return False

        try:
            child_descendants = await self._query_hierarchy(
                DESCENDANTS_QUERY, child_id
            )
        except Exception as e:
            logger.error(
                f"Error during cycle validation ({parent_id} -> {child_id}): {e}",
                exc_info=True,
            )
            return False

        if parent_id in child_descendants:
            logger.warning(
                f"Cycle detected: broker {parent_id} is a descendant of {child_id}"
            )
            return False

        return True

    async def get_broker_hierarchy_info(self, broker_id: str) -> BrokerHierarchyInfo:
        """
        Get a broker with its parent, direct children and position in the tree.

        Raises:
            ValidationError: If broker_id is empty
            NotFoundError: If the broker does not exist
        """
        if not broker_id:
            raise ValidationError("Broker ID is required")

        broker = await self.db.broker.find_unique(
            where={"id": broker_id},
            include={"parent": True, "children": True},
        )
        if not broker:
            raise NotFoundError("Broker not found")

        descendants, ancestors = await asyncio.gather(
            self.get_descendant_broker_ids(broker_id),
            self.get_ancestor_broker_ids(broker_id),
        )

        hierarchy_level = max(len(ancestors) - 1, 0)
        return BrokerHierarchyInfo(
            broker=BrokerResponse(
                id=broker.id,
                name=broker.name,
                description=broker.description,
                parent_id=broker.parentId,
            ),
            parent=(
                BrokerSummary(id=broker.parent.id, name=broker.parent.name)
                if broker.parent
                else None
            ),
            direct_children=[
                BrokerSummary(id=child.id, name=child.name)
                for child in (broker.children or [])
            ],
            hierarchy_stats=HierarchyStats(
                total_descendants=max(len(descendants) - 1, 0),
                total_ancestors=hierarchy_level,
                hierarchy_level=hierarchy_level,
            ),
            accessible_broker_ids=descendants,
        )

    async def can_user_access_broker(
        self, user_broker_id: Optional[str], target_broker_id: Optional[str]
    ) -> bool:
        """
        True when the target is the user's broker or one of its descendants.
        """
        if not user_broker_id or not target_broker_id:
            return False

        if user_broker_id == target_broker_id:
            return True

        accessible_broker_ids = await self.get_descendant_broker_ids(user_broker_id)
        has_access = target_broker_id in accessible_broker_ids

        logger.debug(
            f"Broker access {user_broker_id} -> {target_broker_id}: {has_access}"
        )
        return has_access

    async def get_broker_context(self, broker_id: Optional[str]) -> BrokerContext:
        """
        Build the per-request broker context for a user's broker.

        System users (no broker) get an empty, non-root context.
        ``is_root_broker`` is read from the broker's ``parentId``, so it holds
        even when the ancestor chain falls back to the broker alone.
        """
        if not broker_id:
            return BrokerContext()

        broker, descendants, ancestors = await asyncio.gather(
            self.db.broker.find_unique(where={"id": broker_id}),
            self.get_descendant_broker_ids(broker_id),
            self.get_ancestor_broker_ids(broker_id),
        )

        hierarchy_level = max(len(ancestors) - 1, 0)
        return BrokerContext(
            user_broker_id=broker_id,
            accessible_broker_ids=descendants or [broker_id],
            hierarchy_level=hierarchy_level,
            is_root_broker=broker is not None and broker.parentId is None,
        )
