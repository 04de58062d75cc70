"""
Tests for BrokerHierarchyService in src/domains/brokers/service.py

Hierarchy queries run against an in-memory tree that reproduces the
recursive CTE, including its level cap.
"""

from unittest.mock import Mock

import pytest
from fastapi import HTTPException

from src.domains.brokers.service import BrokerHierarchyService
from tests.fixtures.broker_fixtures import ROOT_SUBTREE
from tests.utils.broker_tree import FakeBrokerTree, chain_tree


class TestDescendantBrokerIds:
    """Test subtree resolution."""

    @pytest.mark.asyncio
    async def test_root_sees_whole_subtree_root_first(self, db_with_tree: Mock):
        service = BrokerHierarchyService(db_with_tree)

        result = await service.get_descendant_broker_ids("broker-root")

        assert result[0] == "broker-root"
        assert set(result) == set(ROOT_SUBTREE)
        assert "broker-other" not in result

    @pytest.mark.asyncio
    async def test_middle_broker_sees_only_its_branch(self, db_with_tree: Mock):
        service = BrokerHierarchyService(db_with_tree)

        result = await service.get_descendant_broker_ids("broker-north")

        assert result == ["broker-north", "broker-north-a", "broker-north-b"]

    @pytest.mark.asyncio
    async def test_leaf_sees_only_itself(self, db_with_tree: Mock):
        service = BrokerHierarchyService(db_with_tree)

        assert await service.get_descendant_broker_ids("broker-south") == [
            "broker-south"
        ]

    @pytest.mark.asyncio
    async def test_empty_broker_id_returns_empty_without_query(
        self, db_with_tree: Mock
    ):
        service = BrokerHierarchyService(db_with_tree)

        assert await service.get_descendant_broker_ids("") == []
        db_with_tree.query_raw.assert_not_called()

    @pytest.mark.asyncio
    async def test_query_failure_falls_back_to_root_only(self, mock_prisma: Mock):
        mock_prisma.query_raw.side_effect = Exception("connection reset")
        service = BrokerHierarchyService(mock_prisma)

        assert await service.get_descendant_broker_ids("broker-root") == [
            "broker-root"
        ]

    @pytest.mark.asyncio
    async def test_depth_cap_limits_levels_below_root(self, mock_prisma: Mock):
        """A 15-deep chain capped at 10 yields the root plus 10 levels."""
        tree = chain_tree(15)
        mock_prisma.query_raw.side_effect = tree.query_raw
        service = BrokerHierarchyService(mock_prisma, max_depth=10)

        result = await service.get_descendant_broker_ids("level-0")

        assert len(result) == 11
        assert result[-1] == "level-10"
        assert tree.calls[0] == ("level-0", 10)

    @pytest.mark.asyncio
    async def test_duplicate_rows_are_collapsed(self, mock_prisma: Mock):
        mock_prisma.query_raw.return_value = [
            {"id": "broker-root"},
            {"id": "broker-north"},
            {"id": "broker-north"},
        ]
        service = BrokerHierarchyService(mock_prisma)

        assert await service.get_descendant_broker_ids("broker-root") == [
            "broker-root",
            "broker-north",
        ]


class TestAncestorBrokerIds:
    """Test the upward chain."""

    @pytest.mark.asyncio
    async def test_chain_is_root_first_self_last(self, db_with_tree: Mock):
        service = BrokerHierarchyService(db_with_tree)

        result = await service.get_ancestor_broker_ids("broker-north-a")

        assert result == ["broker-root", "broker-north", "broker-north-a"]

    @pytest.mark.asyncio
    async def test_root_has_only_itself(self, db_with_tree: Mock):
        service = BrokerHierarchyService(db_with_tree)

        assert await service.get_ancestor_broker_ids("broker-root") == [
            "broker-root"
        ]

    @pytest.mark.asyncio
    async def test_query_failure_falls_back_to_self(self, mock_prisma: Mock):
        mock_prisma.query_raw.side_effect = Exception("timeout")
        service = BrokerHierarchyService(mock_prisma)

        assert await service.get_ancestor_broker_ids("broker-north") == [
            "broker-north"
        ]


class TestValidateNoCycles:
    """Test re-parenting validation."""

    @pytest.mark.asyncio
    async def test_self_parent_is_rejected(self, db_with_tree: Mock):
        service = BrokerHierarchyService(db_with_tree)

        assert await service.validate_no_cycles("broker-north", "broker-north") is False
        db_with_tree.query_raw.assert_not_called()

    @pytest.mark.asyncio
    async def test_descendant_as_parent_is_rejected(self, db_with_tree: Mock):
        service = BrokerHierarchyService(db_with_tree)

        result = await service.validate_no_cycles("broker-north-a", "broker-root")

        assert result is False

    @pytest.mark.asyncio
    async def test_unrelated_parent_is_accepted(self, db_with_tree: Mock):
        service = BrokerHierarchyService(db_with_tree)

        assert await service.validate_no_cycles("broker-south", "broker-north") is True

    @pytest.mark.asyncio
    async def test_missing_ids_are_accepted(self, db_with_tree: Mock):
        service = BrokerHierarchyService(db_with_tree)

        assert await service.validate_no_cycles("", "broker-north") is True
        assert await service.validate_no_cycles("broker-north", "") is True

    @pytest.mark.asyncio
    async def test_query_failure_fails_closed(self, mock_prisma: Mock):
        mock_prisma.query_raw.side_effect = Exception("db down")
        service = BrokerHierarchyService(mock_prisma)

        assert await service.validate_no_cycles("broker-south", "broker-north") is False


class TestCanUserAccessBroker:
    """Test downward-only access."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "user_broker, target, expected",
        [
            ("broker-root", "broker-root", True),
            ("broker-root", "broker-north-a", True),
            ("broker-north", "broker-north-b", True),
            ("broker-north", "broker-root", False),
            ("broker-north", "broker-south", False),
            ("broker-root", "broker-other", False),
            (None, "broker-root", False),
            ("broker-root", None, False),
        ],
    )
    async def test_access(self, db_with_tree: Mock, user_broker, target, expected):
        service = BrokerHierarchyService(db_with_tree)

        assert await service.can_user_access_broker(user_broker, target) is expected

    @pytest.mark.asyncio
    async def test_same_broker_needs_no_query(self, db_with_tree: Mock):
        service = BrokerHierarchyService(db_with_tree)

        assert await service.can_user_access_broker("broker-north", "broker-north")
        db_with_tree.query_raw.assert_not_called()


class TestBrokerContext:
    """Test per-request context assembly."""

    @pytest.mark.asyncio
    async def test_root_broker_context(self, db_with_tree: Mock):
        service = BrokerHierarchyService(db_with_tree)

        context = await service.get_broker_context("broker-root")

        assert context.user_broker_id == "broker-root"
        assert set(context.accessible_broker_ids) == set(ROOT_SUBTREE)
        assert context.hierarchy_level == 0
        assert context.is_root_broker is True
        assert context.is_system_user is False

    @pytest.mark.asyncio
    async def test_nested_broker_context(self, db_with_tree: Mock):
        service = BrokerHierarchyService(db_with_tree)

        context = await service.get_broker_context("broker-north-a")

        assert context.accessible_broker_ids == ["broker-north-a"]
        assert context.hierarchy_level == 2
        assert context.is_root_broker is False

    @pytest.mark.asyncio
    async def test_failed_ancestor_query_keeps_child_non_root(
        self, db_with_tree: Mock, broker_tree: FakeBrokerTree
    ):
        def fail_ancestors(query: str, broker_id: str, max_depth: int):
            if "bh.parent_id = b.id" in query:
                raise Exception("connection reset")
            return broker_tree.query_raw(query, broker_id, max_depth)

        db_with_tree.query_raw.side_effect = fail_ancestors
        service = BrokerHierarchyService(db_with_tree)

        context = await service.get_broker_context("broker-north")

        assert context.hierarchy_level == 0
        assert context.is_root_broker is False
        assert context.accessible_broker_ids[0] == "broker-north"

    @pytest.mark.asyncio
    async def test_system_user_context_is_empty(self, db_with_tree: Mock):
        service = BrokerHierarchyService(db_with_tree)

        context = await service.get_broker_context(None)

        assert context.user_broker_id is None
        assert context.accessible_broker_ids == []
        assert context.is_root_broker is False
        assert context.is_system_user is True


class TestBrokerHierarchyInfo:
    """Test the hierarchy info endpoint payload."""

    @pytest.mark.asyncio
    async def test_info_for_middle_broker(self, db_with_tree: Mock):
        service = BrokerHierarchyService(db_with_tree)

        info = await service.get_broker_hierarchy_info("broker-north")

        assert info.broker.name == "Broker broker-north"
        assert info.broker.parent_id == "broker-root"
        assert info.parent is not None and info.parent.id == "broker-root"
        assert [c.id for c in info.direct_children] == [
            "broker-north-a",
            "broker-north-b",
        ]
        assert info.hierarchy_stats.total_descendants == 2
        assert info.hierarchy_stats.total_ancestors == 1
        assert info.hierarchy_stats.hierarchy_level == 1
        assert info.accessible_broker_ids[0] == "broker-north"

    @pytest.mark.asyncio
    async def test_missing_broker_raises_404(self, db_with_tree: Mock):
        service = BrokerHierarchyService(db_with_tree)

        with pytest.raises(HTTPException) as exc_info:
            await service.get_broker_hierarchy_info("missing")

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_empty_broker_id_raises_400(self, db_with_tree: Mock):
        service = BrokerHierarchyService(db_with_tree)

        with pytest.raises(HTTPException) as exc_info:
            await service.get_broker_hierarchy_info("")

        assert exc_info.value.status_code == 400
