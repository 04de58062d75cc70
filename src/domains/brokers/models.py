# src/domains/brokers/models.py
from typing import List, Optional

from pydantic import BaseModel


class BrokerSummary(BaseModel):
    id: str
    name: str


class BrokerResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    parent_id: Optional[str] = None


class HierarchyStats(BaseModel):
    total_descendants: int
    total_ancestors: int
    hierarchy_level: int


class BrokerHierarchyInfo(BaseModel):
    broker: BrokerResponse
    parent: Optional[BrokerSummary] = None
    direct_children: List[BrokerSummary]
    hierarchy_stats: HierarchyStats
    accessible_broker_ids: List[str]


class BrokerContext(BaseModel):
    """Where the requesting user sits in the broker tree, computed per request."""

    user_broker_id: Optional[str] = None
    accessible_broker_ids: List[str] = []
    hierarchy_level: int = 0
    is_root_broker: bool = False

    @property
    def is_system_user(self) -> bool:
        return self.user_broker_id is None
