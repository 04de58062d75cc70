# src/domains/brokers/routes.py
from fastapi import APIRouter, Depends

from prisma import Prisma
from src.core.database import get_db
from src.domains.auth.dependencies import get_auth_context
from src.domains.auth.types import AuthContext
from src.domains.brokers.models import BrokerHierarchyInfo
from src.domains.brokers.service import BrokerHierarchyService
from src.shared.exceptions import ForbiddenError
from src.shared.permissions.dependencies import require_specific_broker_access

router = APIRouter(prefix="/brokers", tags=["Brokers"])


@router.get(
    "/hierarchy",
    response_model=BrokerHierarchyInfo,
    operation_id="getMyBrokerHierarchy",
)
async def get_my_broker_hierarchy(
    context: AuthContext = Depends(get_auth_context),
    db: Prisma = Depends(get_db),
) -> BrokerHierarchyInfo:
    """
    Hierarchy information for the caller's own broker.

    System users have no broker and are refused.
    """
    if not context.broker_id:
        raise ForbiddenError("Broker access required")

    service = BrokerHierarchyService(db)
    return await service.get_broker_hierarchy_info(context.broker_id)


@router.get(
    "/{broker_id}/hierarchy",
    response_model=BrokerHierarchyInfo,
    operation_id="getBrokerHierarchy",
)
async def get_broker_hierarchy(
    broker_id: str = Depends(require_specific_broker_access),
    db: Prisma = Depends(get_db),
) -> BrokerHierarchyInfo:
    """Hierarchy information for a broker within the caller's hierarchy."""
    service = BrokerHierarchyService(db)
    return await service.get_broker_hierarchy_info(broker_id)
