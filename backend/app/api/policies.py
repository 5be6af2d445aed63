"""Public policy documents and customer acceptance."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_session, raise_service_error
from backend.app.core.auth import get_current_customer
from backend.app.schemas import PolicyAcceptBody
from backend.app.services.policies import PolicyService, PolicyServiceError

router = APIRouter()


@router.get("/policies/{policy_type}")
async def get_active_policy(
    policy_type: str,
    session: AsyncSession = Depends(get_session),
):
    try:
        policy = await PolicyService(session).get_active(policy_type)
    except PolicyServiceError as e:
        await raise_service_error(session, e)
    return PolicyService.policy_to_dict(policy)


@router.post("/policies/accept", status_code=201)
async def accept_policy(
    data: PolicyAcceptBody,
    customer_id: int = Depends(get_current_customer),
    session: AsyncSession = Depends(get_session),
):
    try:
        result = await PolicyService(session).accept(customer_id, data.policy_id, data.context, data.order_id)
        await session.commit()
    except PolicyServiceError as e:
        await raise_service_error(session, e)
    return result
