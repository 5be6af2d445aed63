# backend/app/services/policies.py
"""Policy documents shown at registration and checkout, and their acceptances."""
from typing import Optional, Dict, Any, List

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import POLICY_TYPES
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.core.password_validation import sanitize_user_input
from backend.app.models.policy import PolicyDocument, PolicyAcceptance

logger = get_logger(__name__)


class PolicyServiceError(ServiceError):
    """Base exception for policy service errors."""


class PolicyNotFoundError(PolicyServiceError):
    def __init__(self, ref):
        super().__init__(f"Política {ref} não encontrada", 404)


class InvalidPolicyTypeError(PolicyServiceError):
    def __init__(self, policy_type: str):
        super().__init__(
            f"Tipo de política inválido: {policy_type}. Válidos: {', '.join(POLICY_TYPES)}", 400
        )


def _check_type(policy_type: str) -> None:
    if policy_type not in POLICY_TYPES:
        raise InvalidPolicyTypeError(policy_type)


class PolicyService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_active(self, policy_type: str) -> PolicyDocument:
        _check_type(policy_type)
        result = await self.session.execute(
            select(PolicyDocument)
            .where(PolicyDocument.type == policy_type, PolicyDocument.active == True)
            .order_by(PolicyDocument.id.desc())
            .limit(1)
        )
        policy = result.scalar_one_or_none()
        if not policy:
            raise PolicyNotFoundError(policy_type)
        return policy

    async def list_policies(self, policy_type: Optional[str] = None) -> List[Dict[str, Any]]:
        query = select(PolicyDocument).order_by(PolicyDocument.type, PolicyDocument.id.desc())
        if policy_type:
            _check_type(policy_type)
            query = query.where(PolicyDocument.type == policy_type)
        result = await self.session.execute(query)
        return [self.policy_to_dict(p) for p in result.scalars().all()]

    async def get_policy(self, policy_id: int) -> PolicyDocument:
        policy = await self.session.get(PolicyDocument, policy_id)
        if not policy:
            raise PolicyNotFoundError(policy_id)
        return policy

    async def _deactivate_others(self, policy_type: str, keep_id: Optional[int] = None) -> None:
        stmt = update(PolicyDocument).where(PolicyDocument.type == policy_type, PolicyDocument.active == True)
        if keep_id is not None:
            stmt = stmt.where(PolicyDocument.id != keep_id)
        await self.session.execute(stmt.values(active=False).execution_options(synchronize_session="fetch"))

    async def create_policy(self, policy_type: str, title: str, content: str, active: bool = True) -> Dict[str, Any]:
        """New document; an active one replaces the current active document of its type."""
        _check_type(policy_type)
        if active:
            await self._deactivate_others(policy_type)
        policy = PolicyDocument(
            type=policy_type,
            title=sanitize_user_input(title, 255),
            content=sanitize_user_input(content),
            active=active,
        )
        self.session.add(policy)
        await self.session.flush()
        logger.info("Policy created", policy_id=policy.id, type=policy_type, active=active)
        return self.policy_to_dict(policy)

    async def update_policy(self, policy_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        policy = await self.get_policy(policy_id)
        if data.get("title") is not None:
            policy.title = sanitize_user_input(data["title"], 255)
        if data.get("content") is not None:
            policy.content = sanitize_user_input(data["content"])
        if data.get("active") is not None:
            if data["active"]:
                await self._deactivate_others(policy.type, keep_id=policy.id)
            policy.active = bool(data["active"])
        await self.session.flush()
        return self.policy_to_dict(policy)

    async def delete_policy(self, policy_id: int) -> None:
        policy = await self.get_policy(policy_id)
        await self.session.delete(policy)
        await self.session.flush()
        logger.info("Policy deleted", policy_id=policy_id)

    async def accept(
        self,
        customer_id: int,
        policy_id: int,
        context: str,
        order_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        policy = await self.get_policy(policy_id)
        _check_type(context)
        acceptance = PolicyAcceptance(
            customer_id=customer_id, policy_id=policy.id, context=context, order_id=order_id
        )
        self.session.add(acceptance)
        await self.session.flush()
        logger.info("Policy accepted", customer_id=customer_id, policy_id=policy.id, context=context)
        return self.acceptance_to_dict(acceptance)

    async def customer_acceptances(self, customer_id: int) -> List[Dict[str, Any]]:
        result = await self.session.execute(
            select(PolicyAcceptance)
            .where(PolicyAcceptance.customer_id == customer_id)
            .order_by(PolicyAcceptance.accepted_at.desc(), PolicyAcceptance.id.desc())
        )
        return [self.acceptance_to_dict(a) for a in result.scalars().all()]

    @staticmethod
    def policy_to_dict(policy: PolicyDocument) -> Dict[str, Any]:
        return {
            "id": policy.id,
            "type": policy.type,
            "title": policy.title,
            "content": policy.content,
            "active": bool(policy.active),
            "created_at": policy.created_at.isoformat() if policy.created_at else None,
            "updated_at": policy.updated_at.isoformat() if policy.updated_at else None,
        }

    @staticmethod
    def acceptance_to_dict(acceptance: PolicyAcceptance) -> Dict[str, Any]:
        return {
            "id": acceptance.id,
            "customer_id": acceptance.customer_id,
            "policy_id": acceptance.policy_id,
            "context": acceptance.context,
            "order_id": acceptance.order_id,
            "accepted_at": acceptance.accepted_at.isoformat() if acceptance.accepted_at else None,
        }
