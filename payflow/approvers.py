"""Resolution of approver specifications and notification audiences."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from .constants import DEFAULT_ADMIN_ROLE, DEFAULT_SYSTEM_ACTOR
from .contracts import (
    ApproverSpec,
    ApproverType,
    RecipientScope,
    User,
    WorkflowInstance,
)
from .identity import IdentityResolver

logger = logging.getLogger(__name__)


def _unique(users: Iterable[Optional[User]]) -> List[User]:
    seen = set()
    result: List[User] = []
    for user in users:
        if user is None or user.id in seen:
            continue
        seen.add(user.id)
        result.append(user)
    return result


class ApproverResolver:
    """Turns abstract approver specs and recipient scopes into users."""

    def __init__(
        self,
        identity: IdentityResolver,
        admin_role: str = DEFAULT_ADMIN_ROLE,
        system_actor: str = DEFAULT_SYSTEM_ACTOR,
    ) -> None:
        self._identity = identity
        self._admin_role = admin_role
        self._system_actor = system_actor

    async def resolve(self, spec: ApproverSpec, org_id: str) -> List[User]:
        """Return the users eligible to decide a node.

        A ``USER`` spec yields at most one user. A ``ROLE`` spec yields every
        active member of ``org_id`` holding the role. An empty result is left
        for the caller to treat as a configuration error.
        """
        if spec.type == ApproverType.USER:
            user = await self._identity.get_user(spec.value)
            if user is None:
                logger.warning(f"Approver user {spec.value} not found")
            return _unique([user])
        users = await self.users_with_role(org_id, spec.value)
        return [u for u in users if u.active]

    async def users_with_role(self, org_id: str, role: str) -> List[User]:
        users = await self._identity.list_users(org_id)
        return _unique(u for u in users if u.role == role)

    async def users_by_id(self, user_ids: Iterable[str]) -> List[User]:
        users = []
        for user_id in user_ids:
            if user_id == self._system_actor:
                continue
            users.append(await self._identity.get_user(user_id))
        return _unique(users)

    async def stakeholders(self, instance: WorkflowInstance) -> List[User]:
        """Requester, every human who decided a node, and organization admins."""
        people = await self.users_by_id(
            [instance.metadata.requester_id, *instance.decided_by_users()]
        )
        admins = await self.users_with_role(instance.org_id, self._admin_role)
        return _unique([*people, *admins])

    async def recipients(
        self,
        scope: RecipientScope,
        instance: WorkflowInstance,
        role: Optional[str] = None,
    ) -> List[User]:
        if scope == RecipientScope.STAKEHOLDERS:
            return await self.stakeholders(instance)
        if scope == RecipientScope.REQUESTER:
            return await self.users_by_id([instance.metadata.requester_id])
        if scope == RecipientScope.APPROVERS:
            assignees = [
                user_id
                for state in instance.node_states.values()
                for user_id in state.assignees
            ]
            return await self.users_by_id(assignees)
        if scope == RecipientScope.ORG_ADMINS:
            return await self.users_with_role(instance.org_id, self._admin_role)
        if scope == RecipientScope.ROLE:
            if not role:
                logger.warning(f"Role recipient scope without a role on instance {instance.id}")
                return []
            users = await self.users_with_role(instance.org_id, role)
            return [u for u in users if u.active]
        raise ValueError(f"Unsupported recipient scope: {scope}")
