import pytest

from payflow import User, WorkflowInstance
from payflow.approvers import ApproverResolver
from payflow.contracts import ApproverSpec, NodeStatus, RecipientScope


@pytest.fixture
def resolver(directory) -> ApproverResolver:
    return ApproverResolver(directory)


@pytest.mark.asyncio
async def test_role_resolves_active_members_of_org(resolver, directory):
    directory.add_user(
        User(id="u-fin3", email="fin3@example.com", role="FINANCE", org_id="org-1", active=False)
    )
    users = await resolver.resolve(ApproverSpec(type="ROLE", value="FINANCE"), "org-1")
    assert [u.id for u in users] == ["u-fin1", "u-fin2"]


@pytest.mark.asyncio
async def test_user_spec_resolves_single_user(resolver):
    users = await resolver.resolve(ApproverSpec(type="USER", value="u-mgr"), "org-1")
    assert [u.id for u in users] == ["u-mgr"]
    assert await resolver.resolve(ApproverSpec(type="USER", value="ghost"), "org-1") == []
    assert await resolver.resolve(ApproverSpec(value="AUDITOR"), "org-1") == []


@pytest.mark.asyncio
async def test_stakeholders_and_recipient_scopes(
    resolver, condition_graph, make_request, requester, organization
):
    instance = WorkflowInstance.create(condition_graph(), make_request(), requester, organization)
    instance.start_node("manager")
    instance.state("manager").assignees = ["u-mgr"]
    instance.resolve_node("manager", NodeStatus.COMPLETED, decided_by="u-mgr")
    instance.start_node("finance")
    instance.state("finance").assignees = ["u-fin1", "u-fin2"]

    stakeholders = await resolver.stakeholders(instance)
    assert [u.id for u in stakeholders] == ["u-req", "u-mgr", "u-admin"]

    async def ids(scope, role=None):
        return [u.id for u in await resolver.recipients(scope, instance, role)]

    assert await ids(RecipientScope.REQUESTER) == ["u-req"]
    assert await ids(RecipientScope.APPROVERS) == ["u-mgr", "u-fin1", "u-fin2"]
    assert await ids(RecipientScope.ORG_ADMINS) == ["u-admin"]
    assert await ids(RecipientScope.ROLE, "MANAGER") == ["u-mgr"]
    assert await ids(RecipientScope.ROLE) == []


@pytest.mark.asyncio
async def test_system_actor_is_never_a_recipient(resolver):
    users = await resolver.users_by_id(["system", "u-req", "u-req", "ghost"])
    assert [u.id for u in users] == ["u-req"]
