from typing import List, Optional

from keepsake.core.remote import effective_timeout, remote_call
from keepsake.modules.groups.schemas import GroupMemberResponse
from keepsake.modules.groups.store import GroupStore


class MembershipView:
    """Read-only projection of a group's members and their admin flags."""

    def __init__(self, store: GroupStore, timeout: Optional[float] = None):
        self.store = store
        self.timeout = timeout

    async def members(self, group_id: str, timeout: Optional[float] = None) -> List[GroupMemberResponse]:
        members = await remote_call(
            self.store.list_members(group_id), "list_members", effective_timeout(timeout, self.timeout)
        )
        return sorted(members, key=_join_order)

    async def member(
        self, group_id: str, user_id: str, timeout: Optional[float] = None
    ) -> Optional[GroupMemberResponse]:
        return await remote_call(
            self.store.get_member(group_id, user_id), "get_member", effective_timeout(timeout, self.timeout)
        )

    async def is_member(self, group_id: str, user_id: str, timeout: Optional[float] = None) -> bool:
        return await self.member(group_id, user_id, timeout) is not None


def _join_order(member: GroupMemberResponse):
    # Members without a join time sort last
    return (member.joined_at is None, member.joined_at.timestamp() if member.joined_at else 0.0)
