"""
Backing-store capability for groups, memberships and join requests.

GroupStore declares the primitive reads and writes the lifecycle manager needs
and implements the three-step admin transfer on top of them. SupabaseGroupStore
is the production implementation; tests substitute an in-memory subclass.
"""

from datetime import datetime, timezone
from typing import List, Optional

from supabase import AsyncClient

from keepsake.core.errors import ConsistencyError, ConsistencyReason, NotFoundError, RemoteError
from keepsake.core.remote import remote_call
from keepsake.modules.groups.schemas import (
    GroupResponse, GroupMemberResponse, JoinRequestResponse, JoinRequestStatus
)


MEMBER_COLUMNS = "group_id, user_id, is_admin, joined_at, profiles(name, email)"

# Outcomes reported by the transfer_group_admin database function
TRANSFER_OK = "ok"
TRANSFER_GROUP_MISSING = "group_missing"
TRANSFER_TARGET_MISSING = "target_missing"
TRANSFER_ADMIN_CHANGED = "admin_changed"


class GroupStore:
    async def find_group_by_code(self, code: str) -> Optional[GroupResponse]:
        raise NotImplementedError

    async def get_group(self, group_id: str) -> Optional[GroupResponse]:
        raise NotImplementedError

    async def list_groups_for_user(self, user_id: str) -> List[GroupResponse]:
        raise NotImplementedError

    async def insert_group(self, name: str, code: str, admin_id: str) -> GroupResponse:
        raise NotImplementedError

    async def delete_group(self, group_id: str) -> bool:
        raise NotImplementedError

    async def swap_admin(self, group_id: str, expected_admin_id: str, new_admin_id: str) -> bool:
        """Set groups.admin_id to new_admin_id only if it still equals expected_admin_id."""
        raise NotImplementedError

    async def insert_member(self, group_id: str, user_id: str, is_admin: bool = False) -> GroupMemberResponse:
        raise NotImplementedError

    async def list_members(self, group_id: str) -> List[GroupMemberResponse]:
        raise NotImplementedError

    async def get_member(self, group_id: str, user_id: str) -> Optional[GroupMemberResponse]:
        raise NotImplementedError

    async def set_member_admin(self, group_id: str, user_id: str, is_admin: bool) -> bool:
        raise NotImplementedError

    async def delete_member(self, group_id: str, user_id: str) -> bool:
        raise NotImplementedError

    async def delete_member_unless_admin(self, group_id: str, user_id: str) -> bool:
        """
        Delete the membership unless user_id is the group's admin_id.

        The admin_id check and the delete must be one atomic write. Returns
        False when nothing was deleted, either because the user is the admin
        or because the membership is already gone.
        """
        raise NotImplementedError

    async def find_pending_request(self, group_id: str, user_id: str) -> Optional[JoinRequestResponse]:
        raise NotImplementedError

    async def insert_join_request(self, group_id: str, user_id: str) -> JoinRequestResponse:
        raise NotImplementedError

    async def get_join_request(self, request_id: str) -> Optional[JoinRequestResponse]:
        raise NotImplementedError

    async def list_pending_requests(self, group_id: str) -> List[JoinRequestResponse]:
        raise NotImplementedError

    async def review_join_request(self, request_id: str, status: JoinRequestStatus, reviewer_id: str) -> bool:
        """Move a pending request to status. Returns False if it was no longer pending."""
        raise NotImplementedError

    async def transfer_admin(
        self,
        group_id: str,
        leaving_user_id: str,
        target_user_id: str,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Hand the admin pointer to target_user_id and remove leaving_user_id.

        Runs three independently idempotent writes in order: flag the target
        as admin, compare-and-swap groups.admin_id, delete the leaving member.
        After the swap the target's membership is re-read; if the target left
        in the meantime the pointer is handed back and ADMIN_CHANGED raised.
        A failure surfaces as RemoteError with the failing step; earlier steps
        are not rolled back. Override with a single transaction where the
        backing store offers one.
        """
        operation = "transfer_admin"

        updated = await remote_call(
            self.set_member_admin(group_id, target_user_id, True), operation, timeout, step=1
        )
        if not updated:
            raise NotFoundError(f"User {target_user_id} is no longer a member of group {group_id}")

        swapped = await remote_call(
            self.swap_admin(group_id, leaving_user_id, target_user_id), operation, timeout, step=2
        )
        if not swapped:
            group = await remote_call(self.get_group(group_id), operation, timeout, step=2)
            if group is None:
                raise NotFoundError(f"Group {group_id} not found")
            if group.admin_id != target_user_id:
                raise ConsistencyError(
                    f"Admin of group {group_id} changed concurrently to {group.admin_id}",
                    ConsistencyReason.ADMIN_CHANGED,
                )

        # The target may have left between step 1 and the swap. Once the swap
        # lands, delete_member_unless_admin refuses to remove them, so a
        # membership seen here stays until step 3 is done.
        target = await remote_call(self.get_member(group_id, target_user_id), operation, timeout, step=2)
        if target is None:
            await remote_call(
                self.swap_admin(group_id, target_user_id, leaving_user_id), operation, timeout, step=2
            )
            raise ConsistencyError(
                f"User {target_user_id} left group {group_id} during the admin transfer",
                ConsistencyReason.ADMIN_CHANGED,
            )

        await remote_call(self.delete_member(group_id, leaving_user_id), operation, timeout, step=3)


class SupabaseGroupStore(GroupStore):
    def __init__(self, supabase: AsyncClient):
        self.supabase = supabase

    @staticmethod
    def _member(row: dict) -> GroupMemberResponse:
        profile = row.get("profiles") or {}
        return GroupMemberResponse(
            group_id=row["group_id"],
            user_id=row["user_id"],
            name=profile.get("name"),
            email=profile.get("email"),
            is_admin=_as_bool(row.get("is_admin")),
            joined_at=row.get("joined_at"),
        )

    async def find_group_by_code(self, code: str) -> Optional[GroupResponse]:
        result = await self.supabase.table("groups")\
            .select("*")\
            .eq("code", code)\
            .limit(1)\
            .execute()
        if not result.data:
            return None
        return GroupResponse(**result.data[0])

    async def get_group(self, group_id: str) -> Optional[GroupResponse]:
        result = await self.supabase.table("groups")\
            .select("*")\
            .eq("id", group_id)\
            .limit(1)\
            .execute()
        if not result.data:
            return None
        return GroupResponse(**result.data[0])

    async def list_groups_for_user(self, user_id: str) -> List[GroupResponse]:
        members_result = await self.supabase.table("group_members")\
            .select("group_id")\
            .eq("user_id", user_id)\
            .execute()
        if not members_result.data:
            return []
        group_ids = [m["group_id"] for m in members_result.data]
        result = await self.supabase.table("groups")\
            .select("*")\
            .in_("id", group_ids)\
            .order("created_at", desc=True)\
            .execute()
        return [GroupResponse(**group) for group in result.data]

    async def insert_group(self, name: str, code: str, admin_id: str) -> GroupResponse:
        result = await self.supabase.table("groups").insert({
            "name": name,
            "code": code,
            "admin_id": admin_id,
            "created_by": admin_id,
        }).execute()
        if not result.data:
            raise RuntimeError("Insert into groups returned no rows")
        return GroupResponse(**result.data[0])

    async def delete_group(self, group_id: str) -> bool:
        # Children first; the groups row goes last so a partial failure leaves a retryable group
        await self.supabase.table("memory_groups")\
            .delete()\
            .eq("group_id", group_id)\
            .execute()
        await self.supabase.table("join_requests")\
            .delete()\
            .eq("group_id", group_id)\
            .execute()
        await self.supabase.table("group_members")\
            .delete()\
            .eq("group_id", group_id)\
            .execute()
        result = await self.supabase.table("groups")\
            .delete()\
            .eq("id", group_id)\
            .execute()
        return len(result.data) > 0

    async def swap_admin(self, group_id: str, expected_admin_id: str, new_admin_id: str) -> bool:
        result = await self.supabase.table("groups")\
            .update({"admin_id": new_admin_id})\
            .eq("id", group_id)\
            .eq("admin_id", expected_admin_id)\
            .execute()
        return bool(result.data)

    async def insert_member(self, group_id: str, user_id: str, is_admin: bool = False) -> GroupMemberResponse:
        result = await self.supabase.table("group_members").insert({
            "group_id": group_id,
            "user_id": user_id,
            "is_admin": is_admin,
        }).execute()
        if not result.data:
            raise RuntimeError("Insert into group_members returned no rows")
        return self._member(result.data[0])

    async def list_members(self, group_id: str) -> List[GroupMemberResponse]:
        result = await self.supabase.table("group_members")\
            .select(MEMBER_COLUMNS)\
            .eq("group_id", group_id)\
            .order("joined_at")\
            .execute()
        return [self._member(row) for row in result.data or []]

    async def get_member(self, group_id: str, user_id: str) -> Optional[GroupMemberResponse]:
        result = await self.supabase.table("group_members")\
            .select(MEMBER_COLUMNS)\
            .eq("group_id", group_id)\
            .eq("user_id", user_id)\
            .limit(1)\
            .execute()
        if not result.data:
            return None
        return self._member(result.data[0])

    async def set_member_admin(self, group_id: str, user_id: str, is_admin: bool) -> bool:
        result = await self.supabase.table("group_members")\
            .update({"is_admin": is_admin})\
            .eq("group_id", group_id)\
            .eq("user_id", user_id)\
            .execute()
        return bool(result.data)

    async def delete_member(self, group_id: str, user_id: str) -> bool:
        result = await self.supabase.table("group_members")\
            .delete()\
            .eq("group_id", group_id)\
            .eq("user_id", user_id)\
            .execute()
        return len(result.data) > 0

    async def delete_member_unless_admin(self, group_id: str, user_id: str) -> bool:
        # remove_group_member locks the groups row, see models.py
        result = await self.supabase.rpc(
            "remove_group_member", {"p_group_id": group_id, "p_user_id": user_id}
        ).execute()
        return bool(result.data)

    async def transfer_admin(
        self,
        group_id: str,
        leaving_user_id: str,
        target_user_id: str,
        timeout: Optional[float] = None,
    ) -> None:
        """All three steps in one transaction; a RemoteError here carries no step since nothing is partial."""
        result = await remote_call(
            self.supabase.rpc("transfer_group_admin", {
                "p_group_id": group_id,
                "p_leaving_user_id": leaving_user_id,
                "p_target_user_id": target_user_id,
            }).execute(),
            "transfer_admin",
            timeout,
        )
        outcome = result.data
        if outcome == TRANSFER_OK:
            return
        if outcome == TRANSFER_GROUP_MISSING:
            raise NotFoundError(f"Group {group_id} not found")
        if outcome == TRANSFER_TARGET_MISSING:
            raise NotFoundError(f"User {target_user_id} is no longer a member of group {group_id}")
        if outcome == TRANSFER_ADMIN_CHANGED:
            raise ConsistencyError(
                f"Admin of group {group_id} changed concurrently", ConsistencyReason.ADMIN_CHANGED
            )
        raise RemoteError(f"transfer_group_admin returned {outcome!r}", "transfer_admin")

    async def find_pending_request(self, group_id: str, user_id: str) -> Optional[JoinRequestResponse]:
        result = await self.supabase.table("join_requests")\
            .select("*")\
            .eq("group_id", group_id)\
            .eq("user_id", user_id)\
            .eq("status", JoinRequestStatus.PENDING.value)\
            .limit(1)\
            .execute()
        if not result.data:
            return None
        return JoinRequestResponse(**result.data[0])

    async def insert_join_request(self, group_id: str, user_id: str) -> JoinRequestResponse:
        result = await self.supabase.table("join_requests").insert({
            "group_id": group_id,
            "user_id": user_id,
            "status": JoinRequestStatus.PENDING.value,
        }).execute()
        if not result.data:
            raise RuntimeError("Insert into join_requests returned no rows")
        return JoinRequestResponse(**result.data[0])

    async def get_join_request(self, request_id: str) -> Optional[JoinRequestResponse]:
        result = await self.supabase.table("join_requests")\
            .select("*")\
            .eq("id", request_id)\
            .limit(1)\
            .execute()
        if not result.data:
            return None
        return JoinRequestResponse(**result.data[0])

    async def list_pending_requests(self, group_id: str) -> List[JoinRequestResponse]:
        result = await self.supabase.table("join_requests")\
            .select("*")\
            .eq("group_id", group_id)\
            .eq("status", JoinRequestStatus.PENDING.value)\
            .order("requested_at", desc=True)\
            .execute()
        return [JoinRequestResponse(**row) for row in result.data or []]

    async def review_join_request(self, request_id: str, status: JoinRequestStatus, reviewer_id: str) -> bool:
        result = await self.supabase.table("join_requests")\
            .update({
                "status": status.value,
                "reviewed_at": datetime.now(timezone.utc).isoformat(),
                "reviewed_by": reviewer_id,
            })\
            .eq("id", request_id)\
            .eq("status", JoinRequestStatus.PENDING.value)\
            .execute()
        return bool(result.data)


def _as_bool(value) -> bool:
    # is_admin has been stored as bool, 0/1 and "true"/"1" over time
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value == 1
    if isinstance(value, str):
        return value.lower() == "true" or value == "1"
    return False
