from fastapi import APIRouter, Depends
from keepsake.config import settings
from keepsake.database.supabase_client import get_supabase
from keepsake.modules.groups.schemas import (
    GroupCreate, GroupResponse, GroupMemberResponse,
    JoinGroupRequest, JoinRequestResponse, MemberTarget
)
from keepsake.modules.groups.service import GroupLifecycleManager
from keepsake.modules.groups.store import SupabaseGroupStore
from keepsake.core.dependencies import get_current_user_id
from keepsake.core.errors import AuthorizationError
from supabase import AsyncClient
from typing import List, Dict

router = APIRouter(prefix="/groups", tags=["groups"])


def get_group_manager(supabase: AsyncClient = Depends(get_supabase)) -> GroupLifecycleManager:
    return GroupLifecycleManager(
        SupabaseGroupStore(supabase),
        timeout=settings.remote_timeout_seconds,
        max_code_attempts=settings.join_code_max_attempts,
    )


@router.post("", response_model=GroupResponse, status_code=201)
async def create_group(
    group_data: GroupCreate,
    current_user: Dict = Depends(get_current_user_id),
    manager: GroupLifecycleManager = Depends(get_group_manager)
):
    """Create a new group with the caller as admin"""
    return await manager.create(group_data.name, current_user["id"])


@router.get("", response_model=List[GroupResponse])
async def list_my_groups(
    current_user: Dict = Depends(get_current_user_id),
    manager: GroupLifecycleManager = Depends(get_group_manager)
):
    """List groups the caller is a member of"""
    return await manager.groups_for_user(current_user["id"])


@router.post("/join-requests", response_model=JoinRequestResponse, status_code=201)
async def request_join(
    join_data: JoinGroupRequest,
    current_user: Dict = Depends(get_current_user_id),
    manager: GroupLifecycleManager = Depends(get_group_manager)
):
    """Ask to join a group by its 6-character code"""
    return await manager.request_join(join_data.code, current_user["id"])


@router.get("/{group_id}/members", response_model=List[GroupMemberResponse])
async def list_members(
    group_id: str,
    current_user: Dict = Depends(get_current_user_id),
    manager: GroupLifecycleManager = Depends(get_group_manager)
):
    """List all members of a group (only if caller is a member)"""
    members = await manager.membership.members(group_id)
    if not any(m.user_id == current_user["id"] for m in members):
        raise AuthorizationError("You must be a member of this group")
    return members


@router.get("/{group_id}/join-requests", response_model=List[JoinRequestResponse])
async def list_join_requests(
    group_id: str,
    current_user: Dict = Depends(get_current_user_id),
    manager: GroupLifecycleManager = Depends(get_group_manager)
):
    """List pending join requests (admin only)"""
    return await manager.pending_requests(group_id, current_user["id"])


@router.post("/{group_id}/join-requests/{request_id}/approve", response_model=GroupMemberResponse)
async def approve_join_request(
    group_id: str,
    request_id: str,
    current_user: Dict = Depends(get_current_user_id),
    manager: GroupLifecycleManager = Depends(get_group_manager)
):
    return await manager.approve_request(group_id, current_user["id"], request_id)


@router.post("/{group_id}/join-requests/{request_id}/reject", status_code=204)
async def reject_join_request(
    group_id: str,
    request_id: str,
    current_user: Dict = Depends(get_current_user_id),
    manager: GroupLifecycleManager = Depends(get_group_manager)
):
    await manager.reject_request(group_id, current_user["id"], request_id)
    return None


@router.post("/{group_id}/admins", response_model=GroupMemberResponse)
async def promote_member(
    group_id: str,
    target: MemberTarget,
    current_user: Dict = Depends(get_current_user_id),
    manager: GroupLifecycleManager = Depends(get_group_manager)
):
    """Flag a member as admin (group admin only)"""
    return await manager.promote(group_id, current_user["id"], target.user_id)


@router.delete("/{group_id}/members/{user_id}", status_code=204)
async def remove_member(
    group_id: str,
    user_id: str,
    current_user: Dict = Depends(get_current_user_id),
    manager: GroupLifecycleManager = Depends(get_group_manager)
):
    """Remove another member from the group (group admin only)"""
    await manager.remove_member(group_id, current_user["id"], user_id)
    return None


@router.post("/{group_id}/leave", status_code=204)
async def leave_group(
    group_id: str,
    current_user: Dict = Depends(get_current_user_id),
    manager: GroupLifecycleManager = Depends(get_group_manager)
):
    """Leave a group. The admin must use transfer-and-leave instead."""
    await manager.leave(group_id, current_user["id"])
    return None


@router.post("/{group_id}/transfer-and-leave", response_model=GroupResponse)
async def transfer_admin_and_leave(
    group_id: str,
    target: MemberTarget,
    current_user: Dict = Depends(get_current_user_id),
    manager: GroupLifecycleManager = Depends(get_group_manager)
):
    """Hand admin to another member, then leave"""
    return await manager.transfer_admin_and_leave(group_id, current_user["id"], target.user_id)


@router.delete("/{group_id}", status_code=204)
async def delete_group(
    group_id: str,
    current_user: Dict = Depends(get_current_user_id),
    manager: GroupLifecycleManager = Depends(get_group_manager)
):
    """Delete group with its members, join requests and memory links (admin only)"""
    await manager.delete(group_id, current_user["id"])
    return None
