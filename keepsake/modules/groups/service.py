import logging
import secrets
import string
from typing import List, Optional

from keepsake.core.errors import (
    AuthorizationError, ConflictError, ConflictReason, ConsistencyError,
    ConsistencyReason, NotFoundError, RemoteError, ValidationError, ValidationReason
)
from keepsake.core.remote import effective_timeout, remote_call
from keepsake.modules.groups.membership import MembershipView
from keepsake.modules.groups.schemas import (
    GroupResponse, GroupMemberResponse, JoinRequestResponse, JoinRequestStatus
)
from keepsake.modules.groups.store import GroupStore

logger = logging.getLogger(__name__)

JOIN_CODE_LENGTH = 6
JOIN_CODE_ALPHABET = string.ascii_uppercase + string.digits
MIN_GROUP_NAME_LENGTH = 3


def generate_join_code() -> str:
    return "".join(secrets.choice(JOIN_CODE_ALPHABET) for _ in range(JOIN_CODE_LENGTH))


def normalize_join_code(code: str) -> str:
    normalized = (code or "").strip().upper()
    if len(normalized) != JOIN_CODE_LENGTH:
        raise ValidationError(
            f"Join code must be {JOIN_CODE_LENGTH} characters", ValidationReason.INVALID_CODE
        )
    return normalized


class GroupLifecycleManager:
    """
    Owns group creation, join requests, admin changes, leaving and deletion.

    Every non-empty group keeps exactly one admin_id pointer that refers to a
    current member who is flagged is_admin. All checks run before the first
    write; writes are never retried here.
    """

    def __init__(
        self,
        store: GroupStore,
        membership: Optional[MembershipView] = None,
        timeout: Optional[float] = None,
        max_code_attempts: int = 10,
        code_generator=generate_join_code,
    ):
        self.store = store
        self.membership = membership or MembershipView(store, timeout)
        self.timeout = timeout
        self.max_code_attempts = max_code_attempts
        self.code_generator = code_generator

    async def _remote(self, awaitable, operation: str, timeout: Optional[float], step: Optional[int] = None):
        return await remote_call(awaitable, operation, effective_timeout(timeout, self.timeout), step)

    async def get_group(self, group_id: str, timeout: Optional[float] = None) -> GroupResponse:
        group = await self._remote(self.store.get_group(group_id), "get_group", timeout)
        if group is None:
            raise NotFoundError(f"Group {group_id} not found")
        return group

    async def groups_for_user(self, user_id: str, timeout: Optional[float] = None) -> List[GroupResponse]:
        return await self._remote(self.store.list_groups_for_user(user_id), "list_groups_for_user", timeout)

    async def _require_admin(self, group_id: str, actor_id: str, timeout: Optional[float]) -> GroupResponse:
        group = await self.get_group(group_id, timeout)
        if group.admin_id != actor_id:
            raise AuthorizationError("Only the group admin can perform this action")
        return group

    async def _require_member(
        self, group_id: str, user_id: str, timeout: Optional[float]
    ) -> GroupMemberResponse:
        member = await self.membership.member(group_id, user_id, timeout)
        if member is None:
            raise NotFoundError(f"User {user_id} is not a member of group {group_id}")
        return member

    async def create(self, name: str, creator_id: str, timeout: Optional[float] = None) -> GroupResponse:
        """Create a group with the creator as its first member and admin."""
        name = (name or "").strip()
        if len(name) < MIN_GROUP_NAME_LENGTH:
            raise ValidationError(
                f"Group name must be at least {MIN_GROUP_NAME_LENGTH} characters",
                ValidationReason.INVALID_NAME,
            )

        code = None
        for _ in range(self.max_code_attempts):
            candidate = self.code_generator()
            existing = await self._remote(self.store.find_group_by_code(candidate), "find_group_by_code", timeout)
            if existing is None:
                code = candidate
                break
            logger.debug(f"Join code collision on {candidate}, regenerating")
        if code is None:
            raise ConflictError(
                f"Could not allocate a unique join code after {self.max_code_attempts} attempts",
                ConflictReason.CODE_EXHAUSTED,
            )

        group = await self._remote(self.store.insert_group(name, code, creator_id), "insert_group", timeout)
        try:
            await self._remote(
                self.store.insert_member(group.id, creator_id, is_admin=True), "insert_member", timeout
            )
        except RemoteError:
            # A group row without its admin member breaks the admin invariant
            await self._discard_group(group.id, timeout)
            raise
        logger.info(f"Created group {group.id} ({group.name}) with admin {creator_id}")
        return group

    async def _discard_group(self, group_id: str, timeout: Optional[float]) -> None:
        try:
            await self._remote(self.store.delete_group(group_id), "delete_group", timeout)
            logger.warning(f"Removed group {group_id} after its creator could not be added")
        except RemoteError as e:
            logger.error(f"Could not remove half-created group {group_id}: {e.detail}")

    async def request_join(self, code: str, user_id: str, timeout: Optional[float] = None) -> JoinRequestResponse:
        """File a pending join request; membership is granted only on approval."""
        code = normalize_join_code(code)
        group = await self._remote(self.store.find_group_by_code(code), "find_group_by_code", timeout)
        if group is None:
            raise NotFoundError(f"No group with code {code}")
        if await self.membership.is_member(group.id, user_id, timeout):
            raise ConflictError("Already a member of this group", ConflictReason.ALREADY_MEMBER)
        pending = await self._remote(
            self.store.find_pending_request(group.id, user_id), "find_pending_request", timeout
        )
        if pending is not None:
            raise ConflictError(
                "A join request for this group is already pending", ConflictReason.REQUEST_PENDING
            )
        request = await self._remote(
            self.store.insert_join_request(group.id, user_id), "insert_join_request", timeout
        )
        logger.info(f"User {user_id} requested to join group {group.id}")
        return request

    async def pending_requests(
        self, group_id: str, actor_id: str, timeout: Optional[float] = None
    ) -> List[JoinRequestResponse]:
        await self._require_admin(group_id, actor_id, timeout)
        return await self._remote(self.store.list_pending_requests(group_id), "list_pending_requests", timeout)

    async def _pending_request_for(
        self, group_id: str, request_id: str, timeout: Optional[float]
    ) -> JoinRequestResponse:
        request = await self._remote(self.store.get_join_request(request_id), "get_join_request", timeout)
        if request is None or request.group_id != group_id:
            raise NotFoundError(f"Join request {request_id} not found")
        if request.status != JoinRequestStatus.PENDING:
            raise ConflictError(
                f"Join request {request_id} is already {request.status.value}",
                ConflictReason.REQUEST_NOT_PENDING,
            )
        return request

    async def approve_request(
        self, group_id: str, actor_id: str, request_id: str, timeout: Optional[float] = None
    ) -> GroupMemberResponse:
        await self._require_admin(group_id, actor_id, timeout)
        request = await self._pending_request_for(group_id, request_id, timeout)

        reviewed = await self._remote(
            self.store.review_join_request(request_id, JoinRequestStatus.APPROVED, actor_id),
            "review_join_request", timeout,
        )
        if not reviewed:
            raise ConflictError(
                f"Join request {request_id} was reviewed concurrently", ConflictReason.REQUEST_NOT_PENDING
            )

        existing = await self.membership.member(group_id, request.user_id, timeout)
        if existing is not None:
            return existing
        member = await self._remote(
            self.store.insert_member(group_id, request.user_id, is_admin=False), "insert_member", timeout
        )
        logger.info(f"Approved join request {request_id}; {request.user_id} joined group {group_id}")
        return member

    async def reject_request(
        self, group_id: str, actor_id: str, request_id: str, timeout: Optional[float] = None
    ) -> None:
        await self._require_admin(group_id, actor_id, timeout)
        await self._pending_request_for(group_id, request_id, timeout)
        reviewed = await self._remote(
            self.store.review_join_request(request_id, JoinRequestStatus.REJECTED, actor_id),
            "review_join_request", timeout,
        )
        if not reviewed:
            raise ConflictError(
                f"Join request {request_id} was reviewed concurrently", ConflictReason.REQUEST_NOT_PENDING
            )
        logger.info(f"Rejected join request {request_id} for group {group_id}")

    async def promote(
        self, group_id: str, actor_id: str, target_user_id: str, timeout: Optional[float] = None
    ) -> GroupMemberResponse:
        await self._require_admin(group_id, actor_id, timeout)
        member = await self._require_member(group_id, target_user_id, timeout)
        if member.is_admin:
            return member
        await self._remote(
            self.store.set_member_admin(group_id, target_user_id, True), "set_member_admin", timeout
        )
        logger.info(f"Promoted {target_user_id} to admin in group {group_id}")
        return member.model_copy(update={"is_admin": True})

    async def remove_member(
        self, group_id: str, actor_id: str, target_user_id: str, timeout: Optional[float] = None
    ) -> None:
        group = await self._require_admin(group_id, actor_id, timeout)
        # Only the admin_id holder gets here, so this also covers self-removal
        if target_user_id == group.admin_id:
            raise ConsistencyError(
                "The group admin cannot be removed; transfer admin or delete the group",
                ConsistencyReason.ADMIN_REMOVAL,
            )
        await self._require_member(group_id, target_user_id, timeout)
        removed = await self._remote(
            self.store.delete_member_unless_admin(group_id, target_user_id), "delete_member_unless_admin", timeout
        )
        if not removed:
            await self._explain_refused_delete(group_id, target_user_id, ConsistencyError(
                "The group admin cannot be removed; transfer admin or delete the group",
                ConsistencyReason.ADMIN_REMOVAL,
            ), timeout)
        logger.info(f"Removed {target_user_id} from group {group_id}")

    async def leave(self, group_id: str, user_id: str, timeout: Optional[float] = None) -> None:
        group = await self.get_group(group_id, timeout)
        members = await self.membership.members(group_id, timeout)
        if not any(m.user_id == user_id for m in members):
            raise NotFoundError(f"User {user_id} is not a member of group {group_id}")
        if len(members) == 1:
            raise ConsistencyError(
                "You are the only member; delete the group instead",
                ConsistencyReason.MUST_DELETE_INSTEAD,
            )
        if user_id == group.admin_id:
            # A replacement must be named explicitly even if other members are already flagged admin
            raise ConsistencyError(
                "Choose a new admin before leaving the group",
                ConsistencyReason.TRANSFER_REQUIRED,
            )
        removed = await self._remote(
            self.store.delete_member_unless_admin(group_id, user_id), "delete_member_unless_admin", timeout
        )
        if not removed:
            await self._explain_refused_delete(group_id, user_id, ConsistencyError(
                "Choose a new admin before leaving the group",
                ConsistencyReason.TRANSFER_REQUIRED,
            ), timeout)
        logger.info(f"User {user_id} left group {group_id}")

    async def _explain_refused_delete(
        self, group_id: str, user_id: str, admin_error: ConsistencyError, timeout: Optional[float]
    ) -> None:
        # The checks above passed, so the group changed underneath us
        group = await self.get_group(group_id, timeout)
        if group.admin_id == user_id:
            raise admin_error
        raise NotFoundError(f"User {user_id} is not a member of group {group_id}")

    async def transfer_admin_and_leave(
        self,
        group_id: str,
        leaving_user_id: str,
        target_user_id: str,
        timeout: Optional[float] = None,
    ) -> GroupResponse:
        group = await self.get_group(group_id, timeout)
        if group.admin_id != leaving_user_id:
            raise AuthorizationError("Only the group admin can transfer admin rights")
        if target_user_id == leaving_user_id:
            raise ValidationError("Choose another member as the new admin", ValidationReason.INVALID_TARGET)
        if not await self.membership.is_member(group_id, target_user_id, timeout):
            raise ValidationError(
                f"User {target_user_id} is not a member of group {group_id}", ValidationReason.INVALID_TARGET
            )

        await self.store.transfer_admin(group_id, leaving_user_id, target_user_id, effective_timeout(timeout, self.timeout))
        logger.info(f"Admin of group {group_id} moved from {leaving_user_id} to {target_user_id}; {leaving_user_id} left")
        return group.model_copy(update={"admin_id": target_user_id})

    async def delete(self, group_id: str, actor_id: str, timeout: Optional[float] = None) -> None:
        await self._require_admin(group_id, actor_id, timeout)
        await self._remote(self.store.delete_group(group_id), "delete_group", timeout)
        logger.info(f"Deleted group {group_id}")
