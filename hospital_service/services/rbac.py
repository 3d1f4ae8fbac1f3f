"""Role-Based Access Control (RBAC) service.

Every decision is a pure function of the subject's stored record, the
static permission catalog and the injected clock. Denials come back as
AccessDecision values with a reason code; only authorize() raises.

Evaluation order (first denial wins):
    1. subject linked to the hospital and active
    2. temporal restrictions (role window, weekends, per-user hours)
    3. role catalog, with custom "resource:action" grants added on top
    4. document conditions (allowed document types, daily write quota)
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hospital_service.core.config import settings
from hospital_service.models.hospital_user import HospitalUser, UserRole, UserStatus
from hospital_service.services.audit import AccessLogService
from hospital_service.services.decisions import AccessDecision, DenialReason
from hospital_service.services.permission_catalog import (
    DEFAULT_CATALOG,
    PermissionCatalog,
    RolePermission,
    TimeWindow,
)
from hospital_service.utils.time import Clock, parse_hhmm, start_of_local_day, to_local, utc_now

logger = logging.getLogger(__name__)

DOCUMENTS_RESOURCE = "documents"
WRITE_ACTION = "write"


class AuthorizationError(Exception):
    """Raised by authorize() when a permission check is denied."""

    def __init__(self, decision: AccessDecision) -> None:
        self.decision = decision
        super().__init__(decision.message)


class HospitalUserNotFoundError(Exception):
    """Raised when a hospital user id does not exist in the hospital."""
    pass


@dataclass(frozen=True)
class PermissionContext:
    """Optional details about the target of a permission check."""

    document_type: str | None = None
    patient_id: str | None = None
    document_id: str | None = None


@dataclass(frozen=True)
class UserPermissions:
    """A user's effective permissions: role catalog entries plus custom grants."""

    role: UserRole
    permissions: list[RolePermission]
    custom_permissions: list[str]


class RBACService:
    """Service for hospital staff permission decisions."""

    def __init__(
        self,
        session: AsyncSession,
        catalog: PermissionCatalog = DEFAULT_CATALOG,
        clock: Clock = utc_now,
        timezone: str | None = None,
    ) -> None:
        self.session = session
        self.catalog = catalog
        self.clock = clock
        self.timezone = timezone or settings.business_timezone

    async def get_user_context(self, user_id: str, hospital_id: str) -> HospitalUser | None:
        """Get the user record, only if the user is linked to the hospital."""
        result = await self.session.execute(
            select(HospitalUser)
            .where(HospitalUser.id == user_id)
            .where(HospitalUser.hospital_id == hospital_id)
        )
        return result.scalar_one_or_none()

    async def check_permission(
        self,
        user_id: str,
        hospital_id: str,
        resource: str,
        action: str,
        context: PermissionContext | None = None,
    ) -> AccessDecision:
        """Decide whether a user may perform action on resource right now.

        Args:
            user_id: Hospital user id
            hospital_id: Hospital the user acts for
            resource: Resource name (e.g., "documents", "patients")
            action: Action name (e.g., "read", "write")
            context: Target details used by document conditions

        Returns:
            AccessDecision; denials carry the first failing reason
        """
        context = context or PermissionContext()

        user = await self.get_user_context(user_id, hospital_id)
        if user is None:
            return AccessDecision.deny(
                DenialReason.USER_INACTIVE, "User not found in hospital"
            )
        if UserStatus(user.status) != UserStatus.ACTIVE:
            return AccessDecision.deny(
                DenialReason.USER_INACTIVE,
                f"User account is {UserStatus(user.status).value}",
            )

        role = UserRole(user.role)
        now = self.clock()

        decision = self._check_time_restrictions(user, role, now)
        if not decision.granted:
            return decision

        if not (
            self.catalog.allows(role, resource, action)
            or self._has_custom_permission(user, resource, action)
        ):
            return AccessDecision.deny(
                DenialReason.ROLE_INSUFFICIENT,
                f"Role {role.value} cannot {action} {resource}",
            )

        if resource == DOCUMENTS_RESOURCE:
            decision = await self._check_document_conditions(user, hospital_id, action, context, now)
            if not decision.granted:
                return decision

        return AccessDecision.allow()

    async def authorize(
        self,
        user_id: str,
        hospital_id: str,
        resource: str,
        action: str,
        context: PermissionContext | None = None,
    ) -> AccessDecision:
        """Check permission and raise on denial.

        Raises:
            AuthorizationError: If the check is denied
        """
        decision = await self.check_permission(user_id, hospital_id, resource, action, context)
        if not decision.granted:
            logger.warning(
                f"Authorization denied: user={user_id} {resource}:{action} "
                f"reason={decision.reason.value}"
            )
            raise AuthorizationError(decision)
        return decision

    async def get_user_permissions(self, user_id: str, hospital_id: str) -> UserPermissions:
        """List the user's effective permissions.

        Raises:
            HospitalUserNotFoundError: If the user is not in the hospital
        """
        user = await self.get_user_context(user_id, hospital_id)
        if user is None:
            raise HospitalUserNotFoundError(f"User not found: {user_id}")

        role = UserRole(user.role)
        return UserPermissions(
            role=role,
            permissions=self.catalog.permissions_for(role),
            custom_permissions=list(user.permissions or []),
        )

    async def can_access_patient(
        self, user_id: str, hospital_id: str, patient_id: str
    ) -> AccessDecision:
        """Check patient-level access: assigned patients, else role read access."""
        user = await self.get_user_context(user_id, hospital_id)
        if user is None:
            return AccessDecision.deny(DenialReason.USER_INACTIVE, "User not found in hospital")
        if UserStatus(user.status) != UserStatus.ACTIVE:
            return AccessDecision.deny(
                DenialReason.USER_INACTIVE,
                f"User account is {UserStatus(user.status).value}",
            )

        if patient_id in (user.assigned_patients or []):
            return AccessDecision.allow("Patient is assigned to user")

        role = UserRole(user.role)
        if self.catalog.allows(role, "patients", "read") or self._has_custom_permission(
            user, "patients", "read"
        ):
            return AccessDecision.allow()

        return AccessDecision.deny(
            DenialReason.ROLE_INSUFFICIENT, "Role does not have patient access"
        )

    async def can_perform_emergency_access(self, user_id: str, hospital_id: str) -> AccessDecision:
        """Check whether the user's role may use emergency access."""
        user = await self.get_user_context(user_id, hospital_id)
        if user is None or UserStatus(user.status) != UserStatus.ACTIVE:
            return AccessDecision.deny(DenialReason.USER_INACTIVE, "User not found or inactive")

        if UserRole(user.role) not in self.catalog.emergency_roles:
            return AccessDecision.deny(
                DenialReason.EMERGENCY_NOT_PERMITTED,
                "Role does not have emergency access privileges",
            )

        return AccessDecision.allow()

    async def can_manage_user(
        self, manager_id: str, target_user_id: str, hospital_id: str
    ) -> AccessDecision:
        """Check whether manager may administer target (subordinate or same role)."""
        manager = await self.get_user_context(manager_id, hospital_id)
        target = await self.get_user_context(target_user_id, hospital_id)

        if manager is None or target is None:
            return AccessDecision.deny(DenialReason.USER_INACTIVE, "User not found in hospital")
        if UserStatus(manager.status) != UserStatus.ACTIVE:
            return AccessDecision.deny(DenialReason.USER_INACTIVE, "Manager account is not active")

        manager_role = UserRole(manager.role)
        target_role = UserRole(target.role)

        if target_role != manager_role and target_role not in self.catalog.manageable_roles(
            manager_role
        ):
            return AccessDecision.deny(
                DenialReason.ROLE_INSUFFICIENT,
                "Cannot manage user with higher role",
            )

        return AccessDecision.allow()

    def get_role_hierarchy(self) -> dict[UserRole, list[UserRole]]:
        """Get the roles each role may manage."""
        return {
            role: sorted(self.catalog.manageable_roles(role), key=lambda r: r.value)
            for role in UserRole
        }

    def _check_time_restrictions(
        self, user: HospitalUser, role: UserRole, now: datetime
    ) -> AccessDecision:
        local = to_local(now, self.timezone)
        windows = self.catalog.windows_for(role)

        if windows:
            if local.weekday() >= 5 and role not in self.catalog.weekend_exempt_roles:
                return AccessDecision.deny(
                    DenialReason.OUTSIDE_ALLOWED_HOURS,
                    f"Role {role.value} is not permitted on weekends",
                )
            if not any(window.contains(local.time()) for window in windows):
                return AccessDecision.deny(
                    DenialReason.OUTSIDE_ALLOWED_HOURS,
                    f"Role {role.value} is outside its allowed hours",
                )

        user_windows = [
            TimeWindow(start=parse_hhmm(entry["start"]), end=parse_hhmm(entry["end"]))
            for entry in (user.restricted_hours or [])
        ]
        if user_windows and not any(window.contains(local.time()) for window in user_windows):
            return AccessDecision.deny(
                DenialReason.OUTSIDE_ALLOWED_HOURS,
                "User is outside their allowed hours",
            )

        return AccessDecision.allow()

    @staticmethod
    def _has_custom_permission(user: HospitalUser, resource: str, action: str) -> bool:
        granted = set(user.permissions or [])
        return f"{resource}:{action}" in granted or f"{resource}:*" in granted

    async def _check_document_conditions(
        self,
        user: HospitalUser,
        hospital_id: str,
        action: str,
        context: PermissionContext,
        now: datetime,
    ) -> AccessDecision:
        allowed_types = user.allowed_document_types or []
        if allowed_types and context.document_type not in allowed_types:
            return AccessDecision.deny(
                DenialReason.DOCUMENT_TYPE_NOT_ALLOWED,
                f"Document type {context.document_type or 'unknown'} is not allowed",
            )

        if action == WRITE_ACTION and user.max_documents_per_day:
            written_today = await AccessLogService(self.session).count_granted_actions(
                accessor_id=user.id,
                hospital_id=hospital_id,
                resource=DOCUMENTS_RESOURCE,
                action=WRITE_ACTION,
                since=start_of_local_day(now, self.timezone),
            )
            if written_today >= user.max_documents_per_day:
                return AccessDecision.deny(
                    DenialReason.DAILY_QUOTA_EXCEEDED,
                    f"Daily document limit of {user.max_documents_per_day} reached",
                )

        return AccessDecision.allow()
