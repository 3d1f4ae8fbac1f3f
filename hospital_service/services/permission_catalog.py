"""Static role permission catalog.

The catalog is built once at import time and handed to the RBAC service by
reference. Nothing in it is mutable: mappings are read-only proxies and
action sets are frozensets.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import time
from types import MappingProxyType

from hospital_service.models.hospital_user import UserRole
from hospital_service.utils.time import parse_hhmm


@dataclass(frozen=True)
class TimeWindow:
    """Inclusive daily window, compared at minute resolution."""

    start: time
    end: time

    def contains(self, moment: time) -> bool:
        current = moment.replace(second=0, microsecond=0)
        return self.start <= current <= self.end


@dataclass(frozen=True)
class RolePermission:
    """A resource and the actions a role may perform on it."""

    resource: str
    actions: frozenset[str]


@dataclass(frozen=True)
class PermissionCatalog:
    """Role -> (resource -> actions), plus temporal restrictions.

    Attributes:
        role_permissions: Allowed actions per resource for each role
        time_restrictions: Daily windows per role; empty means unrestricted
        weekend_exempt_roles: Roles never blocked for it being a weekend
        emergency_roles: Roles allowed to use emergency access
        role_hierarchy: Roles each role may manage
    """

    role_permissions: Mapping[UserRole, Mapping[str, frozenset[str]]]
    time_restrictions: Mapping[UserRole, tuple[TimeWindow, ...]]
    weekend_exempt_roles: frozenset[UserRole]
    emergency_roles: frozenset[UserRole]
    role_hierarchy: Mapping[UserRole, frozenset[UserRole]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def allows(self, role: UserRole, resource: str, action: str) -> bool:
        """Check whether the role's catalog entry lists action on resource."""
        return action in self.role_permissions.get(role, {}).get(resource, frozenset())

    def permissions_for(self, role: UserRole) -> list[RolePermission]:
        """List a role's catalog entries sorted by resource."""
        entries = self.role_permissions.get(role, {})
        return [
            RolePermission(resource=resource, actions=actions)
            for resource, actions in sorted(entries.items())
        ]

    def windows_for(self, role: UserRole) -> tuple[TimeWindow, ...]:
        return self.time_restrictions.get(role, ())

    def manageable_roles(self, role: UserRole) -> frozenset[UserRole]:
        return self.role_hierarchy.get(role, frozenset())


def _entries(**resources: tuple[str, ...]) -> Mapping[str, frozenset[str]]:
    return MappingProxyType(
        {resource: frozenset(actions) for resource, actions in resources.items()}
    )


def _window(start: str, end: str) -> TimeWindow:
    return TimeWindow(start=parse_hhmm(start), end=parse_hhmm(end))


def _union(*grants: Mapping[str, frozenset[str]]) -> dict[str, set[str]]:
    merged: dict[str, set[str]] = {}
    for grant in grants:
        for resource, actions in grant.items():
            merged.setdefault(resource, set()).update(actions)
    return merged


def build_default_catalog() -> PermissionCatalog:
    """Build the hospital permission catalog.

    Admin is assembled as the union of every other role plus the
    administrative resources, so it is a superset by construction.
    """
    doctor = _entries(
        patients=("read", "link"),
        documents=("read", "write", "sign"),
        medical_records=("read", "write"),
        prescriptions=("read", "write", "sign"),
        reports=("read", "generate"),
    )
    nurse = _entries(
        patients=("read",),
        documents=("read", "write"),
        medical_records=("read", "write"),
        vitals=("read", "write"),
    )
    billing_clerk = _entries(
        patients=("read",),
        documents=("read",),
        billing=("read", "write"),
        insurance=("read", "write"),
    )
    lab_technician = _entries(
        patients=("read",),
        documents=("read", "write", "sign"),
        lab_results=("read", "write", "sign"),
    )
    radiologist = _entries(
        patients=("read",),
        documents=("read", "write", "sign"),
        imaging=("read", "write", "sign"),
    )
    pharmacist = _entries(
        patients=("read",),
        documents=("read", "write", "sign"),
        prescriptions=("read", "write", "sign"),
        inventory=("read", "write"),
    )
    receptionist = _entries(
        patients=("read", "link"),
        appointments=("read", "write"),
        documents=("read",),
    )
    viewer = _entries(
        patients=("read",),
        documents=("read",),
    )
    admin_only = _entries(
        hospital=("read", "write", "delete", "manage"),
        users=("read", "write", "delete", "manage"),
        patients=("read", "write", "delete", "link", "unlink"),
        documents=("read", "write", "delete", "sign", "verify"),
        settings=("read", "write"),
        audit=("read",),
        reports=("read", "generate"),
        billing=("read", "write"),
    )

    admin = _entries(
        **{
            resource: tuple(actions)
            for resource, actions in _union(
                admin_only,
                doctor,
                nurse,
                billing_clerk,
                lab_technician,
                radiologist,
                pharmacist,
                receptionist,
                viewer,
            ).items()
        }
    )

    role_permissions = MappingProxyType(
        {
            UserRole.ADMIN: admin,
            UserRole.DOCTOR: doctor,
            UserRole.NURSE: nurse,
            UserRole.BILLING_CLERK: billing_clerk,
            UserRole.LAB_TECHNICIAN: lab_technician,
            UserRole.RADIOLOGIST: radiologist,
            UserRole.PHARMACIST: pharmacist,
            UserRole.RECEPTIONIST: receptionist,
            UserRole.VIEWER: viewer,
        }
    )

    time_restrictions = MappingProxyType(
        {
            UserRole.ADMIN: (),
            UserRole.DOCTOR: (),
            UserRole.NURSE: (),
            UserRole.BILLING_CLERK: (_window("09:00", "17:00"),),
            UserRole.LAB_TECHNICIAN: (_window("08:00", "18:00"),),
            UserRole.RADIOLOGIST: (),
            UserRole.PHARMACIST: (_window("09:00", "21:00"),),
            UserRole.RECEPTIONIST: (_window("08:00", "18:00"),),
            UserRole.VIEWER: (_window("09:00", "17:00"),),
        }
    )

    all_staff = frozenset(UserRole) - {UserRole.ADMIN}
    role_hierarchy = MappingProxyType(
        {
            UserRole.ADMIN: all_staff,
            UserRole.DOCTOR: frozenset({UserRole.NURSE, UserRole.VIEWER}),
            UserRole.NURSE: frozenset({UserRole.VIEWER}),
        }
    )

    return PermissionCatalog(
        role_permissions=role_permissions,
        time_restrictions=time_restrictions,
        weekend_exempt_roles=frozenset(
            {UserRole.DOCTOR, UserRole.NURSE, UserRole.RADIOLOGIST}
        ),
        emergency_roles=frozenset({UserRole.ADMIN, UserRole.DOCTOR, UserRole.NURSE}),
        role_hierarchy=role_hierarchy,
    )


DEFAULT_CATALOG = build_default_catalog()
