#app/policies/contract_permissions.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet

from app.core.errors import PermissionDenied
from app.models.enums import SignerRole, UserRole
from app.models.lease_contract import LeaseContract
from app.policies.rbac import Principal


class AccessScope(str, Enum):
    ALL = "all"                  # governance / audit
    AGENCY = "agency"            # contracts of the principal's agency
    OWN_CREATED = "own_created"  # contracts the principal created
    PARTY_TO = "party_to"        # contracts where the principal is a party
    NONE = "none"


@dataclass(frozen=True)
class RoleCapabilities:
    view: AccessScope
    create: bool = False
    edit: bool = False
    delete: bool = False
    sign: bool = False
    signable_roles: FrozenSet[str] = field(default_factory=frozenset)
    prepare_for_signing: bool = False
    revoke: bool = False
    run_legal_flow: bool = False


_NONE = RoleCapabilities(view=AccessScope.NONE)

CONTRACT_PERMISSION_MATRIX: Dict[UserRole, RoleCapabilities] = {
    UserRole.PLATFORM_ADMIN: RoleCapabilities(view=AccessScope.ALL),
    UserRole.AUDITOR: RoleCapabilities(view=AccessScope.ALL),
    UserRole.AGENCY_ADMIN: RoleCapabilities(
        view=AccessScope.AGENCY,
        create=True,
        edit=True,
        delete=True,
        sign=True,
        signable_roles=frozenset({SignerRole.agency.value, SignerRole.witness.value}),
        prepare_for_signing=True,
        revoke=True,
        run_legal_flow=True,
    ),
    UserRole.AGENCY_MANAGER: RoleCapabilities(
        view=AccessScope.AGENCY,
        create=True,
        edit=True,
        delete=True,
        sign=True,
        signable_roles=frozenset({SignerRole.agency.value, SignerRole.witness.value}),
        prepare_for_signing=True,
        revoke=True,
        run_legal_flow=True,
    ),
    UserRole.BROKER: RoleCapabilities(
        view=AccessScope.OWN_CREATED,
        create=True,
        edit=True,
        prepare_for_signing=True,
        sign=True,
        signable_roles=frozenset({SignerRole.witness.value}),
    ),
    UserRole.OWNER: RoleCapabilities(
        view=AccessScope.PARTY_TO,
        sign=True,
        signable_roles=frozenset({SignerRole.owner.value}),
    ),
    UserRole.INDEPENDENT_OWNER: RoleCapabilities(
        view=AccessScope.OWN_CREATED,
        create=True,
        edit=True,
        delete=True,
        sign=True,
        signable_roles=frozenset({SignerRole.owner.value, SignerRole.witness.value}),
        prepare_for_signing=True,
        revoke=True,
        run_legal_flow=True,
    ),
    UserRole.TENANT: RoleCapabilities(
        view=AccessScope.PARTY_TO,
        sign=True,
        signable_roles=frozenset({SignerRole.tenant.value}),
    ),
    UserRole.BUILDING_MANAGER: RoleCapabilities(view=AccessScope.PARTY_TO),
}


def capabilities_for(role: UserRole) -> RoleCapabilities:
    return CONTRACT_PERMISSION_MATRIX.get(role, _NONE)


def can_sign_as(principal: Principal, signer_role: str) -> bool:
    caps = capabilities_for(principal.role)
    return caps.sign and signer_role in caps.signable_roles


def require_capability(principal: Principal, capability: str) -> None:
    if not getattr(capabilities_for(principal.role), capability, False):
        raise PermissionDenied(
            f"Role {principal.role.value} not permitted for action {capability}."
        )


def _is_party(principal: Principal, contract: LeaseContract) -> bool:
    prop = contract.leased_property
    parties = {contract.tenant_id, contract.owner_id}
    if prop is not None:
        parties |= {prop.owner_id, prop.created_by}
    return principal.user_id in parties


def can_view(principal: Principal, contract: LeaseContract) -> bool:
    scope = capabilities_for(principal.role).view
    if scope == AccessScope.ALL:
        return True
    if scope == AccessScope.AGENCY:
        return contract.agency_id is not None and contract.agency_id == principal.agency_id
    if scope == AccessScope.OWN_CREATED:
        return contract.created_by == principal.actor or _is_party(principal, contract)
    if scope == AccessScope.PARTY_TO:
        return _is_party(principal, contract)
    return False


def require_view(principal: Principal, contract: LeaseContract) -> None:
    if not can_view(principal, contract):
        raise PermissionDenied("You are not allowed to access this contract.")
