from dataclasses import dataclass, field
from enum import Enum

from fastapi import Depends, HTTPException, Request, status

from po_tracker.config import settings


class Role(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    STAFF = "STAFF"


class Capability(str, Enum):
    EDIT_COST_FIELDS = "EDIT_COST_FIELDS"
    MANAGE_ADMIN_COST_ITEMS = "MANAGE_ADMIN_COST_ITEMS"
    MANAGE_PAYMENTS = "MANAGE_PAYMENTS"


@dataclass
class Principal:
    id: str
    username: str
    role: Role
    active: bool = True
    grants: frozenset[Capability] = field(default_factory=frozenset)


def _roles_for(capability: Capability) -> set[str]:
    if capability == Capability.EDIT_COST_FIELDS:
        return set(settings.cost_editor_roles)
    if capability == Capability.MANAGE_ADMIN_COST_ITEMS:
        return set(settings.admin_cost_item_roles)
    return set(settings.payment_manager_roles)


def has_capability(principal: Principal | None, capability: Capability) -> bool:
    if principal is None or not principal.active:
        return False
    if capability in principal.grants:
        return True
    return principal.role.value in _roles_for(capability)


def get_current_principal(request: Request) -> Principal:
    # Populated by the authentication layer in front of this application.
    principal = getattr(request.state, "principal", None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return principal


def require_capability(capability: Capability):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not has_capability(principal, capability):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
        return principal

    return _dep
