"""Caller identities and role checks.

Callers pass a :class:`Principal` into each manager operation; the manager
checks it once, before any state is touched.
"""

from dataclasses import dataclass
from enum import Enum

from yieldrouter.core.errors import Unauthorized


class Role(str, Enum):
    """Roles recognised by the manager."""

    VAULT = "vault"
    OWNER = "owner"
    ANYONE = "anyone"


@dataclass(frozen=True)
class Principal:
    """Identity of whoever invokes a manager operation."""

    id: str

    def __str__(self) -> str:
        return self.id


ANONYMOUS = Principal("anonymous")


class AccessPolicy:
    """Maps the vault and owner roles to one principal each."""

    def __init__(self, owner: Principal, vault: Principal) -> None:
        self._owner = owner
        self._vault = vault

    @property
    def owner(self) -> Principal:
        return self._owner

    @property
    def vault(self) -> Principal:
        return self._vault

    def has_role(self, caller: Principal, role: Role) -> bool:
        if role is Role.ANYONE:
            return True
        if role is Role.OWNER:
            return caller == self._owner
        return caller == self._vault

    def require(self, caller: Principal, role: Role) -> None:
        """Raise Unauthorized unless ``caller`` holds ``role``."""
        if not self.has_role(caller, role):
            raise Unauthorized(caller.id, role.value)

    def transfer_ownership(self, new_owner: Principal) -> None:
        self._owner = new_owner

    def set_vault(self, vault: Principal) -> None:
        self._vault = vault
