"""The authenticated actor on whose behalf a request executes."""

from pydantic import BaseModel, ConfigDict

from taskgate.domain.user import UserRole


class Principal(BaseModel):
    """Principal identity and role set, resolved once per request and never mutated."""

    model_config = ConfigDict(frozen=True)

    id: str
    roles: frozenset[UserRole] = frozenset()

    def has_role(self, role: UserRole) -> bool:
        return role in self.roles

    @property
    def is_administrator(self) -> bool:
        return UserRole.ADMINISTRATOR in self.roles
