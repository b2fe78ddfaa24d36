"""Caller identity, roles and organization records used for scoping."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from kbrag.models.provider import ProviderConfig


class Role(str, Enum):  # noqa: UP042
    """Organization roles, highest privilege first."""

    MAINTAINER = "MAINTAINER"
    SUPER_ADMIN = "SUPER_ADMIN"
    GROUP_ADMIN = "GROUP_ADMIN"
    SUPERVISOR = "SUPERVISOR"
    STAFF = "STAFF"


class CallerIdentity(BaseModel):
    """Who is asking.  Supplied by the trusted CRUD layer on every request."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    organization_id: str
    division_id: str | None = Field(
        default=None, description="The caller's own division, if any."
    )
    role: Role = Role.STAFF


class Organization(BaseModel):
    """Organization settings relevant to retrieval and provider selection."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    cross_division_enabled: bool = Field(
        default=False,
        description="When true, supervisors may query across divisions.",
    )
    provider_config: ProviderConfig = Field(default_factory=ProviderConfig)


def is_division_scoped(role: Role, cross_division_enabled: bool) -> bool:
    """Return ``True`` if a caller only sees their own division (plus org-wide).

    Staff are always division-scoped; supervisors are unless the organization
    enabled cross-division querying.  All other roles see the whole
    organization.
    """
    if role == Role.STAFF:
        return True
    return role == Role.SUPERVISOR and not cross_division_enabled


class AccessScope(BaseModel):
    """The visibility window of one caller, resolved from role and org flags.

    Every retrieval query variant is filtered through this one object.
    """

    model_config = ConfigDict(frozen=True)

    organization_id: str
    division_id: str | None = None
    division_scoped: bool = True

    @classmethod
    def for_caller(cls, caller: CallerIdentity, cross_division_enabled: bool) -> AccessScope:
        return cls(
            organization_id=caller.organization_id,
            division_id=caller.division_id,
            division_scoped=is_division_scoped(caller.role, cross_division_enabled),
        )
