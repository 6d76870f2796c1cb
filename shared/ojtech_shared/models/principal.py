from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class AuthenticatedPrincipal(BaseModel):
    """
    Read-only view of an identity attached to one request.

    Rebuilt on every request from the bearer token (``attributes`` empty) or
    produced by the OAuth2 provisioning flow (``attributes`` holds the raw
    provider profile). Never persisted.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: UUID
    username: str
    email: str
    authorities: tuple[str, ...] = Field(default_factory=tuple)
    attributes: dict[str, Any] = Field(default_factory=dict)

    def has_authority(self, *names: str) -> bool:
        return any(name in self.authorities for name in names)
