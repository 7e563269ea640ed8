"""Token claim models and rotation-family records."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class UserRole(str, Enum):
    """Platform roles, lowest privilege first."""

    APPLICANT = "applicant"
    ASSESSOR = "assessor"
    COORDINATOR = "coordinator"
    SCHEME_OWNER = "scheme_owner"


class AuthUser(BaseModel):
    """Identity a token pair is issued for."""

    id: str
    email: str
    role: UserRole
    permissions: list[str] = Field(default_factory=list)


class AccessClaims(BaseModel):
    """Claims carried by an access token."""

    model_config = ConfigDict(extra="ignore")

    sub: str = Field(..., description="User id")
    email: str
    role: UserRole
    permissions: list[str] = Field(default_factory=list)
    sid: str = Field(..., description="Session id, checked against the revocation store")
    jti: str = Field(..., description="Unique token id")
    iat: int
    exp: int
    iss: str
    aud: str
    type: Literal["access"] = "access"

    @property
    def user_id(self) -> str:
        return self.sub

    @property
    def session_id(self) -> str:
        return self.sid


class RefreshClaims(BaseModel):
    """Claims carried by a refresh token."""

    model_config = ConfigDict(extra="ignore")

    sub: str
    jti: str
    family: str = Field(..., description="Rotation family id")
    iat: int
    exp: int
    iss: str
    type: Literal["refresh"] = "refresh"


class TokenPair(BaseModel):
    """Access/refresh pair handed to the client."""

    access_token: str
    refresh_token: str
    expires_in: int
    token_type: Literal["Bearer"] = "Bearer"
    session_id: str
    family_id: str


@dataclass
class FamilyRecord:
    """State of one refresh-token rotation family.

    Attributes:
        family_id: Identifier shared by every refresh token of the chain.
        user_id: Owner of the family.
        session_id: Session id embedded in the family's access tokens.
        current_jti: Token id of the only refresh token that may still be
            exchanged (the head of the chain).
        rotation_count: Number of exchanges performed so far.
        expires_at: Expiry (epoch seconds) of the current head.
        claims: Snapshot of email, role and permissions used on refresh.
        revoked: Whether the whole family has been invalidated.
    """

    family_id: str
    user_id: str
    session_id: str
    current_jti: str
    expires_at: int
    rotation_count: int = 0
    claims: dict[str, Any] = field(default_factory=dict)
    revoked: bool = False
