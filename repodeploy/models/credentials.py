"""Credential data models."""

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

CredentialProvider = Literal["github", "gitlab", "google", "cloudflare"]

# Which stored credential a hosting provider authenticates with
HOSTING_CREDENTIALS: dict[str, CredentialProvider] = {
    "firebase-hosting": "google",
    "cloudflare-pages": "cloudflare",
}

PROVIDER_LABELS: dict[str, str] = {
    "github": "GitHub",
    "gitlab": "GitLab",
    "google": "Google",
    "cloudflare": "Cloudflare",
}


class Credential(BaseModel):
    """A bearer credential for one provider."""

    provider: CredentialProvider
    token: str = Field(..., min_length=1, repr=False)
    refresh_token: str | None = Field(default=None, repr=False)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class CredentialUpdate(BaseModel):
    """Request body for storing a provider token."""

    token: str = Field(..., min_length=1)
    refresh_token: str | None = None


@dataclass(frozen=True)
class NotConnected:
    """Typed absence of a credential."""

    provider: str

    @property
    def message(self) -> str:
        label = PROVIDER_LABELS.get(self.provider, self.provider)
        return f"{label} account not connected"
