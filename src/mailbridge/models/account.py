"""Connected account model."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from mailbridge.models.enums import AccountStatus, ProviderType
from mailbridge.models.message import EmailAddress, new_id, utc_now


class ConnectedAccount(BaseModel):
    """A mailbox connected on behalf of a tenant.

    Secrets are never stored on the record: ``password_env`` names the
    environment variable the transport reads the password from when it
    connects.
    """

    id: str = Field(default_factory=new_id, description="Internal account id")
    client_id: str = Field(description="Tenant that owns this account")
    provider: ProviderType = Field(default=ProviderType.IMAP)
    email_address: str = Field(description="Mailbox address")
    display_name: str | None = Field(default=None)

    imap_host: str | None = Field(default=None)
    imap_port: int | None = Field(default=None)
    smtp_host: str | None = Field(default=None)
    smtp_port: int | None = Field(default=None)
    username: str | None = Field(default=None)
    password_env: str | None = Field(
        default=None, description="Environment variable holding the mailbox password"
    )
    use_tls: bool = Field(default=True)

    status: AccountStatus = Field(default=AccountStatus.ACTIVE)
    last_error: str | None = Field(default=None)
    last_sync_at: datetime | None = Field(default=None)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def identity(self) -> EmailAddress:
        """The address used as From on outgoing mail."""
        return EmailAddress(address=self.email_address, name=self.display_name)
