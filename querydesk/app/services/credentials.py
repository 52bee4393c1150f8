"""
Credential resolution for stored data sources.

Secrets are opaque to the core: whatever store sits behind `CredentialStore` decides
how they are kept at rest and returns the cleartext pair only for the call at hand.
"""
from dataclasses import dataclass
from typing import Protocol

@dataclass(frozen=True)
class Credentials:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='****')"

class CredentialStore(Protocol):
    def resolve(self, data_source) -> Credentials:
        """Return the decrypted username/password for a data source."""

class StoredCredentialStore:
    """Reads the secret stored on the data source row as-is."""

    def resolve(self, data_source) -> Credentials:
        return Credentials(username=data_source.username, password=data_source.password or "")

credential_store: CredentialStore = StoredCredentialStore()
