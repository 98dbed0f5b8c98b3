"""
Signing credentials (VAPID keys) for sites.

Key generation and encryption at rest live elsewhere; this module only reads
a site's key pair and hands it to the dispatch pipeline. The private key is
wrapped in a SecretStr so it never appears in printed output or error reports.
"""

from typing import Any, Callable, Protocol

from models.notification import SigningCredentials
from models.types import SiteID
from shared.db import get_supabase_client
from shared.errors import CredentialsError


class CredentialsProvider(Protocol):
    def get_credentials(self, site_id: SiteID) -> SigningCredentials: ...


class SupabaseCredentialsProvider:
    """Reads VAPID keys from the ``sites`` table."""

    def __init__(
        self,
        client: Any = None,
        subject: str = "mailto:admin@example.com",
        decrypt: Callable[[str], str] | None = None,
    ):
        self._client = client
        self.subject = subject
        self.decrypt = decrypt

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    def get_credentials(self, site_id: SiteID) -> SigningCredentials:
        """
        Load the key pair used to sign pushes for a site.

        Raises:
            CredentialsError: If the site or its keys cannot be loaded
        """
        try:
            response = (
                self.client.table("sites")
                .select("id, vapid_public_key, vapid_private_key")
                .eq("id", site_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise CredentialsError(site_id, f"lookup failed: {e}") from e

        if not response.data:
            raise CredentialsError(site_id, "site not found")

        site = response.data[0]
        public_key = site.get("vapid_public_key")
        private_key = site.get("vapid_private_key")
        if not public_key or not private_key:
            raise CredentialsError(site_id, "VAPID keys are not configured")

        if self.decrypt is not None:
            try:
                private_key = self.decrypt(private_key)
            except Exception as e:
                raise CredentialsError(site_id, f"private key could not be decrypted: {type(e).__name__}") from e

        return SigningCredentials(
            public_key=public_key, private_key=private_key, subject=self.subject
        )
