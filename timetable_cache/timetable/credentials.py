"""
Credential store: look up accounts and turn their stored secret into the upstream password.
Decryption itself is pluggable (SecretCipher); deployments supply their real cipher.
"""
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from sqlalchemy import select

from timetable_cache.core import errors
from timetable_cache.core.db import session_scope
from timetable_cache.timetable.models import Account

logger = logging.getLogger(__name__)


class SecretCipher(ABC):
    @abstractmethod
    def decrypt(self, secret: str, key_version: Optional[int] = None) -> str:
        pass


class PlainCipher(SecretCipher):
    """Development cipher: the stored secret is the password."""

    def decrypt(self, secret: str, key_version: Optional[int] = None) -> str:
        return secret


_CIPHERS = {
    "plain": PlainCipher,
}


def get_cipher(name: Optional[str]) -> SecretCipher:
    cls = _CIPHERS.get((name or "plain").lower())
    if cls is None:
        raise ValueError(f"Unknown credentials cipher: {name}")
    return cls()


class CredentialStore:
    def __init__(self, cipher: Optional[SecretCipher] = None):
        self.cipher = cipher or PlainCipher()

    def get_account(self, subject_id: str, not_found_message: str = "Target user not found") -> Account:
        with session_scope() as session:
            account = session.get(Account, subject_id)
        if account is None:
            raise errors.NotFoundError(not_found_message)
        return account

    def resolve_password(self, account: Account) -> str:
        if not account.untis_secret:
            raise errors.missing_secret()
        try:
            return self.cipher.decrypt(account.untis_secret, account.untis_secret_key_version or 1)
        except Exception as e:
            logger.error(f"Decrypt secret failed for {account.id}: {e}")
            raise errors.decrypt_failed() from e

    def list_subjects_with_credentials(self) -> List[Account]:
        with session_scope() as session:
            return list(
                session.execute(
                    select(Account).where(Account.untis_secret.is_not(None)).order_by(Account.id)
                ).scalars().all()
            )

    def save_account(
        self,
        subject_id: str,
        username: str,
        secret: Optional[str],
        key_version: Optional[int] = None,
    ) -> Account:
        """Create or replace an account's upstream credential (secret already encrypted)."""
        with session_scope() as session:
            account = session.get(Account, subject_id)
            if account is None:
                account = Account(id=subject_id, username=username)
                session.add(account)
            account.username = username
            account.untis_secret = secret
            account.untis_secret_key_version = key_version
        return account
