import logging
import time
from typing import Dict, Optional

import jwt
from passlib.context import CryptContext

from app import config
from app.models.user import CredentialRecord, VerifiedCredential

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


class CredentialError(Exception):
    pass


class CredentialStore:
    """In-memory user accounts; lives as long as the process."""

    def __init__(self, secret: str = config.JWT_SECRET, token_ttl: int = config.TOKEN_TTL_SECONDS,
                 admin_limit: int = config.ADMIN_LIMIT):
        self.secret = secret
        self.token_ttl = token_ttl
        self.admin_limit = admin_limit
        self._users: Dict[str, CredentialRecord] = {}

    def register(self, username: str, password: str, is_admin: bool = False) -> CredentialRecord:
        if username in self._users:
            raise CredentialError("Username already exists")
        if is_admin:
            admin_count = sum(1 for u in self._users.values() if u.is_controller_eligible)
            if admin_count >= self.admin_limit:
                raise CredentialError("Maximum admin accounts reached")

        record = CredentialRecord(
            identity=username,
            secret_hash=pwd_context.hash(password),
            is_controller_eligible=bool(is_admin),
        )
        self._users[username] = record
        logger.info(f"Registered user {username} (admin: {record.is_controller_eligible})")
        return record

    def authenticate(self, username: str, password: str) -> Optional[CredentialRecord]:
        record = self._users.get(username)
        if not record or not password:
            return None
        if not pwd_context.verify(password, record.secret_hash):
            return None
        return record

    def issue_token(self, record: CredentialRecord) -> str:
        now = int(time.time())
        claims = {
            "sub": record.identity,
            "is_admin": record.is_controller_eligible,
            "iat": now,
            "exp": now + self.token_ttl,
        }
        return jwt.encode(claims, self.secret, algorithm=config.JWT_ALGORITHM)

    def verify_token(self, token: Optional[str]) -> VerifiedCredential:
        if not token:
            raise CredentialError("Authentication required")
        try:
            claims = jwt.decode(token, self.secret, algorithms=[config.JWT_ALGORITHM])
        except jwt.PyJWTError as e:
            raise CredentialError(f"Authentication failed: {e}") from e

        identity = claims.get("sub")
        if not isinstance(identity, str) or not identity:
            raise CredentialError("Authentication failed: missing subject")
        return VerifiedCredential(identity=identity, is_controller_eligible=bool(claims.get("is_admin")))
