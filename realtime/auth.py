import asyncio
from dataclasses import dataclass
from typing import Optional, Protocol

import jwt

from logging_config import get_logger
from realtime.errors import CredentialInvalid, CredentialMissing, SubjectNotFound

logger = get_logger(__name__)


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: str
    name: str


class IdentityStore(Protocol):
    def find_identity_by_id(self, user_id: str) -> Optional[Identity]:
        ...


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an ``Authorization: Bearer <token>`` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class SessionAuthenticator:
    """Turns a bearer JWT into an Identity.

    The token is verified locally, then the subject is looked up once in the identity
    store. The lookup is a blocking call, so it runs in the default executor.
    """

    def __init__(self, identity_store: IdentityStore, secret: str, algorithm: str = "HS256"):
        self.identity_store = identity_store
        self.secret = secret
        self.algorithm = algorithm

    def decode_subject(self, credential: Optional[str]) -> str:
        if not credential or not credential.strip():
            raise CredentialMissing("Authentication token required")
        try:
            claims = jwt.decode(credential.strip(), self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError as exc:
            raise CredentialInvalid("Token expired", code="credential_expired") from exc
        except jwt.InvalidTokenError as exc:
            raise CredentialInvalid("Invalid token") from exc

        user_id = claims.get("user_id") or claims.get("sub")
        if not user_id:
            raise CredentialInvalid("Token carries no subject")
        return str(user_id)

    def lookup(self, user_id: str):
        identity = self.identity_store.find_identity_by_id(user_id)
        if identity is None:
            raise SubjectNotFound(f"No user {user_id}")
        return identity

    async def authenticate(self, credential: Optional[str]) -> Identity:
        user_id = self.decode_subject(credential)
        loop = asyncio.get_running_loop()
        identity = await loop.run_in_executor(None, self.lookup, user_id)
        logger.debug(f"Authenticated user {identity.user_id} ({identity.email})")
        return identity
