"""Who is buying: a registered user or a guest holding a bearer token."""
import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Optional


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def token_matches(token: Optional[str], digest: Optional[str]) -> bool:
    if not token or not digest:
        return False
    return hmac.compare_digest(hash_token(token), digest)


@dataclass(frozen=True)
class GuestIdentity:
    """Email plus an opaque token. Only the token's digest is ever stored."""

    email: str
    token: str

    @classmethod
    def issue(cls, email: str) -> "GuestIdentity":
        return cls(email=email.strip().lower(), token=secrets.token_urlsafe(32))

    @property
    def token_hash(self) -> str:
        return hash_token(self.token)


@dataclass(frozen=True)
class Purchaser:
    email: str
    user_id: Optional[int] = None
    guest: Optional[GuestIdentity] = None

    @classmethod
    def for_user(cls, user) -> "Purchaser":
        return cls(email=user.email, user_id=user.id)

    @classmethod
    def for_guest(cls, guest: GuestIdentity) -> "Purchaser":
        return cls(email=guest.email, guest=guest)

    @property
    def actor(self) -> str:
        return str(self.user_id) if self.user_id else "guest"

    def stamp(self, order):
        order.user_id = self.user_id
        order.customer_email = self.email
        order.guest_token_hash = self.guest.token_hash if self.guest else None
