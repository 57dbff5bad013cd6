"""Per-request identity and the profile guard rules.

Identity is always passed explicitly. The auth provider sits in front of
the server and forwards the signed-in user as headers.
"""

from dataclasses import dataclass
from typing import Optional

from ..errors import IdentityError

# Paths reachable without a signed-in user or a profile
OPEN_PATHS = frozenset({"/signin", "/signup", "/profile/edit"})


@dataclass(frozen=True)
class Identity:
    uid: str
    email: str

    @property
    def username(self) -> str:
        return username_from_email(self.email)


def identity_from_headers(
    uid: Optional[str], email: Optional[str]
) -> Optional[Identity]:
    """None when the request is anonymous."""
    if not uid:
        return None
    return Identity(uid=uid, email=(email or "").strip().lower())


def validate_institutional_email(email: str, domain: str) -> str:
    """
    Signup rule: only addresses at the institutional domain are accepted.

    Returns:
        The normalized (lowercased, stripped) email

    Raises:
        IdentityError: 400 for a malformed address, 403 for a foreign domain
    """
    normalized = (email or "").strip().lower()
    local, sep, host = normalized.partition("@")
    if not sep or not local or not host:
        raise IdentityError("Please enter a valid email address.", status_code=400)
    if host != domain.lower():
        raise IdentityError(
            f"You must use an @{domain} email to sign up.", status_code=403
        )
    return normalized


def username_from_email(email: str) -> str:
    return (email or "").split("@")[0]


def email_for_username(username: str, domain: str) -> str:
    return f"{username}@{domain}"


def is_own_profile(identity: Optional[Identity], username: str) -> bool:
    """Whether the profile page at /user/<username> belongs to the viewer."""
    if identity is None or not username:
        return False
    return identity.username == username.lower()


def guard_redirect(
    identity: Optional[Identity], path: str, has_profile: bool
) -> Optional[str]:
    """
    Where the profile guard sends a request for `path`, or None to stay.

    Args:
        identity: Signed-in user, or None when anonymous
        path: Requested page path
        has_profile: Whether the user already has a stored profile
    """
    if path in OPEN_PATHS:
        return None
    if identity is None:
        return "/signin"
    if not has_profile:
        return "/profile/edit"
    return None
