"""Principal resolution.

Authentication happens upstream: the identity gateway verifies the caller
and forwards the resolved identity as trusted headers.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header

from errors import ForbiddenError, UnauthorizedError


@dataclass(frozen=True)
class Principal:
    user_id: str
    is_admin: bool = False
    username: Optional[str] = None

    def owns(self, owner_id) -> bool:
        return str(owner_id) == self.user_id


def get_current_user(
    x_user_id: str = Header(default=""),
    x_user_admin: str = Header(default=""),
    x_user_name: str = Header(default=""),
) -> Principal:
    user_id = x_user_id.strip()
    if not user_id:
        raise UnauthorizedError()
    return Principal(
        user_id=user_id,
        is_admin=x_user_admin.strip().lower() in ("1", "true", "yes"),
        username=x_user_name.strip() or None,
    )


def require_admin(user: Principal = Depends(get_current_user)) -> Principal:
    if not user.is_admin:
        raise ForbiddenError("Not authorized as an admin")
    return user
