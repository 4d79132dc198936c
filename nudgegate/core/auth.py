"""
Caller identity.

The upstream gateway authenticates the request and forwards the user id in
`X-User-Id`. Every user-scoped route depends on `get_user_id`.
"""
from typing import Optional

from fastapi import Header

from nudgegate.core.errors import MissingUserIdError


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    if x_user_id is None or not x_user_id.strip():
        raise MissingUserIdError()
    return x_user_id.strip()
