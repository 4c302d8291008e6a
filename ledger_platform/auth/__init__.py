"""Authentication / authorization helpers.

Auth is deliberately small:

- Users table (username/password hash + role)
- JWT session tokens, 24h validity, revocable by token id

Protected routes depend on `get_current_user` (401 on any failure), routes that
treat anonymous callers differently use `get_optional_user`, and admin routes
stack `require_admin` (403) on top of the mandatory gate.

Tokens are read from `Authorization: Bearer <token>`; a bare token in the header
is still accepted for older clients.
"""

from .deps import CurrentUser, get_current_user, get_optional_user, require_admin, require_role
from .crud import bootstrap_admin_if_needed, create_user

__all__ = [
    "CurrentUser",
    "get_current_user",
    "get_optional_user",
    "require_admin",
    "require_role",
    "bootstrap_admin_if_needed",
    "create_user",
]
