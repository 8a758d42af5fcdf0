"""
api/policy.py -- Access requirement for every HTTP operation.

One table, fixed at import time, maps each operation name to its
AccessRequirement. Routes register with name=<operation> and take their
principal from guard(<operation>), so the dispatcher consults exactly this
entry before the route body runs. tests/test_api_routes.py checks that every
/api/v1 route has an entry here.
"""

from __future__ import annotations

from types import MappingProxyType

from auth.authz import ADMIN, ANY_AUTH, NO_AUTH, PREMIUM_USER, AccessRequirement, requires
from auth.dependencies import access_dependency

ACCESS_POLICY: MappingProxyType[str, AccessRequirement] = MappingProxyType(
    {
        "home": NO_AUTH,
        "login": NO_AUTH,
        "signup": NO_AUTH,
        "health": NO_AUTH,
        "logout": ANY_AUTH,
        "settings.read": ANY_AUTH,
        "settings.update": ANY_AUTH,
        "premium": requires(ADMIN | PREMIUM_USER),
        "admin": requires(ADMIN),
    }
)


def guard(operation: str):
    """Return the access dependency for a named operation.

    Raises KeyError at import time if a route names an operation the table
    does not know, so an unguarded route cannot be registered by accident.
    """
    return access_dependency(ACCESS_POLICY[operation])
