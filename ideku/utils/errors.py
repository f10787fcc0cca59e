"""Standardised service error results.

Usage
-----
    from ideku.utils.errors import service_error, E

    return None, service_error(E.NOT_FOUND, "Idea not found")
    return None, service_error(E.INVALID_TRANSITION, "Idea is not pending at stage 2",
                               details={"pending_stages": [1]})
"""

from __future__ import annotations


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for every code
    """

    # Validation
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found
    NOT_FOUND = "ERR_NOT_FOUND"

    # State machine
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    NO_ELIGIBLE_APPROVER = "ERR_NO_ELIGIBLE_APPROVER"
    CONCURRENCY_CONFLICT = "ERR_CONCURRENCY_CONFLICT"

    # Permissions
    FORBIDDEN = "ERR_FORBIDDEN"


# ── Default HTTP-style status mapping (for adapters) ──────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.INVALID_TRANSITION: 409,
    E.NO_ELIGIBLE_APPROVER: 422,
    E.CONCURRENCY_CONFLICT: 409,
    E.FORBIDDEN: 403,
}


def service_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
) -> dict:
    """Build the error half of a ``(result, error)`` service tuple.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation.
    status : int, optional
        Status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (pending stages, workflow ids, etc.).
    """
    body: dict = {
        "error": message,
        "code": code,
        "status": status or _DEFAULT_STATUS.get(code, 400),
    }
    if details:
        body["details"] = details
    return body
