"""
Client identification for view dedupe.
"""
from starlette.requests import Request


def resolve_client_id(request: Request, trust_forwarded_for: bool = True) -> str:
    """Return the identifier a view is attributed to.

    The first hop of X-Forwarded-For wins over the peer address. Nothing is
    validated: an absent or empty identifier becomes "" and is deduplicated
    like any other string.
    """
    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    if request.client is None:
        return ""
    return request.client.host or ""
