from fastapi import Request

from funnel_tracker.services.consent import ConsentContext
from funnel_tracker.services.session_resolver import ClientContext


def get_client_context(request: Request) -> ClientContext:
    """
    Snapshot of the request pieces the tracking core needs.
    The posted session_id is filled in by the route once the body is parsed.
    """
    return ClientContext(
        cookies=dict(request.cookies),
        headers={key.lower(): value for key, value in request.headers.items()},
        remote_addr=request.client.host if request.client else "",
    )


def get_consent_context(request: Request) -> ConsentContext:
    return ConsentContext.from_cookies(dict(request.cookies))
