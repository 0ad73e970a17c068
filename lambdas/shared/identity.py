"""Request identity resolution from API Gateway events."""

from typing import Any

from aws_lambda_powertools import Logger

from .models import RequestIdentity, Tier
from .utils import extract_user_id, get_header

logger = Logger(child=True)

UNKNOWN_ADDRESS = "unknown"


def _network_address(event: dict[str, Any]) -> str:
    source_ip = (
        event.get("requestContext", {}).get("identity", {}).get("sourceIp")
    )
    if source_ip:
        return source_ip

    forwarded = get_header(event.get("headers"), "x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

    return UNKNOWN_ADDRESS


def _authorizer(event: dict[str, Any]) -> dict[str, Any]:
    return event.get("requestContext", {}).get("authorizer") or {}


def _tier_from_authorizer(authorizer: dict[str, Any]) -> Tier:
    raw = authorizer.get("tier") or authorizer.get("claims", {}).get("custom:tier")
    if not raw:
        return Tier.STANDARD
    try:
        tier = Tier(str(raw).lower())
    except ValueError:
        logger.warning("Unknown tier from authorizer", extra={"tier": raw})
        return Tier.STANDARD
    # An authenticated subject is never anonymous
    return Tier.STANDARD if tier == Tier.ANONYMOUS else tier


def resolve_identity(
    event: dict[str, Any], trust_user_header: bool = False
) -> RequestIdentity:
    """Derive who a request is evaluated against.

    The subject comes from the authorizer context. The X-User-Id header is
    only read when trust_user_header is set (dev and test deployments); an
    untrusted header is ignored and the request is anonymous. The tier only
    ever comes from the authorizer, so a client cannot raise its own limits
    through a header.

    Args:
        event: Raw API Gateway proxy event
        trust_user_header: Accept X-User-Id as the subject when no
            authorizer subject is present

    Returns:
        RequestIdentity for this request
    """
    authorizer = _authorizer(event)
    subject_id = authorizer.get("principalId") or authorizer.get("claims", {}).get("sub")
    address = _network_address(event)

    if not subject_id and trust_user_header:
        subject_id = extract_user_id(event.get("headers"))
    elif not subject_id and extract_user_id(event.get("headers")):
        logger.debug("Ignoring untrusted X-User-Id header", extra={"network_address": address})

    if not subject_id:
        return RequestIdentity(network_address=address, tier=Tier.ANONYMOUS)

    return RequestIdentity(
        network_address=address,
        subject_id=str(subject_id),
        tier=_tier_from_authorizer(authorizer),
    )
