"""Selection policy deciding which announcement a node pairs with."""

from discovery.models import Announcement


def _norm(value: str) -> str:
    return value.strip().casefold()


def should_accept(
    candidate: Announcement,
    configured_fingerprint: str,
    configured_host: str,
) -> bool:
    """
    Decide whether ``candidate`` should become the paired endpoint.

    The configured fingerprint and host narrow the choice:

    * both set: device id and location must both match
    * fingerprint only: device id must match
    * host only: location must match
    * neither: the candidate is accepted (first seen wins)

    Comparisons ignore case and surrounding whitespace.
    """
    fingerprint = _norm(configured_fingerprint)
    host = _norm(configured_host)
    device_id = _norm(candidate.device_id)
    location = _norm(candidate.location)

    if fingerprint and host:
        return device_id == fingerprint and location == host
    if fingerprint:
        return device_id == fingerprint
    if host:
        return location == host
    return True
