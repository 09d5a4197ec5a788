"""Pydantic models for management discovery."""

from pydantic import BaseModel


class Announcement(BaseModel):
    """A discovery response describing one candidate management endpoint."""
    location: str
    device_id: str
    service_type: str
    server: str = ""
    max_age: int = 0


class AdvertisedService(BaseModel):
    """What an SSDP server announces for this node."""
    service_type: str
    device_id: str
    location: str
    max_age: int = 3600
    server: str = ""


class DiscoveryRecord(BaseModel):
    """The durable record of the paired management endpoint."""
    endpoint: str
    updated_at: float


class PairingEvent(BaseModel):
    """Passed to dependent-client reset hooks after every pairing."""
    endpoint: str
    previous: str = ""
    changed: bool = True
