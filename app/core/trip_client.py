import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import httpx

from .config import settings
from .errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Location:
    lat: float
    lng: float


@dataclass
class Booking:
    id: str
    status: str = "confirmed"
    user_id: Optional[str] = None
    pickup: str = ""
    dropoff: str = ""
    estimated_fare: str = ""
    distance: str = ""
    ride_type: str = "comfort"
    created_at: Optional[datetime] = None
    driver_id: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Booking":
        return cls(
            id=str(payload["id"]),
            status=payload.get("status") or "confirmed",
            user_id=payload.get("userId"),
            pickup=payload.get("pickupLocation", ""),
            dropoff=payload.get("dropoffLocation", ""),
            estimated_fare=str(payload.get("estimatedFare", "")),
            distance=str(payload.get("distance", "")),
            ride_type=payload.get("rideType") or "comfort",
            created_at=_parse_datetime(payload.get("createdAt")),
            driver_id=payload.get("driverId"),
        )


@dataclass
class Driver:
    id: str
    name: str
    rating: float
    vehicle_info: str
    eta_minutes: int
    phone: str
    license_plate: str = ""
    location: Location = field(default_factory=lambda: Location(0.0, 0.0))
    status: str = "en_route"

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Driver":
        location = payload.get("currentLocation") or {}
        return cls(
            id=str(payload["id"]),
            name=payload.get("name", "your driver"),
            rating=float(payload.get("rating", 0)),
            vehicle_info=payload.get("vehicleInfo", ""),
            eta_minutes=int(payload.get("eta", 0)),
            phone=payload.get("phone", ""),
            license_plate=payload.get("licensePlate", ""),
            location=Location(float(location.get("lat", 0.0)), float(location.get("lng", 0.0))),
            status=payload.get("status", "en_route"),
        )


@dataclass
class TrafficSnapshot:
    congestion_level: str
    delay_minutes: int
    average_speed: str
    road_condition: str = "clear"

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TrafficSnapshot":
        return cls(
            congestion_level=payload.get("congestionLevel", "moderate"),
            delay_minutes=int(payload.get("delayMinutes", 0)),
            average_speed=str(payload.get("averageSpeed", "")),
            road_condition=payload.get("roadCondition", "clear"),
        )


@dataclass
class PaymentDetails:
    booking_id: str
    estimated_fare: str
    method: str
    status: str
    breakdown: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "PaymentDetails":
        return cls(
            booking_id=str(payload.get("bookingId", "")),
            estimated_fare=str(payload.get("estimatedFare", "")),
            method=payload.get("method", "credit_card"),
            status=payload.get("status", "pending"),
            breakdown=dict(payload.get("breakdown") or {}),
        )


@dataclass
class UserProfile:
    id: str
    name: str
    phone: str = ""


def to_dict(record: Any) -> Dict[str, Any]:
    """JSON-friendly dict for one of the trip dataclasses."""
    if record is None:
        return {}
    data = asdict(record)
    for key, value in data.items():
        if isinstance(value, datetime):
            data[key] = value.isoformat()
    return data


class TripDataProvider(Protocol):
    """Read and write operations consumed from the booking/driver services."""

    async def get_booking(self, booking_id: str) -> Booking: ...

    async def get_driver(self, driver_id: str) -> Driver: ...

    async def get_traffic(self, booking_id: str) -> TrafficSnapshot: ...

    async def get_payment(self, booking_id: str) -> PaymentDetails: ...

    async def get_user_profile(self, user_id: str) -> UserProfile: ...

    async def send_notification(self, recipient_id: str, message: str) -> Dict[str, Any]: ...

    async def cancel_booking(self, booking_id: str, reason: str) -> Dict[str, Any]: ...


class HttpTripDataProvider:
    """Talks to the external trip services over HTTP."""

    def __init__(self, base_settings=None, transport: Optional[httpx.AsyncBaseTransport] = None):
        cfg = base_settings or settings
        self.booking_url = cfg.booking_api_url.rstrip("/")
        self.driver_url = cfg.driver_api_url.rstrip("/")
        self.traffic_url = cfg.traffic_api_url.rstrip("/")
        self.payment_url = cfg.payment_api_url.rstrip("/")
        self.notification_url = cfg.notification_api_url.rstrip("/")
        self.user_url = cfg.user_api_url.rstrip("/")
        self.timeout = cfg.upstream_timeout_seconds
        self._transport = transport
        self._client = None

    async def _get_client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def _get_json(self, service: str, url: str) -> Dict[str, Any]:
        client = await self._get_client()
        try:
            resp = await client.get(url)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPError as e:
            raise UpstreamUnavailableError(service, str(e)) from e

    async def _post_json(self, service: str, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        client = await self._get_client()
        try:
            resp = await client.post(url, json=payload)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPError as e:
            raise UpstreamUnavailableError(service, str(e)) from e

    async def get_booking(self, booking_id: str) -> Booking:
        return Booking.from_payload(await self._get_json("booking", f"{self.booking_url}/{booking_id}"))

    async def get_driver(self, driver_id: str) -> Driver:
        return Driver.from_payload(await self._get_json("driver", f"{self.driver_url}/{driver_id}"))

    async def get_traffic(self, booking_id: str) -> TrafficSnapshot:
        payload = await self._get_json("traffic", f"{self.traffic_url}?bookingId={booking_id}")
        return TrafficSnapshot.from_payload(payload)

    async def get_payment(self, booking_id: str) -> PaymentDetails:
        payload = await self._get_json("payment", f"{self.payment_url}/{booking_id}")
        return PaymentDetails.from_payload(payload)

    async def get_user_profile(self, user_id: str) -> UserProfile:
        payload = await self._get_json("user", f"{self.user_url}/{user_id}")
        return UserProfile(id=str(payload.get("id", user_id)), name=payload.get("name", "there"),
                           phone=payload.get("phone", ""))

    async def send_notification(self, recipient_id: str, message: str) -> Dict[str, Any]:
        return await self._post_json(
            "notification", self.notification_url, {"userId": recipient_id, "message": message}
        )

    async def cancel_booking(self, booking_id: str, reason: str) -> Dict[str, Any]:
        return await self._post_json(
            "booking", f"{self.booking_url}/{booking_id}/cancel", {"reason": reason}
        )

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()


class TimeoutTripProvider:
    """Bounds every call to the wrapped provider.

    A timeout or any transport failure surfaces as UpstreamUnavailableError,
    which callers treat the same as a failed fetch.
    """

    def __init__(self, provider: TripDataProvider, timeout: float):
        self.provider = provider
        self.timeout = timeout

    async def _call(self, service: str, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except UpstreamUnavailableError:
            raise
        except asyncio.TimeoutError as e:
            logger.warning("Upstream %s timed out after %.2fs", service, self.timeout)
            raise UpstreamUnavailableError(service, "timed out") from e
        except Exception as e:
            raise UpstreamUnavailableError(service, str(e)) from e

    async def get_booking(self, booking_id: str) -> Booking:
        return await self._call("booking", self.provider.get_booking(booking_id))

    async def get_driver(self, driver_id: str) -> Driver:
        return await self._call("driver", self.provider.get_driver(driver_id))

    async def get_traffic(self, booking_id: str) -> TrafficSnapshot:
        return await self._call("traffic", self.provider.get_traffic(booking_id))

    async def get_payment(self, booking_id: str) -> PaymentDetails:
        return await self._call("payment", self.provider.get_payment(booking_id))

    async def get_user_profile(self, user_id: str) -> UserProfile:
        return await self._call("user", self.provider.get_user_profile(user_id))

    async def send_notification(self, recipient_id: str, message: str) -> Dict[str, Any]:
        return await self._call("notification", self.provider.send_notification(recipient_id, message))

    async def cancel_booking(self, booking_id: str, reason: str) -> Dict[str, Any]:
        return await self._call("booking", self.provider.cancel_booking(booking_id, reason))

    async def close(self):
        close = getattr(self.provider, "close", None)
        if close is not None:
            await close()
