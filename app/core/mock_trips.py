"""Demo trip data used when no real booking/driver services are configured."""
import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from .trip_client import Booking, Driver, Location, PaymentDetails, TrafficSnapshot, UserProfile

logger = logging.getLogger(__name__)

DRIVER_NAMES = [
    "John Smith", "Maria Garcia", "Ahmed Hassan", "Lisa Chen",
    "David Brown", "Sarah Wilson", "James Taylor", "Priya Patel",
]
USER_NAMES = ["Michael Johnson", "Jessica Lee", "Robert Kim", "Emma Davis", "Sophia Anderson"]
VEHICLES = [
    "Tesla Model 3 • White", "Honda Civic • Silver", "Toyota Prius • Blue",
    "Ford Focus • Black", "Hyundai Sonata • Red",
]
ADDRESSES = [
    "123 Main St, New York", "456 Oak Ave, Brooklyn", "789 Park Blvd, Manhattan",
    "321 Elm St, Queens", "654 Pine Rd, Bronx",
]
CONGESTION = ["light", "moderate", "heavy", "severe"]
ROAD_CONDITIONS = ["clear", "wet", "foggy", "construction"]
PAYMENT_METHODS = ["credit_card", "debit_card", "digital_wallet", "cash"]
DEFAULT_DRIVER_ID = "driver_789"


class MockTripDataProvider:
    """Generates plausible bookings, drivers and traffic.

    Pass a seed to get reproducible data.
    """

    def __init__(self, seed: Optional[int] = None):
        self._random = random.Random(seed)

    def _plate(self) -> str:
        letters = "".join(self._random.choice("ABCDEFGHJKLMNPRSTUVWXYZ") for _ in range(3))
        digits = "".join(self._random.choice("0123456789") for _ in range(4))
        return f"{letters}-{digits}"

    async def get_booking(self, booking_id: str) -> Booking:
        fare = self._random.uniform(10, 60)
        created = datetime.now(timezone.utc) - timedelta(minutes=self._random.randint(0, 30))
        booking = Booking(
            id=booking_id,
            status=self._random.choice(["confirmed", "in_progress", "arrived"]),
            pickup=self._random.choice(ADDRESSES),
            dropoff=self._random.choice(ADDRESSES),
            estimated_fare=f"${fare:.2f}",
            distance=f"{self._random.uniform(1, 20):.1f} km",
            ride_type=self._random.choice(["economy", "comfort", "premium", "xl"]),
            created_at=created,
            driver_id=DEFAULT_DRIVER_ID,
        )
        logger.debug("Mock booking generated for %s", booking_id)
        return booking

    async def get_driver(self, driver_id: str) -> Driver:
        return Driver(
            id=driver_id,
            name=self._random.choice(DRIVER_NAMES),
            rating=round(self._random.uniform(3.5, 5.0), 1),
            vehicle_info=self._random.choice(VEHICLES),
            eta_minutes=self._random.randint(2, 25),
            phone=f"+1{self._random.randint(1000000000, 9999999999)}",
            license_plate=self._plate(),
            location=Location(
                round(40.7128 + self._random.uniform(-0.05, 0.05), 4),
                round(-74.006 + self._random.uniform(-0.05, 0.05), 4),
            ),
            status="en_route",
        )

    async def get_traffic(self, booking_id: str) -> TrafficSnapshot:
        return TrafficSnapshot(
            congestion_level=self._random.choice(CONGESTION),
            delay_minutes=self._random.randint(0, 20),
            average_speed=f"{self._random.randint(20, 80)} km/h",
            road_condition=self._random.choice(ROAD_CONDITIONS),
        )

    async def get_payment(self, booking_id: str) -> PaymentDetails:
        return PaymentDetails(
            booking_id=booking_id,
            estimated_fare=f"{self._random.uniform(10, 60):.2f}",
            method=self._random.choice(PAYMENT_METHODS),
            status="pending",
            breakdown={
                "baseFare": f"${self._random.uniform(2, 7):.2f}",
                "distance": f"${self._random.uniform(5, 25):.2f}",
                "time": f"${self._random.uniform(2, 12):.2f}",
                "serviceFee": f"${self._random.uniform(1, 4):.2f}",
            },
        )

    async def get_user_profile(self, user_id: str) -> UserProfile:
        return UserProfile(id=user_id, name=self._random.choice(USER_NAMES),
                           phone=f"+1{self._random.randint(1000000000, 9999999999)}")

    async def send_notification(self, recipient_id: str, message: str) -> Dict[str, Any]:
        logger.info("Mock notification to %s: %s", recipient_id, message)
        return {
            "success": True,
            "notificationId": f"notif_{uuid4().hex[:9]}",
            "userId": recipient_id,
            "sentAt": datetime.now(timezone.utc).isoformat(),
        }

    async def cancel_booking(self, booking_id: str, reason: str) -> Dict[str, Any]:
        logger.info("Mock cancellation of booking %s (%s)", booking_id, reason)
        return {
            "status": "success",
            "bookingId": booking_id,
            "cancelledAt": datetime.now(timezone.utc).isoformat(),
            "refundStatus": "processing",
        }
