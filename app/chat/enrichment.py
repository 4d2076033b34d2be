"""Adds live trip details to flow replies."""
from typing import List

from .flows import FlowContext
from .models import FlowResult


def _where_is_details(context: FlowContext) -> List[str]:
    lines = []
    driver = context.driver
    if driver is None:
        return lines
    if driver.license_plate:
        lines.append(f"Plate: {driver.license_plate}")
    lines.append(f"Current location: ({driver.location.lat:.4f}, {driver.location.lng:.4f})")
    traffic = context.traffic
    if traffic is not None:
        line = f"Traffic: {traffic.congestion_level}, avg speed {traffic.average_speed}"
        if traffic.delay_minutes > 0:
            line += f" (+{traffic.delay_minutes} min delay)"
        lines.append(line)
    return lines


def _contact_details(context: FlowContext) -> List[str]:
    driver = context.driver
    if driver is None or not driver.license_plate:
        return []
    return [f"Plate: {driver.license_plate}"]


def _payment_details(context: FlowContext) -> List[str]:
    booking = context.booking
    if booking is None:
        return []
    lines = []
    if booking.distance:
        lines.append(f"Distance: {booking.distance}")
    if booking.ride_type:
        lines.append(f"Ride type: {booking.ride_type}")
    return lines


_ENRICHERS = {
    "where_is_driver": _where_is_details,
    "contact_driver": _contact_details,
    "payment_query": _payment_details,
}


def enrich_message(intent: str, result: FlowResult, context: FlowContext) -> str:
    """Return the flow message with any live details for ``intent`` appended.

    Escalating results are returned untouched.
    """
    if result.escalate:
        return result.message
    enricher = _ENRICHERS.get(intent)
    if enricher is None:
        return result.message
    details = enricher(context)
    if not details:
        return result.message
    return result.message + "\n" + "\n".join(details)
