# availability.py
from datetime import date, time
from typing import Dict, List

from .utils import date_range


class AvailabilityEngine:
    """
    Stateless view over the registry and the ledger.

    A slot is bookable when the provider is verified, declares the slot for the
    date's weekday, and no pending or confirmed appointment holds it.
    """

    def __init__(self, registry, ledger):
        self.registry = registry
        self.ledger = ledger

    def bookable_slots(self, provider_id: str, day: date) -> List[time]:
        provider = self.registry.get_provider(provider_id)
        if not provider.is_verified:
            return []
        held = self.ledger.held_slots(provider_id, day)
        return sorted(slot for slot in provider.slots_for(day) if slot not in held)

    def is_bookable(self, provider_id: str, day: date, slot: time) -> bool:
        return slot in self.bookable_slots(provider_id, day)

    def upcoming_slots(self, provider_id: str, start: date, days: int = 5) -> Dict[date, List[time]]:
        return {day: self.bookable_slots(provider_id, day) for day in date_range(start, days)}
