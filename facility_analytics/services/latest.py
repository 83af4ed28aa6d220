from __future__ import annotations

from facility_analytics.models.reading import LatestSnapshot, Reading
from facility_analytics.services.keyed import KeyedSlots


class LatestValueIndex:
    """Most recent accepted reading per (entity_id, metric).

    Last write wins by timestamp, not by arrival: an update only replaces the
    stored snapshot when its timestamp is strictly newer.
    """

    def __init__(self) -> None:
        self._slots: KeyedSlots[LatestSnapshot | None] = KeyedSlots(lambda: None)

    def update(self, reading: Reading) -> bool:
        slot = self._slots.get_or_create(reading.key)
        with slot.lock:
            current = slot.state
            if current is not None and reading.timestamp <= current.timestamp:
                return False
            slot.state = LatestSnapshot(
                entity_id=reading.entity_id,
                metric=reading.metric,
                value=reading.value,
                timestamp=reading.timestamp,
                unit=reading.unit,
            )
            return True

    def get(self, entity_id: str, metric: str) -> LatestSnapshot | None:
        slot = self._slots.get((entity_id, metric))
        if slot is None:
            return None
        with slot.lock:
            return slot.state

    def snapshot(self, *, metric: str | None = None) -> list[LatestSnapshot]:
        rows: list[LatestSnapshot] = []
        for (_, slot_metric), slot in self._slots.items():
            if metric is not None and slot_metric != metric:
                continue
            with slot.lock:
                if slot.state is not None:
                    rows.append(slot.state)
        rows.sort(key=lambda r: (r.entity_id, r.metric))
        return rows

    def entities(self, metric: str) -> list[str]:
        return sorted({entity for entity, m in self._slots.keys() if m == metric})

    def __len__(self) -> int:
        return len(self._slots)
