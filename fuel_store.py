# fuel_store.py
import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, List, Optional

from models import (
    SITES,
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    EntrySubmission,
    FuelEntry,
    InvalidTransition,
    NotFound,
    OdometerFloorError,
    PermissionDenied,
    Session,
    ValidationError,
    check_site,
    entries_key,
)
from storage import JsonKeyValueStore, new_id

log = logging.getLogger(__name__)


def _now_iso() -> str:
    # UTC, millisecond precision, trailing Z
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _by_date_desc(entries: List[FuelEntry]) -> List[FuelEntry]:
    return sorted(entries, key=lambda e: (e.date, e.id), reverse=True)


def with_distance(entries: List[FuelEntry]) -> List[Dict]:
    """
    Attach `distance` (km since the previous fill) to each entry.

    Each plate's entries are ordered by ascending odometer (ties broken by
    date, then id); distance is the gap to the preceding entry in that order
    when positive, otherwise None. The first entry of a plate has None.
    Output keeps the input order.
    """
    by_plate: Dict[str, List[FuelEntry]] = {}
    for e in entries:
        by_plate.setdefault(e.plate_number, []).append(e)

    distances: Dict[int, Optional[int]] = {}
    for plate_entries in by_plate.values():
        ordered = sorted(plate_entries, key=lambda e: (e.odometer, e.date, e.id))
        prev = None
        for e in ordered:
            gap = e.odometer - prev.odometer if prev is not None else 0
            distances[e.id] = gap if gap > 0 else None
            prev = e

    out = []
    for e in entries:
        row = e.summary_dict()
        row["distance"] = distances.get(e.id)
        out.append(row)
    return out


class FuelLogStore:
    """
    Fuel entries per site, persisted under `fuelLogs_<site>`.

    Partitions are kept newest-first by date and rewritten whole on every
    mutation.
    """

    def __init__(self, kv: JsonKeyValueStore):
        self.kv = kv
        self._lock = Lock()
        self._entries: Dict[str, List[FuelEntry]] = {
            site: _by_date_desc([FuelEntry.from_dict(e) for e in kv.get(entries_key(site), [])])
            for site in SITES
        }

    # ===== Queries =====

    def list_entries(self, site: str) -> List[FuelEntry]:
        return list(self._entries[check_site(site)])

    def list_by_plate(self, site: str, plate: str) -> List[FuelEntry]:
        return [e for e in self._entries[check_site(site)] if e.plate_number == plate]

    def get_entry(self, site: str, entry_id: int) -> FuelEntry:
        for e in self._entries[check_site(site)]:
            if e.id == entry_id:
                return e
        raise NotFound(f"Entry {entry_id} not found")

    def last_approved_odometer(self, site: str, plate: str,
                               exclude_id: Optional[int] = None) -> int:
        readings = [
            e.odometer for e in self.list_by_plate(site, plate)
            if e.status == STATUS_APPROVED and e.id != exclude_id
        ]
        return max(readings) if readings else 0

    def entries_with_distance(self, site: str, plate: Optional[str] = None) -> List[Dict]:
        entries = self.list_by_plate(site, plate) if plate else self.list_entries(site)
        return with_distance(entries)

    # ===== Driver operations =====

    def submit_entry(self, session: Session, sub: EntrySubmission) -> FuelEntry:
        session.require_driver()
        site, plate = session.site, session.account.username
        with self._lock:
            floor = self.last_approved_odometer(site, plate)
            if sub.odometer <= floor:
                raise OdometerFloorError(floor)
            entry = FuelEntry(
                id=new_id(),
                plate_number=plate,
                driver_name=session.account.driver_name or plate,
                site=site,
                date=_now_iso(),
                odometer=sub.odometer,
                liters=sub.liters,
                total_cost=sub.total_cost,
                remarks=sub.remarks,
                receipt_photos=list(sub.receipt_photos),
                status=STATUS_PENDING,
            )
            self._entries[site] = _by_date_desc([entry] + self._entries[site])
            self._save(site)
        log.info("Entry %s submitted for %s in %s (odometer %s)",
                 entry.id, plate, site, entry.odometer)
        return entry

    def edit_entry(self, session: Session, entry_id: int, sub: EntrySubmission) -> FuelEntry:
        """Correct a rejected entry; it goes back to pending review."""
        session.require_driver()
        site, plate = session.site, session.account.username
        with self._lock:
            entry = self.get_entry(site, entry_id)
            if entry.plate_number != plate:
                raise PermissionDenied("Only the owning driver can edit this entry.")
            if entry.status != STATUS_REJECTED:
                raise InvalidTransition("Only rejected entries can be corrected.")
            floor = self.last_approved_odometer(site, plate, exclude_id=entry.id)
            if sub.odometer <= floor:
                raise OdometerFloorError(floor)
            if sub.odometer < entry.odometer:
                raise OdometerFloorError(
                    entry.odometer,
                    f"Odometer cannot be lower than the previous reading ({entry.odometer} km).",
                )
            entry.odometer = sub.odometer
            entry.liters = sub.liters
            entry.total_cost = sub.total_cost
            entry.remarks = sub.remarks
            entry.receipt_photos = list(sub.receipt_photos)
            entry.date = _now_iso()
            entry.status = STATUS_PENDING
            entry.rejection_reason = ""
            self._entries[site] = _by_date_desc(self._entries[site])
            self._save(site)
        log.info("Entry %s corrected by %s in %s", entry.id, plate, site)
        return entry

    # ===== Administrator operations =====

    def set_status(self, session: Session, site: str, entry_id: int, status: str,
                   reason: Optional[str] = None) -> FuelEntry:
        session.require_admin()
        reason = (reason or "").strip()
        with self._lock:
            entry = self.get_entry(site, entry_id)
            if entry.status != STATUS_PENDING:
                raise InvalidTransition(f"Entry is already {entry.status}.")
            if status == STATUS_APPROVED:
                floor = self.last_approved_odometer(site, entry.plate_number, exclude_id=entry.id)
                if entry.odometer < floor:
                    raise OdometerFloorError(
                        floor,
                        f"Odometer {entry.odometer} km is below the last approved reading ({floor} km).",
                    )
                entry.rejection_reason = ""
            elif status == STATUS_REJECTED:
                if not reason:
                    raise ValidationError("A rejection reason is required.")
                entry.rejection_reason = reason
            else:
                raise InvalidTransition(f"Cannot set status to '{status}'.")
            prev = entry.status
            entry.status = status
            self._save(site)
        log.info("Entry %s in %s: %s -> %s", entry.id, site, prev, status)
        return entry

    def approve(self, session: Session, site: str, entry_id: int) -> FuelEntry:
        return self.set_status(session, site, entry_id, STATUS_APPROVED)

    def reject(self, session: Session, site: str, entry_id: int, reason: str) -> FuelEntry:
        return self.set_status(session, site, entry_id, STATUS_REJECTED, reason)

    # ===== Internal =====

    def _save(self, site: str) -> None:
        self.kv.put(entries_key(site), [e.to_dict() for e in self._entries[site]])
