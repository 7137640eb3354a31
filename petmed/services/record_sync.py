"""
Collection synchronizer.
Owns the cached record list for one (pet, record kind) pair and drives
fetch / create / update / delete against the remote gateway.

Failure policy:
  * fetch   -> keep the stale cache, raise the banner
  * create  -> keep the user's input as a local record with a temp- id
  * update  -> echo the submitted values locally, mark the record unsynced
  * delete  -> never optimistic; the record stays and the banner is raised

Refetches merge instead of replacing: unsynced records held in memory always
survive, and only the most recently issued fetch may apply its result.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Set, Tuple

from ..core.config import settings
from ..core.errors import RecordNotFound, RemoteError
from ..models.records import MedicalRecord, SyncState
from ..models.schemas import RecordSchema, Sections

logger = logging.getLogger(__name__)


class PanelState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    ERROR_BANNER = "error-banner"


@dataclass
class DeletePrompt:
    record_id: str
    title: str
    message: str
    options: List[str] = field(default_factory=lambda: ["Cancel", "Delete"])


def is_local_id(record_id: str) -> bool:
    """True for ids minted locally for records the backend has never accepted."""
    return record_id.startswith(settings.LOCAL_ID_PREFIX)


class LocalIdFactory:
    """Mints temp-<epoch millis> ids, never repeating one within a collection."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._last = 0

    def next(self, taken: Set[str]) -> str:
        millis = max(int(self._clock() * 1000), self._last + 1)
        while f"{settings.LOCAL_ID_PREFIX}{millis}" in taken:
            millis += 1
        self._last = millis
        return f"{settings.LOCAL_ID_PREFIX}{millis}"


class RecordCollectionSync:
    """Cache plus remote synchronization for one pet's records of one kind."""

    def __init__(
        self,
        schema: RecordSchema,
        gateway,
        pet_id: str,
        clock: Optional[Callable[[], datetime]] = None,
        local_ids: Optional[LocalIdFactory] = None,
    ):
        self.schema = schema
        self.gateway = gateway
        self.pet_id = pet_id
        self.banner: Optional[str] = None
        self.alive = True
        self._clock = clock or datetime.now
        self._local_ids = local_ids or LocalIdFactory()
        self._records: List[MedicalRecord] = []
        self._loaded = False

        # Fetch bookkeeping: generation decides which response may apply; the
        # mutation journal lets a late fetch keep writes made after it was issued.
        self._fetch_generation = 0
        self._fetches_in_flight = 0
        self._mutation_seq = 0
        self._recent: Dict[str, Tuple[int, Optional[MedicalRecord]]] = {}

    # -- reads --------------------------------------------------------------

    @property
    def state(self) -> PanelState:
        if not self._loaded:
            return PanelState.LOADING
        if self.banner:
            return PanelState.ERROR_BANNER
        return PanelState.READY

    @property
    def records(self) -> List[MedicalRecord]:
        return list(self._records)

    def get(self, record_id: str) -> MedicalRecord:
        for record in self._records:
            if record.id == record_id:
                return record
        raise RecordNotFound(record_id)

    def now(self) -> datetime:
        return self._clock()

    def partition(self, now: Optional[datetime] = None) -> Sections:
        """Derived split of the live cache; recomputed on every call."""
        return self.schema.partition(list(self._records), now or self._clock())

    def pending_count(self) -> int:
        return sum(1 for record in self._records if not record.is_synced)

    # -- lifecycle ------------------------------------------------------------

    def close(self) -> None:
        """Unmount: every completion arriving after this is ignored."""
        self.alive = False

    def dismiss_banner(self) -> None:
        self.banner = None

    def _still_alive(self, action: str) -> bool:
        if not self.alive:
            logger.debug("Ignoring %s completion for closed %s panel of pet %s",
                         action, self.schema.kind.value, self.pet_id)
        return self.alive

    # -- fetch ----------------------------------------------------------------

    async def fetch_all(self) -> bool:
        """Refresh from the backend. Returns True when the result was applied."""
        self._fetch_generation += 1
        generation = self._fetch_generation
        issued_at = self._mutation_seq
        self._fetches_in_flight += 1
        try:
            fetched = await self.gateway.list(self.pet_id)
        except RemoteError as exc:
            if self._accepts(generation):
                self._loaded = True
                logger.warning("Fetching %s for pet %s failed, keeping cached records: %s",
                               self.schema.kind.value, self.pet_id, exc)
                self.banner = settings.BANNER_FETCH_FAILED
            return False
        finally:
            self._fetches_in_flight -= 1

        applied = self._accepts(generation)
        if applied:
            self._loaded = True
            self._records = self._merge(fetched, issued_at)
        if self._fetches_in_flight == 0:
            self._recent.clear()
        if not applied:
            return False
        self.banner = None
        logger.debug("Loaded %d %s for pet %s (%d pending locally)",
                     len(self._records), self.schema.kind.value, self.pet_id, self.pending_count())
        return True

    def _accepts(self, generation: int) -> bool:
        if not self._still_alive("fetch"):
            return False
        if generation != self._fetch_generation:
            logger.debug("Discarding stale %s fetch for pet %s", self.schema.kind.value, self.pet_id)
            return False
        return True

    def _merge(self, fetched: List[MedicalRecord], issued_at: int) -> List[MedicalRecord]:
        newer = {rid: rec for rid, (seq, rec) in self._recent.items() if seq > issued_at}
        unsynced = {r.id: r for r in self._records if not r.is_synced}
        merged: List[MedicalRecord] = []
        seen: Set[str] = set()

        for record in fetched:
            if record.id in seen:
                continue
            seen.add(record.id)
            if record.id in unsynced:
                merged.append(unsynced[record.id])
            elif record.id in newer:
                if newer[record.id] is not None:
                    merged.append(newer[record.id])
            else:
                merged.append(record)

        # writes confirmed after the fetch went out, absent from its snapshot
        for record_id, record in newer.items():
            if record is not None and record_id not in seen and record_id not in unsynced:
                seen.add(record_id)
                merged.append(record)

        # unsynced records are never dropped by a refetch
        for record in self._records:
            if not record.is_synced and record.id not in seen:
                seen.add(record.id)
                merged.append(record)
        return merged

    def _note_mutation(self, record_id: str, record: Optional[MedicalRecord]) -> None:
        if self._fetches_in_flight:
            self._mutation_seq += 1
            self._recent[record_id] = (self._mutation_seq, record)

    # -- cache edits ------------------------------------------------------------

    def _append(self, record: MedicalRecord) -> None:
        if not self._replace(record.id, record):
            self._records.append(record)

    def _replace(self, record_id: str, record: MedicalRecord) -> bool:
        for index, existing in enumerate(self._records):
            if existing.id == record_id:
                self._records[index] = record
                break
        else:
            return False
        if record.id != record_id:
            self._records = [r for r in self._records if r.id != record.id or r is record]
        return True

    def _remove(self, record_id: str) -> None:
        self._records = [r for r in self._records if r.id != record_id]

    def _next_local_id(self) -> str:
        return self._local_ids.next({r.id for r in self._records})

    # -- create -----------------------------------------------------------------

    async def submit_create(self, form: Mapping) -> Optional[MedicalRecord]:
        """
        Validate and create. Raises ValidationError before any network call.
        A failed create keeps the input as an unsynced local record.
        """
        self.schema.ensure_valid(form)
        payload = self.schema.to_wire(form)
        try:
            created = await self.gateway.create(self.pet_id, payload)
        except RemoteError as exc:
            if not self._still_alive("create"):
                return None
            record = self.schema.to_record(self._next_local_id(), form, SyncState.UNSYNCED)
            self._records.append(record)
            self.banner = settings.BANNER_SAVED_LOCALLY
            logger.warning("Creating %s for pet %s failed, kept locally as %s: %s",
                           self.schema.kind.value, self.pet_id, record.id, exc)
            return record

        if not self._still_alive("create"):
            return None
        self._append(created)
        self._note_mutation(created.id, created)
        self.banner = None
        logger.info("Created %s %s for pet %s", self.schema.kind.value, created.id, self.pet_id)
        return created

    # -- update -----------------------------------------------------------------

    async def submit_update(self, record_id: str, form: Mapping) -> Optional[MedicalRecord]:
        """
        Apply form values over the record's current values and push them.
        A failed update echoes the values locally and marks the record unsynced.
        """
        current = self.get(record_id)
        values = {**self.schema.to_form(current), **form}
        self.schema.ensure_valid(values)
        payload = self.schema.to_wire(values)

        if is_local_id(record_id):
            return await self._create_local(current, values, payload)

        try:
            updated = await self.gateway.update(self.pet_id, record_id, payload)
        except RemoteError as exc:
            if not self._still_alive("update"):
                return None
            echoed = self.schema.to_record(record_id, values, SyncState.UNSYNCED)
            self._replace(record_id, echoed)
            self.banner = settings.BANNER_UPDATED_LOCALLY
            logger.warning("Updating %s %s for pet %s failed, kept local changes: %s",
                           self.schema.kind.value, record_id, self.pet_id, exc)
            return echoed

        if not self._still_alive("update"):
            return None
        if self._replace(record_id, updated):
            self._note_mutation(updated.id, updated)
        self.banner = None
        logger.info("Updated %s %s for pet %s", self.schema.kind.value, record_id, self.pet_id)
        return updated

    async def _create_local(self, current: MedicalRecord, values: Mapping,
                            payload: Dict) -> Optional[MedicalRecord]:
        """Edits of a local-only record go out as a create; its temp id never leaves the app."""
        try:
            created = await self.gateway.create(self.pet_id, payload)
        except RemoteError as exc:
            if not self._still_alive("update"):
                return None
            echoed = self.schema.to_record(current.id, values, SyncState.UNSYNCED)
            self._replace(current.id, echoed)
            self.banner = settings.BANNER_SAVED_LOCALLY
            logger.warning("Local %s %s for pet %s still not accepted: %s",
                           self.schema.kind.value, current.id, self.pet_id, exc)
            return echoed

        if not self._still_alive("update"):
            return None
        if not self._replace(current.id, created):
            self._append(created)
        self._note_mutation(created.id, created)
        self.banner = None
        logger.info("Local %s %s for pet %s stored as %s",
                    self.schema.kind.value, current.id, self.pet_id, created.id)
        return created

    # -- delete -----------------------------------------------------------------

    def request_delete(self, record_id: str) -> DeletePrompt:
        record = self.get(record_id)
        title = self.schema.card_title(record)
        return DeletePrompt(
            record_id=record_id,
            title=f"Delete {title}",
            message=f"Are you sure you want to delete {title}?",
        )

    async def confirm_delete(self, record_id: str) -> bool:
        """Delete on the backend first; the cache only changes once that succeeds."""
        self.get(record_id)
        if is_local_id(record_id):
            self._remove(record_id)
            self.banner = None
            logger.info("Discarded local-only %s %s for pet %s",
                        self.schema.kind.value, record_id, self.pet_id)
            return True

        try:
            await self.gateway.delete(self.pet_id, record_id)
        except RemoteError as exc:
            if self._still_alive("delete"):
                self.banner = settings.BANNER_DELETE_FAILED
                logger.warning("Deleting %s %s for pet %s failed: %s",
                               self.schema.kind.value, record_id, self.pet_id, exc)
            return False

        if not self._still_alive("delete"):
            return False
        self._remove(record_id)
        self._note_mutation(record_id, None)
        self.banner = None
        logger.info("Deleted %s %s for pet %s", self.schema.kind.value, record_id, self.pet_id)
        return True

    # -- manual reconciliation -------------------------------------------------

    async def push_pending(self) -> Dict[str, int]:
        """
        Push every unsynced record to the backend. User-triggered only:
        failed writes are never retried on their own.
        """
        pending = [record for record in self._records if not record.is_synced]
        results = {"synced": 0, "failed": 0, "total": len(pending)}

        for record in pending:
            payload = self.schema.to_wire(self.schema.to_form(record))
            try:
                if is_local_id(record.id):
                    synced = await self.gateway.create(self.pet_id, payload)
                else:
                    synced = await self.gateway.update(self.pet_id, record.id, payload)
            except RemoteError as exc:
                logger.warning("Sync of %s %s for pet %s failed: %s",
                               self.schema.kind.value, record.id, self.pet_id, exc)
                results["failed"] += 1
                continue
            if not self._still_alive("sync"):
                return results
            if self._replace(record.id, synced):
                self._note_mutation(synced.id, synced)
            results["synced"] += 1

        if self.alive and results["total"]:
            self.banner = settings.BANNER_SAVED_LOCALLY if results["failed"] else None
        return results
