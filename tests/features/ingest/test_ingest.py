import hashlib
import threading
import uuid

import pytest

from evidence_vault.core.common.enums import MigrationStatus, TierAState, TierBState
from evidence_vault.core.common.errors import (
    CollaboratorUnavailable,
    ConcurrencyConflict,
    PayloadTooLarge,
    RecordNotFound,
    TerminalCollaboratorError,
    ValidationError,
)
from evidence_vault.core.common.timeouts import TimeoutRunner
from evidence_vault.core.records.domain.models import RecordFilter
from evidence_vault.features.ingest.data.hasher import SHA256ContentAddresser
from evidence_vault.features.ingest.domain.models import IngestRequest
from evidence_vault.features.ingest.service.coordinator import IngestCoordinator

from fakes import FakePinStore

OWNER = "0xAbC123"


def upload(data=b"witness statement", owner=OWNER, name="statement.txt", metadata=None):
    return IngestRequest(owner_id=owner, data=data, original_name=name,
                         mime_type="text/plain", metadata=metadata or {})


# --- Fingerprinting ---

def test_fingerprint_matches_sha256_across_chunks():
    addresser = SHA256ContentAddresser()
    data = b"x" * 200_000  # spans several chunks

    expected = hashlib.sha256(data).hexdigest()
    assert addresser.fingerprint(data) == expected
    assert addresser.fingerprint(b"x" * 199_999) != expected


# --- Happy path & dedup ---

def test_new_upload_is_pinned_and_queued(coordinator, pin_store):
    """
    A fresh upload is pinned once and handed to the migration queue in the same write.
    """
    result = coordinator.ingest(upload(metadata={"reportId": "R-7"}))
    record = result.record

    assert result.is_duplicate is False
    assert record.owner_id == "0xabc123"
    assert record.tier_a_state == TierAState.PINNED
    assert record.tier_a_id == FakePinStore.cid_for(b"witness statement")
    assert record.tier_b_state == TierBState.QUEUED
    assert record.next_attempt_at is not None
    assert record.migration_status == MigrationStatus.PENDING
    assert record.content_fingerprint == hashlib.sha256(b"witness statement").hexdigest()
    assert record.metadata == {"reportId": "R-7"}

    assert pin_store.total_pin_calls == 1
    pinned_meta = pin_store.pinned[record.tier_a_id]
    assert pinned_meta["ownerId"] == "0xabc123"
    assert pinned_meta["fingerprint"] == record.content_fingerprint
    assert pinned_meta["name"] == "statement.txt"
    assert pinned_meta["reportId"] == "R-7"


def test_duplicate_upload_returns_existing_record_without_pinning(coordinator, pin_store):
    first = coordinator.ingest(upload())
    second = coordinator.ingest(upload(name="copy-of-statement.txt", owner="0xabc123 "))

    assert second.is_duplicate is True
    assert second.record.id == first.record.id
    assert pin_store.total_pin_calls == 1


def test_same_bytes_from_another_owner_is_a_separate_record(coordinator, pin_store):
    mine = coordinator.ingest(upload())
    theirs = coordinator.ingest(upload(owner="0xdef456"))

    assert theirs.is_duplicate is False
    assert theirs.record.id != mine.record.id
    assert pin_store.total_pin_calls == 2


def test_concurrent_identical_uploads_produce_one_record_and_one_pin(repo, timeouts, clock):
    """
    N callers race on the dedup key; exactly one wins and pins.
    """
    slow_pin_store = FakePinStore(delay=0.2)
    coordinator = IngestCoordinator(repo, slow_pin_store, timeouts=timeouts, pin_timeout_seconds=5.0, clock=clock)

    results = []
    errors = []
    barrier = threading.Barrier(8)

    def submit():
        barrier.wait()
        try:
            results.append(coordinator.ingest(upload(b"the same exhibit")))
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=submit) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len({r.record.id for r in results}) == 1
    assert sum(1 for r in results if not r.is_duplicate) == 1
    assert slow_pin_store.total_pin_calls == 1

    records, total = repo.list_for_owner("0xabc123", RecordFilter())
    assert total == 1
    assert records[0].tier_a_state == TierAState.PINNED


# --- Validation ---

@pytest.mark.parametrize("request_kwargs", [
    {"data": b""},
    {"name": ""},
    {"name": "   "},
    {"name": "../etc/passwd"},
    {"name": "a" * 256},
    {"owner": ""},
])
def test_invalid_uploads_are_rejected_and_not_persisted(coordinator, pin_store, repo, request_kwargs):
    with pytest.raises(ValidationError):
        coordinator.ingest(upload(**request_kwargs))

    assert pin_store.total_pin_calls == 0
    assert repo.count_by_state() == []


def test_metadata_must_be_a_json_object(coordinator):
    with pytest.raises(ValidationError):
        coordinator.ingest(IngestRequest(owner_id=OWNER, data=b"x", original_name="a.txt", metadata=["not", "a", "dict"]))
    with pytest.raises(ValidationError):
        coordinator.ingest(upload(metadata={"when": object()}))


def test_oversized_upload_is_rejected_before_hashing(repo, pin_store, timeouts):
    class ExplodingAddresser(SHA256ContentAddresser):
        def fingerprint(self, data):
            raise AssertionError("oversized payloads must not be hashed")

    coordinator = IngestCoordinator(repo, pin_store, addresser=ExplodingAddresser(),
                                    timeouts=timeouts, max_upload_bytes=10)

    with pytest.raises(PayloadTooLarge):
        coordinator.ingest(upload(b"x" * 11))


# --- Tier-A failures ---

def test_pin_failure_is_recorded_not_raised(coordinator, pin_store):
    pin_store.pin_errors.append(CollaboratorUnavailable("pinning service is down"))

    result = coordinator.ingest(upload())
    record = result.record

    assert result.is_duplicate is False
    assert record.tier_a_state == TierAState.FAILED
    assert record.tier_a_id is None
    assert record.last_error == "pinning service is down"
    assert record.last_error_category == "collaborator_unavailable"
    # Not enqueued: nothing to migrate from.
    assert record.next_attempt_at is None
    assert record.migration_status == MigrationStatus.BLOCKED


def test_pin_timeout_is_recorded_as_collaborator_unavailable(repo, timeouts, clock):
    coordinator = IngestCoordinator(repo, FakePinStore(delay=1.0), timeouts=timeouts,
                                    pin_timeout_seconds=0.05, clock=clock)

    record = coordinator.ingest(upload()).record

    assert record.tier_a_state == TierAState.FAILED
    assert record.last_error_category == "collaborator_unavailable"
    assert "timed out" in record.last_error


def test_concurrent_uploads_waiting_for_a_pin_slot_are_not_failed(repo, clock):
    """
    Six uploads share two pin slots. Each pin fits its deadline on its own, so
    queueing for a slot must not turn any of them into a tier-A failure.
    """
    pin_store = FakePinStore(delay=0.3)
    runner = TimeoutRunner(max_workers=2, name="pin", queue_timeout=5.0)
    coordinator = IngestCoordinator(repo, pin_store, timeouts=runner, pin_timeout_seconds=0.5, clock=clock)
    results = []

    def ingest(i):
        results.append(coordinator.ingest(upload(data=f"exhibit {i}".encode(), name=f"exhibit-{i}.txt")))

    threads = [threading.Thread(target=ingest, args=(i,)) for i in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    runner.shutdown(wait=True)

    assert len(results) == 6
    assert [r.record.tier_a_state for r in results] == [TierAState.PINNED] * 6
    assert pin_store.total_pin_calls == 6


def test_saturated_pin_pool_fails_fast_without_contacting_the_pin_store(repo, pin_store, clock):
    runner = TimeoutRunner(max_workers=1, name="pin", queue_timeout=0.05)
    coordinator = IngestCoordinator(repo, pin_store, timeouts=runner, pin_timeout_seconds=1.0, clock=clock)
    occupied = threading.Event()
    release = threading.Event()

    def hold_slot():
        occupied.set()
        release.wait(5.0)

    background = threading.Thread(target=runner.run, args=(5.0, hold_slot))
    background.start()
    try:
        assert occupied.wait(2.0)
        record = coordinator.ingest(upload()).record
    finally:
        release.set()
        background.join()

    assert record.tier_a_state == TierAState.FAILED
    assert record.last_error_category == "collaborator_unavailable"
    assert "not attempted" in record.last_error
    assert pin_store.total_pin_calls == 0

    # Once the pool drains, the same upload gets its pin.
    retried = coordinator.ingest(upload())
    assert retried.record.tier_a_state == TierAState.PINNED
    runner.shutdown()


def test_reupload_after_failed_pin_pins_again(coordinator, pin_store):
    pin_store.pin_errors.append(TerminalCollaboratorError("rejected"))
    failed = coordinator.ingest(upload()).record

    retried = coordinator.ingest(upload())

    assert retried.is_duplicate is False
    assert retried.record.id == failed.id
    assert retried.record.tier_a_state == TierAState.PINNED
    assert retried.record.last_error is None
    assert pin_store.total_pin_calls == 2


def test_abandoned_pinning_placeholder_is_reclaimed_once_stale(coordinator, repo, pin_store, clock):
    """
    A placeholder left behind by a crashed ingest blocks duplicates until it goes stale.
    """
    now = clock()
    fingerprint = hashlib.sha256(b"witness statement").hexdigest()
    repo.insert_if_absent({
        "owner_id": "0xabc123",
        "original_name": "statement.txt",
        "size_bytes": 17,
        "mime_type": "text/plain",
        "content_fingerprint": fingerprint,
        "meta": {},
    }, "crashed-token", now)

    assert coordinator.ingest(upload()).is_duplicate is True
    assert pin_store.total_pin_calls == 0

    clock.advance(301)
    result = coordinator.ingest(upload())

    assert result.is_duplicate is False
    assert result.record.tier_a_state == TierAState.PINNED
    assert pin_store.total_pin_calls == 1


# --- Release ---

def test_release_unpins_and_soft_deletes(coordinator, pin_store, repo):
    record = coordinator.ingest(upload()).record

    released = coordinator.release(record.id, OWNER)

    assert released.tier_a_state == TierAState.RELEASED
    assert released.released_at is not None
    assert pin_store.unpin_calls[record.tier_a_id] == 1
    # The record stays for the audit trail.
    assert repo.get(record.id) is not None

    again = coordinator.release(record.id, OWNER)
    assert again.tier_a_state == TierAState.RELEASED
    assert pin_store.unpin_calls[record.tier_a_id] == 1


def test_release_keeps_record_pinned_when_unpin_fails(coordinator, pin_store):
    record = coordinator.ingest(upload()).record
    pin_store.unpin_errors.append(CollaboratorUnavailable("timeout"))

    with pytest.raises(CollaboratorUnavailable):
        coordinator.release(record.id, OWNER)

    stored = coordinator.repo.get(record.id)
    assert stored.tier_a_state == TierAState.PINNED
    assert stored.last_error_category == "collaborator_unavailable"


def test_release_of_externally_unpinned_content_succeeds(coordinator, pin_store):
    record = coordinator.ingest(upload()).record
    pin_store.pinned.clear()

    assert coordinator.release(record.id, OWNER).tier_a_state == TierAState.RELEASED


def test_release_of_failed_pin_skips_unpin(coordinator, pin_store):
    pin_store.pin_errors.append(CollaboratorUnavailable("down"))
    record = coordinator.ingest(upload()).record

    assert coordinator.release(record.id, OWNER).tier_a_state == TierAState.RELEASED
    assert sum(pin_store.unpin_calls.values()) == 0


def test_release_while_pinning_is_a_conflict(coordinator, repo, clock):
    record, _ = repo.insert_if_absent({
        "owner_id": "0xabc123",
        "original_name": "a.txt",
        "size_bytes": 1,
        "mime_type": "text/plain",
        "content_fingerprint": "0" * 64,
        "meta": {},
    }, "token", clock())

    with pytest.raises(ConcurrencyConflict):
        coordinator.release(record.id, OWNER)


def test_release_of_unknown_or_foreign_record_is_not_found(coordinator):
    record = coordinator.ingest(upload()).record

    with pytest.raises(RecordNotFound):
        coordinator.release(record.id, "0xsomeoneelse")
    with pytest.raises(RecordNotFound):
        coordinator.release(uuid.uuid4(), OWNER)
