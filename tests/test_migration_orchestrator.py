"""Tests for the migration orchestrator.

Covers:
- Create / re-run / update classification across runs
- Dry runs report the same counts as a committed run and write nothing
- Record-level failures are collected and the run continues
- Fatal errors (credentials, exhausted retries, time budget, retry waits past it) abort the run
- One live migration per org
- Cross-kind references resolve through earlier kinds, including on a later run
- Dry-run previews and the source creation date window
"""

import itertools
import uuid
from datetime import UTC, datetime

import httpx
import pytest

from app.models.migration import EntityKind, MigrationLock, MigrationRun, MigrationRunStatus, MigrationSource
from app.models.records import Claim, Contact, Lead, Property
from app.services.migrations.adapters import build_adapter
from app.services.migrations.client import ProviderCredentials
from app.services.migrations.errors import (
    CredentialError,
    MigrationInProgressError,
    RetryBudgetExhaustedError,
)
from app.services.migrations.locks import acquire_lock
from app.services.migrations.orchestrator import MigrationOptions, MigrationOrchestrator, MigrationState


class FakeClock:
    """Monotonic clock that only moves when something sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def _run(db, org_id, provider, **kwargs):
    orchestrator = MigrationOrchestrator(db, org_id, "user-1", provider.adapter(), **kwargs)
    return orchestrator, orchestrator.run()


def _counts(stats, kind="contacts"):
    entry = stats[kind]
    return entry["created"], entry["updated"], entry["skipped"], entry["failed"]


def _three_contacts(jn_contact):
    return [
        jn_contact("c1"),
        jn_contact("c2", first_name="Bob", last_name="Builder"),
        jn_contact("c3", first_name="", last_name=""),
    ]


class TestRunsAndReruns:
    def test_first_run_creates_and_collects_failure(self, db_session, org_id, fake_provider, jn_contact):
        provider = fake_provider(items={EntityKind.contacts: _three_contacts(jn_contact)})

        orchestrator, result = _run(db_session, org_id, provider)

        assert result.success is True
        assert result.status == "completed"
        assert _counts(result.stats) == (2, 0, 0, 1)
        assert len(result.errors) == 1
        assert result.errors[0]["external_id"] == "c3"
        assert result.errors[0]["error_type"] == "RecordMappingError"
        assert result.errors[0]["context"] == {"field": "name"}
        assert orchestrator.state is MigrationState.completed
        assert provider.closed
        assert db_session.query(Contact).filter(Contact.org_id == org_id).count() == 2

    def test_rerun_with_identical_input_skips(self, db_session, org_id, fake_provider, jn_contact):
        items = {EntityKind.contacts: _three_contacts(jn_contact)}
        _run(db_session, org_id, fake_provider(items=items))

        _, rerun = _run(db_session, org_id, fake_provider(items=items))

        assert _counts(rerun.stats) == (0, 0, 2, 1)
        assert rerun.stats["contacts"]["skipped_reasons"] == {"already_migrated": 2}
        assert len(rerun.errors) == 1
        assert db_session.query(Contact).filter(Contact.org_id == org_id).count() == 2

    def test_changed_source_record_is_updated(self, db_session, org_id, fake_provider, jn_contact):
        _run(db_session, org_id, fake_provider(items={EntityKind.contacts: [jn_contact("c1")]}))

        changed = jn_contact("c1", email="jane@newmail.example")
        _, result = _run(db_session, org_id, fake_provider(items={EntityKind.contacts: [changed]}))

        assert _counts(result.stats) == (0, 1, 0, 0)
        assert db_session.query(Contact).one().email == "jane@newmail.example"

    def test_duplicate_external_id_across_pages(self, db_session, org_id, fake_provider, jn_contact):
        items = {EntityKind.contacts: [jn_contact("c1"), jn_contact("c2"), jn_contact("c1")]}

        _, result = _run(db_session, org_id, fake_provider(items=items, page_size=2))

        assert _counts(result.stats) == (2, 0, 1, 0)
        assert result.stats["contacts"]["skipped_reasons"] == {"duplicate": 1}

    def test_run_record_is_finalized(self, db_session, org_id, fake_provider, jn_contact):
        _, result = _run(db_session, org_id, fake_provider(items={EntityKind.contacts: [jn_contact("c1")]}))

        run = db_session.query(MigrationRun).filter(MigrationRun.org_id == org_id).one()
        assert str(run.id) == result.migration_id
        assert run.status is MigrationRunStatus.completed
        assert run.source is MigrationSource.jobnimbus
        assert run.stats["contacts"]["created"] == 1
        assert run.completed_at is not None
        assert db_session.get(MigrationLock, org_id) is None


class TestDryRun:
    def test_dry_run_writes_nothing(self, db_session, org_id, fake_provider, jn_contact):
        provider = fake_provider(items={EntityKind.contacts: _three_contacts(jn_contact)})

        _, result = _run(db_session, org_id, provider, options=MigrationOptions(dry_run=True))

        assert result.dry_run is True
        assert _counts(result.stats) == (2, 0, 0, 1)
        assert db_session.query(Contact).count() == 0
        run = db_session.query(MigrationRun).one()
        assert run.dry_run is True

    def test_dry_run_predicts_committed_run(self, db_session, org_id, fake_provider, jn_contact, jn_job):
        items = {
            EntityKind.contacts: _three_contacts(jn_contact),
            EntityKind.properties: [jn_job("j1", contact_jnid="c1"), jn_job("j2", address_line1=None)],
            EntityKind.leads: [jn_job("j1", contact_jnid="c1")],
        }

        _, preview = _run(db_session, org_id, fake_provider(items=items), options=MigrationOptions(dry_run=True))
        _, committed = _run(db_session, org_id, fake_provider(items=items))
        _, second_preview = _run(
            db_session, org_id, fake_provider(items=items), options=MigrationOptions(dry_run=True)
        )

        assert preview.stats == committed.stats
        assert _counts(second_preview.stats) == (0, 0, 2, 1)
        assert _counts(second_preview.stats, "properties") == (0, 0, 2, 0)
        assert second_preview.stats["properties"]["skipped_reasons"] == {"already_migrated": 1, "excluded": 1}
        assert _counts(second_preview.stats, "leads") == (0, 0, 1, 0)

    def test_dry_run_previews_sample_mappings(self, db_session, org_id, fake_provider, jn_contact, jn_job):
        items = {
            EntityKind.contacts: [jn_contact(f"c{i}") for i in range(7)],
            EntityKind.properties: [jn_job(f"j{i}", contact_jnid="c0") for i in range(4)],
        }

        _, result = _run(db_session, org_id, fake_provider(items=items), options=MigrationOptions(dry_run=True))

        contacts = [s for s in result.sample_mappings if s["entity_kind"] == "contacts"]
        properties = [s for s in result.sample_mappings if s["entity_kind"] == "properties"]
        assert len(contacts) == 5
        assert len(properties) == 3
        first = contacts[0]
        assert first["external_id"] == "c0"
        assert first["outcome"] == "created"
        assert first["external"]["jnid"] == "c0"
        assert first["internal"]["first_name"] == "Jane"
        assert first["internal"]["email"] == "c0@example.com"
        assert properties[0]["internal"]["contact_id"] == first["internal"]["id"]
        assert result.estimated_duration == "1 minute"
        assert result.recommendations == []

    def test_committed_run_has_no_preview(self, db_session, org_id, fake_provider, jn_contact):
        _, result = _run(db_session, org_id, fake_provider(items={EntityKind.contacts: [jn_contact("c1")]}))

        assert result.sample_mappings == []
        assert result.recommendations == []
        assert result.estimated_duration is None

    def test_dry_run_recommends_after_rerun(self, db_session, org_id, fake_provider, jn_contact):
        items = {EntityKind.contacts: [jn_contact(f"c{i}") for i in range(4)]}
        _run(db_session, org_id, fake_provider(items=items))

        _, preview = _run(db_session, org_id, fake_provider(items=items), options=MigrationOptions(dry_run=True))

        assert preview.sample_mappings[0]["outcome"] == "skipped"
        assert preview.recommendations == [
            "100% of records are already imported or duplicated. Only changed records will be written."
        ]

    def test_dry_run_ignores_active_lock(self, db_session, org_id, fake_provider, jn_contact):
        acquire_lock(db_session, org_id, uuid.uuid4())

        _, result = _run(
            db_session,
            org_id,
            fake_provider(items={EntityKind.contacts: [jn_contact("c1")]}),
            options=MigrationOptions(dry_run=True),
        )
        assert result.success is True


class TestPartialFailure:
    def test_failures_do_not_stop_other_kinds(self, db_session, org_id, fake_provider, jn_contact, jn_job):
        items = {
            EntityKind.contacts: [jn_contact("c1")],
            EntityKind.properties: [jn_job("j1", contact_jnid="c1"), jn_job("j2", address_line1="")],
            EntityKind.leads: [jn_job("j1", contact_jnid="c1")],
            EntityKind.claims: [jn_job("j1", contact_jnid="c1"), jn_job("j2", insurance_company="State Farm")],
        }

        _, result = _run(db_session, org_id, fake_provider(items=items))

        assert result.success is True
        assert _counts(result.stats, "contacts") == (1, 0, 0, 0)
        assert _counts(result.stats, "properties") == (1, 0, 1, 0)
        assert result.stats["properties"]["skipped_reasons"] == {"excluded": 1}
        assert _counts(result.stats, "leads") == (1, 0, 0, 0)
        assert _counts(result.stats, "claims") == (0, 0, 1, 1)
        assert result.stats["claims"]["skipped_reasons"] == {"excluded": 1}
        assert len(result.errors) == 1
        assert result.errors[0]["entity_kind"] == "claims"
        assert result.errors[0]["external_id"] == "j2"
        assert result.errors[0]["context"] == {"field": "insurance_claim_number"}

    def test_malformed_items_are_failed_records(self, db_session, org_id, fake_provider, jn_contact):
        items = {EntityKind.contacts: [jn_contact("c1"), {"first_name": "No", "last_name": "Id"}]}

        _, result = _run(db_session, org_id, fake_provider(items=items))

        assert _counts(result.stats) == (1, 0, 0, 1)
        assert result.errors[0]["external_id"] is None

    def test_error_sample_is_capped(self, db_session, org_id, fake_provider, jn_contact):
        items = {EntityKind.contacts: [jn_contact(f"c{i}", first_name="", last_name="") for i in range(80)]}

        _, result = _run(db_session, org_id, fake_provider(items=items, page_size=25), max_errors=50)

        assert result.stats["contacts"]["failed"] == 80
        assert len(result.errors) == 50


class TestReferences:
    def test_leads_and_claims_link_to_imported_records(self, db_session, org_id, fake_provider, jn_contact, jn_job):
        job = jn_job("j1", contact_jnid="c1", insurance_claim_number="CLM-1", insurance_company="State Farm")
        items = {
            EntityKind.contacts: [jn_contact("c1")],
            EntityKind.properties: [job],
            EntityKind.leads: [job],
            EntityKind.claims: [job],
        }

        _, result = _run(db_session, org_id, fake_provider(items=items))

        assert result.success is True
        contact = db_session.query(Contact).one()
        prop = db_session.query(Property).one()
        lead = db_session.query(Lead).one()
        claim = db_session.query(Claim).one()
        assert prop.contact_id == contact.id
        assert lead.contact_id == contact.id
        assert lead.property_id == prop.id
        assert claim.property_id == prop.id
        assert claim.claim_number == "CLM-1"

    def test_rerun_links_reference_that_failed_before(self, db_session, org_id, fake_provider, jn_contact, jn_job):
        job = jn_job("j1", contact_jnid="c1", address_line1=None)
        broken = {EntityKind.contacts: [jn_contact("c1", first_name="", last_name="")], EntityKind.leads: [job]}
        fixed = {EntityKind.contacts: [jn_contact("c1")], EntityKind.leads: [job]}

        _, first = _run(db_session, org_id, fake_provider(items=broken))
        assert _counts(first.stats) == (0, 0, 0, 1)
        assert _counts(first.stats, "leads") == (1, 0, 0, 0)
        assert db_session.query(Lead).one().contact_id is None

        _, preview = _run(db_session, org_id, fake_provider(items=fixed), options=MigrationOptions(dry_run=True))
        _, second = _run(db_session, org_id, fake_provider(items=fixed))
        _, third = _run(db_session, org_id, fake_provider(items=fixed))

        assert preview.stats == second.stats
        assert _counts(second.stats) == (1, 0, 0, 0)
        assert _counts(second.stats, "leads") == (0, 1, 0, 0)
        assert db_session.query(Lead).one().contact_id == db_session.query(Contact).one().id
        assert _counts(third.stats, "leads") == (0, 0, 1, 0)
        assert third.stats["leads"]["skipped_reasons"] == {"already_migrated": 1}

    def test_skip_kinds_and_max_records(self, db_session, org_id, fake_provider, jn_contact, jn_job):
        provider = fake_provider(
            items={
                EntityKind.contacts: [jn_contact(f"c{i}") for i in range(5)],
                EntityKind.properties: [jn_job("j1")],
            }
        )
        options = MigrationOptions(skip_kinds=frozenset({EntityKind.properties}), max_records=3)

        _, result = _run(db_session, org_id, provider, options=options)

        assert _counts(result.stats) == (3, 0, 0, 0)
        assert all(kind is not EntityKind.properties for kind, _ in provider.calls)


class TestDateFilter:
    @staticmethod
    def _items(jn_contact):
        return {
            EntityKind.contacts: [
                jn_contact("recent", date_created=1700000000),
                jn_contact("old", date_created=1600000000),
                jn_contact("undated", date_created=None),
            ]
        }

    def test_created_after(self, db_session, org_id, fake_provider, jn_contact):
        options = MigrationOptions(created_after=datetime(2023, 1, 1, tzinfo=UTC))

        _, result = _run(db_session, org_id, fake_provider(items=self._items(jn_contact)), options=options)

        assert _counts(result.stats) == (2, 0, 1, 0)
        assert result.stats["contacts"]["skipped_reasons"] == {"filtered": 1}
        assert {c.external_id for c in db_session.query(Contact)} == {"recent", "undated"}

    def test_created_before_accepts_naive_datetime(self, db_session, org_id, fake_provider, jn_contact):
        options = MigrationOptions(created_before=datetime(2023, 1, 1))

        _, result = _run(db_session, org_id, fake_provider(items=self._items(jn_contact)), options=options)

        assert _counts(result.stats) == (2, 0, 1, 0)
        assert {c.external_id for c in db_session.query(Contact)} == {"old", "undated"}


class TestAborts:
    def test_credential_error_aborts_with_zero_stats(self, db_session, org_id, fake_provider, jn_contact):
        provider = fake_provider(
            items={EntityKind.contacts: [jn_contact("c1")]},
            failures={EntityKind.contacts: CredentialError("jobnimbus rejected the API key (401)", 401)},
        )

        orchestrator, result = _run(db_session, org_id, provider)

        assert result.success is False
        assert result.status == "aborted"
        assert all(_counts(result.stats, kind) == (0, 0, 0, 0) for kind in result.stats)
        assert len(result.errors) == 1
        assert result.errors[0]["error_type"] == "CredentialError"
        assert orchestrator.state is MigrationState.aborted
        assert provider.closed
        assert db_session.get(MigrationLock, org_id) is None
        assert db_session.query(MigrationRun).one().status is MigrationRunStatus.aborted

    def test_exhausted_retries_keep_earlier_stats(self, db_session, org_id, fake_provider, jn_contact):
        provider = fake_provider(
            items={EntityKind.contacts: [jn_contact("c1")]},
            failures={EntityKind.properties: RetryBudgetExhaustedError("Server error (503)", attempts=5)},
        )

        _, result = _run(db_session, org_id, provider)

        assert result.success is False
        assert _counts(result.stats) == (1, 0, 0, 0)
        assert result.errors[0]["error_type"] == "RetryBudgetExhaustedError"
        assert result.errors[0]["entity_kind"] == "properties"
        assert "RetryBudgetExhaustedError" in result.abort_reason
        assert db_session.query(Contact).count() == 1

    def test_time_budget_aborts_run(self, db_session, org_id, fake_provider, jn_contact):
        ticks = itertools.count(step=10)
        provider = fake_provider(items={EntityKind.contacts: [jn_contact(f"c{i}") for i in range(3)]})

        _, result = _run(
            db_session,
            org_id,
            provider,
            max_duration_seconds=25,
            clock=lambda: float(next(ticks)),
        )

        assert result.success is False
        assert result.errors[0]["error_type"] == "MigrationTimeoutError"
        assert _counts(result.stats) == (1, 0, 0, 0)

    def test_retry_waits_stop_at_time_budget(self, db_session, org_id):
        clock = FakeClock()
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429)

        adapter = build_adapter(
            "jobnimbus",
            ProviderCredentials(api_key="jn-key"),
            transport=httpx.MockTransport(handler),
            sleep=clock.sleep,
            max_retries=10,
            retry_base_delay=2.0,
        )
        orchestrator = MigrationOrchestrator(
            db_session, org_id, "user-1", adapter, max_duration_seconds=5, clock=clock
        )

        result = orchestrator.run()

        assert result.success is False
        assert result.errors[0]["error_type"] == "MigrationTimeoutError"
        assert result.errors[0]["entity_kind"] == "contacts"
        assert result.duration_ms <= 5000
        assert clock.sleeps == [2.0, 3.0]
        assert len(calls) == 3

    def test_unexpected_error_finalizes_and_propagates(self, db_session, org_id, fake_provider):
        provider = fake_provider(failures={EntityKind.contacts: RuntimeError("boom")})

        with pytest.raises(RuntimeError):
            _run(db_session, org_id, provider)

        run = db_session.query(MigrationRun).one()
        assert run.status is MigrationRunStatus.aborted
        assert provider.closed
        assert db_session.get(MigrationLock, org_id) is None


class TestConcurrency:
    def test_live_migration_rejected_while_lock_held(self, db_session, org_id, fake_provider, jn_contact):
        acquire_lock(db_session, org_id, uuid.uuid4())
        provider = fake_provider(items={EntityKind.contacts: [jn_contact("c1")]})

        with pytest.raises(MigrationInProgressError):
            _run(db_session, org_id, provider)

        assert provider.closed
        assert db_session.query(MigrationRun).count() == 0
        assert db_session.query(Contact).count() == 0