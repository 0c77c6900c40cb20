"""Tests for dry-run preview helpers: sample mappings, recommendations, duration estimate."""

import uuid

from app.models.migration import EntityKind, MigrationSource
from app.services.migrations.entities import ContactRecord, ProviderRecord
from app.services.migrations.preview import SampleCollector, build_recommendations, estimate_duration
from app.services.migrations.stats import MigrationStats
from app.services.migrations.writers import SkipReason, WriteOutcome, WriteResult


def _stats(**totals):
    stats = MigrationStats()
    for kind_name, (created, skipped, failed) in totals.items():
        kind = EntityKind(kind_name)
        stats[kind].created = created
        for _ in range(skipped):
            stats.record_skip(kind, SkipReason.already_migrated)
        stats[kind].failed = failed
    return stats


def _contact(external_id):
    payload = {"jnid": external_id, "first_name": "Jane", "tags": ["a"], "notes": "x" * 500}
    record = ProviderRecord(MigrationSource.jobnimbus, EntityKind.contacts, external_id, payload)
    entity = ContactRecord(org_id="org-1", source=MigrationSource.jobnimbus, external_id=external_id, first_name="Jane")
    return record, entity


class TestSampleCollector:
    def test_keeps_first_samples_per_kind(self):
        collector = SampleCollector({EntityKind.contacts: 2})
        for i in range(4):
            record, entity = _contact(f"c{i}")
            collector.add(record, entity, WriteResult(WriteOutcome.created, uuid.uuid4()))

        samples = collector.to_list()
        assert [s["external_id"] for s in samples] == ["c0", "c1"]

    def test_external_view_keeps_bounded_scalars(self):
        collector = SampleCollector()
        record, entity = _contact("c1")
        entity_id = uuid.uuid4()

        collector.add(record, entity, WriteResult(WriteOutcome.created, entity_id))

        sample = collector.to_list()[0]
        assert "tags" not in sample["external"]
        assert len(sample["external"]["notes"]) == 200
        assert sample["internal"]["id"] == str(entity_id)
        assert sample["internal"]["first_name"] == "Jane"

    def test_duplicates_are_not_sampled(self):
        collector = SampleCollector()
        record, entity = _contact("c1")
        collector.add(record, entity, WriteResult(WriteOutcome.skipped, uuid.uuid4(), SkipReason.duplicate))
        assert collector.to_list() == []


class TestEstimateDuration:
    def test_minutes(self):
        assert estimate_duration(_stats(contacts=(250, 0, 0), properties=(40, 0, 0))) == "4 minutes"

    def test_single_minute(self):
        assert estimate_duration(_stats(contacts=(3, 0, 0))) == "1 minute"

    def test_hours(self):
        assert estimate_duration(_stats(contacts=(9000, 0, 0), leads=(1000, 0, 0))) == "2 hours"

    def test_nothing_to_import(self):
        assert estimate_duration(MigrationStats()) == "0 minutes"


class TestRecommendations:
    def test_no_records(self):
        assert build_recommendations(MigrationStats()) == ["No records were found for the selected entity kinds."]

    def test_clean_preview_has_none(self):
        assert build_recommendations(_stats(contacts=(10, 1, 0))) == []

    def test_large_list_duplicates_and_failures(self):
        recommendations = build_recommendations(_stats(contacts=(3000, 3000, 11)))

        assert recommendations == [
            "50% of records are already imported or duplicated. Only changed records will be written.",
            "Large contact list. Consider importing in batches by date range.",
            "11 records have validation issues. Review them before importing.",
        ]
