"""Tests for the merge engine: atomic commits, field policies and conflicts."""

import dataclasses
from datetime import datetime, timedelta

from hypothesis import given, settings
from hypothesis import strategies as st

from orda.graph import GraphSnapshot, RecencyStamp
from orda.merge import Batch, MergeEngine, merge_attributes
from orda.models.enums import EntityKind, IssueCategory, LifecycleState, Severity
from orda.observability.metrics import get_metrics

from factories import (
    API_ID,
    BUNDLE_ID,
    CRAWL_TIME,
    PACKAGE_ID,
    VENDOR_ID,
    api_resource,
    batch,
    consumption_bundle,
    document,
    full_document,
    package,
    vendor,
)

HOUR = timedelta(hours=1)


class TestCommit:
    """One batch applied as one unit."""

    def test_full_document_accepted(self, engine: MergeEngine, crawl_time: datetime) -> None:
        report = engine.commit(batch("s4", full_document(), crawled_at=crawl_time))

        assert report.accepted == [VENDOR_ID, PACKAGE_ID, API_ID]
        assert report.revision == 1
        assert report.errors == []
        node = engine.snapshot.get(API_ID)
        assert node is not None
        assert node.providers == ("s4",)
        assert node.state == LifecycleState.ACTIVE
        assert node.package_id == PACKAGE_ID

    def test_snapshot_held_by_reader_is_unchanged(
        self, engine: MergeEngine, crawl_time: datetime
    ) -> None:
        before = engine.snapshot

        engine.commit(batch("s4", full_document(), crawled_at=crawl_time))

        assert before.revision == 0
        assert len(before) == 0
        assert len(engine.snapshot) == 3

    def test_effective_attributes_inherit_from_package(
        self, engine: MergeEngine, crawl_time: datetime
    ) -> None:
        doc = document(
            policyLevel="sap:core:v1",
            vendors=[vendor()],
            packages=[package(tags=["finance"], labels={"area": ["sales"]})],
            apiResources=[api_resource(tags=["orders"], labels={"area": ["orders"]})],
        )

        engine.commit(batch("s4", doc, crawled_at=crawl_time))

        effective = engine.snapshot.nodes[API_ID].effective
        assert effective["tags"] == ["finance", "orders"]
        assert effective["labels"] == {"area": ["sales", "orders"]}
        assert effective["policyLevel"] == "sap:core:v1"
        assert "policyLevel" not in engine.snapshot.nodes[API_ID].attributes

    def test_package_change_refreshes_resources(
        self, engine: MergeEngine, crawl_time: datetime
    ) -> None:
        engine.commit(batch("s4", full_document(), crawled_at=crawl_time))

        engine.commit(
            batch(
                "catalog",
                document(vendors=[vendor()], packages=[package(tags=["new"])]),
                crawled_at=crawl_time + HOUR,
            )
        )

        assert engine.snapshot.nodes[API_ID].effective["tags"] == ["new"]

    def test_recommit_is_structurally_idempotent(
        self, engine: MergeEngine, crawl_time: datetime
    ) -> None:
        same = batch("s4", full_document(), crawled_at=crawl_time)
        engine.commit(same)
        first = engine.snapshot.fingerprint()

        engine.commit(same)

        assert engine.snapshot.fingerprint() == first
        assert engine.snapshot.revision == 2

    def test_parked_entity_resolves_in_later_batch(
        self, engine: MergeEngine, crawl_time: datetime
    ) -> None:
        report = engine.commit(
            batch("s4", document(apiResources=[api_resource()]), crawled_at=crawl_time)
        )

        assert report.parked == [API_ID]
        assert engine.snapshot.get(API_ID) is None
        assert API_ID in engine.snapshot.pending

        report = engine.commit(
            batch("s4", document(vendors=[vendor()], packages=[package()]), crawled_at=crawl_time)
        )

        assert report.resolved_pending == [API_ID]
        assert engine.snapshot.pending == {}
        assert engine.snapshot.get(API_ID) is not None
        assert engine.snapshot.issues.get(API_ID) is None

    def test_parse_issues_carried_and_indexed(
        self, engine: MergeEngine, crawl_time: datetime
    ) -> None:
        report = engine.commit(
            batch(
                "s4",
                document(apiResources=[api_resource(releaseStatus="deprecated")]),
                crawled_at=crawl_time,
            )
        )

        categories = {issue.category for issue in report.issues_for(API_ID)}
        assert categories == {IssueCategory.LIFECYCLE, IssueCategory.REFERENCE}
        assert all(issue.provider_id == "s4" for issue in report.issues)
        assert engine.snapshot.issues[API_ID]

    def test_commit_metrics(self, engine: MergeEngine, crawl_time: datetime) -> None:
        engine.commit(batch("s4", full_document(), crawled_at=crawl_time))

        metrics = get_metrics()
        assert metrics.get_counter("orda_batches_committed_total") == 1
        assert metrics.get_histogram_count("orda_commit_duration_seconds") == 1


class TestFieldPolicies:
    """Redescriptions merge per field."""

    def test_scalar_last_writer_wins(self, engine: MergeEngine, crawl_time: datetime) -> None:
        engine.commit(
            batch(
                "catalog",
                document(vendors=[vendor()], packages=[package(title="Core Renamed")]),
                crawled_at=crawl_time + HOUR,
            )
        )
        # older description committed later must not overwrite
        engine.commit(batch("s4", full_document(), crawled_at=crawl_time))

        node = engine.snapshot.nodes[PACKAGE_ID]
        assert node.attributes["title"] == "Core Renamed"
        assert node.providers == ("catalog", "s4")

    def test_last_update_takes_precedence_over_crawl_time(
        self, engine: MergeEngine, crawl_time: datetime
    ) -> None:
        engine.commit(
            batch(
                "s4",
                full_document(
                    apiResources=[api_resource(title="New", lastUpdate="2024-05-02T00:00:00Z")]
                ),
                crawled_at=crawl_time,
            )
        )
        engine.commit(
            batch(
                "mirror",
                document(
                    apiResources=[api_resource(title="Old", lastUpdate="2024-05-01T00:00:00Z")]
                ),
                crawled_at=crawl_time + HOUR,
            )
        )

        assert engine.snapshot.nodes[API_ID].attributes["title"] == "New"

    def test_lists_and_labels_union(self, engine: MergeEngine, crawl_time: datetime) -> None:
        engine.commit(
            batch(
                "s4",
                full_document(packages=[package(tags=["a"], labels={"k": ["x"]})]),
                crawled_at=crawl_time,
            )
        )
        engine.commit(
            batch(
                "catalog",
                document(packages=[package(tags=["b", "a"], labels={"k": ["y"], "z": ["1"]})]),
                crawled_at=crawl_time + HOUR,
            )
        )

        attributes = engine.snapshot.nodes[PACKAGE_ID].attributes
        assert attributes["tags"] == ["a", "b"]
        assert attributes["labels"] == {"k": ["x", "y"], "z": ["1"]}

    def test_absent_fields_are_retained(self, engine: MergeEngine, crawl_time: datetime) -> None:
        engine.commit(
            batch(
                "s4",
                full_document(packages=[package(industry=["Retail"])]),
                crawled_at=crawl_time,
            )
        )
        engine.commit(batch("s4", full_document(), crawled_at=crawl_time + HOUR))

        assert engine.snapshot.nodes[PACKAGE_ID].attributes["industry"] == ["Retail"]

    def test_keyed_edge_list_union(self, crawl_time: datetime) -> None:
        current = {"partOfConsumptionBundles": [{"ordId": "a:consumptionBundle:x:v1"}]}
        older = RecencyStamp(at=crawl_time, provider_id="s4")
        newer = RecencyStamp(at=crawl_time + HOUR, provider_id="s4")
        incoming = {
            "partOfConsumptionBundles": [
                {"ordId": "a:consumptionBundle:x:v1", "defaultEntryPoint": "/v1"},
                {"ordId": "a:consumptionBundle:y:v1"},
            ]
        }

        merged, stamps = merge_attributes(
            current, {"partOfConsumptionBundles": older}, incoming, newer
        )

        assert merged["partOfConsumptionBundles"] == incoming["partOfConsumptionBundles"]
        assert stamps["partOfConsumptionBundles"] == newer

    def test_equal_stamps_incoming_wins(self, crawl_time: datetime) -> None:
        stamp = RecencyStamp(at=crawl_time, provider_id="s4")

        merged, _ = merge_attributes({"title": "A"}, {"title": stamp}, {"title": "B"}, stamp)

        assert merged["title"] == "B"

    @settings(max_examples=30, deadline=None)
    @given(
        first=st.sampled_from(["Core", "Core Services", "Core APIs"]),
        second=st.sampled_from(["Core", "Core Services", "Core APIs"]),
        offset_minutes=st.integers(min_value=-120, max_value=120),
    )
    def test_commit_order_does_not_change_scalar_winner(
        self, first: str, second: str, offset_minutes: int
    ) -> None:
        batch_a = batch(
            "a",
            document(vendors=[vendor()], packages=[package(title=first)]),
            crawled_at=CRAWL_TIME,
        )
        batch_b = batch(
            "b",
            document(vendors=[vendor()], packages=[package(title=second)]),
            crawled_at=CRAWL_TIME + timedelta(minutes=offset_minutes),
        )
        forward, backward = MergeEngine(), MergeEngine()
        forward.commit(batch_a)
        forward.commit(batch_b)
        backward.commit(batch_b)
        backward.commit(batch_a)

        expected = second if offset_minutes >= 0 else first
        assert forward.snapshot.nodes[PACKAGE_ID].attributes["title"] == expected
        assert backward.snapshot.nodes[PACKAGE_ID].attributes["title"] == expected


class TestConflicts:
    """Contradicting documents keep the previous good state."""

    def test_kind_mismatch_is_a_conflict(self, engine: MergeEngine, crawl_time: datetime) -> None:
        engine.commit(batch("s4", full_document(), crawled_at=crawl_time))
        snapshot = engine.snapshot
        seeded = snapshot.nodes[API_ID].model_copy(update={"kind": EntityKind.EVENT_RESOURCE})
        engine.restore(dataclasses.replace(snapshot, nodes={**snapshot.nodes, API_ID: seeded}))

        report = engine.commit(batch("mirror", full_document(), crawled_at=crawl_time + HOUR))

        assert report.conflicts == [API_ID]
        assert API_ID in report.rejected
        node = engine.snapshot.nodes[API_ID]
        assert node.kind == EntityKind.EVENT_RESOURCE
        assert node.providers == ("s4",)
        assert node.conflicts == {"mirror": "described as apiResource but known as eventResource"}
        error = report.issues_for(API_ID)[0]
        assert error.category == IssueCategory.CONSISTENCY
        assert error.severity == Severity.ERROR
        assert get_metrics().get_counter("orda_conflicts_total") == 1

    def test_vendor_namespace_claimed_twice(
        self, engine: MergeEngine, crawl_time: datetime
    ) -> None:
        impostor = "sap:vendor:Impostor:"
        engine.commit(batch("s4", full_document(), crawled_at=crawl_time))

        report = engine.commit(
            batch("rogue", document(vendors=[vendor(impostor)]), crawled_at=crawl_time + HOUR)
        )

        assert report.conflicts == [impostor]
        assert report.rejected == [impostor]
        assert engine.snapshot.get(impostor) is None
        owner = engine.snapshot.nodes[VENDOR_ID]
        assert owner.is_conflicted
        assert "already owned by sap:vendor:SAP:" in owner.conflicts["rogue"]

    def test_conflict_cleared_on_next_batch(
        self, engine: MergeEngine, crawl_time: datetime
    ) -> None:
        engine.commit(batch("s4", full_document(), crawled_at=crawl_time))
        engine.commit(
            batch(
                "rogue",
                document(vendors=[vendor("sap:vendor:Impostor:")]),
                crawled_at=crawl_time,
            )
        )

        engine.commit(batch("rogue", document(), crawled_at=crawl_time + HOUR))

        assert not engine.snapshot.nodes[VENDOR_ID].is_conflicted


class TestStaleness:
    def test_stale_provider_flags_but_keeps_entities(
        self, engine: MergeEngine, crawl_time: datetime
    ) -> None:
        engine.commit(batch("s4", full_document(), crawled_at=crawl_time))

        engine.mark_provider_stale("s4")

        snapshot = engine.snapshot
        assert snapshot.revision == 2
        assert len(snapshot) == 3
        assert snapshot.is_stale(snapshot.nodes[API_ID])

    def test_marking_twice_does_not_bump_revision(
        self, engine: MergeEngine, crawl_time: datetime
    ) -> None:
        engine.commit(batch("s4", full_document(), crawled_at=crawl_time))
        engine.mark_provider_stale("s4")

        engine.mark_provider_stale("s4")

        assert engine.snapshot.revision == 2

    def test_entity_with_live_contributor_is_not_stale(
        self, engine: MergeEngine, crawl_time: datetime
    ) -> None:
        engine.commit(batch("s4", full_document(), crawled_at=crawl_time))
        engine.commit(batch("catalog", document(packages=[package()]), crawled_at=crawl_time))

        engine.mark_provider_stale("s4")

        snapshot = engine.snapshot
        assert not snapshot.is_stale(snapshot.nodes[PACKAGE_ID])
        assert snapshot.is_stale(snapshot.nodes[API_ID])

    def test_successful_commit_clears_staleness(
        self, engine: MergeEngine, crawl_time: datetime
    ) -> None:
        engine.commit(batch("s4", full_document(), crawled_at=crawl_time))
        engine.mark_provider_stale("s4")

        engine.commit(batch("s4", full_document(), crawled_at=crawl_time + HOUR))

        assert engine.snapshot.stale_providers == frozenset()


class TestDisappearance:
    def test_vanished_entity_reported_and_kept(
        self, engine: MergeEngine, crawl_time: datetime
    ) -> None:
        engine.commit(batch("s4", full_document(), crawled_at=crawl_time))

        report = engine.commit(
            batch(
                "s4",
                document(vendors=[vendor()], packages=[package()]),
                crawled_at=crawl_time + HOUR,
            )
        )

        issue = report.issues_for(API_ID)[0]
        assert issue.category == IssueCategory.CONSISTENCY
        assert "has no tombstone" in issue.message
        assert engine.snapshot.nodes[API_ID].state == LifecycleState.ACTIVE

    def test_vanished_entity_reported_once(
        self, engine: MergeEngine, crawl_time: datetime
    ) -> None:
        engine.commit(batch("s4", full_document(), crawled_at=crawl_time))
        without_api = document(vendors=[vendor()], packages=[package()])

        first = engine.commit(batch("s4", without_api, crawled_at=crawl_time + HOUR))
        second = engine.commit(batch("s4", without_api, crawled_at=crawl_time + 2 * HOUR))

        assert len(first.issues_for(API_ID)) == 1
        assert second.issues_for(API_ID) == []
        node = engine.snapshot.nodes[API_ID]
        assert node.providers == ("s4",)
        assert node.withdrawn == ("s4",)
        assert "has no tombstone" in engine.snapshot.issues[API_ID][0].message

    def test_entity_stale_when_only_remaining_describer_is_stale(
        self, engine: MergeEngine, crawl_time: datetime
    ) -> None:
        engine.commit(batch("a", full_document(), crawled_at=crawl_time))
        engine.commit(batch("b", full_document(), crawled_at=crawl_time))
        engine.commit(
            batch(
                "a",
                document(vendors=[vendor()], packages=[package()]),
                crawled_at=crawl_time + HOUR,
            )
        )

        engine.mark_provider_stale("b")

        snapshot = engine.snapshot
        assert snapshot.nodes[API_ID].describers == ("b",)
        assert snapshot.is_stale(snapshot.nodes[API_ID])
        assert not snapshot.is_stale(snapshot.nodes[PACKAGE_ID])

    def test_redescribing_clears_withdrawal(
        self, engine: MergeEngine, crawl_time: datetime
    ) -> None:
        engine.commit(batch("s4", full_document(), crawled_at=crawl_time))
        engine.commit(
            batch(
                "s4",
                document(vendors=[vendor()], packages=[package()]),
                crawled_at=crawl_time + HOUR,
            )
        )

        engine.commit(batch("s4", full_document(), crawled_at=crawl_time + 2 * HOUR))

        assert engine.snapshot.nodes[API_ID].withdrawn == ()

    def test_incomplete_batch_skips_check(self, engine: MergeEngine, crawl_time: datetime) -> None:
        engine.commit(batch("s4", full_document(), crawled_at=crawl_time))

        report = engine.commit(
            batch("s4", document(vendors=[vendor()]), crawled_at=crawl_time + HOUR, complete=False)
        )

        assert report.issues == []


class TestSuccessors:
    V2_ID = "sap.s4:apiResource:orders:v2"

    def deprecated_v1(self, **fields: object) -> dict[str, object]:
        return api_resource(
            releaseStatus="deprecated",
            deprecationDate="2024-01-01T00:00:00Z",
            sunsetDate="2025-01-01T00:00:00Z",
            **fields,
        )

    def test_deprecated_without_successors_warned(
        self, engine: MergeEngine, crawl_time: datetime
    ) -> None:
        doc = full_document(
            apiResources=[self.deprecated_v1(), api_resource(self.V2_ID, version="2.0.0")]
        )

        report = engine.commit(batch("s4", doc, crawled_at=crawl_time))

        issues = report.issues_for(API_ID)
        assert [i.category for i in issues] == [IssueCategory.LIFECYCLE]
        assert issues[0].severity == Severity.WARNING
        assert issues[0].provider_id == "s4"
        assert issues[0].path == "documents[0].apiResources[0]"
        assert engine.snapshot.issues[API_ID] == tuple(issues)

    def test_declared_successors_silent(self, engine: MergeEngine, crawl_time: datetime) -> None:
        doc = full_document(
            apiResources=[
                self.deprecated_v1(successors=[self.V2_ID]),
                api_resource(self.V2_ID, version="2.0.0"),
            ]
        )

        report = engine.commit(batch("s4", doc, crawled_at=crawl_time))

        assert report.issues_for(API_ID) == []


class TestDangling:
    def test_dangling_reference_resolves_later(
        self, engine: MergeEngine, crawl_time: datetime
    ) -> None:
        resource = api_resource(partOfConsumptionBundles=[{"ordId": BUNDLE_ID}])
        report = engine.commit(
            batch("s4", full_document(apiResources=[resource]), crawled_at=crawl_time)
        )

        assert engine.snapshot.nodes[API_ID].dangling == {"partOfConsumptionBundles": [BUNDLE_ID]}
        assert report.issues_for(API_ID)[0].severity == Severity.WARNING

        engine.commit(
            batch(
                "s4",
                full_document(apiResources=[resource], consumptionBundles=[consumption_bundle()]),
                crawled_at=crawl_time + HOUR,
            )
        )

        assert engine.snapshot.nodes[API_ID].dangling == {}


def test_restore_replaces_graph(engine: MergeEngine) -> None:
    engine.restore(GraphSnapshot(revision=41))

    report = engine.commit(Batch(provider_id="s4", documents=[]))

    assert report.revision == 42
