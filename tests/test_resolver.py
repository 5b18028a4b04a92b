"""Tests for cross-document reference resolution."""

from datetime import datetime

from orda.graph import Fragment, PendingEntity
from orda.merge import extract_fragments
from orda.models.enums import EntityKind, IssueCategory, Severity
from orda.resolver import dangling_references, iter_references, resolve

from factories import (
    API_ID,
    BUNDLE_ID,
    PACKAGE_ID,
    PRODUCT_ID,
    VENDOR_ID,
    api_resource,
    batch,
    document,
    package,
    product,
    vendor,
)


def fragments_of(crawl_time: datetime, *documents: dict) -> list[Fragment]:
    fragments, _ = extract_fragments(batch("s4", *documents, crawled_at=crawl_time))
    return fragments


class TestIterReferences:
    def test_resource_references(self) -> None:
        attributes = api_resource(
            partOfProducts=[PRODUCT_ID],
            partOfConsumptionBundles=[{"ordId": BUNDLE_ID}],
        )

        refs = {
            (r.field, r.target, r.mandatory)
            for r in iter_references(EntityKind.API_RESOURCE, attributes)
        }

        assert refs == {
            ("partOfPackage", PACKAGE_ID, True),
            ("partOfProducts", PRODUCT_ID, False),
            ("partOfConsumptionBundles", BUNDLE_ID, False),
        }

    def test_package_vendor_is_mandatory(self) -> None:
        refs = list(iter_references(EntityKind.PACKAGE, package()))

        assert [(r.field, r.mandatory) for r in refs] == [("vendor", True)]

    def test_integration_dependency_aspects(self) -> None:
        attributes = {
            "aspects": [
                {
                    "title": "Orders",
                    "mandatory": True,
                    "apiResources": [{"ordId": API_ID}],
                    "eventResources": [{"ordId": "sap.s4:eventResource:orderEvents:v1"}],
                }
            ]
        }

        fields = [r.field for r in iter_references(EntityKind.INTEGRATION_DEPENDENCY, attributes)]

        assert fields == ["aspects.apiResources", "aspects.eventResources"]

    def test_correlation_ids_are_not_references(self) -> None:
        attributes = product(correlationIds=["sap.s4:type:x"])

        fields = [r.field for r in iter_references(EntityKind.PRODUCT, attributes)]

        assert fields == ["vendor"]

    def test_dangling_references(self) -> None:
        attributes = api_resource(partOfProducts=[PRODUCT_ID, PRODUCT_ID])

        assert dangling_references(EntityKind.API_RESOURCE, attributes, {PACKAGE_ID}) == {
            "partOfProducts": [PRODUCT_ID]
        }


class TestResolve:
    """Two-pass resolution of one batch."""

    def test_batch_resolves_internally(self, crawl_time: datetime) -> None:
        fragments = fragments_of(
            crawl_time,
            document(apiResources=[api_resource()], packages=[package()], vendors=[vendor()]),
        )

        result = resolve(fragments, {}, {}, now=crawl_time)

        assert [f.ord_id for f in result.accepted] == [VENDOR_ID, PACKAGE_ID, API_ID]
        assert result.parked == {}
        assert result.issues == []

    def test_missing_package_parks_resource(self, crawl_time: datetime) -> None:
        fragments = fragments_of(crawl_time, document(apiResources=[api_resource()]))

        result = resolve(fragments, {}, {}, now=crawl_time)

        assert result.accepted == []
        assert result.parked[API_ID].missing == {"partOfPackage": PACKAGE_ID}
        assert result.parked[API_ID].parked_at == crawl_time
        issue = result.issues[0]
        assert issue.category == IssueCategory.REFERENCE
        assert issue.severity == Severity.ERROR
        assert issue.message == f"Unresolved reference partOfPackage='{PACKAGE_ID}' on {API_ID}"

    def test_parking_cascades(self, crawl_time: datetime) -> None:
        fragments = fragments_of(
            crawl_time, document(packages=[package()], apiResources=[api_resource()])
        )

        result = resolve(fragments, {}, {}, now=crawl_time)

        assert set(result.parked) == {PACKAGE_ID, API_ID}
        assert result.parked[API_ID].missing == {"partOfPackage": PACKAGE_ID}
        assert result.parked[PACKAGE_ID].missing == {"vendor": VENDOR_ID}

    def test_pending_retried(self, crawl_time: datetime) -> None:
        parked_fragment = fragments_of(crawl_time, document(apiResources=[api_resource()]))[0]
        pending = {
            API_ID: PendingEntity(
                fragment=parked_fragment,
                missing={"partOfPackage": PACKAGE_ID},
                parked_at=crawl_time,
            )
        }
        fragments = fragments_of(crawl_time, document(vendors=[vendor()], packages=[package()]))

        result = resolve(fragments, pending, {}, now=crawl_time)

        assert result.resolved_pending == [API_ID]
        assert API_ID in [f.ord_id for f in result.accepted]

    def test_still_pending_is_not_reported_again(self, crawl_time: datetime) -> None:
        parked_fragment = fragments_of(crawl_time, document(apiResources=[api_resource()]))[0]
        earlier = datetime(2024, 1, 1, tzinfo=crawl_time.tzinfo)
        pending = {
            API_ID: PendingEntity(
                fragment=parked_fragment, missing={"partOfPackage": PACKAGE_ID}, parked_at=earlier
            )
        }

        result = resolve([], pending, {}, now=crawl_time)

        assert result.parked[API_ID].parked_at == earlier
        assert result.issues == []

    def test_reference_to_wrong_kind(self, crawl_time: datetime) -> None:
        wrong = api_resource(partOfPackage="sap.s4:apiResource:other:v1")
        fragments = fragments_of(crawl_time, document(apiResources=[wrong]))

        result = resolve(fragments, {}, {}, now=crawl_time)

        assert result.accepted == []
        assert result.parked == {}
        assert "which is not a package" in result.issues[0].message

    def test_optional_reference_dangles(self, crawl_time: datetime) -> None:
        fragments = fragments_of(
            crawl_time,
            document(
                vendors=[vendor()],
                packages=[package(partOfProducts=[PRODUCT_ID])],
            ),
        )

        result = resolve(fragments, {}, {}, now=crawl_time)

        assert result.dangling[PACKAGE_ID] == {"partOfProducts": [PRODUCT_ID]}
        assert result.issues[0].severity == Severity.WARNING
        assert result.issues[0].category == IssueCategory.REFERENCE

    def test_excluded_targets_do_not_resolve(self, crawl_time: datetime) -> None:
        fragments = fragments_of(
            crawl_time,
            document(vendors=[vendor()], packages=[package()], apiResources=[api_resource()]),
        )
        without_package = [f for f in fragments if f.ord_id != PACKAGE_ID]

        result = resolve(without_package, {}, {}, now=crawl_time, excluded={PACKAGE_ID})

        assert list(result.parked) == [API_ID]
