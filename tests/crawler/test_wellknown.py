"""Tests for the well-known configuration and access strategy selection."""

import pytest

from orda.crawler.wellknown import WellKnownConfig, select_access_strategy, strategy_key
from orda.models.entities import AccessStrategy
from orda.models.enums import AccessStrategyType


def config(base_url: str | None = None) -> WellKnownConfig:
    data: dict = {"openResourceDiscoveryV1": {"documents": [{"url": "/ord/v1/documents/1"}]}}
    if base_url:
        data["baseUrl"] = base_url
    return WellKnownConfig.model_validate(data)


class TestResolveUrl:
    @pytest.mark.parametrize(
        ("base_url", "url", "expected"),
        [
            ("https://s4.example.com", "/ord/v1/doc", "https://s4.example.com/ord/v1/doc"),
            ("https://s4.example.com/api", "/ord/v1/doc", "https://s4.example.com/api/ord/v1/doc"),
            (
                "https://s4.example.com",
                "https://cdn.example.com/doc",
                "https://cdn.example.com/doc",
            ),
        ],
    )
    def test_resolution(self, base_url: str, url: str, expected: str) -> None:
        assert config(base_url).resolve_url(url) == expected

    def test_without_base_url(self) -> None:
        assert config().resolve_url("/ord/v1/doc") == "/ord/v1/doc"

    def test_extra_configuration_keys_tolerated(self) -> None:
        parsed = WellKnownConfig.model_validate(
            {"openResourceDiscoveryV1": {"documents": [], "futureKey": True}, "x-vendor": 1}
        )

        assert parsed.documents == []


class TestSelectAccessStrategy:
    def test_first_supported_wins(self) -> None:
        strategies = [
            AccessStrategy(type=AccessStrategyType.SAP_CMP_MTLS_V1),
            AccessStrategy(type=AccessStrategyType.OPEN),
        ]

        selected = select_access_strategy(strategies, ["open", "sap:cmp-mtls:v1"])

        assert selected is strategies[0]

    def test_none_supported(self) -> None:
        strategies = [AccessStrategy(type=AccessStrategyType.SAP_CMP_MTLS_V1)]

        assert select_access_strategy(strategies, ["open"]) is None

    def test_empty_list_means_open(self) -> None:
        selected = select_access_strategy([], ["open"])

        assert selected is not None
        assert selected.type == AccessStrategyType.OPEN
        assert select_access_strategy([], []) is None

    def test_custom_strategy_matched_by_custom_type(self) -> None:
        custom = AccessStrategy(type=AccessStrategyType.CUSTOM, custom_type="acme:token-auth:v1")

        assert strategy_key(custom) == "acme:token-auth:v1"
        assert select_access_strategy([custom], ["acme:token-auth:v1"]) is custom
        assert select_access_strategy([custom], ["custom"]) is None
