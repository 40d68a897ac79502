"""Tests for StoreSettings."""

import pytest

from identitydb.settings import StoreSettings


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("TABLE_NAME", "REGION_NAME", "ENDPOINT_URL"):
        monkeypatch.delenv(f"IDENTITYDB_{name}", raising=False)

    settings = StoreSettings()

    assert settings.table_name == "identity"
    assert settings.region_name == "eu-west-1"
    assert settings.endpoint_url is None
    assert settings.resource_kwargs() == {"region_name": "eu-west-1"}


def test_reads_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("IDENTITYDB_TABLE_NAME", "identity-test")
    monkeypatch.setenv("IDENTITYDB_ENDPOINT_URL", "http://localhost:8000")

    settings = StoreSettings()

    assert settings.table_name == "identity-test"
    assert settings.resource_kwargs() == {
        "region_name": "eu-west-1",
        "endpoint_url": "http://localhost:8000",
    }
