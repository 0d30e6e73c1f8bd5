"""Unit tests for environment-driven configuration."""

import time

import pytest

from webos_packager.config import (
    default_ipk_filename,
    load_aggregation_timeout,
    load_build_timestamp,
)
from webos_packager.core.ar import ArWriter


class TestBuildTimestamp:
    """SOURCE_DATE_EPOCH pins archive timestamps."""

    def test_uses_source_date_epoch(self, monkeypatch):
        monkeypatch.setenv("SOURCE_DATE_EPOCH", "1600000000")
        assert load_build_timestamp() == 1600000000
        assert ArWriter().timestamp == 1600000000

    def test_defaults_to_now(self, monkeypatch):
        monkeypatch.delenv("SOURCE_DATE_EPOCH", raising=False)
        before = int(time.time())
        assert before <= load_build_timestamp() <= int(time.time())

    @pytest.mark.parametrize("value", ["yesterday", "1.5", "-1"])
    def test_rejects_malformed(self, monkeypatch, value):
        monkeypatch.setenv("SOURCE_DATE_EPOCH", value)
        with pytest.raises(ValueError, match="SOURCE_DATE_EPOCH"):
            load_build_timestamp()


class TestAggregationTimeout:
    """WEBOS_PACKAGER_TIMEOUT sets the default aggregation deadline."""

    def test_unset_means_no_deadline(self, monkeypatch):
        monkeypatch.delenv("WEBOS_PACKAGER_TIMEOUT", raising=False)
        assert load_aggregation_timeout() is None

    def test_empty_means_no_deadline(self, monkeypatch):
        monkeypatch.setenv("WEBOS_PACKAGER_TIMEOUT", "  ")
        assert load_aggregation_timeout() is None

    def test_parses_seconds(self, monkeypatch):
        monkeypatch.setenv("WEBOS_PACKAGER_TIMEOUT", "90")
        assert load_aggregation_timeout() == 90.0

    @pytest.mark.parametrize("value", ["soon", "0", "-3"])
    def test_rejects_malformed(self, monkeypatch, value):
        monkeypatch.setenv("WEBOS_PACKAGER_TIMEOUT", value)
        with pytest.raises(ValueError, match="WEBOS_PACKAGER_TIMEOUT"):
            load_aggregation_timeout()


def test_default_ipk_filename():
    assert default_ipk_filename("com.example.app", "1.0.0") == "com.example.app_1.0.0_all.ipk"
