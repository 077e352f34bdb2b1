"""render() / reconcile() / compare_version() のテスト"""

import json

import pytest

from f5os_facts import reporter
from f5os_facts.models import ChannelError, ChannelResult, ErrorKind, VersionFact


def _ok(channel, os_version="1.8.0-16036", product="F5OS-A", elapsed=0.5):
    fact = VersionFact(
        os_version=os_version,
        service_version=os_version,
        product=product,
        source_channel=channel,
    )
    return ChannelResult.success(fact, elapsed)


def _ng(channel, kind=ErrorKind.TIMEOUT, message="no response within 30s"):
    return ChannelResult.failure(channel, ChannelError(kind, message, channel), 30.0)


class TestRender:
    """render() のテスト"""

    def test_success(self):
        text = reporter.render([_ok("rest")], "r5900-2")
        assert text.splitlines() == [
            "# r5900-2",
            "  rest: ok (0.50s)",
            "    os-version: 1.8.0-16036",
            "    service-version: 1.8.0-16036",
            "    product: F5OS-A",
            "  channels: 1/1 ok",
        ]

    def test_failure_does_not_stop(self):
        """失敗エントリの後も続けて表示"""
        text = reporter.render([_ok("rest"), _ng("cli"), _ok("script")])
        lines = text.splitlines()
        assert "  cli: FAILED (30.00s)" in lines
        assert "    timeout: no response within 30s" in lines
        assert "  script: ok (0.50s)" in lines
        assert lines[-1] == "  channels: 2/3 ok"

    def test_one_entry_per_channel(self):
        results = [_ng("rest", ErrorKind.AUTH_FAILURE), _ng("cli"), _ng("script", ErrorKind.UNEXPECTED_FORMAT)]
        text = reporter.render(results)
        for name in ("rest", "cli", "script"):
            assert f"  {name}: FAILED (30.00s)" in text

    def test_without_timing(self):
        text = reporter.render([_ok("rest"), _ng("cli")], timing=False)
        assert "  rest: ok" in text.splitlines()
        assert "  cli: FAILED" in text.splitlines()
        assert "s)" not in text

    def test_reconcile_mismatch(self):
        results = [_ok("rest"), _ok("cli", os_version="1.7.0-4112")]
        text = reporter.render(results, reconciliation=reporter.reconcile(results))
        assert "  reconcile: MISMATCH" in text
        assert "    os-version: 1.8.0-16036 / 1.7.0-4112" in text

    def test_expected_older(self):
        results = [_ok("rest", os_version="1.7.0-4112")]
        rec = reporter.reconcile(results, "1.8.0-16036")
        text = reporter.render(results, reconciliation=rec)
        assert "  expected 1.8.0-16036: OLDER (1.7.0-4112)" in text


class TestReconcile:
    """reconcile() のテスト"""

    def test_consistent(self):
        rec = reporter.reconcile([_ok("rest"), _ok("cli"), _ok("script")])
        assert rec["consistent"] is True
        assert rec["values"]["product"] == ["F5OS-A"]
        assert rec["expected"] is None

    def test_failures_ignored(self):
        rec = reporter.reconcile([_ok("rest"), _ng("cli")])
        assert rec["consistent"] is True

    def test_no_success(self):
        rec = reporter.reconcile([_ng("rest"), _ng("cli")], "1.8.0-16036")
        assert rec["consistent"] is True
        assert rec["expected"]["compare"] is None

    def test_product_mismatch(self):
        rec = reporter.reconcile([_ok("rest"), _ok("cli", product="F5OS-C")])
        assert rec["consistent"] is False
        assert rec["values"]["product"] == ["F5OS-A", "F5OS-C"]

    def test_expected_equal(self):
        rec = reporter.reconcile([_ok("rest"), _ok("cli")], "1.8.0-16036")
        assert rec["expected"]["compare"] == 0

    def test_expected_disagreeing_channels(self):
        """チャネル間で比較結果が割れたら None"""
        rec = reporter.reconcile(
            [_ok("rest"), _ok("cli", os_version="1.7.0-4112")], "1.8.0-16036"
        )
        assert rec["expected"]["compare"] is None


class TestCompareVersion:
    """compare_version() のテスト"""

    def test_greater(self):
        assert reporter.compare_version("1.8.0-16036", "1.7.0-4112") == 1

    def test_less(self):
        assert reporter.compare_version("1.5.1-12283", "1.8.0-16036") == -1

    def test_equal(self):
        assert reporter.compare_version("1.8.0-16036", "1.8.0-16036") == 0

    def test_build_number(self):
        assert reporter.compare_version("1.8.0-16036", "1.8.0-9999") == 1

    @pytest.mark.parametrize("left, right", [(None, "1.8.0"), ("1.8.0", None), (None, None)])
    def test_none(self, left, right):
        assert reporter.compare_version(left, right) is None

    def test_incomparable(self):
        assert reporter.compare_version("1.8.x", "1.8.0") is None


class TestRenderJson:
    """render_json() のテスト"""

    def test_structure(self):
        results = [_ok("rest"), _ng("cli", ErrorKind.AUTH_FAILURE, "Authentication failed.")]
        doc = json.loads(reporter.render_json(results, "r5900-2", reporter.reconcile(results)))
        assert doc["host"] == "r5900-2"
        assert doc["results"][0] == {
            "channel": "rest",
            "ok": True,
            "elapsed": 0.5,
            "os-version": "1.8.0-16036",
            "service-version": "1.8.0-16036",
            "product": "F5OS-A",
        }
        assert doc["results"][1]["error"] == {
            "kind": "auth-failure",
            "message": "Authentication failed.",
        }
        assert doc["reconcile"]["consistent"] is True
