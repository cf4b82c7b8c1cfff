"""
失敗時成果物のユニットテスト

テスト対象:
  - FailureArtifactCollector: capture / capture_dom / collect（ベストエフォート）
  - MemoryReportSink / DirectoryReportSink: 成果物と最終集計の保存
  - _sanitize_name: ファイル名の安全化
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from brh.core.artifacts import (
    Artifact,
    DirectoryReportSink,
    FailureArtifactCollector,
    MemoryReportSink,
    _sanitize_name,
)
from brh.core.errors import ArtifactUnavailable, DriverError
from brh.core.retry import ScenarioStatus
from brh.core.runner import RunSummary, ScenarioResult
from brh.core.session import Session


@pytest.fixture
def session(settings, factory) -> Session:
    return Session(settings, factory).start()


# ===========================================================================
# テスト: FailureArtifactCollector
# ===========================================================================

class TestCapture:
    """capture / capture_dom のテスト。"""

    def test_capture_screenshot(self, session) -> None:
        artifact = FailureArtifactCollector().capture(session, "login")
        assert artifact.mime_type == "image/png"
        assert artifact.data.startswith(b"\x89PNG")
        assert artifact.label == "screenshot"
        assert artifact.scenario_id == "login"

    def test_capture_dom(self, session) -> None:
        artifact = FailureArtifactCollector().capture_dom(session, "login")
        assert artifact.mime_type == "text/html"
        assert b"<html>" in artifact.data

    def test_capture_closed_session(self, session) -> None:
        """解放後のセッションからは取得できないこと。"""
        session.close()
        with pytest.raises(ArtifactUnavailable):
            FailureArtifactCollector().capture(session, "login")

    def test_capture_driver_error(self, session, factory) -> None:
        factory.drivers[0].screenshot_error = DriverError("target closed")
        with pytest.raises(ArtifactUnavailable, match="target closed"):
            FailureArtifactCollector().capture(session, "login")


class TestCollect:
    """collect のテスト。"""

    def test_collect_sends_to_sink(self, session) -> None:
        sink = MemoryReportSink()
        artifacts = FailureArtifactCollector(sink).collect(session, "checkout", "timeout")
        assert [a.mime_type for a in artifacts] == ["image/png", "text/html"]
        assert sink.artifacts_for("checkout") == artifacts

    def test_collect_without_dom(self, session) -> None:
        artifacts = FailureArtifactCollector(capture_dom=False).collect(session, "checkout")
        assert [a.label for a in artifacts] == ["screenshot"]

    def test_collect_none_session(self) -> None:
        sink = MemoryReportSink()
        assert FailureArtifactCollector(sink).collect(None, "checkout") == []
        assert sink.artifacts == []

    def test_collect_swallows_capture_failure(self, session, factory, caplog) -> None:
        """スクリーンショット取得に失敗しても例外を送出せず、DOM は取得すること。"""
        factory.drivers[0].screenshot_error = DriverError("crashed")
        artifacts = FailureArtifactCollector().collect(session, "checkout", "assertion")
        assert [a.mime_type for a in artifacts] == ["text/html"]
        assert "crashed" in caplog.text

    def test_collect_swallows_sink_failure(self, session) -> None:
        sink = MagicMock()
        sink.add_artifact.side_effect = OSError("disk full")
        artifacts = FailureArtifactCollector(sink).collect(session, "checkout")
        assert len(artifacts) == 2

    def test_collect_closed_session(self, session) -> None:
        session.close()
        assert FailureArtifactCollector().collect(session, "checkout") == []


# ===========================================================================
# テスト: レポート担当
# ===========================================================================

class TestDirectoryReportSink:
    """DirectoryReportSink のテスト。"""

    def test_creates_run_directory(self, tmp_path: Path) -> None:
        sink = DirectoryReportSink(tmp_path, timestamp=datetime(2024, 1, 15, 10, 30, 0))
        assert sink.run_dir == tmp_path / "run-20240115-103000"
        assert (sink.run_dir / "artifacts").is_dir()

    def test_writes_artifacts(self, tmp_path: Path) -> None:
        sink = DirectoryReportSink(tmp_path, timestamp=datetime(2024, 1, 15, 10, 30, 0))
        sink.add_artifact(Artifact(b"png", "image/png", "screenshot", "add to cart"))
        sink.add_artifact(Artifact(b"<html/>", "text/html", "dom", "add to cart"))
        names = sorted(p.name for p in sink.saved)
        assert names == ["add-to-cart_dom.html", "add-to-cart_screenshot.png"]

    def test_duplicate_names_are_numbered(self, tmp_path: Path) -> None:
        sink = DirectoryReportSink(tmp_path)
        for _ in range(3):
            sink.add_artifact(Artifact(b"png", "image/png", "screenshot", "login"))
        assert [p.name for p in sink.saved] == [
            "login_screenshot.png", "login_screenshot-2.png", "login_screenshot-3.png",
        ]

    def test_finalize_writes_summary(self, tmp_path: Path) -> None:
        sink = DirectoryReportSink(tmp_path)
        summary = RunSummary(results=[
            ScenarioResult("login", "ログイン", status=ScenarioStatus.PASSED, attempts=1),
            ScenarioResult("cart", "カート", status=ScenarioStatus.FAILED_FINAL, attempts=2, reason="boom"),
        ])
        sink.finalize(summary)

        data = json.loads((sink.run_dir / "summary.json").read_text(encoding="utf-8"))
        assert data["total"] == 2
        assert data["failed"] == 1
        assert data["retried"] == 1
        assert data["scenarios"][1]["status"] == "failed_final"
        assert data["scenarios"][0]["title"] == "ログイン"


class TestSanitizeName:
    """_sanitize_name のテスト。"""

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("login", "login"),
            ("add to cart", "add-to-cart"),
            ("a//b??c", "a-b-c"),
            ("???", "artifact"),
        ],
    )
    def test_sanitize(self, name: str, expected: str) -> None:
        assert _sanitize_name(name) == expected

    def test_truncates(self) -> None:
        assert len(_sanitize_name("x" * 300)) == 100
