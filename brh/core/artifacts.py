"""
失敗時成果物: スクリーンショット・DOM スナップショットの取得と受け渡し

シナリオ失敗時に、セッション解放前のブラウザから診断用の成果物を取得し、
外部のレポート担当（ReportSink）へ渡す。取得はベストエフォートであり、
取得失敗が元の失敗理由を覆い隠すことはない。

主な機能:
  - Artifact: 成果物（バイト列、MIME タイプ、ラベル、シナリオ ID）
  - FailureArtifactCollector: capture() / capture_dom() / collect()
  - ReportSink: 成果物と最終集計を受け取る Protocol
  - MemoryReportSink: メモリ上に保持する実装
  - DirectoryReportSink: artifacts/run-YYYYMMDD-HHMMSS/ に保存する実装
"""

from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Protocol

from .errors import ArtifactUnavailable

if TYPE_CHECKING:
    from .runner import RunSummary
    from .session import Session

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^\w\-]")
"""ファイル名に使用できない文字を検出する正規表現。"""

_EXTENSIONS = {
    "image/png": "png",
    "text/html": "html",
}


# ---------------------------------------------------------------------------
# 成果物
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Artifact:
    """失敗したシナリオから取得した診断用成果物。

    Attributes:
        data: 成果物のバイト列（スクリーンショットは PNG）
        mime_type: MIME タイプ
        label: 表示用ラベル
        scenario_id: 取得元のシナリオ ID
    """

    data: bytes = field(repr=False)
    mime_type: str
    label: str
    scenario_id: str


# ---------------------------------------------------------------------------
# レポート担当
# ---------------------------------------------------------------------------

class ReportSink(Protocol):
    """成果物と最終集計を受け取る外部レポート担当の Protocol。

    複数ワーカーから同時に呼ばれるため、実装はスレッドセーフである必要がある。
    """

    def add_artifact(self, artifact: Artifact) -> None: ...

    def finalize(self, summary: RunSummary) -> None: ...


class MemoryReportSink:
    """成果物と集計をメモリ上に保持する ReportSink。"""

    def __init__(self) -> None:
        self.artifacts: list[Artifact] = []
        self.summary: Optional[RunSummary] = None
        self._lock = threading.Lock()

    def add_artifact(self, artifact: Artifact) -> None:
        with self._lock:
            self.artifacts.append(artifact)

    def finalize(self, summary: RunSummary) -> None:
        self.summary = summary

    def artifacts_for(self, scenario_id: str) -> list[Artifact]:
        with self._lock:
            return [a for a in self.artifacts if a.scenario_id == scenario_id]


class DirectoryReportSink:
    """成果物をディレクトリに保存する ReportSink。

    artifacts/run-YYYYMMDD-HHMMSS/ を作成し、成果物を artifacts/ サブディレクトリへ、
    最終集計を summary.json へ書き出す。
    """

    def __init__(self, base_dir: Path, timestamp: Optional[datetime] = None) -> None:
        """DirectoryReportSink を初期化し、実行ディレクトリを作成する。

        Args:
            base_dir: 成果物ベースディレクトリ
            timestamp: ディレクトリ名に使用するタイムスタンプ（None で現在時刻）
        """
        if timestamp is None:
            timestamp = datetime.now()
        self.run_dir = base_dir / f"run-{timestamp.strftime('%Y%m%d-%H%M%S')}"
        (self.run_dir / "artifacts").mkdir(parents=True, exist_ok=True)
        self.saved: list[Path] = []
        self._lock = threading.Lock()
        logger.info("実行ディレクトリを作成しました: %s", self.run_dir)

    def add_artifact(self, artifact: Artifact) -> None:
        ext = _EXTENSIONS.get(artifact.mime_type, "bin")
        stem = f"{_sanitize_name(artifact.scenario_id)}_{_sanitize_name(artifact.label)}"
        with self._lock:
            path = self.run_dir / "artifacts" / f"{stem}.{ext}"
            # 同名ファイルは連番で区別する
            counter = 1
            while path.exists():
                counter += 1
                path = self.run_dir / "artifacts" / f"{stem}-{counter}.{ext}"
            path.write_bytes(artifact.data)
            self.saved.append(path)
        logger.info("成果物を保存しました: %s", path)

    def finalize(self, summary: RunSummary) -> None:
        summary_path = self.run_dir / "summary.json"
        with open(summary_path, "w", encoding="utf-8") as f:
            json.dump(summary.to_dict(), f, ensure_ascii=False, indent=2)
        logger.info("実行サマリーを保存しました: %s", summary_path)


# ---------------------------------------------------------------------------
# FailureArtifactCollector 本体
# ---------------------------------------------------------------------------

class FailureArtifactCollector:
    """失敗時成果物の取得を担当する。

    取得は必ずセッション解放前に行う。解放後のセッションからは取得できない。
    """

    def __init__(self, sink: Optional[ReportSink] = None, capture_dom: bool = True) -> None:
        """FailureArtifactCollector を初期化する。

        Args:
            sink: 取得した成果物の受け渡し先（None で受け渡ししない）
            capture_dom: スクリーンショットに加えて DOM スナップショットも取得するか
        """
        self._sink = sink
        self._capture_dom = capture_dom

    def capture(self, session: Session, scenario_id: str, label: str = "screenshot") -> Artifact:
        """セッションのスクリーンショット（PNG）を取得する。

        Raises:
            ArtifactUnavailable: セッションが READY でない、または取得に失敗した場合
        """
        _ensure_ready(session)
        try:
            data = session.driver.screenshot()
        except Exception as exc:
            raise ArtifactUnavailable(f"スクリーンショットを取得できませんでした: {exc}") from exc
        return Artifact(data=data, mime_type="image/png", label=label, scenario_id=scenario_id)

    def capture_dom(self, session: Session, scenario_id: str, label: str = "dom") -> Artifact:
        """セッションの DOM スナップショット（HTML）を取得する。

        Raises:
            ArtifactUnavailable: セッションが READY でない、または取得に失敗した場合
        """
        _ensure_ready(session)
        try:
            source = session.driver.page_source()
        except Exception as exc:
            raise ArtifactUnavailable(f"DOM スナップショットを取得できませんでした: {exc}") from exc
        return Artifact(
            data=source.encode("utf-8"), mime_type="text/html", label=label, scenario_id=scenario_id,
        )

    def collect(self, session: Optional[Session], scenario_id: str, reason: str = "") -> list[Artifact]:
        """ベストエフォートで成果物を取得し、レポート担当へ渡す。

        ArtifactUnavailable はログに記録して握りつぶし、呼び出し側の失敗理由には影響させない。

        Args:
            session: 取得元のセッション（None の場合は何も取得しない）
            scenario_id: シナリオ ID
            reason: ログ用の失敗理由

        Returns:
            取得できた成果物のリスト
        """
        if session is None:
            logger.warning("%s: セッションがないため成果物を取得できません", scenario_id)
            return []

        captures = [self.capture]
        if self._capture_dom:
            captures.append(self.capture_dom)

        artifacts: list[Artifact] = []
        for capture in captures:
            try:
                artifact = capture(session, scenario_id)
            except ArtifactUnavailable as exc:
                logger.warning("%s: 成果物の取得に失敗しました（失敗理由: %s）: %s", scenario_id, reason, exc)
                continue
            artifacts.append(artifact)
            if self._sink is not None:
                try:
                    self._sink.add_artifact(artifact)
                except Exception:
                    logger.exception("%s: 成果物の受け渡しに失敗しました", scenario_id)
        return artifacts


# ---------------------------------------------------------------------------
# ヘルパー関数
# ---------------------------------------------------------------------------

def _ensure_ready(session: Session) -> None:
    if not session.is_ready:
        raise ArtifactUnavailable(
            f"セッション {session.id} は READY ではありません（{session.state.value}）"
        )


def _sanitize_name(name: str) -> str:
    """名前をファイル名に安全な文字列に変換する。

    英数字、ハイフン、アンダースコア以外の文字をハイフンに置換し、
    連続するハイフンを1つにまとめる。
    """
    sanitized = _UNSAFE_CHARS.sub("-", name)
    sanitized = re.sub(r"-+", "-", sanitized)
    return sanitized.strip("-")[:100] or "artifact"
