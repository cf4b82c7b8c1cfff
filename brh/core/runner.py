"""
ScenarioRunner: シナリオ実行エンジン

固定サイズのワーカープールでシナリオを並列実行する。各ワーカーは 1 シナリオずつ
完了まで実行し、セッション取得・再試行・失敗時成果物取得・セッション解放を調整する。

主な機能:
  - Scenario / scenario デコレータ: シナリオ関数の定義
  - ScenarioContext: シナリオ関数に渡す実行コンテキスト（セッション、操作 API、設定）
  - ScenarioResult / RunSummary: 実行結果と最終集計
  - ScenarioRunner.run(): 1 シナリオの実行（再試行込み）
  - ScenarioRunner.run_all(): ThreadPoolExecutor による並列実行

1 回の実行の流れ:
  SessionRegistry.get() → シナリオ関数 → 失敗なら
    上限未満: SessionRegistry.release() → 再実行
    上限到達: FailureArtifactCollector.collect() → SessionRegistry.release()
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from types import ModuleType
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional

from .actions import ActionFacade
from .artifacts import Artifact, FailureArtifactCollector
from .registry import SessionRegistry
from .retry import AttemptResult, RetryCoordinator, RetryState, ScenarioStatus, format_reason
from .session import SessionSettings

if TYPE_CHECKING:
    from ..config import HarnessConfig
    from .artifacts import ReportSink
    from .session import DriverFactory, Session

logger = logging.getLogger(__name__)

_SCENARIO_ATTR = "__brh_scenario__"


# ---------------------------------------------------------------------------
# シナリオ定義
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Scenario:
    """実行対象のシナリオ。

    Attributes:
        id: シナリオ ID（成果物のファイル名等に使用）
        title: シナリオ名
        func: シナリオ関数。ScenarioContext を受け取り、失敗時は例外を送出する
        tags: タグ
    """

    id: str
    title: str
    func: Callable[[ScenarioContext], Any]
    tags: frozenset[str] = frozenset()


def scenario(
    title: Optional[str] = None,
    *,
    id: Optional[str] = None,
    tags: Iterable[str] = (),
) -> Callable[[Callable[[ScenarioContext], Any]], Callable[[ScenarioContext], Any]]:
    """関数をシナリオとして登録するデコレータ。

    使用例::

        @scenario("カートからチェックアウトへ進める", tags=["smoke"])
        def checkout(ctx: ScenarioContext) -> None:
            ctx.actions.click(Locator.by_id("checkout"))
    """

    def decorator(func: Callable[[ScenarioContext], Any]) -> Callable[[ScenarioContext], Any]:
        setattr(
            func,
            _SCENARIO_ATTR,
            Scenario(
                id=id or func.__name__,
                title=title or func.__name__,
                func=func,
                tags=frozenset(tags),
            ),
        )
        return func

    return decorator


def collect_scenarios(module: ModuleType) -> list[Scenario]:
    """モジュールからシナリオを定義順に収集する。

    scenario デコレータ付きの関数と、モジュール属性 SCENARIOS（Scenario のリスト）を対象とする。
    """
    found: list[Scenario] = []
    for value in vars(module).values():
        marked = getattr(value, _SCENARIO_ATTR, None)
        if isinstance(marked, Scenario):
            found.append(marked)
    for value in getattr(module, "SCENARIOS", ()):
        if isinstance(value, Scenario):
            found.append(value)
    return found


def filter_by_tags(scenarios: Iterable[Scenario], tags: Iterable[str]) -> list[Scenario]:
    """いずれかのタグを持つシナリオに絞り込む。tags が空なら全件を返す。"""
    wanted = set(tags)
    if not wanted:
        return list(scenarios)
    return [s for s in scenarios if s.tags & wanted]


@dataclass
class ScenarioContext:
    """シナリオ関数に渡す実行コンテキスト。

    Attributes:
        scenario: 実行中のシナリオ
        session: ワーカーに割り当てられたセッション
        actions: セッションに束縛された操作 API
        config: ハーネス設定
        attempt: 実行回数（初回 = 1）
    """

    scenario: Scenario
    session: Session
    actions: ActionFacade
    config: HarnessConfig
    attempt: int = 1

    @property
    def base_url(self) -> Optional[str]:
        return self.config.base_url

    def url(self, path: str = "") -> str:
        """ベース URL に path を連結した URL を返す。

        Raises:
            ValueError: base_url が設定されていない場合
        """
        if not self.config.base_url:
            raise ValueError("base_url が設定されていません")
        if not path:
            return self.config.base_url
        return f"{self.config.base_url}/{path.lstrip('/')}"


# ---------------------------------------------------------------------------
# 結果データクラス
# ---------------------------------------------------------------------------

@dataclass
class ScenarioResult:
    """シナリオの最終結果。

    Attributes:
        scenario_id: シナリオ ID
        title: シナリオ名
        status: 最終状態（PASSED / FAILED_FINAL）
        attempts: 実行回数
        reason: 最終失敗理由（成功時は None）
        artifacts: 取得した失敗時成果物
        duration_ms: 全実行の合計時間（ミリ秒）
        started_at: 実行開始日時
        finished_at: 実行終了日時
    """

    scenario_id: str
    title: str
    status: ScenarioStatus = ScenarioStatus.PENDING
    attempts: int = 0
    reason: Optional[str] = None
    artifacts: list[Artifact] = field(default_factory=list)
    duration_ms: float = 0.0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def passed(self) -> bool:
        return self.status == ScenarioStatus.PASSED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.scenario_id,
            "title": self.title,
            "status": self.status.value,
            "attempts": self.attempts,
            "reason": self.reason,
            "artifacts": [{"label": a.label, "mimeType": a.mime_type} for a in self.artifacts],
            "durationMs": round(self.duration_ms, 1),
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass
class RunSummary:
    """全シナリオの最終集計。レポート担当へ渡す。"""

    results: list[ScenarioResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def failed(self) -> int:
        return self.total - self.passed

    @property
    def retried(self) -> int:
        """2 回以上実行したシナリオの数。"""
        return sum(1 for r in self.results if r.attempts > 1)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "retried": self.retried,
            "scenarios": [r.to_dict() for r in self.results],
        }


# ---------------------------------------------------------------------------
# ScenarioRunner 本体
# ---------------------------------------------------------------------------

class ScenarioRunner:
    """シナリオ実行エンジン。

    使用例::

        runner = ScenarioRunner(config, sink=DirectoryReportSink(config.artifacts_dir))
        summary = runner.run_all(collect_scenarios(module))
    """

    def __init__(
        self,
        config: HarnessConfig,
        *,
        sink: Optional[ReportSink] = None,
        registry: Optional[SessionRegistry] = None,
        driver_factory: Optional[DriverFactory] = None,
        collector: Optional[FailureArtifactCollector] = None,
    ) -> None:
        """ScenarioRunner を初期化する。

        Args:
            config: ハーネス設定
            sink: 成果物と最終集計の受け渡し先
            registry: セッション対応表（None で設定から生成）
            driver_factory: ドライバ生成関数（registry 未指定時のみ使用）
            collector: 失敗時成果物の取得担当（None で sink へ渡す標準の取得担当）
        """
        self._config = config
        self._sink = sink
        self._registry = registry or SessionRegistry(
            SessionSettings.from_config(config), driver_factory,
        )
        self._collector = collector or FailureArtifactCollector(sink)
        self._coordinator = RetryCoordinator(config.max_attempts)

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    # -------------------------------------------------------------------
    # 単一シナリオ
    # -------------------------------------------------------------------

    def run(self, scenario: Scenario) -> ScenarioResult:
        """シナリオを実行し、最終結果を返す。

        呼び出しスレッドをワーカーとして、そのスレッドのセッションを使用する。
        結果にかかわらず、終了時にはセッションを解放する。
        """
        result = ScenarioResult(
            scenario_id=scenario.id,
            title=scenario.title,
            started_at=datetime.now(),
        )
        start_time = time.perf_counter()
        logger.info("シナリオ開始: %s [%s]", scenario.title, threading.current_thread().name)

        def _execute(state: RetryState) -> AttemptResult:
            session = self._registry.get()
            context = ScenarioContext(
                scenario=scenario,
                session=session,
                actions=ActionFacade.for_session(session),
                config=self._config,
                attempt=state.attempt_count,
            )
            try:
                outcome = scenario.func(context)
            except Exception as exc:
                return AttemptResult.fail(format_reason(exc))
            if isinstance(outcome, AttemptResult):
                return outcome
            if outcome is False:
                return AttemptResult.fail("シナリオ関数が False を返しました")
            return AttemptResult.ok()

        def _on_final_failure(state: RetryState) -> None:
            result.artifacts.extend(
                self._collector.collect(
                    self._registry.peek(), scenario.id, state.last_failure_reason or "",
                )
            )

        try:
            state = self._coordinator.run(
                _execute,
                discard=self._registry.release,
                on_final_failure=_on_final_failure,
                label=scenario.title,
            )
        finally:
            self._registry.release()

        result.status = state.status
        result.attempts = state.attempt_count
        result.reason = None if state.status == ScenarioStatus.PASSED else state.last_failure_reason
        result.finished_at = datetime.now()
        result.duration_ms = (time.perf_counter() - start_time) * 1000

        logger.info(
            "シナリオ終了: %s: %s（%d 回実行, %.0fms）",
            scenario.title, result.status.value, result.attempts, result.duration_ms,
        )
        return result

    # -------------------------------------------------------------------
    # 並列実行
    # -------------------------------------------------------------------

    def run_all(self, scenarios: Iterable[Scenario]) -> RunSummary:
        """複数シナリオを config.workers 個のワーカーで並列実行する。

        結果は入力順に並ぶ。全シナリオ完了後にセッションを全て解放し、
        最終集計をレポート担当へ渡す。
        """
        scenario_list = list(scenarios)
        summary = RunSummary()

        try:
            with ThreadPoolExecutor(
                max_workers=self._config.workers, thread_name_prefix="brh-worker",
            ) as executor:
                futures = [executor.submit(self.run, s) for s in scenario_list]
                summary.results = [f.result() for f in futures]
        finally:
            self._registry.release_all()

        logger.info(
            "実行完了: total=%d, passed=%d, failed=%d, retried=%d",
            summary.total, summary.passed, summary.failed, summary.retried,
        )
        if self._sink is not None:
            self._sink.finalize(summary)
        return summary
