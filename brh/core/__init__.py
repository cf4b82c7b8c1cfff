# コアモジュール
# 待機エンジン、操作 API、セッション管理、再試行制御、失敗時成果物、シナリオ実行を提供

from .actions import ActionFacade, FallbackRecord
from .artifacts import (
    Artifact,
    DirectoryReportSink,
    FailureArtifactCollector,
    MemoryReportSink,
    ReportSink,
)
from .driver import BrowserDriver, PlaywrightDriver
from .errors import (
    ActionFailed,
    ArtifactUnavailable,
    BrhError,
    DriverError,
    ElementNotFound,
    ElementNotInteractable,
    SessionStartFailed,
    StaleElement,
    WaitTimeout,
)
from .locator import Locator
from .registry import SessionRegistry
from .retry import AttemptResult, RetryCoordinator, RetryState, ScenarioStatus
from .runner import (
    RunSummary,
    Scenario,
    ScenarioContext,
    ScenarioResult,
    ScenarioRunner,
    collect_scenarios,
    scenario,
)
from .session import Session, SessionSettings, SessionState
from .waits import NOT_READY, NotReady, WaitSpec, wait_until

__all__ = [
    "NOT_READY",
    "ActionFacade",
    "ActionFailed",
    "Artifact",
    "ArtifactUnavailable",
    "AttemptResult",
    "BrhError",
    "BrowserDriver",
    "DirectoryReportSink",
    "DriverError",
    "ElementNotFound",
    "ElementNotInteractable",
    "FailureArtifactCollector",
    "FallbackRecord",
    "Locator",
    "MemoryReportSink",
    "NotReady",
    "PlaywrightDriver",
    "ReportSink",
    "RetryCoordinator",
    "RetryState",
    "RunSummary",
    "Scenario",
    "ScenarioContext",
    "ScenarioResult",
    "ScenarioRunner",
    "ScenarioStatus",
    "Session",
    "SessionRegistry",
    "SessionSettings",
    "SessionStartFailed",
    "SessionState",
    "StaleElement",
    "WaitSpec",
    "WaitTimeout",
    "collect_scenarios",
    "scenario",
    "wait_until",
]
