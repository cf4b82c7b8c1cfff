"""
RetryCoordinator: シナリオ実行の再試行制御

シナリオの実行関数をラップし、失敗時に再実行するかを実行回数の上限で判定する。
再試行の判断はここだけで行う。

状態遷移:
  PENDING → RUNNING → PASSED
                    → FAILED_RETRYABLE → RUNNING
                    → FAILED_FINAL

attempt_count は実行回数（初回 = 1）を数える。max_attempts=2 なら最大 2 回実行し、
2 回とも失敗すれば 3 回目は実行せずに FAILED_FINAL とする。
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 2


class ScenarioStatus(enum.Enum):
    """シナリオの実行状態。"""

    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_FINAL = "failed_final"


@dataclass(frozen=True)
class AttemptResult:
    """1 回の実行結果。

    Attributes:
        passed: 成功したか
        reason: 失敗理由（成功時は None）
    """

    passed: bool
    reason: Optional[str] = None

    @classmethod
    def ok(cls) -> AttemptResult:
        return cls(passed=True)

    @classmethod
    def fail(cls, reason: str) -> AttemptResult:
        return cls(passed=False, reason=reason)


@dataclass
class RetryState:
    """1 シナリオの再試行状態。シナリオごとに新規生成し、共有しない。

    Attributes:
        max_attempts: 最大実行回数
        attempt_count: 実行回数（実行開始時に加算、初回 = 1）
        last_failure_reason: 直近の失敗理由
        status: 現在の状態
        history: 各実行の結果
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    attempt_count: int = 0
    last_failure_reason: Optional[str] = None
    status: ScenarioStatus = ScenarioStatus.PENDING
    history: list[AttemptResult] = field(default_factory=list)

    @property
    def is_last_attempt(self) -> bool:
        """現在の実行が最後の実行かを返す。"""
        return self.attempt_count >= self.max_attempts

    @property
    def retries(self) -> int:
        """再試行した回数（実行回数 - 1）を返す。"""
        return max(self.attempt_count - 1, 0)

    @property
    def is_finished(self) -> bool:
        return self.status in (ScenarioStatus.PASSED, ScenarioStatus.FAILED_FINAL)


class RetryCoordinator:
    """シナリオ実行関数の再試行を制御する。

    max_attempts は生成時に固定され、実行中に変更できない。

    使用例::

        coordinator = RetryCoordinator(max_attempts=2)
        state = coordinator.run(execute, discard=lambda: registry.release())
    """

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts は 1 以上を指定してください: {max_attempts}")
        self._max_attempts = max_attempts

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def new_state(self) -> RetryState:
        """新しいシナリオ用の RetryState を生成する。"""
        return RetryState(max_attempts=self._max_attempts)

    def run(
        self,
        execute: Callable[[RetryState], AttemptResult],
        *,
        discard: Optional[Callable[[], None]] = None,
        on_final_failure: Optional[Callable[[RetryState], None]] = None,
        label: str = "scenario",
    ) -> RetryState:
        """実行関数を成功するか上限に達するまで実行する。

        失敗時の処理順:
          - 上限未満: discard（セッション破棄）→ 再実行
          - 上限到達: on_final_failure（成果物取得）→ FAILED_FINAL

        実行関数が送出した例外は失敗として扱い、str(exc) を失敗理由とする。

        Args:
            execute: 実行関数。現在の RetryState を受け取り AttemptResult を返す
            discard: 再試行前に呼ぶセッション破棄関数
            on_final_failure: 最終失敗時にセッション破棄前に呼ぶ関数
            label: ログ用のシナリオ名

        Returns:
            最終状態の RetryState（PASSED または FAILED_FINAL）
        """
        state = self.new_state()

        while True:
            state.attempt_count += 1
            state.status = ScenarioStatus.RUNNING
            logger.info("%s: 実行 %d/%d", label, state.attempt_count, state.max_attempts)

            try:
                result = execute(state)
            except Exception as exc:
                logger.error("%s: 実行中に例外が発生しました: %s", label, exc)
                result = AttemptResult.fail(format_reason(exc))

            state.history.append(result)

            if result.passed:
                state.status = ScenarioStatus.PASSED
                if state.attempt_count > 1:
                    logger.info("%s: %d 回目の実行で成功しました", label, state.attempt_count)
                return state

            state.last_failure_reason = result.reason

            if state.is_last_attempt:
                logger.error(
                    "%s: 失敗しました。実行回数の上限（%d）に達しました: %s",
                    label, state.max_attempts, result.reason,
                )
                if on_final_failure is not None:
                    _call_quietly(on_final_failure, state, label=label, hook="on_final_failure")
                state.status = ScenarioStatus.FAILED_FINAL
                return state

            state.status = ScenarioStatus.FAILED_RETRYABLE
            logger.warning(
                "%s: 失敗したため再実行します（%d/%d）: %s",
                label, state.attempt_count, state.max_attempts, result.reason,
            )
            if discard is not None:
                _call_quietly(discard, label=label, hook="discard")


def format_reason(exc: BaseException) -> str:
    """例外を失敗理由の文字列（"型名: メッセージ"）に変換する。"""
    message = str(exc)
    name = type(exc).__name__
    return f"{name}: {message}" if message else name


def _call_quietly(func: Callable[..., None], *args: object, label: str, hook: str) -> None:
    """フック関数を呼び出す。フックの失敗で元の失敗理由を上書きしない。"""
    try:
        func(*args)
    except Exception:
        logger.exception("%s: %s の実行中にエラーが発生しました", label, hook)
