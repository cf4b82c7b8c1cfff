"""
エラー定義: ハーネス全体で共有する例外階層

待機・操作・セッション起動・成果物取得の各失敗と、
ブラウザドライバ境界で発生する要素レベルのエラー種別を定義する。

エラー分類:
  - WaitTimeout: 待機条件がタイムアウトまでに満たされなかった
  - ActionFailed: ネイティブ操作とスクリプト操作の両方が失敗した
  - SessionStartFailed: ブラウザセッションを起動できなかった
  - ArtifactUnavailable: 失敗時成果物を取得できなかった（ベストエフォート）

ドライバ境界のエラー種別:
  - ElementNotFound: 要素が存在しない（一時的）
  - StaleElement: 要素が DOM から切り離された（一時的）
  - ElementNotInteractable: 要素は存在するが操作できない
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from .locator import Locator
    from .waits import WaitSpec


class BrhError(Exception):
    """brh の全例外の基底クラス。"""


# ---------------------------------------------------------------------------
# ドライバ境界のエラー種別
# ---------------------------------------------------------------------------

class DriverError(BrhError):
    """ブラウザドライバ操作の失敗。

    Playwright の例外はドライバ境界でこの階層に変換される。
    """


class ElementNotFound(DriverError):
    """ロケータに一致する要素が存在しない。"""


class StaleElement(DriverError):
    """要素が DOM から切り離された。"""


class ElementNotInteractable(DriverError):
    """要素は存在するが、不可視・無効・他要素に覆われている等で操作できない。"""


TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (ElementNotFound, StaleElement)
"""ポーリング中に無視して再試行する一時的なエラー種別。"""


# ---------------------------------------------------------------------------
# ハーネスのエラー分類
# ---------------------------------------------------------------------------

class WaitTimeout(BrhError):
    """待機条件がタイムアウトまでに満たされなかった。

    Attributes:
        spec: タイムアウトした待機仕様
        last_observed: 最後に観測した値、または最後に無視した一時エラー
    """

    def __init__(self, spec: WaitSpec, last_observed: Any = None) -> None:
        self.spec = spec
        self.last_observed = last_observed
        message = (
            f"'{spec.description}' が {spec.timeout:g} 秒以内に満たされませんでした"
        )
        if last_observed is not None:
            message += f"（最終観測: {last_observed!r}）"
        super().__init__(message)


class ActionFailed(BrhError):
    """操作がフォールバック後も完了できなかった。

    Attributes:
        action: 操作名（click 等）
        locator: 対象のロケータ
        cause: 最後に発生した例外
    """

    def __init__(
        self,
        action: str,
        locator: Optional[Locator],
        cause: Optional[BaseException] = None,
    ) -> None:
        self.action = action
        self.locator = locator
        self.cause = cause
        target = locator.describe() if locator is not None else "(なし)"
        message = f"操作 '{action}' に失敗しました: {target}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class SessionStartFailed(BrhError):
    """ブラウザセッションの起動に失敗した。"""


class ArtifactUnavailable(BrhError):
    """失敗時成果物を取得できなかった。"""
