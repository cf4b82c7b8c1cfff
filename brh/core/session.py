"""
Session: ブラウザセッションのライフサイクル管理

1 ワーカーが所有する 1 つのブラウザ自動操作接続と、その設定・終了処理を管理する。

主な機能:
  - SessionState: UNINITIALIZED → STARTING → READY → CLOSING → CLOSED
  - SessionSettings: セッション生成時に 1 回だけ解決される設定のスナップショット
  - Session: 起動（失敗時は生成済みリソースを破棄）と終了
  - launch_playwright_driver: ブラウザ種別ごとの起動関数による Playwright ドライバ生成
"""

from __future__ import annotations

import enum
import itertools
import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

from ..config import BrowserKind
from .errors import SessionStartFailed

if TYPE_CHECKING:
    from playwright.sync_api import Browser, Playwright

    from ..config import HarnessConfig
    from .driver import BrowserDriver

logger = logging.getLogger(__name__)

_session_ids = itertools.count(1)
_session_ids_lock = threading.Lock()


def _next_session_id() -> str:
    with _session_ids_lock:
        return f"session-{next(_session_ids)}"


# ---------------------------------------------------------------------------
# セッション状態・設定
# ---------------------------------------------------------------------------

class SessionState(enum.Enum):
    """ブラウザセッションの状態。"""

    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    READY = "ready"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(frozen=True)
class SessionSettings:
    """セッション生成時に確定する設定。シナリオ途中での変更はサポートしない。

    Attributes:
        browser: ブラウザ種別
        headless: ヘッドレスモード
        implicit_wait_ms: 暗黙的待機（ミリ秒）
        page_load_timeout_ms: ページ読み込みタイムアウト（ミリ秒）
        explicit_wait: 明示的待機（秒）
        poll_interval: ポーリング間隔（秒）
        viewport_width: 最大化できない場合のビューポート幅
        viewport_height: 最大化できない場合のビューポート高さ
    """

    browser: BrowserKind = BrowserKind.CHROME
    headless: bool = False
    implicit_wait_ms: int = 10_000
    page_load_timeout_ms: int = 30_000
    explicit_wait: float = 20.0
    poll_interval: float = 0.5
    viewport_width: int = 1920
    viewport_height: int = 1080

    @classmethod
    def from_config(cls, config: HarnessConfig) -> SessionSettings:
        return cls(
            browser=config.browser,
            headless=config.headless,
            implicit_wait_ms=int(config.implicit_wait * 1000),
            page_load_timeout_ms=int(config.page_load_timeout * 1000),
            explicit_wait=config.explicit_wait,
            poll_interval=config.poll_interval,
            viewport_width=config.viewport_width,
            viewport_height=config.viewport_height,
        )


DriverFactory = Callable[[SessionSettings], "BrowserDriver"]


# ---------------------------------------------------------------------------
# ブラウザ種別ごとの起動関数
# ---------------------------------------------------------------------------

_CHROMIUM_ARGS = [
    "--start-maximized",
    "--disable-notifications",
    "--disable-popup-blocking",
    "--disable-extensions",
    "--no-sandbox",
    "--disable-dev-shm-usage",
]


def _launch_chrome(pw: Playwright, settings: SessionSettings) -> Browser:
    return pw.chromium.launch(channel="chrome", headless=settings.headless, args=_CHROMIUM_ARGS)


def _launch_edge(pw: Playwright, settings: SessionSettings) -> Browser:
    return pw.chromium.launch(channel="msedge", headless=settings.headless, args=_CHROMIUM_ARGS)


def _launch_firefox(pw: Playwright, settings: SessionSettings) -> Browser:
    return pw.firefox.launch(headless=settings.headless)


def _launch_safari(pw: Playwright, settings: SessionSettings) -> Browser:
    return pw.webkit.launch(headless=settings.headless)


_LAUNCHERS: dict[BrowserKind, Callable[[Playwright, SessionSettings], Browser]] = {
    BrowserKind.CHROME: _launch_chrome,
    BrowserKind.FIREFOX: _launch_firefox,
    BrowserKind.EDGE: _launch_edge,
    BrowserKind.SAFARI: _launch_safari,
}

_WINDOW_MAXIMIZABLE = frozenset({BrowserKind.CHROME, BrowserKind.EDGE})


def launch_playwright_driver(settings: SessionSettings) -> BrowserDriver:
    """Playwright を起動し、設定に応じたブラウザの PlaywrightDriver を生成する。

    headed の Chromium 系はウィンドウ最大化（--start-maximized + no_viewport）、
    それ以外は設定のビューポートサイズを使用する。
    途中で失敗した場合は Playwright を停止してから例外を送出する。
    """
    from playwright.sync_api import sync_playwright

    from .driver import PlaywrightDriver

    pw = sync_playwright().start()
    try:
        browser = _LAUNCHERS[settings.browser](pw, settings)
        if not settings.headless and settings.browser in _WINDOW_MAXIMIZABLE:
            context = browser.new_context(no_viewport=True)
        else:
            context = browser.new_context(
                viewport={"width": settings.viewport_width, "height": settings.viewport_height},
            )
        page = context.new_page()
    except Exception:
        pw.stop()
        raise
    return PlaywrightDriver(pw, browser, context, page)


# ---------------------------------------------------------------------------
# Session 本体
# ---------------------------------------------------------------------------

class Session:
    """1 ワーカーが所有するブラウザセッション。

    内部状態はロックで保護しない。セッションを所有するワーカー以外から操作してはならない。
    """

    def __init__(
        self,
        settings: SessionSettings,
        driver_factory: Optional[DriverFactory] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.id = session_id or _next_session_id()
        self.settings = settings
        self._driver_factory = driver_factory or launch_playwright_driver
        self._driver: Optional[BrowserDriver] = None
        self._state = SessionState.UNINITIALIZED

    def __repr__(self) -> str:
        return f"Session(id={self.id!r}, browser={self.settings.browser.value}, state={self._state.value})"

    @property
    def state(self) -> SessionState:
        """現在のセッション状態を返す。"""
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == SessionState.READY

    @property
    def driver(self) -> BrowserDriver:
        """ブラウザドライバを返す。

        Raises:
            RuntimeError: セッションが READY でない場合
        """
        if self._state != SessionState.READY or self._driver is None:
            raise RuntimeError(f"セッション {self.id} は利用可能な状態ではありません（{self._state.value}）")
        return self._driver

    def start(self) -> Session:
        """ドライバを生成し、ウィンドウ最大化とタイムアウト設定を行って READY にする。

        失敗した場合は生成済みのドライバを破棄して CLOSED にする。

        Raises:
            RuntimeError: UNINITIALIZED 以外の状態で呼ばれた場合
            SessionStartFailed: ドライバの生成または初期設定に失敗した場合
        """
        if self._state != SessionState.UNINITIALIZED:
            raise RuntimeError(f"セッション {self.id} は既に開始されています（{self._state.value}）")

        self._state = SessionState.STARTING
        logger.info(
            "セッションを起動しています: %s (browser=%s, headless=%s)",
            self.id, self.settings.browser.value, self.settings.headless,
        )

        driver: Optional[BrowserDriver] = None
        try:
            driver = self._driver_factory(self.settings)
            driver.maximize(self.settings.viewport_width, self.settings.viewport_height)
            driver.set_timeouts(self.settings.implicit_wait_ms, self.settings.page_load_timeout_ms)
        except Exception as exc:
            logger.exception("セッションの起動に失敗しました: %s", self.id)
            if driver is not None:
                try:
                    driver.close()
                except Exception as close_exc:
                    logger.warning("起動失敗後のドライバ終了でエラー: %s", close_exc)
            self._state = SessionState.CLOSED
            raise SessionStartFailed(
                f"{self.settings.browser.value} セッションを起動できませんでした: {exc}"
            ) from exc

        self._driver = driver
        self._state = SessionState.READY
        logger.info("セッションを起動しました: %s", self.id)
        return self

    def close(self) -> None:
        """ドライバを終了し、CLOSED にする。CLOSING / CLOSED では何もしない。

        終了時のエラーはログに記録し、送出しない。
        """
        if self._state in (SessionState.CLOSING, SessionState.CLOSED):
            return

        self._state = SessionState.CLOSING
        logger.info("セッションを終了しています: %s", self.id)

        try:
            if self._driver is not None:
                self._driver.close()
        except Exception:
            logger.exception("セッションの終了中にエラーが発生しました: %s", self.id)
        finally:
            self._driver = None
            self._state = SessionState.CLOSED
            logger.info("セッションを終了しました: %s", self.id)
