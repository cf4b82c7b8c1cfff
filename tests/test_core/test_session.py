"""
Session テスト: ブラウザセッション管理の単体テスト

ドライバ生成関数をフェイクに差し替えてライフサイクルを検証する。
Playwright の起動処理（launch_playwright_driver）は sync_playwright をモックして検証する。
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from brh.config import BrowserKind, HarnessConfig
from brh.core.driver import PlaywrightDriver
from brh.core.errors import SessionStartFailed
from brh.core.session import Session, SessionSettings, SessionState, launch_playwright_driver

from conftest import DriverFactoryStub


# ---------------------------------------------------------------------------
# SessionState / SessionSettings のテスト
# ---------------------------------------------------------------------------

class TestSessionState:
    """SessionState 列挙型のテスト。"""

    def test_all_states_exist(self):
        """全状態が定義されていること。"""
        states = {s.value for s in SessionState}
        assert states == {"uninitialized", "starting", "ready", "closing", "closed"}


class TestSessionSettings:
    """SessionSettings のテスト。"""

    def test_from_config_converts_seconds_to_ms(self):
        """秒単位のタイムアウトがミリ秒に変換されること。"""
        config = HarnessConfig(
            browser="firefox", headless=True, implicit_wait=5, page_load_timeout=45,
            explicit_wait=12, poll_interval=0.25, viewport_width=1280, viewport_height=720,
        )
        settings = SessionSettings.from_config(config)
        assert settings.browser == BrowserKind.FIREFOX
        assert settings.headless is True
        assert settings.implicit_wait_ms == 5000
        assert settings.page_load_timeout_ms == 45000
        assert settings.explicit_wait == 12
        assert settings.poll_interval == 0.25
        assert (settings.viewport_width, settings.viewport_height) == (1280, 720)

    def test_frozen(self, settings):
        with pytest.raises(AttributeError):
            settings.headless = False  # type: ignore[misc]


# ---------------------------------------------------------------------------
# Session のテスト
# ---------------------------------------------------------------------------

class TestSession:
    """Session のライフサイクル管理テスト。"""

    def test_initial_state(self, settings, factory):
        """初期状態が UNINITIALIZED で、ドライバは取得できないこと。"""
        session = Session(settings, factory)
        assert session.state == SessionState.UNINITIALIZED
        assert session.is_ready is False
        with pytest.raises(RuntimeError):
            _ = session.driver

    def test_ids_are_unique(self, settings, factory):
        assert Session(settings, factory).id != Session(settings, factory).id

    def test_start_configures_driver(self, settings, factory):
        """start() でウィンドウ最大化とタイムアウト設定を行い READY になること。"""
        session = Session(settings, factory).start()
        driver = factory.drivers[0]
        assert session.state == SessionState.READY
        assert session.driver is driver
        assert driver.maximized == (1920, 1080)
        assert driver.timeouts == (10_000, 30_000)

    def test_start_twice_is_rejected(self, settings, factory):
        session = Session(settings, factory).start()
        with pytest.raises(RuntimeError):
            session.start()

    def test_factory_failure(self, settings):
        """ドライバ生成に失敗した場合、CLOSED になり SessionStartFailed を送出すること。"""
        session = Session(settings, DriverFactoryStub(fail_times=1))
        with pytest.raises(SessionStartFailed, match="chrome"):
            session.start()
        assert session.state == SessionState.CLOSED

    def test_configuration_failure_closes_driver(self, settings, factory):
        """初期設定に失敗した場合、生成済みのドライバを終了すること。"""

        def broken_factory(s):
            driver = factory(s)
            driver.set_timeouts = MagicMock(side_effect=RuntimeError("protocol error"))
            return driver

        session = Session(settings, broken_factory)
        with pytest.raises(SessionStartFailed):
            session.start()
        assert session.state == SessionState.CLOSED
        assert factory.drivers[0].closed == 1

    def test_close_releases_driver(self, settings, factory):
        session = Session(settings, factory).start()
        session.close()
        assert session.state == SessionState.CLOSED
        assert factory.drivers[0].closed == 1
        with pytest.raises(RuntimeError):
            _ = session.driver

    def test_close_is_idempotent(self, settings, factory):
        """2 回目以降の close() は何もしないこと。"""
        session = Session(settings, factory).start()
        session.close()
        session.close()
        assert factory.drivers[0].closed == 1

    def test_close_error_is_logged_not_raised(self, settings, factory, caplog):
        """終了時のエラーは送出せずにログに記録し、CLOSED にすること。"""
        session = Session(settings, factory).start()
        factory.drivers[0].close_error = RuntimeError("browser already gone")
        session.close()
        assert session.state == SessionState.CLOSED
        assert "browser already gone" in caplog.text

    def test_close_before_start(self, settings, factory):
        session = Session(settings, factory)
        session.close()
        assert session.state == SessionState.CLOSED
        assert factory.calls == 0


# ---------------------------------------------------------------------------
# launch_playwright_driver のテスト
# ---------------------------------------------------------------------------

def _make_mock_playwright() -> MagicMock:
    """モック Playwright を生成する。"""
    pw = MagicMock()
    for engine in (pw.chromium, pw.firefox, pw.webkit):
        browser = engine.launch.return_value
        context = browser.new_context.return_value
        context.new_page.return_value = MagicMock(name="page")
    return pw


class TestLaunchPlaywrightDriver:
    """ブラウザ種別ごとの起動関数のテスト。"""

    @pytest.mark.parametrize(
        ("kind", "engine", "channel"),
        [
            (BrowserKind.CHROME, "chromium", "chrome"),
            (BrowserKind.EDGE, "chromium", "msedge"),
            (BrowserKind.FIREFOX, "firefox", None),
            (BrowserKind.SAFARI, "webkit", None),
        ],
    )
    def test_selects_engine(self, kind, engine, channel):
        """ブラウザ種別に対応するエンジンとチャンネルで起動すること。"""
        pw = _make_mock_playwright()
        settings = SessionSettings(browser=kind, headless=True)
        with patch("playwright.sync_api.sync_playwright") as mock_sync:
            mock_sync.return_value.start.return_value = pw
            driver = launch_playwright_driver(settings)

        assert isinstance(driver, PlaywrightDriver)
        launch = getattr(pw, engine).launch
        launch.assert_called_once()
        assert launch.call_args.kwargs["headless"] is True
        assert launch.call_args.kwargs.get("channel") == channel

    def test_headed_chrome_uses_no_viewport(self):
        """headed の Chrome はウィンドウ最大化のため viewport を固定しないこと。"""
        pw = _make_mock_playwright()
        with patch("playwright.sync_api.sync_playwright") as mock_sync:
            mock_sync.return_value.start.return_value = pw
            launch_playwright_driver(SessionSettings(browser=BrowserKind.CHROME, headless=False))

        browser = pw.chromium.launch.return_value
        browser.new_context.assert_called_once_with(no_viewport=True)

    def test_headless_uses_viewport(self):
        pw = _make_mock_playwright()
        with patch("playwright.sync_api.sync_playwright") as mock_sync:
            mock_sync.return_value.start.return_value = pw
            launch_playwright_driver(
                SessionSettings(browser=BrowserKind.FIREFOX, headless=True, viewport_width=1280, viewport_height=720)
            )

        browser = pw.firefox.launch.return_value
        browser.new_context.assert_called_once_with(viewport={"width": 1280, "height": 720})

    def test_launch_failure_stops_playwright(self):
        """ブラウザ起動に失敗した場合、Playwright を停止してから送出すること。"""
        pw = _make_mock_playwright()
        pw.chromium.launch.side_effect = RuntimeError("Executable doesn't exist")
        with patch("playwright.sync_api.sync_playwright") as mock_sync:
            mock_sync.return_value.start.return_value = pw
            with pytest.raises(RuntimeError, match="Executable"):
                launch_playwright_driver(SessionSettings(browser=BrowserKind.CHROME))

        pw.stop.assert_called_once()
