"""
テスト共通フィクスチャ・フェイク定義

実際のブラウザは起動しない。BrowserDriver Protocol を満たすフェイクドライバと、
待機エンジンに渡す仮想時計を全テストモジュールで共有する。
"""

from __future__ import annotations

from typing import Any, Optional

import pytest
from hypothesis import strategies as st

from brh.config import HarnessConfig
from brh.core.errors import ElementNotFound
from brh.core.locator import Locator
from brh.core.session import SessionSettings


# ---------------------------------------------------------------------------
# 仮想時計
# ---------------------------------------------------------------------------

class FakeClock:
    """wait_until に渡す仮想時計。sleep() で時刻を進める。"""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# ---------------------------------------------------------------------------
# フェイクドライバ
# ---------------------------------------------------------------------------

class FakeElement:
    """フェイクドライバが返す要素。"""

    def __init__(
        self,
        name: str,
        *,
        displayed: bool = True,
        enabled: bool = True,
        selected: bool = False,
        text: str = "",
        attrs: Optional[dict[str, str]] = None,
        options: Optional[list[str]] = None,
        styles: Optional[dict[str, str]] = None,
    ) -> None:
        self.name = name
        self.displayed = displayed
        self.enabled = enabled
        self.selected = selected
        self.text = text
        self.value = ""
        self.attrs = attrs or {}
        self.options = options or []
        self.styles = styles or {}
        self.clicks = 0

    def __repr__(self) -> str:
        return f"FakeElement({self.name!r})"


class FakeDriver:
    """BrowserDriver Protocol を満たすフェイク。

    elements に登録したロケータだけが見つかる。複数件は groups に登録する。
    click_errors / script_errors に例外を積むと、呼び出しごとに先頭から送出する。
    attrs["dialog"] を持つ要素をクリックするとダイアログが表示され、
    指定済みの応答が dialog_log に記録される。
    """

    def __init__(self) -> None:
        self.elements: dict[Locator, FakeElement] = {}
        self.groups: dict[Locator, list[FakeElement]] = {}
        self.script_results: dict[str, Any] = {}
        self.dialog_response: tuple[bool, Optional[str]] = (False, None)
        self.dialog_log: list[tuple[str, bool, Optional[str]]] = []
        self.url = "about:blank"
        self.page_title = ""
        self.ready_state = "complete"
        self.ajax_active = 0
        self.click_errors: list[Exception] = []
        self.script_errors: list[Exception] = []
        self.find_errors: list[Exception] = []
        self.calls: list[tuple[Any, ...]] = []
        self.scripts: list[tuple[str, Any]] = []
        self.opened: list[str] = []
        self.windows: list[str] = ["main"]
        self.window_index = 0
        self.context: Any = None
        self.screenshot_data = b"\x89PNG\r\n\x1a\nfake"
        self.source = "<html><body>fake</body></html>"
        self.screenshot_error: Optional[Exception] = None
        self.close_error: Optional[Exception] = None
        self.maximized: Optional[tuple[int, int]] = None
        self.timeouts: Optional[tuple[int, int]] = None
        self.closed = 0

    # ----- 登録ヘルパー -----

    def add(self, locator: Locator, **kwargs: Any) -> FakeElement:
        element = FakeElement(locator.value, **kwargs)
        self.elements[locator] = element
        return element

    # ----- ナビゲーション -----

    def open(self, url: str) -> None:
        self.opened.append(url)
        self.url = url

    def current_url(self) -> str:
        return self.url

    def title(self) -> str:
        if self.windows and self.window_index < len(self.windows) and self.page_title == "":
            return self.windows[self.window_index]
        return self.page_title

    def page_source(self) -> str:
        return self.source

    def screenshot(self) -> bytes:
        if self.screenshot_error is not None:
            raise self.screenshot_error
        return self.screenshot_data

    # ----- 要素検索 -----

    def find_element(self, locator: Locator) -> FakeElement:
        if self.find_errors:
            raise self.find_errors.pop(0)
        try:
            return self.elements[locator]
        except KeyError:
            raise ElementNotFound(f"要素が見つかりません: {locator}") from None

    def find_elements(self, locator: Locator) -> list[FakeElement]:
        if locator in self.groups:
            return list(self.groups[locator])
        element = self.elements.get(locator)
        return [element] if element is not None else []

    # ----- 要素操作 -----

    def click(self, element: FakeElement) -> None:
        self.calls.append(("click", element.name))
        if self.click_errors:
            raise self.click_errors.pop(0)
        element.clicks += 1
        if element.attrs.get("toggles") == "selected":
            element.selected = not element.selected
        if "dialog" in element.attrs:
            self.show_dialog(element.attrs["dialog"])

    def show_dialog(self, message: str) -> None:
        accept, prompt_text = self.dialog_response
        self.dialog_response = (False, None)
        self.dialog_log.append((message, accept, prompt_text))

    def drag_and_drop(self, source: FakeElement, target: FakeElement) -> None:
        self.calls.append(("drag_and_drop", source.name, target.name))

    def double_click(self, element: FakeElement) -> None:
        self.calls.append(("double_click", element.name))

    def right_click(self, element: FakeElement) -> None:
        self.calls.append(("right_click", element.name))

    def hover(self, element: FakeElement) -> None:
        self.calls.append(("hover", element.name))

    def clear(self, element: FakeElement) -> None:
        self.calls.append(("clear", element.name))
        element.value = ""

    def send_keys(self, element: FakeElement, text: str) -> None:
        self.calls.append(("send_keys", element.name, text))
        element.value += text

    def set_input_files(self, element: FakeElement, path: str) -> None:
        self.calls.append(("set_input_files", element.name, path))

    def select_option(self, element: FakeElement, *, label=None, value=None, index=None) -> None:
        self.calls.append(("select_option", element.name, label, value, index))

    def option_texts(self, element: FakeElement) -> list[str]:
        return list(element.options)

    def get_attribute(self, element: FakeElement, name: str) -> Optional[str]:
        return element.attrs.get(name)

    def get_text(self, element: FakeElement) -> str:
        return element.text

    def css_value(self, element: FakeElement, name: str) -> str:
        return element.styles.get(name, "")

    def is_displayed(self, element: FakeElement) -> bool:
        return element.displayed

    def is_enabled(self, element: FakeElement) -> bool:
        return element.enabled

    def is_selected(self, element: FakeElement) -> bool:
        return element.selected

    def execute_script(self, script: str, element: Any = None, arg: Any = None) -> Any:
        self.scripts.append((script, element))
        if self.script_errors:
            raise self.script_errors.pop(0)
        if script in self.script_results:
            return self.script_results[script]
        if "readyState" in script:
            return self.ready_state
        if "jQuery" in script:
            return self.ajax_active == 0
        if script == "el => el.click()" and element is not None:
            element.clicks += 1
        return None

    # ----- コンテキスト・ウィンドウ -----

    def switch_context(self, target: Any = None) -> None:
        self.context = target

    def window_handles(self) -> list[int]:
        return list(range(len(self.windows)))

    def current_window(self) -> int:
        return self.window_index

    def switch_window(self, handle: int) -> None:
        self.window_index = handle

    def close_window(self) -> None:
        self.windows.pop(self.window_index)
        self.window_index = 0

    # ----- ダイアログ -----

    def set_dialog_response(self, accept: bool, prompt_text: Optional[str] = None) -> None:
        self.dialog_response = (accept, prompt_text)

    def dialog_messages(self) -> list[str]:
        return [message for message, _, _ in self.dialog_log]

    # ----- ライフサイクル -----

    def maximize(self, width: int, height: int) -> None:
        self.maximized = (width, height)

    def set_timeouts(self, implicit_wait_ms: int, page_load_timeout_ms: int) -> None:
        self.timeouts = (implicit_wait_ms, page_load_timeout_ms)

    def close(self) -> None:
        self.closed += 1
        if self.close_error is not None:
            raise self.close_error


class DriverFactoryStub:
    """生成したフェイクドライバを記録するドライバ生成関数。"""

    def __init__(self, fail_times: int = 0) -> None:
        self.drivers: list[FakeDriver] = []
        self.fail_times = fail_times
        self.calls = 0

    def __call__(self, settings: SessionSettings) -> FakeDriver:
        self.calls += 1
        if self.calls <= self.fail_times:
            raise RuntimeError("ブラウザが見つかりません")
        driver = FakeDriver()
        self.drivers.append(driver)
        return driver


# ---------------------------------------------------------------------------
# pytest フィクスチャ
# ---------------------------------------------------------------------------

@pytest.fixture
def clock() -> FakeClock:
    """仮想時計を提供する。"""
    return FakeClock()


@pytest.fixture
def driver() -> FakeDriver:
    """フェイクドライバを提供する。"""
    return FakeDriver()


@pytest.fixture
def factory() -> DriverFactoryStub:
    """フェイクドライバの生成関数を提供する。"""
    return DriverFactoryStub()


@pytest.fixture
def settings() -> SessionSettings:
    """テスト用のセッション設定を提供する。"""
    return SessionSettings(headless=True, explicit_wait=2.0, poll_interval=0.1)


@pytest.fixture
def harness_config(tmp_path) -> HarnessConfig:
    """テスト用のハーネス設定を提供する。"""
    return HarnessConfig(
        headless=True,
        explicit_wait=0.3,
        poll_interval=0.05,
        workers=2,
        base_url="http://localhost:3000",
        artifacts_dir=tmp_path / "artifacts",
    )


# ---------------------------------------------------------------------------
# Hypothesis ストラテジー
# ---------------------------------------------------------------------------

def make_locator_strategy():
    """Locator を生成する Hypothesis ストラテジー。"""
    return st.builds(
        Locator,
        by=st.sampled_from(["id", "class", "css", "xpath", "text", "testId", "name"]),
        value=st.from_regex(r"[a-z][a-z0-9\-]{0,20}", fullmatch=True),
    )
