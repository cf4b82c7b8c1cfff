"""
待機エンジン: ポーリングによる明示的待機

非同期に変化する UI 状態を、同期的な成否判定に変換する。
呼び出しスレッドをブロックし、条件関数を一定間隔で評価する。

主な機能:
  - WaitSpec: 待機仕様（説明、タイムアウト、ポーリング間隔、無視する一時エラー）
  - NotReady / NOT_READY: 条件未達を表す値
  - wait_until: ポーリングループ本体
  - visibility_of / clickable / url_contains 等: よく使う条件関数のファクトリ
  - element_count_is / window_count_is / js_condition / dialog_shown 等: 件数・スクリプト・ダイアログの条件

タイムアウト規則:
  - timeout <= 0 の場合、条件関数を一度も呼ばずに WaitTimeout を送出する
  - 次回ポーリング時刻が期限を超える場合はそこで打ち切る
    （poll_interval > timeout なら 1 回だけ評価する）
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional, TypeVar

from .errors import TRANSIENT_ERRORS, ElementNotFound, StaleElement, WaitTimeout

if TYPE_CHECKING:
    from .driver import BrowserDriver
    from .locator import Locator

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_POLL_INTERVAL = 0.5
"""デフォルトのポーリング間隔（秒）。"""


# ---------------------------------------------------------------------------
# 条件未達を表す値
# ---------------------------------------------------------------------------

class NotReady:
    """条件未達を表す値。

    observed に観測した状態（現在の URL 等）を入れて返すと、
    タイムアウト時の WaitTimeout.last_observed に反映される。
    """

    __slots__ = ("observed",)

    def __init__(self, observed: Any = None) -> None:
        self.observed = observed

    def __repr__(self) -> str:
        if self.observed is None:
            return "NOT_READY"
        return f"NotReady({self.observed!r})"


NOT_READY = NotReady()


# ---------------------------------------------------------------------------
# 待機仕様
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WaitSpec:
    """1 回の待機の仕様。呼び出しごとに生成し、保持しない。

    Attributes:
        description: 待機内容の説明（ログ・エラーメッセージ用）
        timeout: タイムアウト（秒）
        poll_interval: ポーリング間隔（秒、デフォルト: 0.5）
        ignored: 未達として扱う一時エラーの型
    """

    description: str
    timeout: float
    poll_interval: float = DEFAULT_POLL_INTERVAL
    ignored: tuple[type[BaseException], ...] = TRANSIENT_ERRORS


# ---------------------------------------------------------------------------
# ポーリングループ
# ---------------------------------------------------------------------------

def wait_until(
    spec: WaitSpec,
    check: Callable[[], Any],
    *,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """check が NotReady 以外を返すまでポーリングし、その値を返す。

    spec.ignored に該当する例外は未達として扱い、それ以外の例外は即座に送出する。

    Args:
        spec: 待機仕様
        check: 条件関数。未達なら NotReady を返す
        clock: 経過時間計測用の時計（テスト用に差し替え可能）
        sleep: ポーリング間の待機関数（テスト用に差し替え可能）

    Returns:
        check が最初に返した NotReady 以外の値

    Raises:
        WaitTimeout: タイムアウトまでに条件が満たされなかった場合
    """
    if spec.timeout <= 0:
        raise WaitTimeout(spec)

    start = clock()
    deadline = start + spec.timeout
    last_observed: Any = None
    polls = 0

    while True:
        polls += 1
        try:
            value = check()
        except spec.ignored as exc:
            last_observed = exc
            logger.debug("'%s' ポーリング %d 回目: 一時エラーを無視 (%s)", spec.description, polls, exc)
        else:
            if not isinstance(value, NotReady):
                logger.debug(
                    "'%s' が満たされました（%d 回目, %.0fms 経過）",
                    spec.description, polls, (clock() - start) * 1000,
                )
                return value
            if value.observed is not None:
                last_observed = value.observed

        # 次回ポーリングが期限を超える場合は打ち切り
        if clock() + spec.poll_interval > deadline:
            logger.debug("'%s' がタイムアウトしました（%d 回評価）", spec.description, polls)
            raise WaitTimeout(spec, last_observed)

        sleep(spec.poll_interval)


def until_true(predicate: Callable[[], bool]) -> Callable[[], Any]:
    """bool を返す述語を wait_until 用の条件関数に変換する。"""

    def _check() -> Any:
        return True if predicate() else NOT_READY

    return _check


# ---------------------------------------------------------------------------
# 条件関数ファクトリ
# ---------------------------------------------------------------------------

def presence_of(driver: BrowserDriver, locator: Locator) -> Callable[[], Any]:
    """要素が DOM に存在すれば要素を返す。"""

    def _check() -> Any:
        return driver.find_element(locator)

    return _check


def visibility_of(driver: BrowserDriver, locator: Locator) -> Callable[[], Any]:
    """要素が可視であれば要素を返す。"""

    def _check() -> Any:
        element = driver.find_element(locator)
        return element if driver.is_displayed(element) else NotReady("hidden")

    return _check


def clickable(driver: BrowserDriver, locator: Locator) -> Callable[[], Any]:
    """要素が可視かつ有効であれば要素を返す。"""

    def _check() -> Any:
        element = driver.find_element(locator)
        if not driver.is_displayed(element):
            return NotReady("hidden")
        if not driver.is_enabled(element):
            return NotReady("disabled")
        return element

    return _check


def invisibility_of(driver: BrowserDriver, locator: Locator) -> Callable[[], Any]:
    """要素が存在しない、または不可視であれば True を返す。"""

    def _check() -> Any:
        try:
            element = driver.find_element(locator)
            visible = driver.is_displayed(element)
        except (ElementNotFound, StaleElement):
            return True
        return NotReady("visible") if visible else True

    return _check


def text_present(driver: BrowserDriver, locator: Locator, text: str) -> Callable[[], Any]:
    """要素のテキストに text が含まれていれば要素を返す。"""

    def _check() -> Any:
        element = driver.find_element(locator)
        actual = driver.get_text(element)
        return element if text in actual else NotReady(actual)

    return _check


def attribute_equals(
    driver: BrowserDriver, locator: Locator, name: str, value: str
) -> Callable[[], Any]:
    """要素の属性値が value に一致すれば要素を返す。"""

    def _check() -> Any:
        element = driver.find_element(locator)
        actual = driver.get_attribute(element, name)
        return element if actual == value else NotReady(actual)

    return _check


def url_contains(driver: BrowserDriver, token: str) -> Callable[[], Any]:
    """現在の URL に token が含まれていれば URL を返す。"""

    def _check() -> Any:
        url = driver.current_url()
        return url if token in url else NotReady(url)

    return _check


def url_is(driver: BrowserDriver, expected: str) -> Callable[[], Any]:
    """現在の URL が expected に一致すれば URL を返す。"""

    def _check() -> Any:
        url = driver.current_url()
        return url if url == expected else NotReady(url)

    return _check


def title_contains(driver: BrowserDriver, token: str) -> Callable[[], Any]:
    """タイトルに token が含まれていればタイトルを返す。"""

    def _check() -> Any:
        title = driver.title()
        return title if token in title else NotReady(title)

    return _check


def title_is(driver: BrowserDriver, expected: str) -> Callable[[], Any]:
    """タイトルが expected に一致すればタイトルを返す。"""

    def _check() -> Any:
        title = driver.title()
        return title if title == expected else NotReady(title)

    return _check


def document_ready(driver: BrowserDriver) -> Callable[[], Any]:
    """document.readyState が complete になれば True を返す。"""

    def _check() -> Any:
        state = driver.execute_script("() => document.readyState")
        return True if state == "complete" else NotReady(state)

    return _check


def enabled_of(driver: BrowserDriver, locator: Locator) -> Callable[[], Any]:
    """要素が有効であれば要素を返す（可視性は問わない）。"""

    def _check() -> Any:
        element = driver.find_element(locator)
        return element if driver.is_enabled(element) else NotReady("disabled")

    return _check


def disabled_of(driver: BrowserDriver, locator: Locator) -> Callable[[], Any]:
    """要素が無効であれば要素を返す。"""

    def _check() -> Any:
        element = driver.find_element(locator)
        return NotReady("enabled") if driver.is_enabled(element) else element

    return _check


def selection_state_of(driver: BrowserDriver, locator: Locator, selected: bool) -> Callable[[], Any]:
    """要素の選択状態が selected に一致すれば要素を返す。"""

    def _check() -> Any:
        element = driver.find_element(locator)
        actual = driver.is_selected(element)
        return element if actual == selected else NotReady("selected" if actual else "not selected")

    return _check


def css_value_is(driver: BrowserDriver, locator: Locator, name: str, value: str) -> Callable[[], Any]:
    """要素の算出スタイル name が value に一致すれば要素を返す。"""

    def _check() -> Any:
        element = driver.find_element(locator)
        actual = driver.css_value(element, name)
        return element if actual == value else NotReady(actual)

    return _check


def element_count_is(driver: BrowserDriver, locator: Locator, expected: int) -> Callable[[], Any]:
    """一致する要素数が expected であれば要素のリストを返す。"""

    def _check() -> Any:
        elements = driver.find_elements(locator)
        return elements if len(elements) == expected else NotReady(len(elements))

    return _check


def element_count_more_than(driver: BrowserDriver, locator: Locator, minimum: int) -> Callable[[], Any]:
    """一致する要素数が minimum を超えれば要素のリストを返す。"""

    def _check() -> Any:
        elements = driver.find_elements(locator)
        return elements if len(elements) > minimum else NotReady(len(elements))

    return _check


def window_count_is(driver: BrowserDriver, expected: int) -> Callable[[], Any]:
    """ウィンドウ（タブ）数が expected であればハンドルのリストを返す。"""

    def _check() -> Any:
        handles = driver.window_handles()
        return handles if len(handles) == expected else NotReady(len(handles))

    return _check


def js_condition(driver: BrowserDriver, script: str) -> Callable[[], Any]:
    """JavaScript の評価結果が真であればその値を返す。

    script は引数なしの関数式で渡す（例: "() => window.appReady === true"）。
    """

    def _check() -> Any:
        result = driver.execute_script(script)
        return result if result else NotReady(result)

    return _check


_JS_AJAX_IDLE = "() => typeof window.jQuery === 'undefined' || window.jQuery.active === 0"


def ajax_complete(driver: BrowserDriver) -> Callable[[], Any]:
    """jQuery の未完了リクエストが 0 になれば True を返す。jQuery がなければ即座に True。"""
    return js_condition(driver, _JS_AJAX_IDLE)


def dialog_shown(driver: BrowserDriver, seen: int = 0) -> Callable[[], Any]:
    """seen 件目より後のダイアログが応答済みになれば、最新のメッセージを返す。"""

    def _check() -> Any:
        messages = driver.dialog_messages()
        return messages[-1] if len(messages) > seen else NOT_READY

    return _check


def build_spec(
    description: str,
    timeout: float,
    poll_interval: Optional[float] = None,
    ignored: Optional[tuple[type[BaseException], ...]] = None,
) -> WaitSpec:
    """省略された項目をデフォルト値で補って WaitSpec を生成する。"""
    return WaitSpec(
        description=description,
        timeout=timeout,
        poll_interval=DEFAULT_POLL_INTERVAL if poll_interval is None else poll_interval,
        ignored=TRANSIENT_ERRORS if ignored is None else ignored,
    )
