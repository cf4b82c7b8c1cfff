"""
ActionFacade: page object から使う UI 操作 API

意図したユーザー操作を、待機エンジンを介して現在の UI 状態への確実な操作に変換する。
一時的な不安定さ（描画待ち、要素の差し替え、クライアントサイドルーティングの競合）を吸収する。

主な機能:
  - click: 操作可能待機 → ネイティブクリック → 操作不可ならスクリプトクリックへ 1 回だけフォールバック
  - navigate_and_expect: 操作後の URL 遷移待機 → タイムアウト時は直接遷移へ縮退
  - enter_text: 可視待機 → クリア → 入力（再試行なし）
  - is_displayed_safe: 例外を送出しない表示判定
  - select / check / scroll / frame・window 切替などの補助操作
  - accept_alert / dismiss_alert: ダイアログを開く操作と応答を 1 組で実行
  - wait_for_element_count / wait_for_js 等: 件数・スクリプト条件の待機

いずれの操作もテスト対象アプリケーションに対して冪等ではない。
再試行時の重複作用はテスト対象側で吸収されている前提とする。
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional

from .errors import (
    ActionFailed,
    DriverError,
    ElementNotFound,
    ElementNotInteractable,
    StaleElement,
    WaitTimeout,
)
from .waits import (
    DEFAULT_POLL_INTERVAL,
    ajax_complete,
    build_spec,
    clickable,
    css_value_is,
    dialog_shown,
    disabled_of,
    element_count_is,
    element_count_more_than,
    enabled_of,
    invisibility_of,
    js_condition,
    presence_of,
    selection_state_of,
    text_present,
    url_contains,
    visibility_of,
    wait_until,
    window_count_is,
)

if TYPE_CHECKING:
    from ..config import NavigationFallback
    from .driver import BrowserDriver
    from .locator import Locator
    from .session import Session

logger = logging.getLogger(__name__)

_JS_CLICK = "el => el.click()"
_JS_SCROLL_INTO_VIEW = "el => el.scrollIntoView(true)"
_JS_SCROLL_TO_BOTTOM = "() => window.scrollTo(0, document.body.scrollHeight)"
_JS_SCROLL_TO_TOP = "() => window.scrollTo(0, 0)"


@dataclass(frozen=True)
class FallbackRecord:
    """フォールバックの発生記録。

    Attributes:
        action: フォールバックした操作（click / navigate）
        target: 対象（ロケータの説明、または遷移先 URL）
        reason: フォールバックの原因
    """

    action: str
    target: str
    reason: str


class ActionFacade:
    """待機エンジンの上に構築された UI 操作 API。

    1 つのセッション（ドライバ）に束縛され、そのセッションを所有する
    ワーカースレッドからのみ呼び出される。

    使用例::

        actions = ActionFacade.for_session(session)
        actions.click(Locator.by_id("checkout"))
    """

    def __init__(
        self,
        driver: BrowserDriver,
        explicit_wait: float = 20.0,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """ActionFacade を初期化する。

        Args:
            driver: 操作対象のブラウザドライバ
            explicit_wait: 明示的待機のデフォルトタイムアウト（秒）
            poll_interval: ポーリング間隔（秒）
            clock: 待機エンジンに渡す時計
            sleep: 待機エンジンに渡す待機関数
        """
        self._driver = driver
        self._explicit_wait = explicit_wait
        self._poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep
        self.fallbacks: list[FallbackRecord] = []

    @classmethod
    def for_session(cls, session: Session) -> ActionFacade:
        """セッションの設定（明示的待機・ポーリング間隔）で ActionFacade を生成する。"""
        return cls(
            session.driver,
            explicit_wait=session.settings.explicit_wait,
            poll_interval=session.settings.poll_interval,
        )

    @property
    def driver(self) -> BrowserDriver:
        return self._driver

    # -------------------------------------------------------------------
    # 待機
    # -------------------------------------------------------------------

    def wait(
        self,
        check: Callable[[], Any],
        description: str,
        timeout: Optional[float] = None,
    ) -> Any:
        """任意の条件関数で明示的待機を行う。

        Args:
            check: 条件関数（未達なら NotReady を返す）
            description: 待機内容の説明
            timeout: タイムアウト（秒）。None で explicit_wait を使用

        Returns:
            条件関数が返した値

        Raises:
            WaitTimeout: タイムアウトまでに条件が満たされなかった場合
        """
        spec = build_spec(
            description,
            self._explicit_wait if timeout is None else timeout,
            self._poll_interval,
        )
        return wait_until(spec, check, clock=self._clock, sleep=self._sleep)

    def wait_for_visible(self, locator: Locator, timeout: Optional[float] = None) -> Any:
        return self.wait(visibility_of(self._driver, locator), f"visible {locator}", timeout)

    def wait_for_clickable(self, locator: Locator, timeout: Optional[float] = None) -> Any:
        return self.wait(clickable(self._driver, locator), f"clickable {locator}", timeout)

    def wait_for_presence(self, locator: Locator, timeout: Optional[float] = None) -> Any:
        return self.wait(presence_of(self._driver, locator), f"present {locator}", timeout)

    def wait_for_invisibility(self, locator: Locator, timeout: Optional[float] = None) -> None:
        self.wait(invisibility_of(self._driver, locator), f"invisible {locator}", timeout)

    def wait_for_text(self, locator: Locator, text: str, timeout: Optional[float] = None) -> Any:
        return self.wait(
            text_present(self._driver, locator, text),
            f"text {text!r} in {locator}",
            timeout,
        )

    def wait_for_url(self, token: str, timeout: Optional[float] = None) -> str:
        return self.wait(url_contains(self._driver, token), f"url contains {token!r}", timeout)

    def wait_for_enabled(self, locator: Locator, timeout: Optional[float] = None) -> Any:
        return self.wait(enabled_of(self._driver, locator), f"enabled {locator}", timeout)

    def wait_for_disabled(self, locator: Locator, timeout: Optional[float] = None) -> Any:
        return self.wait(disabled_of(self._driver, locator), f"disabled {locator}", timeout)

    def wait_for_selected(self, locator: Locator, timeout: Optional[float] = None) -> Any:
        return self.wait(selection_state_of(self._driver, locator, True), f"selected {locator}", timeout)

    def wait_for_not_selected(self, locator: Locator, timeout: Optional[float] = None) -> Any:
        return self.wait(
            selection_state_of(self._driver, locator, False), f"not selected {locator}", timeout,
        )

    def wait_for_css_value(
        self, locator: Locator, name: str, value: str, timeout: Optional[float] = None
    ) -> Any:
        return self.wait(
            css_value_is(self._driver, locator, name, value),
            f"css {name}={value!r} on {locator}",
            timeout,
        )

    def wait_for_element_count(
        self, locator: Locator, expected: int, timeout: Optional[float] = None
    ) -> list[Any]:
        return self.wait(
            element_count_is(self._driver, locator, expected),
            f"{expected} elements of {locator}",
            timeout,
        )

    def wait_for_element_count_greater_than(
        self, locator: Locator, minimum: int, timeout: Optional[float] = None
    ) -> list[Any]:
        return self.wait(
            element_count_more_than(self._driver, locator, minimum),
            f"more than {minimum} elements of {locator}",
            timeout,
        )

    def wait_for_window_count(self, expected: int, timeout: Optional[float] = None) -> list[int]:
        return self.wait(window_count_is(self._driver, expected), f"{expected} windows", timeout)

    def wait_for_js(self, script: str, timeout: Optional[float] = None) -> Any:
        """JavaScript の条件式が真になるまで待機し、評価結果を返す。"""
        return self.wait(js_condition(self._driver, script), f"js {script!r}", timeout)

    def wait_for_ajax_complete(self, timeout: Optional[float] = None) -> bool:
        """jQuery の通信完了を待機する。

        ページが jQuery を使っていない場合は即座に True を返す。
        タイムアウトしても送出せず、警告ログを出して False を返す。
        """
        try:
            self.wait(ajax_complete(self._driver), "ajax complete", timeout)
        except WaitTimeout as exc:
            logger.warning("AJAX 通信の完了を確認できませんでした: %s", exc)
            return False
        return True

    # -------------------------------------------------------------------
    # クリック
    # -------------------------------------------------------------------

    def click(self, locator: Locator) -> None:
        """要素をクリックする。

        可視かつ有効になるまで待機してからネイティブクリックする。
        ネイティブクリックが ElementNotInteractable で失敗した場合のみ、
        スクリプトによるクリックへ 1 回だけフォールバックする。

        Raises:
            WaitTimeout: 要素が操作可能にならなかった場合
            ActionFailed: フォールバックも失敗した場合
        """
        element = self.wait_for_clickable(locator)
        try:
            self._driver.click(element)
            logger.debug("click: %s", locator)
            return
        except ElementNotInteractable as exc:
            logger.warning(
                "ネイティブクリックが失敗したためスクリプトクリックへフォールバックします: %s (%s)",
                locator, exc,
            )
            self.fallbacks.append(FallbackRecord("click", locator.describe(), str(exc)))

        try:
            self._driver.execute_script(_JS_CLICK, element)
        except DriverError as exc:
            raise ActionFailed("click", locator, exc) from exc
        logger.info("スクリプトクリックで成功しました: %s", locator)

    def js_click(self, locator: Locator) -> None:
        """スクリプトで直接クリックする（待機なし）。"""
        element = self._driver.find_element(locator)
        self._driver.execute_script(_JS_CLICK, element)

    def double_click(self, locator: Locator) -> None:
        self._driver.double_click(self.wait_for_visible(locator))

    def right_click(self, locator: Locator) -> None:
        self._driver.right_click(self.wait_for_visible(locator))

    def hover(self, locator: Locator) -> None:
        self._driver.hover(self.wait_for_visible(locator))

    def drag_and_drop(self, source: Locator, target: Locator) -> None:
        """source の要素を target の要素へドラッグ＆ドロップする。"""
        self._driver.drag_and_drop(self.wait_for_visible(source), self.wait_for_visible(target))

    # -------------------------------------------------------------------
    # ダイアログ
    # -------------------------------------------------------------------

    def accept_alert(
        self,
        trigger: Callable[[], Any],
        prompt_text: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """trigger で開いたダイアログを OK で閉じ、そのメッセージを返す。

        ダイアログは表示された時点で応答する必要があるため、応答を先に指定してから
        trigger を実行する。

        Args:
            trigger: ダイアログを開く操作
            prompt_text: prompt ダイアログに入力する文字列
            timeout: ダイアログ待機のタイムアウト（秒）。None で explicit_wait を使用

        Raises:
            WaitTimeout: ダイアログが表示されなかった場合
        """
        return self._handle_dialog(trigger, True, prompt_text, timeout)

    def dismiss_alert(self, trigger: Callable[[], Any], timeout: Optional[float] = None) -> str:
        """trigger で開いたダイアログをキャンセルで閉じ、そのメッセージを返す。"""
        return self._handle_dialog(trigger, False, None, timeout)

    def enter_text_in_alert(
        self, trigger: Callable[[], Any], text: str, timeout: Optional[float] = None
    ) -> str:
        """trigger で開いた prompt ダイアログに text を入力して OK で閉じる。"""
        return self._handle_dialog(trigger, True, text, timeout)

    def wait_for_alert(self, timeout: Optional[float] = None) -> str:
        """いずれかのダイアログが表示されるまで待機し、最新のメッセージを返す。"""
        return self.wait(dialog_shown(self._driver), "alert present", timeout)

    def get_alert_text(self) -> Optional[str]:
        """直近に表示されたダイアログのメッセージを返す。表示がなければ None。"""
        messages = self._driver.dialog_messages()
        return messages[-1] if messages else None

    def _handle_dialog(
        self,
        trigger: Callable[[], Any],
        accept: bool,
        prompt_text: Optional[str],
        timeout: Optional[float],
    ) -> str:
        seen = len(self._driver.dialog_messages())
        self._driver.set_dialog_response(accept, prompt_text)
        try:
            trigger()
            message = self.wait(dialog_shown(self._driver, seen), "alert present", timeout)
        except Exception:
            # 未使用の応答指定を残さない
            self._driver.set_dialog_response(False)
            raise
        logger.info("ダイアログを%sしました: %s", "承認" if accept else "キャンセル", message)
        return message

    # -------------------------------------------------------------------
    # ナビゲーション
    # -------------------------------------------------------------------

    def open(self, url: str) -> None:
        logger.info("open: %s", url)
        self._driver.open(url)

    def current_url(self) -> str:
        return self._driver.current_url()

    def title(self) -> str:
        return self._driver.title()

    def navigate_and_expect(
        self,
        action: Callable[[], Any],
        url_token: str,
        fallback_url_builder: Callable[[str], str],
        timeout: Optional[float] = None,
    ) -> str:
        """操作を実行し、URL に url_token が含まれるまで待機する。

        タイムアウトした場合は fallback_url_builder で現在の URL から直接遷移先を求め、
        その URL へ直接遷移する。クライアントサイドルーティングで遷移が
        発火しないことがある画面（カート → チェックアウト等）向けの縮退策。

        Args:
            action: 遷移を引き起こす操作
            url_token: 遷移後の URL に含まれるべき文字列
            fallback_url_builder: 現在の URL から直接遷移先 URL を組み立てる関数
            timeout: URL 待機のタイムアウト（秒）。None で explicit_wait を使用

        Returns:
            最終的な現在の URL
        """
        action()
        try:
            return self.wait_for_url(url_token, timeout)
        except WaitTimeout as exc:
            current = self._driver.current_url()
            target = fallback_url_builder(current)
            logger.warning(
                "URL が '%s' を含まないため直接遷移します: %s → %s", url_token, current, target,
            )
            self.fallbacks.append(FallbackRecord("navigate", target, str(exc)))
            self._driver.open(target)
            return self._driver.current_url()

    def navigate_with_rule(
        self,
        action: Callable[[], Any],
        rule: NavigationFallback,
        timeout: Optional[float] = None,
    ) -> str:
        """設定ファイルの遷移フォールバック規則で navigate_and_expect を実行する。"""
        return self.navigate_and_expect(action, rule.url_token, rule.build_url, timeout)

    # -------------------------------------------------------------------
    # テキスト操作
    # -------------------------------------------------------------------

    def enter_text(self, locator: Locator, text: str) -> None:
        """可視待機後に既存の内容をクリアしてテキストを入力する。

        要素が存在しない等の失敗は構造的な問題として即座に送出し、再試行しない。
        """
        element = self.wait_for_visible(locator)
        self._driver.clear(element)
        self._driver.send_keys(element, text)

    def get_text(self, locator: Locator) -> str:
        return self._driver.get_text(self.wait_for_visible(locator))

    def get_attribute(self, locator: Locator, name: str) -> Optional[str]:
        return self._driver.get_attribute(self.wait_for_visible(locator), name)

    def upload_file(self, locator: Locator, path: str) -> None:
        self._driver.set_input_files(self._driver.find_element(locator), path)

    # -------------------------------------------------------------------
    # ドロップダウン
    # -------------------------------------------------------------------

    def select_by_text(self, locator: Locator, text: str) -> None:
        self._driver.select_option(self._driver.find_element(locator), label=text)

    def select_by_value(self, locator: Locator, value: str) -> None:
        self._driver.select_option(self._driver.find_element(locator), value=value)

    def select_by_index(self, locator: Locator, index: int) -> None:
        self._driver.select_option(self._driver.find_element(locator), index=index)

    def dropdown_options(self, locator: Locator) -> list[str]:
        return self._driver.option_texts(self._driver.find_element(locator))

    # -------------------------------------------------------------------
    # チェックボックス・ラジオボタン
    # -------------------------------------------------------------------

    def check(self, locator: Locator) -> None:
        element = self._driver.find_element(locator)
        if not self._driver.is_selected(element):
            self._driver.click(element)

    def uncheck(self, locator: Locator) -> None:
        element = self._driver.find_element(locator)
        if self._driver.is_selected(element):
            self._driver.click(element)

    def is_checked(self, locator: Locator) -> bool:
        return self._driver.is_selected(self._driver.find_element(locator))

    # -------------------------------------------------------------------
    # 検証
    # -------------------------------------------------------------------

    def is_displayed_safe(self, locator: Locator) -> bool:
        """要素が表示されているかを返す。例外は送出しない。

        要素が存在しないことは正当な False として扱う。
        それ以外のドライバエラーも False を返すが、区別のため警告ログを出力する。
        """
        try:
            element = self._driver.find_element(locator)
            return bool(self._driver.is_displayed(element))
        except (ElementNotFound, StaleElement):
            return False
        except DriverError as exc:
            logger.warning("表示判定中にドライバエラーが発生しました: %s (%s)", locator, exc)
            return False

    def is_enabled(self, locator: Locator) -> bool:
        return self._driver.is_enabled(self._driver.find_element(locator))

    def element_count(self, locator: Locator) -> int:
        return len(self._driver.find_elements(locator))

    # -------------------------------------------------------------------
    # スクロール
    # -------------------------------------------------------------------

    def scroll_to_element(self, locator: Locator) -> None:
        self._driver.execute_script(_JS_SCROLL_INTO_VIEW, self._driver.find_element(locator))

    def scroll_to_bottom(self) -> None:
        self._driver.execute_script(_JS_SCROLL_TO_BOTTOM)

    def scroll_to_top(self) -> None:
        self._driver.execute_script(_JS_SCROLL_TO_TOP)

    # -------------------------------------------------------------------
    # フレーム・ウィンドウ切替
    # -------------------------------------------------------------------

    def switch_to_frame(self, frame: Locator | int) -> None:
        """iframe 要素のロケータ、または子フレーム番号で操作対象を切り替える。"""
        self._driver.switch_context(frame)

    def switch_to_default_content(self) -> None:
        self._driver.switch_context(None)

    def switch_to_new_window(self) -> None:
        """現在以外の最初のウィンドウへ切り替える。"""
        current = self._driver.current_window()
        for handle in self._driver.window_handles():
            if handle != current:
                self._driver.switch_window(handle)
                return
        raise ActionFailed("switch_to_new_window", None, DriverError("他のウィンドウがありません"))

    def switch_to_window_by_title(self, title: str) -> None:
        """タイトルが一致するウィンドウへ切り替える。

        一致するウィンドウがない場合は元のウィンドウへ戻して ActionFailed を送出する。
        """
        original = self._driver.current_window()
        for handle in self._driver.window_handles():
            self._driver.switch_window(handle)
            if self._driver.title() == title:
                return
        self._driver.switch_window(original)
        raise ActionFailed(
            "switch_to_window_by_title", None,
            DriverError(f"タイトル '{title}' のウィンドウがありません"),
        )

    def close_current_window(self) -> None:
        self._driver.close_window()
