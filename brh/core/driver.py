"""
ブラウザドライバ: ブラウザ自動操作の抽象能力セット

ハーネスのコアが依存するブラウザ操作を BrowserDriver Protocol として定義し、
Playwright の同期 API による実装 PlaywrightDriver を提供する。

主な機能:
  - BrowserDriver: 要素検索・クリック・入力・スクリプト実行・コンテキスト切替等の Protocol
  - PlaywrightDriver: playwright.sync_api による実装（ダイアログは dialog イベントで応答）
  - translate_error(): Playwright の例外をハーネスのエラー種別へ変換

Playwright の同期 API オブジェクトは生成したスレッドでのみ使用できる。
1 ワーカー 1 セッションのモデルではこの制約をそのまま満たす。
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional, Protocol, Union, runtime_checkable

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from .errors import DriverError, ElementNotFound, ElementNotInteractable, StaleElement
from .locator import Locator

if TYPE_CHECKING:
    from playwright.sync_api import (
        Browser,
        BrowserContext,
        Dialog,
        Frame,
        FrameLocator,
        Page,
        Playwright,
    )
    from playwright.sync_api import Locator as PwLocator

logger = logging.getLogger(__name__)

ContextTarget = Union[None, int, Locator]
"""switch_context() の切替先。None: メインドキュメント / int: 子フレーム番号 / Locator: iframe 要素。"""

MIN_TIMEOUT_MS = 1
"""Playwright に渡すタイムアウトの下限（ミリ秒）。0 はタイムアウトなしになる。"""

_DEFAULT_DIALOG_RESPONSE: tuple[bool, Optional[str]] = (False, None)

_JS_CSS_VALUE = "(el, name) => window.getComputedStyle(el).getPropertyValue(name)"


# ---------------------------------------------------------------------------
# 抽象能力セット
# ---------------------------------------------------------------------------

@runtime_checkable
class BrowserDriver(Protocol):
    """ハーネスのコアが依存するブラウザ操作の Protocol。

    要素ハンドルは実装ごとに不透明なオブジェクトとして扱う。
    要素が存在しない場合、find_element() は ElementNotFound を送出する。

    ダイアログ（alert / confirm / prompt）は表示された時点でドライバが応答する。
    応答内容は set_dialog_response() で事前に指定し、1 回応答すると既定（dismiss）に戻る。
    dialog_messages() は応答済みダイアログのメッセージを古い順に返す。
    """

    def open(self, url: str) -> None: ...

    def find_element(self, locator: Locator) -> Any: ...

    def find_elements(self, locator: Locator) -> list[Any]: ...

    def click(self, element: Any) -> None: ...

    def double_click(self, element: Any) -> None: ...

    def right_click(self, element: Any) -> None: ...

    def hover(self, element: Any) -> None: ...

    def clear(self, element: Any) -> None: ...

    def send_keys(self, element: Any, text: str) -> None: ...

    def set_input_files(self, element: Any, path: str) -> None: ...

    def drag_and_drop(self, source: Any, target: Any) -> None: ...

    def select_option(
        self,
        element: Any,
        *,
        label: Optional[str] = None,
        value: Optional[str] = None,
        index: Optional[int] = None,
    ) -> None: ...

    def option_texts(self, element: Any) -> list[str]: ...

    def get_attribute(self, element: Any, name: str) -> Optional[str]: ...

    def get_text(self, element: Any) -> str: ...

    def css_value(self, element: Any, name: str) -> str: ...

    def is_displayed(self, element: Any) -> bool: ...

    def is_enabled(self, element: Any) -> bool: ...

    def is_selected(self, element: Any) -> bool: ...

    def execute_script(self, script: str, element: Any = None, arg: Any = None) -> Any: ...

    def current_url(self) -> str: ...

    def title(self) -> str: ...

    def page_source(self) -> str: ...

    def screenshot(self) -> bytes: ...

    def switch_context(self, target: ContextTarget = None) -> None: ...

    def window_handles(self) -> list[int]: ...

    def current_window(self) -> int: ...

    def switch_window(self, handle: int) -> None: ...

    def close_window(self) -> None: ...

    def set_dialog_response(self, accept: bool, prompt_text: Optional[str] = None) -> None: ...

    def dialog_messages(self) -> list[str]: ...

    def maximize(self, width: int, height: int) -> None: ...

    def set_timeouts(self, implicit_wait_ms: int, page_load_timeout_ms: int) -> None: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# Playwright 例外の変換
# ---------------------------------------------------------------------------

_STALE_MARKERS = (
    "not attached to the dom",
    "element is detached",
    "execution context was destroyed",
    "frame was detached",
)

_NOT_INTERACTABLE_MARKERS = (
    "not visible",
    "not enabled",
    "not editable",
    "not stable",
    "intercepts pointer events",
    "outside of the viewport",
    "element is disabled",
)


def translate_error(exc: BaseException, context: str = "") -> DriverError:
    """Playwright の例外をハーネスのエラー種別へ変換する。

    メッセージに含まれるマーカー文字列で分類する:
      - DOM から切り離された → StaleElement
      - 不可視・無効・被覆・タイムアウト（操作時） → ElementNotInteractable
      - それ以外 → DriverError

    Args:
        exc: 変換対象の例外
        context: エラーメッセージに付与する操作の説明

    Returns:
        変換後の例外（呼び出し側で raise ... from exc する）
    """
    message = str(exc)
    lowered = message.lower()
    prefix = f"{context}: " if context else ""

    if any(marker in lowered for marker in _STALE_MARKERS):
        return StaleElement(f"{prefix}{message}")
    if isinstance(exc, PlaywrightTimeoutError):
        # 操作時のタイムアウトは actionability チェック未達を意味する
        return ElementNotInteractable(f"{prefix}{message}")
    if any(marker in lowered for marker in _NOT_INTERACTABLE_MARKERS):
        return ElementNotInteractable(f"{prefix}{message}")
    return DriverError(f"{prefix}{message}")


# ---------------------------------------------------------------------------
# PlaywrightDriver 本体
# ---------------------------------------------------------------------------

class PlaywrightDriver:
    """Playwright 同期 API による BrowserDriver 実装。

    要素ハンドルとして Playwright の Locator（.first で 1 件に絞ったもの）を返す。
    Locator は遅延評価のため、DOM の差し替えに対しても再解決される。
    """

    def __init__(
        self,
        playwright: Optional[Playwright],
        browser: Optional[Browser],
        context: BrowserContext,
        page: Page,
    ) -> None:
        self._playwright = playwright
        self._browser = browser
        self._context = context
        self._page = page
        self._scope: Union[Page, Frame, FrameLocator] = page
        self._action_timeout_ms: Optional[float] = None
        self._dialog_response: tuple[bool, Optional[str]] = _DEFAULT_DIALOG_RESPONSE
        self._dialog_messages: list[str] = []
        context.on("dialog", self._on_dialog)

    @property
    def page(self) -> Page:
        """現在操作対象の Page を返す。"""
        return self._page

    # -------------------------------------------------------------------
    # ナビゲーション
    # -------------------------------------------------------------------

    def open(self, url: str) -> None:
        logger.debug("open: %s", url)
        try:
            self._page.goto(url)
        except PlaywrightError as exc:
            raise DriverError(f"ページを開けませんでした: {url}: {exc}") from exc
        self._scope = self._page

    def current_url(self) -> str:
        return self._page.url

    def title(self) -> str:
        return self._page.title()

    def page_source(self) -> str:
        try:
            return self._page.content()
        except PlaywrightError as exc:
            raise translate_error(exc, "page_source") from exc

    def screenshot(self) -> bytes:
        try:
            return self._page.screenshot(type="png")
        except PlaywrightError as exc:
            raise translate_error(exc, "screenshot") from exc

    # -------------------------------------------------------------------
    # 要素検索
    # -------------------------------------------------------------------

    def find_element(self, locator: Locator) -> PwLocator:
        """ロケータに一致する最初の要素を返す。

        Raises:
            ElementNotFound: 一致する要素が 0 件の場合
        """
        target = self._scope.locator(locator.to_selector())
        try:
            count = target.count()
        except PlaywrightError as exc:
            raise translate_error(exc, f"find_element({locator})") from exc
        if count == 0:
            raise ElementNotFound(f"要素が見つかりません: {locator.describe()}")
        return target.first

    def find_elements(self, locator: Locator) -> list[PwLocator]:
        target = self._scope.locator(locator.to_selector())
        try:
            return target.all()
        except PlaywrightError as exc:
            raise translate_error(exc, f"find_elements({locator})") from exc

    # -------------------------------------------------------------------
    # 要素操作
    # -------------------------------------------------------------------

    def _call(self, description: str, func: Any, *args: Any, **kwargs: Any) -> Any:
        """Playwright 呼び出しを実行し、例外をハーネスのエラー種別へ変換する。"""
        if self._action_timeout_ms is not None and "timeout" not in kwargs:
            kwargs["timeout"] = self._action_timeout_ms
        try:
            return func(*args, **kwargs)
        except PlaywrightError as exc:
            raise translate_error(exc, description) from exc

    def click(self, element: PwLocator) -> None:
        self._call("click", element.click)

    def double_click(self, element: PwLocator) -> None:
        self._call("double_click", element.dblclick)

    def right_click(self, element: PwLocator) -> None:
        self._call("right_click", element.click, button="right")

    def hover(self, element: PwLocator) -> None:
        self._call("hover", element.hover)

    def clear(self, element: PwLocator) -> None:
        self._call("clear", element.clear)

    def send_keys(self, element: PwLocator, text: str) -> None:
        # 既存値を残したまま追記入力する
        self._call("send_keys", element.press_sequentially, text)

    def set_input_files(self, element: PwLocator, path: str) -> None:
        self._call("set_input_files", element.set_input_files, path)

    def drag_and_drop(self, source: PwLocator, target: PwLocator) -> None:
        self._call("drag_and_drop", source.drag_to, target)

    def select_option(
        self,
        element: PwLocator,
        *,
        label: Optional[str] = None,
        value: Optional[str] = None,
        index: Optional[int] = None,
    ) -> None:
        if label is not None:
            self._call("select_option", element.select_option, label=label)
        elif value is not None:
            self._call("select_option", element.select_option, value=value)
        elif index is not None:
            self._call("select_option", element.select_option, index=index)
        else:
            raise ValueError("label / value / index のいずれかを指定してください")

    def option_texts(self, element: PwLocator) -> list[str]:
        try:
            return element.locator("option").all_inner_texts()
        except PlaywrightError as exc:
            raise translate_error(exc, "option_texts") from exc

    def get_attribute(self, element: PwLocator, name: str) -> Optional[str]:
        return self._call("get_attribute", element.get_attribute, name)

    def get_text(self, element: PwLocator) -> str:
        return self._call("get_text", element.inner_text)

    def css_value(self, element: PwLocator, name: str) -> str:
        """算出スタイルのプロパティ値を返す。"""
        try:
            return element.evaluate(_JS_CSS_VALUE, name)
        except PlaywrightError as exc:
            raise translate_error(exc, "css_value") from exc

    def is_displayed(self, element: PwLocator) -> bool:
        try:
            return element.is_visible()
        except PlaywrightError as exc:
            raise translate_error(exc, "is_displayed") from exc

    def is_enabled(self, element: PwLocator) -> bool:
        return self._call("is_enabled", element.is_enabled)

    def is_selected(self, element: PwLocator) -> bool:
        return self._call("is_selected", element.is_checked)

    def execute_script(self, script: str, element: Any = None, arg: Any = None) -> Any:
        """JavaScript を実行する。

        element を指定した場合、script は要素を第 1 引数に受け取る関数式として評価する
        （例: "el => el.click()"）。
        """
        try:
            if element is not None:
                return element.evaluate(script, arg)
            return self._page.evaluate(script, arg)
        except PlaywrightError as exc:
            raise translate_error(exc, "execute_script") from exc

    # -------------------------------------------------------------------
    # コンテキスト・ウィンドウ切替
    # -------------------------------------------------------------------

    def switch_context(self, target: ContextTarget = None) -> None:
        """操作対象のドキュメントを切り替える。

        Args:
            target: None でメインドキュメント、int で現在スコープの子フレーム番号、
                    Locator で iframe 要素を指定する
        """
        if target is None:
            self._scope = self._page
            return

        if isinstance(target, Locator):
            self._scope = self._scope.frame_locator(target.to_selector())
            return

        if self._scope is self._page:
            parent = self._page.main_frame
        elif hasattr(self._scope, "child_frames"):
            parent = self._scope
        else:
            raise DriverError("iframe ロケータで切り替えたスコープからは番号指定で切り替えられません")
        children = parent.child_frames
        if not 0 <= target < len(children):
            raise ElementNotFound(f"フレーム番号 {target} が存在しません（子フレーム数: {len(children)}）")
        self._scope = children[target]

    def window_handles(self) -> list[int]:
        return list(range(len(self._context.pages)))

    def current_window(self) -> int:
        return self._context.pages.index(self._page)

    def switch_window(self, handle: int) -> None:
        pages = self._context.pages
        if not 0 <= handle < len(pages):
            raise DriverError(f"ウィンドウ {handle} が存在しません（ウィンドウ数: {len(pages)}）")
        self._page = pages[handle]
        self._page.bring_to_front()
        self._scope = self._page

    def close_window(self) -> None:
        self._page.close()
        remaining = self._context.pages
        if remaining:
            self._page = remaining[0]
            self._scope = self._page

    # -------------------------------------------------------------------
    # ダイアログ
    # -------------------------------------------------------------------

    def set_dialog_response(self, accept: bool, prompt_text: Optional[str] = None) -> None:
        """次に表示されるダイアログへの応答を指定する。"""
        self._dialog_response = (accept, prompt_text)

    def dialog_messages(self) -> list[str]:
        # 同期 API ではイベントは Playwright 呼び出し中にのみ処理される
        try:
            self._page.wait_for_timeout(MIN_TIMEOUT_MS)
        except PlaywrightError as exc:
            raise translate_error(exc, "dialog_messages") from exc
        return list(self._dialog_messages)

    def _on_dialog(self, dialog: Dialog) -> None:
        """dialog イベントのハンドラ。指定された応答を返し、既定に戻す。

        応答しないままにするとページがブロックされ、ダイアログを開いた操作も完了しない。
        """
        accept, prompt_text = self._dialog_response
        self._dialog_response = _DEFAULT_DIALOG_RESPONSE
        self._dialog_messages.append(dialog.message)
        logger.info(
            "ダイアログ (%s) に%sします: %s",
            dialog.type, "応答" if accept else "キャンセル", dialog.message,
        )
        try:
            if not accept:
                dialog.dismiss()
            elif prompt_text is not None:
                dialog.accept(prompt_text)
            else:
                dialog.accept()
        except PlaywrightError as exc:
            logger.warning("ダイアログへの応答に失敗しました: %s", exc)

    # -------------------------------------------------------------------
    # ライフサイクル
    # -------------------------------------------------------------------

    def maximize(self, width: int, height: int) -> None:
        """ウィンドウを最大化する。

        headed の Chromium 系は起動引数 --start-maximized と no_viewport で最大化済みのため、
        viewport が固定されている場合のみ指定サイズを適用する。
        """
        if self._page.viewport_size is None:
            return
        self._page.set_viewport_size({"width": width, "height": height})

    def set_timeouts(self, implicit_wait_ms: int, page_load_timeout_ms: int) -> None:
        """操作と遷移のタイムアウトを設定する。

        Playwright では 0 がタイムアウトなしを意味するため、MIN_TIMEOUT_MS 未満は丸める。
        暗黙的待機 0 は「待たずに失敗する」の意味で扱う。
        """
        action_ms = max(implicit_wait_ms, MIN_TIMEOUT_MS)
        self._action_timeout_ms = action_ms
        self._context.set_default_timeout(action_ms)
        self._context.set_default_navigation_timeout(max(page_load_timeout_ms, MIN_TIMEOUT_MS))

    def close(self) -> None:
        """Context・Browser・Playwright を順に終了する。

        途中で失敗しても後続の終了処理は実行し、最初の例外を送出する。
        """
        first_error: Optional[BaseException] = None
        for name, closer in (
            ("context", getattr(self._context, "close", None)),
            ("browser", getattr(self._browser, "close", None)),
            ("playwright", getattr(self._playwright, "stop", None)),
        ):
            if closer is None:
                continue
            try:
                closer()
            except Exception as exc:
                logger.warning("%s の終了中にエラー: %s", name, exc)
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise DriverError(f"ドライバの終了に失敗しました: {first_error}") from first_error
