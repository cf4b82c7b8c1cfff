"""
ロケータ: 要素を特定する構造的な記述子

id / class / css / xpath / text / testId / name の指定方式で
要素を記述し、Playwright のセレクタ文字列へ変換する。

主な機能:
  - Locator: 不変のロケータモデル（Pydantic v2, frozen）
  - Locator.by_id() 等: 指定方式ごとのファクトリ
  - Locator.from_dict(): 設定ファイルや page object 定義の辞書から生成
  - to_selector(): Playwright セレクタ文字列への変換
"""

from __future__ import annotations

import logging
import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

LocatorKind = Literal["id", "class", "css", "xpath", "text", "testId", "name"]

# 辞書形式で受け付けるキー（優先順位順）
_LOCATOR_KEYS: tuple[str, ...] = ("testId", "id", "name", "class", "css", "xpath", "text")

# そのまま .name と書ける CSS 識別子
_CSS_IDENT = re.compile(r"-?[_a-zA-Z][_a-zA-Z0-9-]*")


def _quote(value: str) -> str:
    """属性セレクタ用に値をダブルクォートで囲む。"""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _class_selector(name: str) -> str:
    """クラス名 1 つ分のセレクタを返す。識別子でない名前（: や / を含む等）は属性セレクタにする。"""
    if _CSS_IDENT.fullmatch(name):
        return f".{name}"
    return f"[class~={_quote(name)}]"


class Locator(BaseModel):
    """要素を特定する構造的な記述子。

    フォーマットはハーネスのコアにとって不透明であり、
    ドライバ実装だけが to_selector() の結果を解釈する。
    """

    model_config = ConfigDict(frozen=True)

    by: LocatorKind = Field(..., description="指定方式")
    value: str = Field(..., description="指定値")

    @field_validator("value")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("ロケータの値が空です")
        return v

    # ----- ファクトリ -----

    @classmethod
    def by_id(cls, value: str) -> Locator:
        return cls(by="id", value=value)

    @classmethod
    def by_class(cls, value: str) -> Locator:
        return cls(by="class", value=value)

    @classmethod
    def by_css(cls, value: str) -> Locator:
        return cls(by="css", value=value)

    @classmethod
    def by_xpath(cls, value: str) -> Locator:
        return cls(by="xpath", value=value)

    @classmethod
    def by_text(cls, value: str) -> Locator:
        return cls(by="text", value=value)

    @classmethod
    def by_test_id(cls, value: str) -> Locator:
        return cls(by="testId", value=value)

    @classmethod
    def by_name(cls, value: str) -> Locator:
        return cls(by="name", value=value)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Locator:
        """辞書形式（{"css": "#checkout"} 等）からロケータを生成する。

        キーの判定は testId, id, name, class, css, xpath, text の優先順位で行う。

        Args:
            data: 指定方式をキーとする辞書

        Returns:
            生成されたロケータ

        Raises:
            ValueError: 指定方式を特定できない場合
        """
        for key in _LOCATOR_KEYS:
            if key in data:
                return cls(by=key, value=str(data[key]))  # type: ignore[arg-type]
        raise ValueError(
            f"ロケータ種別を特定できません。"
            f"使用可能なキー: {', '.join(_LOCATOR_KEYS)}。"
            f"受け取ったキー: {', '.join(data.keys()) or '(空)'}。"
        )

    # ----- 変換 -----

    def to_selector(self) -> str:
        """Playwright のセレクタ文字列に変換する。

        Returns:
            page.locator() に渡せるセレクタ文字列
        """
        if self.by == "id":
            return f"[id={_quote(self.value)}]"
        if self.by == "class":
            # 空白区切りの複数クラスは全て一致を要求する
            return "".join(_class_selector(name) for name in self.value.split())
        if self.by == "css":
            return self.value
        if self.by == "xpath":
            return f"xpath={self.value}"
        if self.by == "text":
            return f"text={self.value}"
        if self.by == "testId":
            return f"[data-testid={_quote(self.value)}]"
        return f"[name={_quote(self.value)}]"

    def describe(self) -> str:
        """ログ・エラーメッセージ用の説明文字列を返す。"""
        return f"{self.by}={self.value!r}"

    def __str__(self) -> str:
        return self.describe()
