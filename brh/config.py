"""
ハーネス設定: 設定ファイル・環境変数・CLI 引数からの設定読み込み

プロセスごとに 1 回解決され、セッション生成前に確定する読み取り専用の設定。
CLI 引数 > 環境変数 > 設定ファイル（brh.yaml） > デフォルト値 の優先順位で適用される。

環境変数一覧:
  BRH_BROWSER           : ブラウザ種別（chrome/firefox/edge/safari, デフォルト: chrome）
  BRH_HEADLESS          : ヘッドレスモード（true/false, デフォルト: false）
  BRH_IMPLICIT_WAIT     : 暗黙的待機（秒, デフォルト: 10）
  BRH_EXPLICIT_WAIT     : 明示的待機（秒, デフォルト: 20）
  BRH_PAGE_LOAD_TIMEOUT : ページ読み込みタイムアウト（秒, デフォルト: 30）
  BRH_POLL_INTERVAL     : ポーリング間隔（秒, デフォルト: 0.5）
  BRH_MAX_ATTEMPTS      : シナリオあたりの最大実行回数（デフォルト: 2）
  BRH_WORKERS           : 並列ワーカー数（デフォルト: 3）
  BRH_BASE_URL          : テスト対象のベース URL
  BRH_ARTIFACTS_DIR     : 成果物ディレクトリ（デフォルト: artifacts）
"""

from __future__ import annotations

import enum
import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "brh.yaml"


class ConfigError(Exception):
    """設定の読み込み・検証に失敗した場合のエラー。"""


# ---------------------------------------------------------------------------
# ブラウザ種別
# ---------------------------------------------------------------------------

class BrowserKind(str, enum.Enum):
    """サポートするブラウザ種別。"""

    CHROME = "chrome"
    FIREFOX = "firefox"
    EDGE = "edge"
    SAFARI = "safari"

    @classmethod
    def parse(cls, value: str) -> BrowserKind:
        """大文字小文字を区別せずにブラウザ種別を解決する。

        Raises:
            ValueError: 未対応のブラウザ種別の場合
        """
        normalized = value.strip().lower()
        for kind in cls:
            if kind.value == normalized:
                return kind
        supported = ", ".join(k.value for k in cls)
        raise ValueError(f"未対応のブラウザ種別です: {value}（対応: {supported}）")


# ---------------------------------------------------------------------------
# 遷移フォールバック規則
# ---------------------------------------------------------------------------

class NavigationFallback(BaseModel):
    """クライアントサイド遷移が発火しない場合の直接遷移規則。

    現在の URL 中の replace を with_ に置き換えた URL へ直接遷移する。
    例: cart → checkout-step-one
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., description="規則名")
    url_token: str = Field(..., description="遷移成功時に URL に含まれる文字列")
    replace: str = Field(..., description="現在の URL 中の置換対象")
    with_: str = Field(..., alias="with", description="置換後の文字列")

    def build_url(self, current_url: str) -> str:
        """現在の URL から直接遷移先 URL を組み立てる。

        置換対象が現在の URL に含まれない場合は、パス末尾を置換後の文字列に差し替える。
        """
        if self.replace and self.replace in current_url:
            return current_url.replace(self.replace, self.with_, 1)
        base = current_url.rsplit("/", 1)[0] if "/" in current_url else current_url
        return f"{base}/{self.with_.lstrip('/')}"


# ---------------------------------------------------------------------------
# 設定モデル
# ---------------------------------------------------------------------------

class HarnessConfig(BaseModel):
    """ハーネスの実行時設定。

    タイムアウト類は秒単位で保持する。
    """

    model_config = ConfigDict(frozen=True)

    browser: BrowserKind = Field(default=BrowserKind.CHROME, description="ブラウザ種別")
    headless: bool = Field(default=False, description="ヘッドレスモード")
    implicit_wait: float = Field(default=10.0, ge=0, description="暗黙的待機（秒）")
    explicit_wait: float = Field(default=20.0, ge=0, description="明示的待機（秒）")
    page_load_timeout: float = Field(default=30.0, gt=0, description="ページ読み込みタイムアウト（秒）")
    poll_interval: float = Field(default=0.5, gt=0, description="ポーリング間隔（秒）")
    max_attempts: int = Field(default=2, ge=1, description="シナリオあたりの最大実行回数")
    workers: int = Field(default=3, ge=1, description="並列ワーカー数")
    base_url: Optional[str] = Field(default=None, description="テスト対象のベース URL")
    artifacts_dir: Path = Field(default=Path("artifacts"), description="成果物ディレクトリ")
    viewport_width: int = Field(default=1920, gt=0, description="ヘッドレス時のビューポート幅")
    viewport_height: int = Field(default=1080, gt=0, description="ヘッドレス時のビューポート高さ")
    navigation_fallbacks: tuple[NavigationFallback, ...] = Field(
        default=(), description="遷移フォールバック規則"
    )

    @field_validator("browser", mode="before")
    @classmethod
    def _parse_browser(cls, v: Any) -> Any:
        if isinstance(v, str):
            return BrowserKind.parse(v)
        return v

    @field_validator("base_url")
    @classmethod
    def _strip_base_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v.rstrip("/") or None

    def fallback_for(self, name: str) -> NavigationFallback:
        """名前で遷移フォールバック規則を取得する。

        Raises:
            KeyError: 該当する規則がない場合
        """
        for rule in self.navigation_fallbacks:
            if rule.name == name:
                return rule
        raise KeyError(f"遷移フォールバック規則 '{name}' が定義されていません")

    def with_overrides(self, **overrides: Any) -> HarnessConfig:
        """None 以外の値で上書きした新しい設定を返す。"""
        values = {k: v for k, v in overrides.items() if v is not None}
        if not values:
            return self
        try:
            return HarnessConfig.model_validate({**self.model_dump(), **values})
        except ValidationError as exc:
            raise ConfigError(f"設定値が不正です: {exc}") from exc


# ---------------------------------------------------------------------------
# 環境変数キー定数
# ---------------------------------------------------------------------------

_ENV_KEYS: dict[str, str] = {
    "BRH_BROWSER": "browser",
    "BRH_HEADLESS": "headless",
    "BRH_IMPLICIT_WAIT": "implicit_wait",
    "BRH_EXPLICIT_WAIT": "explicit_wait",
    "BRH_PAGE_LOAD_TIMEOUT": "page_load_timeout",
    "BRH_POLL_INTERVAL": "poll_interval",
    "BRH_MAX_ATTEMPTS": "max_attempts",
    "BRH_WORKERS": "workers",
    "BRH_BASE_URL": "base_url",
    "BRH_ARTIFACTS_DIR": "artifacts_dir",
}


def _parse_bool(value: str) -> bool:
    """文字列を bool に変換する。

    Args:
        value: "true", "1", "yes" → True、それ以外 → False
    """
    return value.strip().lower() in ("true", "1", "yes")


# ---------------------------------------------------------------------------
# 読み込み
# ---------------------------------------------------------------------------

def read_config_file(path: Path) -> dict[str, Any]:
    """設定ファイル（YAML）を辞書として読み込む。

    Raises:
        ConfigError: YAML として不正、またはトップレベルがマッピングでない場合
    """
    yaml = YAML(typ="safe")
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.load(f)
    except YAMLError as exc:
        raise ConfigError(f"設定ファイルの YAML が不正です: {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"設定ファイルのトップレベルはマッピングである必要があります: {path}")
    return dict(data)


def values_from_env(environ: Mapping[str, str]) -> dict[str, Any]:
    """環境変数から設定値を抽出する。未設定のキーは含めない。"""
    values: dict[str, Any] = {}
    for env_key, field_name in _ENV_KEYS.items():
        if env_key not in environ:
            continue
        raw = environ[env_key]
        if field_name == "headless":
            values[field_name] = _parse_bool(raw)
        else:
            values[field_name] = raw
    return values


def load_config(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> HarnessConfig:
    """設定ファイル・環境変数・明示指定を統合して HarnessConfig を生成する。

    path が None の場合はカレントディレクトリの brh.yaml を探し、なければ読み込まない。

    Args:
        path: 設定ファイルのパス
        environ: 環境変数（None で os.environ）
        **overrides: CLI 引数等による上書き（None の値は無視）

    Returns:
        解決済みの設定

    Raises:
        ConfigError: 設定ファイルが見つからない、または値が不正な場合
    """
    values: dict[str, Any] = {}

    if path is not None:
        if not path.exists():
            raise ConfigError(f"設定ファイルが見つかりません: {path}")
        values.update(read_config_file(path))
    elif Path(DEFAULT_CONFIG_FILE).exists():
        values.update(read_config_file(Path(DEFAULT_CONFIG_FILE)))

    values.update(values_from_env(os.environ if environ is None else environ))
    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        config = HarnessConfig.model_validate(values)
    except ValidationError as exc:
        raise ConfigError(f"設定値が不正です: {exc}") from exc

    logger.info("設定を読み込みました: %s", config)
    return config
