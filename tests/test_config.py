"""
ハーネス設定テスト: 設定ファイル・環境変数・明示指定の統合

テスト対象:
  - HarnessConfig のデフォルト値と検証
  - BrowserKind.parse
  - NavigationFallback.build_url
  - load_config の優先順位（明示指定 > 環境変数 > 設定ファイル > デフォルト）
"""

from __future__ import annotations

from pathlib import Path

import pytest

from brh.config import (
    BrowserKind,
    ConfigError,
    HarnessConfig,
    NavigationFallback,
    load_config,
    read_config_file,
    values_from_env,
)


CONFIG_YAML = """\
browser: firefox
headless: true
explicit_wait: 15
max_attempts: 3
base_url: http://shop.local/
navigation_fallbacks:
  - name: checkout
    url_token: checkout-step-one
    replace: cart.html
    with: checkout-step-one.html
"""


class TestHarnessConfig:
    """HarnessConfig のテスト。"""

    def test_defaults(self) -> None:
        config = HarnessConfig()
        assert config.browser == BrowserKind.CHROME
        assert config.headless is False
        assert config.implicit_wait == 10
        assert config.explicit_wait == 20
        assert config.page_load_timeout == 30
        assert config.max_attempts == 2
        assert config.workers == 3
        assert config.base_url is None
        assert config.artifacts_dir == Path("artifacts")

    def test_base_url_trailing_slash_stripped(self) -> None:
        assert HarnessConfig(base_url="http://a/b/").base_url == "http://a/b"
        assert HarnessConfig(base_url="  ").base_url is None

    def test_invalid_max_attempts(self) -> None:
        with pytest.raises(ValueError):
            HarnessConfig(max_attempts=0)

    def test_browser_case_insensitive(self) -> None:
        assert HarnessConfig(browser="Safari").browser == BrowserKind.SAFARI

    def test_with_overrides_ignores_none(self) -> None:
        config = HarnessConfig()
        assert config.with_overrides(workers=None) is config
        assert config.with_overrides(workers=5).workers == 5

    def test_with_overrides_invalid(self) -> None:
        with pytest.raises(ConfigError):
            HarnessConfig().with_overrides(workers=0)

    def test_fallback_for(self) -> None:
        rule = NavigationFallback(name="checkout", url_token="step-one", replace="cart", **{"with": "step-one"})
        config = HarnessConfig(navigation_fallbacks=(rule,))
        assert config.fallback_for("checkout") is rule
        with pytest.raises(KeyError):
            config.fallback_for("missing")


class TestBrowserKind:
    """BrowserKind.parse のテスト。"""

    @pytest.mark.parametrize("value", ["chrome", "CHROME", " firefox ", "Edge", "safari"])
    def test_supported(self, value: str) -> None:
        assert BrowserKind.parse(value).value == value.strip().lower()

    def test_unsupported(self) -> None:
        with pytest.raises(ValueError, match="opera"):
            BrowserKind.parse("opera")


class TestNavigationFallback:
    """NavigationFallback.build_url のテスト。"""

    def _rule(self, replace: str, with_: str) -> NavigationFallback:
        return NavigationFallback(name="r", url_token="t", replace=replace, **{"with": with_})

    def test_replaces_token(self) -> None:
        rule = self._rule("cart.html", "checkout-step-one.html")
        assert rule.build_url("https://shop/cart.html") == "https://shop/checkout-step-one.html"

    def test_replaces_last_segment_when_token_absent(self) -> None:
        rule = self._rule("basket", "/checkout-step-one.html")
        assert rule.build_url("https://shop/inventory.html") == "https://shop/checkout-step-one.html"


class TestLoadConfig:
    """load_config のテスト。"""

    def test_reads_file(self, tmp_path: Path) -> None:
        path = tmp_path / "brh.yaml"
        path.write_text(CONFIG_YAML, encoding="utf-8")
        config = load_config(path, environ={})
        assert config.browser == BrowserKind.FIREFOX
        assert config.headless is True
        assert config.max_attempts == 3
        assert config.base_url == "http://shop.local"
        assert config.fallback_for("checkout").with_ == "checkout-step-one.html"

    def test_env_overrides_file(self, tmp_path: Path) -> None:
        path = tmp_path / "brh.yaml"
        path.write_text(CONFIG_YAML, encoding="utf-8")
        config = load_config(path, environ={"BRH_BROWSER": "edge", "BRH_HEADLESS": "false"})
        assert config.browser == BrowserKind.EDGE
        assert config.headless is False
        assert config.max_attempts == 3

    def test_explicit_overrides_env(self, tmp_path: Path) -> None:
        config = load_config(
            None, environ={"BRH_WORKERS": "2", "BRH_MAX_ATTEMPTS": "4"}, workers=6, max_attempts=None,
        )
        assert config.workers == 6
        assert config.max_attempts == 4

    def test_default_file_in_cwd(self, tmp_path: Path, monkeypatch) -> None:
        (tmp_path / "brh.yaml").write_text("workers: 7\n", encoding="utf-8")
        monkeypatch.chdir(tmp_path)
        assert load_config(environ={}).workers == 7

    def test_no_file_uses_defaults(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.chdir(tmp_path)
        assert load_config(environ={}) == HarnessConfig()

    def test_missing_explicit_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="見つかりません"):
            load_config(tmp_path / "nope.yaml", environ={})

    def test_invalid_value(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="不正"):
            load_config(None, environ={"BRH_WORKERS": "many"})

    def test_invalid_browser(self) -> None:
        with pytest.raises(ConfigError):
            load_config(None, environ={"BRH_BROWSER": "opera"})


class TestReaders:
    """read_config_file / values_from_env のテスト。"""

    def test_malformed_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("browser: chrome\n  headless: [\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            read_config_file(path)

    def test_non_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="マッピング"):
            read_config_file(path)

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert read_config_file(path) == {}

    @pytest.mark.parametrize(("raw", "expected"), [("true", True), ("1", True), ("YES", True), ("no", False)])
    def test_headless_parsing(self, raw: str, expected: bool) -> None:
        assert values_from_env({"BRH_HEADLESS": raw}) == {"headless": expected}

    def test_unrelated_env_ignored(self) -> None:
        assert values_from_env({"PATH": "/usr/bin", "BRH_BASE_URL": "http://x"}) == {"base_url": "http://x"}
