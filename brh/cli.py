"""
CLI エントリポイント: Typer ベースのコマンドラインインターフェース

brh コマンドとして以下のサブコマンドを提供する:
  - init: プロジェクト雛形生成（brh.yaml, scenarios/, artifacts/）
  - config: 解決済み設定の表示
  - probe: 1 セッションを起動して URL を開き、読み込み完了を確認
  - run: シナリオモジュールの実行
"""

from __future__ import annotations

import importlib
import importlib.util
import logging
import sys
from pathlib import Path
from types import ModuleType
from typing import Optional

import typer
from ruamel.yaml import YAML

from .config import ConfigError, HarnessConfig, load_config

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Typer アプリ定義
# ---------------------------------------------------------------------------

app = typer.Typer(
    help=(
        "brh: ブラウザ受け入れテストのセッション管理・同期エンジン\n\n"
        "基本の流れ:\n"
        "  1. brh init                 設定ファイルと雛形を生成\n"
        "  2. brh probe http://...     ブラウザが起動できるか確認\n"
        "  3. brh run scenarios/xxx.py シナリオを実行\n\n"
        "詳しくは各コマンドに --help を付けてください。"
    ),
    no_args_is_help=True,
)

_CONFIG_TEMPLATE = """\
# brh プロジェクト設定
# 環境変数 BRH_* と CLI 引数はこのファイルより優先されます
browser: chrome
headless: false
implicit_wait: 10
explicit_wait: 20
page_load_timeout: 30
poll_interval: 0.5
max_attempts: 2
workers: 3
base_url: http://localhost:3000
artifacts_dir: artifacts
navigation_fallbacks:
  - name: checkout
    url_token: checkout-step-one
    replace: cart.html
    with: checkout-step-one.html
"""

_SCENARIO_TEMPLATE = '''\
from brh.core import ScenarioContext, scenario


@scenario("トップページが表示される", tags=["smoke"])
def open_top_page(ctx: ScenarioContext) -> None:
    ctx.actions.open(ctx.url())
    assert ctx.actions.title()
'''


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="詳細ログを出力する"),
) -> None:
    """ログ出力を設定する。"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s",
    )


def _load(config_path: Optional[Path], **overrides: object) -> HarnessConfig:
    """設定を読み込む。失敗時はメッセージを出力して終了する。"""
    try:
        return load_config(config_path, **overrides)
    except ConfigError as exc:
        typer.echo(f"エラー: {exc}", err=True)
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# init コマンド
# ---------------------------------------------------------------------------

@app.command()
def init(
    project_dir: Path = typer.Argument(
        Path("."), help="プロジェクトディレクトリ（デフォルト: カレント）",
    ),
) -> None:
    """プロジェクト雛形（設定テンプレートとシナリオ例）を生成する。"""
    try:
        for d in ("scenarios", "artifacts"):
            (project_dir / d).mkdir(parents=True, exist_ok=True)

        config_path = project_dir / "brh.yaml"
        if not config_path.exists():
            config_path.write_text(_CONFIG_TEMPLATE, encoding="utf-8")

        example_path = project_dir / "scenarios" / "example.py"
        if not example_path.exists():
            example_path.write_text(_SCENARIO_TEMPLATE, encoding="utf-8")

        typer.echo(f"プロジェクトを初期化しました: {project_dir.resolve()}")
    except OSError as exc:
        typer.echo(f"エラー: {exc}", err=True)
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# config コマンド
# ---------------------------------------------------------------------------

@app.command("config")
def show_config(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="設定ファイル"),
) -> None:
    """解決済みの設定（ファイル + 環境変数）を YAML で表示する。"""
    config = _load(config_path)
    data = config.model_dump(mode="json", by_alias=True)
    yaml = YAML()
    yaml.default_flow_style = False
    yaml.dump(data, sys.stdout)


# ---------------------------------------------------------------------------
# probe コマンド
# ---------------------------------------------------------------------------

@app.command()
def probe(
    url: str = typer.Argument(..., help="開く URL"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="設定ファイル"),
    browser: Optional[str] = typer.Option(None, "--browser", "-b", help="chrome / firefox / edge / safari"),
    headless: Optional[bool] = typer.Option(None, "--headless/--headed", help="ヘッドレスモード"),
    expect_title: Optional[str] = typer.Option(None, "--expect-title", help="タイトルに含まれるべき文字列"),
) -> None:
    """セッションを 1 つ起動して URL を開き、読み込み完了を確認する。"""
    from .core.actions import ActionFacade
    from .core.artifacts import DirectoryReportSink, FailureArtifactCollector
    from .core.errors import BrhError
    from .core.session import Session, SessionSettings
    from .core.waits import document_ready, title_contains

    config = _load(config_path, browser=browser, headless=headless)
    session = Session(SessionSettings.from_config(config))

    try:
        session.start()
        actions = ActionFacade.for_session(session)
        actions.open(url)
        actions.wait(document_ready(session.driver), "document ready")
        if expect_title:
            actions.wait(title_contains(session.driver, expect_title), f"title contains {expect_title!r}")
        typer.echo(f"URL: {actions.current_url()}")
        typer.echo(f"タイトル: {actions.title()}")
    except BrhError as exc:
        typer.echo(f"エラー: {exc}", err=True)
        if session.is_ready:
            sink = DirectoryReportSink(config.artifacts_dir)
            FailureArtifactCollector(sink).collect(session, "probe", str(exc))
            typer.echo(f"成果物: {sink.run_dir}", err=True)
        raise typer.Exit(code=1)
    finally:
        session.close()


# ---------------------------------------------------------------------------
# run コマンド
# ---------------------------------------------------------------------------

@app.command()
def run(
    target: str = typer.Argument(..., help="シナリオモジュール（scenarios/xxx.py または package.module）"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="設定ファイル"),
    tag: Optional[list[str]] = typer.Option(None, "--tag", "-t", help="実行するタグ（複数指定可）"),
    browser: Optional[str] = typer.Option(None, "--browser", "-b", help="chrome / firefox / edge / safari"),
    headless: Optional[bool] = typer.Option(None, "--headless/--headed", help="ヘッドレスモード"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="並列実行ワーカー数"),
    max_attempts: Optional[int] = typer.Option(None, "--max-attempts", help="シナリオあたりの最大実行回数"),
    base_url: Optional[str] = typer.Option(None, "--base-url", help="テスト対象のベース URL"),
) -> None:
    """シナリオモジュールを読み込んで実行する。"""
    from .core.artifacts import DirectoryReportSink
    from .core.runner import ScenarioRunner, collect_scenarios, filter_by_tags

    config = _load(
        config_path,
        browser=browser,
        headless=headless,
        workers=workers,
        max_attempts=max_attempts,
        base_url=base_url,
    )

    try:
        module = _import_target(target)
    except Exception as exc:
        # モジュール実行時の SyntaxError や NameError も読み込み失敗として扱う
        typer.echo(
            f"エラー: シナリオモジュールを読み込めませんでした: {type(exc).__name__}: {exc}",
            err=True,
        )
        raise typer.Exit(code=1)

    scenarios = filter_by_tags(collect_scenarios(module), tag or [])
    if not scenarios:
        typer.echo("実行対象のシナリオがありません。")
        raise typer.Exit(code=0)

    sink = DirectoryReportSink(config.artifacts_dir)
    runner = ScenarioRunner(config, sink=sink)
    summary = runner.run_all(scenarios)

    for result in summary.results:
        mark = "PASS" if result.passed else "FAIL"
        typer.echo(f"[{mark}] {result.title}（{result.attempts} 回実行）")
        if result.reason:
            typer.echo(f"       {result.reason}")

    typer.echo(
        f"合計: {summary.total} (passed={summary.passed}, failed={summary.failed}, "
        f"retried={summary.retried})"
    )
    typer.echo(f"成果物: {sink.run_dir}")

    if not summary.ok:
        raise typer.Exit(code=1)


def _import_target(target: str) -> ModuleType:
    """ファイルパスまたはモジュール名からシナリオモジュールを読み込む。"""
    path = Path(target)
    if path.suffix == ".py":
        if not path.exists():
            raise OSError(f"ファイルが見つかりません: {path}")
        spec = importlib.util.spec_from_file_location(path.stem, path)
        if spec is None or spec.loader is None:
            raise ImportError(f"モジュールを読み込めません: {path}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module
    return importlib.import_module(target)


if __name__ == "__main__":
    app()
