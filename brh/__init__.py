"""
brh: ブラウザ受け入れテスト用のセッション管理・同期エンジン

ワーカーごとのブラウザセッション管理、ポーリングによる明示的待機、
page object 向けの操作 API、再試行制御、失敗時成果物の取得を提供する。
"""

__version__ = "0.1.0"
