"""
SessionRegistry: ワーカーとセッションの対応表

呼び出し元ワーカー（スレッド）ごとに READY なセッションを高々 1 つ保持する。
対応表はワーカー間で共有される唯一の状態であり、ロックで保護する。
セッション内部はワーカー専有のためロックしない。

主な機能:
  - get(): ワーカーのセッションを返す（未作成・非 READY なら新規起動）
  - release(): ワーカーのセッションを終了して対応表から削除（未登録なら何もしない）
  - release_all(): 全セッションの終了（ランナー終了時）
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Hashable, Optional

from .session import Session, SessionSettings

if TYPE_CHECKING:
    from .session import DriverFactory

logger = logging.getLogger(__name__)


def current_worker_id() -> int:
    """呼び出しスレッドのワーカー ID を返す。"""
    return threading.get_ident()


class SessionRegistry:
    """ワーカー ID をキーとするセッションの対応表。

    セッションの起動・終了（ブラウザとの通信）はロックの外で行い、
    他ワーカーの get / release を待たせない。同じワーカー ID への操作は
    そのワーカー自身からしか行われないため、起動中の競合は発生しない。
    """

    def __init__(
        self,
        settings: SessionSettings,
        driver_factory: Optional[DriverFactory] = None,
    ) -> None:
        """SessionRegistry を初期化する。

        Args:
            settings: 新規セッションに適用する設定
            driver_factory: ドライバ生成関数（None で Playwright を起動）
        """
        self._settings = settings
        self._driver_factory = driver_factory
        self._sessions: dict[Hashable, Session] = {}
        self._lock = threading.Lock()
        self.created_count = 0

    @property
    def settings(self) -> SessionSettings:
        return self._settings

    def get(self, worker_id: Optional[Hashable] = None) -> Session:
        """ワーカーの READY なセッションを返す。

        未登録、または登録済みセッションが READY でない場合は新規に起動して登録する。
        起動に失敗した場合は何も登録しない。

        Args:
            worker_id: ワーカー ID（None で呼び出しスレッド）

        Raises:
            SessionStartFailed: セッションの起動に失敗した場合
        """
        key = current_worker_id() if worker_id is None else worker_id

        with self._lock:
            existing = self._sessions.get(key)
            if existing is not None and existing.is_ready:
                return existing
            if existing is not None:
                # CLOSING / CLOSED のセッションは返さずに破棄する
                del self._sessions[key]

        session = Session(self._settings, self._driver_factory)
        session.start()

        with self._lock:
            self._sessions[key] = session
            self.created_count += 1
        logger.debug("ワーカー %s にセッション %s を割り当てました", key, session.id)
        return session

    def peek(self, worker_id: Optional[Hashable] = None) -> Optional[Session]:
        """ワーカーに登録済みのセッションを返す。起動はしない。"""
        key = current_worker_id() if worker_id is None else worker_id
        with self._lock:
            return self._sessions.get(key)

    def release(self, worker_id: Optional[Hashable] = None) -> None:
        """ワーカーのセッションを終了し、対応表から削除する。

        未登録の場合は何もしない（2 回目以降の呼び出しはエラーにも二重終了にもならない）。

        Args:
            worker_id: ワーカー ID（None で呼び出しスレッド）
        """
        key = current_worker_id() if worker_id is None else worker_id
        with self._lock:
            session = self._sessions.pop(key, None)
        if session is None:
            return
        session.close()
        logger.debug("ワーカー %s のセッション %s を解放しました", key, session.id)

    def release_all(self) -> None:
        """登録済みの全セッションを終了する。"""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()
        if sessions:
            logger.info("%d 件のセッションを解放しました", len(sessions))

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
