"""
變更通知：遊戲狀態改變後通知訂閱者

發佈 / 訂閱模式，以 game_id 為頻道。
通知只是「該重新抓資料了」的提示，不是狀態本身：
- best effort：訂閱者失敗或佇列已滿就丟棄，只記 log
- 發佈一定發生在 commit 之後，訂閱者重新讀取時看得到新狀態
"""
import asyncio
import logging
import uuid
from collections import defaultdict
from dataclasses import asdict, dataclass
from threading import Lock
from typing import Callable, Dict, Tuple

from database import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    """一次變更：哪個遊戲、哪種資料、變更後的 state_version"""
    game_id: str
    entity: str
    state_version: int
    reason: str

    def to_dict(self) -> dict:
        return dict(asdict(self), type="change")


ChangeHandler = Callable[[ChangeEvent], None]


class ChangeFeed:
    """執行緒安全的變更通知中心"""

    def __init__(self, queue_size: int = 100):
        self._queue_size = queue_size
        self._handlers: Dict[str, Dict[str, ChangeHandler]] = defaultdict(dict)
        self._lock = Lock()

    def subscribe(self, game_id: str, handler: ChangeHandler) -> str:
        """
        訂閱某個遊戲的變更

        返回：
            subscription id，用於 unsubscribe
        """
        subscription_id = str(uuid.uuid4())
        with self._lock:
            self._handlers[game_id][subscription_id] = handler
        logger.debug(f"Subscription {subscription_id} added for game {game_id}")
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        with self._lock:
            for game_id, handlers in list(self._handlers.items()):
                if subscription_id in handlers:
                    del handlers[subscription_id]
                    if not handlers:
                        del self._handlers[game_id]
                    return True
        return False

    def subscriber_count(self, game_id: str) -> int:
        with self._lock:
            return len(self._handlers.get(game_id, {}))

    def subscribe_queue(
        self,
        game_id: str,
        loop: asyncio.AbstractEventLoop
    ) -> Tuple[str, asyncio.Queue]:
        """
        以 asyncio.Queue 訂閱（給 WebSocket 使用）

        publish 可能在 threadpool 裡被呼叫，所以透過 call_soon_threadsafe
        把事件交回 queue 所屬的 event loop。
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)

        def offer(event: ChangeEvent) -> None:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    f"Subscriber queue full for game {event.game_id}, "
                    f"dropping {event.reason} (v{event.state_version})"
                )

        def handler(event: ChangeEvent) -> None:
            loop.call_soon_threadsafe(offer, event)

        return self.subscribe(game_id, handler), queue

    def publish(self, event: ChangeEvent) -> int:
        """
        發佈變更給所有訂閱者

        返回：
            成功交付的訂閱者數量
        """
        with self._lock:
            handlers = list(self._handlers.get(event.game_id, {}).items())

        delivered = 0
        for subscription_id, handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception as e:
                logger.warning(
                    f"Dropping {event.reason} for subscription {subscription_id}: {e}"
                )

        logger.debug(
            f"Published {event.reason} for game {event.game_id} "
            f"to {delivered}/{len(handlers)} subscribers"
        )
        return delivered


change_feed = ChangeFeed(queue_size=settings.feed_queue_size)


def get_change_feed() -> ChangeFeed:
    """FastAPI dependency：取得全域的 ChangeFeed"""
    return change_feed
