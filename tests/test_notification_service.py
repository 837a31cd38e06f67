"""
ChangeFeed 測試：訂閱、發佈、best effort 行為
"""
import asyncio

from services.notification_service import ChangeEvent, ChangeFeed


def make_event(game_id="g1", version=1, reason="ROUND_SETTLED"):
    return ChangeEvent(game_id=game_id, entity="transaction", state_version=version, reason=reason)


def test_publish_reaches_only_the_game_subscribers():
    feed = ChangeFeed()
    received_g1, received_g2 = [], []
    feed.subscribe("g1", received_g1.append)
    feed.subscribe("g2", received_g2.append)

    delivered = feed.publish(make_event("g1"))

    assert delivered == 1
    assert received_g1 == [make_event("g1")]
    assert received_g2 == []


def test_unsubscribe():
    feed = ChangeFeed()
    received = []
    subscription_id = feed.subscribe("g1", received.append)

    assert feed.unsubscribe(subscription_id) is True
    assert feed.unsubscribe(subscription_id) is False
    assert feed.subscriber_count("g1") == 0

    feed.publish(make_event())
    assert received == []


def test_failing_subscriber_does_not_block_others():
    feed = ChangeFeed()
    received = []

    def broken(event):
        raise RuntimeError("socket closed")

    feed.subscribe("g1", broken)
    feed.subscribe("g1", received.append)

    assert feed.publish(make_event()) == 1
    assert received == [make_event()]


def test_event_payload():
    payload = make_event(version=7).to_dict()
    assert payload == {
        "type": "change",
        "game_id": "g1",
        "entity": "transaction",
        "state_version": 7,
        "reason": "ROUND_SETTLED",
    }


def test_queue_subscription_receives_events_from_other_threads():
    feed = ChangeFeed(queue_size=5)

    async def scenario():
        loop = asyncio.get_running_loop()
        _, queue = feed.subscribe_queue("g1", loop)
        await loop.run_in_executor(None, feed.publish, make_event(version=3))
        return await asyncio.wait_for(queue.get(), timeout=2)

    event = asyncio.run(scenario())
    assert event.state_version == 3


def test_full_queue_drops_events():
    feed = ChangeFeed(queue_size=1)

    async def scenario():
        loop = asyncio.get_running_loop()
        _, queue = feed.subscribe_queue("g1", loop)
        feed.publish(make_event(version=1))
        feed.publish(make_event(version=2))
        # 讓 call_soon_threadsafe 排進來的 callback 執行
        await asyncio.sleep(0.01)
        return queue.qsize(), queue.get_nowait()

    size, first = asyncio.run(scenario())
    assert size == 1
    assert first.state_version == 1
