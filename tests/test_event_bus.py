import asyncio

from app.core.event_bus import EventBus


async def test_publish_reaches_all_subscribers():
    bus = EventBus()
    seen = []

    async def first(data):
        seen.append(("first", data))

    def second(data):
        seen.append(("second", data))

    bus.subscribe("topic", first)
    bus.subscribe("topic", first)
    bus.subscribe("topic", second)
    await bus.publish("topic", 1)

    assert sorted(seen) == [("first", 1), ("second", 1)]

    bus.unsubscribe("topic", second)
    await bus.publish("topic", 2)
    assert seen[-1] == ("first", 2)
    assert len(seen) == 3


async def test_failing_or_slow_handler_does_not_block_others():
    bus = EventBus(handler_timeout=0.05)
    seen = []

    async def broken(data):
        raise RuntimeError("boom")

    async def slow(data):
        await asyncio.sleep(1)
        seen.append("slow")

    async def healthy(data):
        seen.append("healthy")

    for handler in (broken, slow, healthy):
        bus.subscribe("topic", handler)
    await bus.publish("topic", None)

    assert seen == ["healthy"]
