"""Tests for the in-process message feed and its use by send_message."""
from __future__ import annotations

import asyncio

import pytest

from consensus import services
from consensus.errors import ValidationError
from consensus.feed import MessageFeed


class TestMessageFeed:
    def test_publish_without_subscribers(self):
        feed = MessageFeed()
        assert feed.publish(1, {"id": 1}) == 0

    @pytest.mark.asyncio
    async def test_delivers_in_publish_order(self):
        feed = MessageFeed()
        async with feed.subscribe(7) as sub:
            for n in range(5):
                feed.publish(7, {"id": n})
            received = [await sub.get(timeout=1.0) for _ in range(5)]
        assert [p["id"] for p in received] == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_filters_by_thread(self):
        feed = MessageFeed()
        async with feed.subscribe(1) as one, feed.subscribe(2) as two:
            feed.publish(2, {"id": "for-two"})
            assert await two.get(timeout=1.0) == {"id": "for-two"}
            assert one.pending == 0

    @pytest.mark.asyncio
    async def test_fans_out_to_every_subscriber(self):
        feed = MessageFeed()
        async with feed.subscribe(3) as a, feed.subscribe(3) as b:
            assert feed.publish(3, {"id": 9}) == 2
            assert (await a.get(timeout=1.0))["id"] == 9
            assert (await b.get(timeout=1.0))["id"] == 9

    @pytest.mark.asyncio
    async def test_unsubscribes_on_exit(self):
        feed = MessageFeed()
        async with feed.subscribe(4):
            assert feed.subscriber_count(4) == 1
        assert feed.subscriber_count(4) == 0
        assert feed.publish(4, {"id": 1}) == 0

    @pytest.mark.asyncio
    async def test_get_times_out(self):
        feed = MessageFeed()
        async with feed.subscribe(5) as sub:
            assert await sub.get(timeout=0.01) is None

    @pytest.mark.asyncio
    async def test_async_iteration(self):
        feed = MessageFeed()
        async with feed.subscribe(6) as sub:
            feed.publish(6, {"id": "a"})
            feed.publish(6, {"id": "b"})
            seen = []
            async for payload in sub:
                seen.append(payload["id"])
                if len(seen) == 2:
                    break
        assert seen == ["a", "b"]

    @pytest.mark.asyncio
    async def test_waiting_subscriber_is_woken(self):
        feed = MessageFeed()
        async with feed.subscribe(8) as sub:
            waiter = asyncio.create_task(sub.get(timeout=1.0))
            await asyncio.sleep(0)
            feed.publish(8, {"id": "late"})
            assert (await waiter)["id"] == "late"


class TestSendMessagePublishes:
    @pytest.mark.asyncio
    async def test_participant_receives_live_message(self, session, profiles):
        a, b = profiles["alice"], profiles["bob"]
        claim = services.create_claim(session, a, "X is true", "fact")
        _, thread = services.create_reply_with_thread(session, claim.id, b, "X is false", "contradicts")
        feed = MessageFeed()

        async with feed.subscribe(thread.id) as sub:
            sent = services.send_message(session, thread.id, b, "let's discuss", feed=feed)
            payload = await sub.get(timeout=1.0)

        assert payload["id"] == sent.id
        assert payload["body"] == "let's discuss"
        assert payload["sender_id"] == b
        history = services.list_messages(session, thread.id, a)
        assert history[-1].id == payload["id"]

    @pytest.mark.asyncio
    async def test_other_threads_not_notified(self, session, profiles):
        a, b, c = profiles["alice"], profiles["bob"], profiles["carol"]
        claim = services.create_claim(session, a, "X", "fact")
        _, t1 = services.create_reply_with_thread(session, claim.id, b, "no", "contradicts")
        _, t2 = services.create_reply_with_thread(session, claim.id, c, "yes", "supports")
        feed = MessageFeed()

        async with feed.subscribe(t2.id) as sub:
            services.send_message(session, t1.id, b, "only for thread one", feed=feed)
            assert await sub.get(timeout=0.05) is None

    def test_failed_send_publishes_nothing(self, session, profiles):
        a, b = profiles["alice"], profiles["bob"]
        claim = services.create_claim(session, a, "X", "fact")
        _, thread = services.create_reply_with_thread(session, claim.id, b, "no", "contradicts")
        feed = MessageFeed()
        published = []
        feed.publish = lambda thread_id, payload: published.append(payload)  # type: ignore[method-assign]
        with pytest.raises(ValidationError):
            services.send_message(session, thread.id, b, "   ", feed=feed)
        assert published == []
