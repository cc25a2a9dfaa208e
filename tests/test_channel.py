"""
Tests for the bounded frame channel.
"""

import random
import threading
import time

import pytest

from conftest import make_frame
from models.errors import ChannelClosed
from pipeline.channel import BoundedFrameChannel, DEFAULT_CAPACITY


def tiny_frame(index):
    return make_frame(2, 2, index=index)


class TestBoundedFrameChannel:
    def test_default_capacity(self):
        assert BoundedFrameChannel().capacity == DEFAULT_CAPACITY == 100

    @pytest.mark.parametrize("capacity", [0, -3])
    def test_invalid_capacity(self, capacity):
        with pytest.raises(ValueError):
            BoundedFrameChannel(capacity=capacity)

    def test_fifo_single_thread(self):
        channel = BoundedFrameChannel(capacity=5)
        for i in range(5):
            channel.send(tiny_frame(i))
        assert [channel.receive().frame_index for _ in range(5)] == list(range(5))

    def test_fifo_across_threads_at_different_rates(self):
        channel = BoundedFrameChannel(capacity=4, poll_interval=0.01)
        n = 300
        received = []
        max_depth = []

        def consumer():
            rng = random.Random(1)
            for _ in range(n):
                received.append(channel.receive().frame_index)
                max_depth.append(channel.qsize())
                if rng.random() < 0.1:
                    time.sleep(0.002)

        t = threading.Thread(target=consumer)
        t.start()
        rng = random.Random(2)
        for i in range(n):
            channel.send(tiny_frame(i))
            if rng.random() < 0.05:
                time.sleep(0.003)
        t.join(timeout=10)

        assert not t.is_alive()
        assert received == list(range(n))
        assert max(max_depth) <= 4

    def test_send_blocks_when_full(self):
        channel = BoundedFrameChannel(capacity=3, poll_interval=0.01)
        for i in range(3):
            channel.send(tiny_frame(i))
        assert channel.full()

        sent = threading.Event()

        def producer():
            channel.send(tiny_frame(3))
            sent.set()

        t = threading.Thread(target=producer)
        t.start()
        time.sleep(0.2)
        assert not sent.is_set()
        assert channel.qsize() == 3

        assert channel.receive().frame_index == 0
        assert sent.wait(timeout=2)
        t.join(timeout=2)
        assert channel.qsize() == 3
        assert [channel.receive().frame_index for _ in range(3)] == [1, 2, 3]

    def test_receive_blocks_until_frame_arrives(self):
        channel = BoundedFrameChannel(capacity=2, poll_interval=0.01)
        result = []

        t = threading.Thread(target=lambda: result.append(channel.receive()))
        t.start()
        time.sleep(0.1)
        assert t.is_alive()

        channel.send(tiny_frame(42))
        t.join(timeout=2)
        assert result[0].frame_index == 42

    def test_close_drains_then_raises(self):
        channel = BoundedFrameChannel(capacity=5, poll_interval=0.01)
        channel.send(tiny_frame(0))
        channel.send(tiny_frame(1))
        channel.close()

        with pytest.raises(ChannelClosed):
            channel.send(tiny_frame(2))
        assert channel.receive().frame_index == 0
        assert channel.receive().frame_index == 1
        with pytest.raises(ChannelClosed):
            channel.receive()

    def test_iteration_stops_at_close(self):
        channel = BoundedFrameChannel(capacity=5, poll_interval=0.01)
        for i in range(3):
            channel.send(tiny_frame(i))
        channel.close()
        assert [f.frame_index for f in channel] == [0, 1, 2]

    def test_cancel_unblocks_receiver(self):
        channel = BoundedFrameChannel(capacity=2, poll_interval=0.01)
        errors = []

        def consumer():
            try:
                channel.receive()
            except ChannelClosed as e:
                errors.append(e)

        t = threading.Thread(target=consumer)
        t.start()
        time.sleep(0.05)
        channel.cancel()
        t.join(timeout=2)
        assert not t.is_alive()
        assert len(errors) == 1

    def test_cancel_unblocks_sender_and_discards_frames(self):
        channel = BoundedFrameChannel(capacity=1, poll_interval=0.01)
        channel.send(tiny_frame(0))
        errors = []

        def producer():
            try:
                channel.send(tiny_frame(1))
            except ChannelClosed as e:
                errors.append(e)

        t = threading.Thread(target=producer)
        t.start()
        time.sleep(0.05)
        channel.cancel()
        t.join(timeout=2)
        assert not t.is_alive()
        assert channel.cancelled
        with pytest.raises(ChannelClosed):
            channel.receive()

    def test_shared_cancel_event(self):
        event = threading.Event()
        channel = BoundedFrameChannel(capacity=1, cancel_event=event, poll_interval=0.01)
        event.set()
        with pytest.raises(ChannelClosed):
            channel.send(tiny_frame(0))
