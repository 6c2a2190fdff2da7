from structlog.testing import capture_logs

from services.events import EventChannel


class TestEventChannel:

    def test_publish_reaches_subscribers(self):
        channel = EventChannel()
        seen = []
        channel.subscribe("ping", lambda value: seen.append(("a", value)))
        channel.subscribe("ping", lambda value: seen.append(("b", value)))
        assert channel.publish("ping", value=1) == 2
        assert seen == [("a", 1), ("b", 1)]

    def test_unrelated_event(self):
        channel = EventChannel()
        channel.subscribe("ping", lambda **_: None)
        assert channel.publish("pong") == 0

    def test_failing_handler_is_isolated(self):
        channel = EventChannel()
        seen = []

        def broken(**_):
            raise RuntimeError("boom")

        channel.subscribe("ping", broken)
        channel.subscribe("ping", lambda **_: seen.append(True))
        with capture_logs() as logs:
            assert channel.publish("ping") == 1
        assert seen == [True]
        assert logs[0]["event"] == "event_handler_failed"
        assert logs[0]["log_level"] == "error"
        assert logs[0]["channel_event"] == "ping"

    def test_unsubscribe(self):
        channel = EventChannel()
        seen = []
        unsubscribe = channel.subscribe("ping", lambda: seen.append(1))
        unsubscribe()
        unsubscribe()
        channel.publish("ping")
        assert seen == []
