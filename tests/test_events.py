from trufflepay.events import Event, FanOutEventSink, MemoryEventSink


class TestEventSinks:
    def test_memory_sink_is_bounded(self):
        sink = MemoryEventSink(maxlen=3)
        for i in range(5):
            sink.emit(Event("invoice.created", {"n": i}))

        assert [e.payload["n"] for e in sink.recent(10)] == [2, 3, 4]
        assert sink.recent(0) == []

    def test_fan_out_reaches_every_sink(self):
        first, second = MemoryEventSink(), MemoryEventSink()
        FanOutEventSink(first, second).emit(Event("invoice.paid", {}))

        assert first.topics() == second.topics() == ["invoice.paid"]

    def test_event_to_dict(self):
        event = Event("generation.failed", {"invoice_id": "abc"}, timestamp=1.0)
        assert event.to_dict() == {
            "topic": "generation.failed",
            "payload": {"invoice_id": "abc"},
            "timestamp": 1.0,
        }
