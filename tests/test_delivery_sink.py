import pytest

from convo_agent.domain.models.events import EventType, MessageEvent, StreamEvent
from convo_agent.domain.models.messages import Attachment, Citation
from convo_agent.domain.streaming.delivery_sink import BufferedSink, StreamingSink, create_sink
from convo_agent.domain.streaming.streaming_response import StreamingResponse


async def test_buffered_sink_sends_one_message(context, sender):
    sink = BufferedSink(context, enable_feedback_loop=True)
    await sink.queue_text_chunk("Hello", [Citation(content="source", title="Doc")])
    await sink.queue_text_chunk(" world")
    await sink.queue_attachment(Attachment(content_type="image/png", content_url="https://example.com/a.png"))

    await sink.end_turn()
    await sink.end_turn()

    assert len(sender.events) == 1
    message = sender.events[0]
    assert message.text == "Hello world"
    assert message.citations[0].title == "Doc"
    assert message.attachments[0].content_url == "https://example.com/a.png"
    assert message.channel_data == {"feedback_loop": True}


async def test_empty_buffered_sink_sends_nothing(context, sender):
    sink = BufferedSink(context)

    await sink.end_turn()

    assert sink.ended
    assert sender.events == []


async def test_empty_streaming_sink_sends_nothing(context, sender):
    sink = StreamingSink(context)

    await sink.end_turn()
    await sink.end_turn()

    assert sender.events == []


async def test_streaming_sink_batches_and_closes(context, sender):
    streamer = StreamingResponse(context, flush_interval=60, flush_chars=10)
    sink = StreamingSink(context, streamer=streamer)

    await sink.queue_text_chunk("short ")
    assert sender.events == []
    await sink.queue_text_chunk("and now long enough")
    await sink.queue_attachment(Attachment(content_type="application/pdf", name="report.pdf"))
    await sink.end_turn()

    chunks = sender.of_type("stream")
    assert [chunk.sequence for chunk in chunks] == [0, 1]
    assert chunks[0].payload == "short and now long enough"
    assert chunks[-1].final
    assert {chunk.stream_id for chunk in chunks} == {streamer.stream_id}
    assert streamer.message == "short and now long enough"

    attachments = sender.of_type("message")
    assert len(attachments) == 1
    assert attachments[0].attachments[0].name == "report.pdf"


async def test_stream_rejects_chunks_after_end(context):
    streamer = StreamingResponse(context)
    await streamer.end_stream()

    with pytest.raises(RuntimeError):
        await streamer.queue_text_chunk("late")


def test_cancel_sets_flag(context):
    sink = create_sink(context, stream=False)

    assert not sink.is_cancellation_requested
    sink.cancel()
    assert sink.is_cancellation_requested


def test_create_sink_picks_implementation(context):
    assert isinstance(create_sink(context, stream=True), StreamingSink)
    assert isinstance(create_sink(context, stream=False), BufferedSink)


async def test_streaming_sink_emits_domain_events(context, sender):
    sink = StreamingSink(context)
    await sink.queue_text_chunk("partial")
    await sink.queue_attachment(Attachment(content_type="image/png", content_url="https://example.com/b.png"))

    await sink.end_turn()

    stream_events = [event for event in sender.events if isinstance(event, StreamEvent)]
    message_events = [event for event in sender.events if isinstance(event, MessageEvent)]
    assert stream_events[-1].final is True
    assert [event.type for event in message_events] == [EventType.MESSAGE]
    assert message_events[0].model_dump(mode="json")["type"] == "message"
