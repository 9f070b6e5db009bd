"""End-to-end tests for transcription runs with a fake transport client."""
import asyncio
import json
import logging
from unittest.mock import AsyncMock

import pytest

from videonotes.errors import MissingInput, RemoteProcessingFailed, TransportError
from videonotes.models import FileState, PayloadCandidate, RemoteFileHandle, TranscribeConfig
from videonotes.orchestrator import ProcessState, TranscriptionOrchestrator
from videonotes.utils.events import (
    ErrorRecord,
    FileActive,
    FileProcessing,
    GenerateReceived,
    GenerateStart,
    ResultRecord,
    UploadComplete,
    UploadStart,
    encode_ndjson,
)

MODEL = "gemini-1.5-flash"
GOOD_OUTPUT = '{"transcript":"hello world","notes":["intro","outro"]}'


def _handle(state: FileState, **overrides) -> RemoteFileHandle:
    values = dict(
        name="files/abc",
        uri="https://gemini.test/v1beta/files/abc",
        mime_type="video/mp4",
        state=state,
    )
    values.update(overrides)
    return RemoteFileHandle(**values)


def _fake_client(upload_state=FileState.PROCESSING, statuses=(), output=GOOD_OUTPUT):
    client = AsyncMock()
    client.begin_upload.return_value = "https://gemini.test/session/1"
    client.send_payload.return_value = _handle(upload_state)
    client.get_file_status.side_effect = list(statuses)
    client.generate.return_value = output
    return client


def _payload(data: bytes = b"0123456789") -> PayloadCandidate:
    return PayloadCandidate.from_bytes(data, "talk.mp4", "video/mp4")


async def _collect(process):
    return [record async for record in process]


@pytest.mark.asyncio
async def test_local_payload_processing_then_active():
    client = _fake_client(
        statuses=[_handle(FileState.PROCESSING), _handle(FileState.ACTIVE)]
    )
    sleep = AsyncMock()

    async with TranscriptionOrchestrator("key", client=client, sleep=sleep) as orchestrator:
        process = orchestrator.run(payload=_payload())
        records = await _collect(process)

    assert [type(r) for r in records] == [
        UploadStart,
        UploadComplete,
        FileProcessing,
        FileActive,
        GenerateStart,
        GenerateReceived,
        ResultRecord,
    ]
    assert records[0] == UploadStart("talk.mp4", "video/mp4", 10)
    assert records[1] == UploadComplete("files/abc", FileState.PROCESSING)
    assert records[2] == FileProcessing("files/abc", attempt=1, next_delay_ms=100)
    assert records[4] == GenerateStart(MODEL)

    result = records[-1].result
    assert result.transcript == "hello world"
    assert result.notes == ("intro", "outro")
    assert result.model == MODEL
    assert result.estimated_cost_usd == 0.0
    assert result.raw_response_fallback is None

    assert process.state == ProcessState.COMPLETED
    assert process.closed is True
    client.begin_upload.assert_awaited_once_with("key", "talk.mp4", "video/mp4", 10)
    attached = client.generate.await_args.args[3]
    assert attached.state == FileState.ACTIVE
    assert "Transcribe the attached video" in client.generate.await_args.args[2]


@pytest.mark.asyncio
async def test_remote_source_skips_upload():
    client = _fake_client()

    async with TranscriptionOrchestrator("key", client=client) as orchestrator:
        records = await _collect(orchestrator.run(url="https://www.youtube.com/watch?v=abc123"))

    assert [type(r) for r in records] == [GenerateStart, GenerateReceived, ResultRecord]
    client.begin_upload.assert_not_awaited()
    client.send_payload.assert_not_awaited()
    client.get_file_status.assert_not_awaited()
    api_key, model, prompt, attached = client.generate.await_args.args
    assert model == MODEL
    assert attached is None
    assert "Video URL: https://www.youtube.com/watch?v=abc123" in prompt
    assert "cannot access" in prompt


@pytest.mark.asyncio
async def test_already_active_upload_skips_polling():
    client = _fake_client(upload_state=FileState.ACTIVE)

    async with TranscriptionOrchestrator("key", client=client) as orchestrator:
        records = await _collect(orchestrator.run(payload=_payload()))

    assert [type(r) for r in records] == [
        UploadStart,
        UploadComplete,
        FileActive,
        GenerateStart,
        GenerateReceived,
        ResultRecord,
    ]
    client.get_file_status.assert_not_awaited()


@pytest.mark.asyncio
async def test_validation_error_emits_single_error_record():
    client = _fake_client()

    async with TranscriptionOrchestrator("key", client=client) as orchestrator:
        process = orchestrator.run(url="ftp://example.com/video.mp4")
        records = await _collect(process)

    assert records == [ErrorRecord("videoUrl must be a valid http(s) link.", "invalid_locator")]
    assert process.state == ProcessState.FAILED
    client.generate.assert_not_awaited()


@pytest.mark.asyncio
async def test_missing_credential_fails_before_network():
    client = _fake_client()

    async with TranscriptionOrchestrator("", client=client) as orchestrator:
        records = await _collect(orchestrator.run(payload=_payload()))

    assert len(records) == 1
    assert isinstance(records[0], ErrorRecord)
    assert records[0].kind == "missing_credential"
    client.begin_upload.assert_not_awaited()


@pytest.mark.asyncio
async def test_upload_failed_state():
    client = _fake_client(upload_state=FileState.FAILED)

    async with TranscriptionOrchestrator("key", client=client) as orchestrator:
        process = orchestrator.run(payload=_payload())
        records = await _collect(process)

    assert [type(r) for r in records] == [UploadStart, UploadComplete, ErrorRecord]
    assert isinstance(process.error, RemoteProcessingFailed)


@pytest.mark.asyncio
async def test_incomplete_handle_is_transport_error():
    client = _fake_client()
    client.send_payload.return_value = _handle(FileState.ACTIVE, uri="")

    async with TranscriptionOrchestrator("key", client=client) as orchestrator:
        process = orchestrator.run(payload=_payload())
        records = await _collect(process)

    assert [type(r) for r in records] == [UploadStart, UploadComplete, ErrorRecord]
    assert isinstance(process.error, TransportError)
    client.generate.assert_not_awaited()


@pytest.mark.asyncio
async def test_generation_failure_keeps_prior_events():
    client = _fake_client(upload_state=FileState.ACTIVE)
    client.generate.side_effect = TransportError("Gemini response missing content.")

    async with TranscriptionOrchestrator("key", client=client) as orchestrator:
        records = await _collect(orchestrator.run(payload=_payload()))

    assert [type(r) for r in records] == [
        UploadStart,
        UploadComplete,
        FileActive,
        GenerateStart,
        ErrorRecord,
    ]
    assert records[-1].message == "Gemini response missing content."


@pytest.mark.asyncio
async def test_unexpected_exception_uses_generic_message():
    client = _fake_client(upload_state=FileState.ACTIVE)
    client.generate.side_effect = KeyError("candidates")

    async with TranscriptionOrchestrator("key", client=client) as orchestrator:
        records = await _collect(orchestrator.run(payload=_payload()))

    assert records[-1] == ErrorRecord("Failed to process video. Check server logs for details.")


@pytest.mark.asyncio
async def test_unstructured_output_sets_fallback():
    client = _fake_client(output="Sorry, I could not read the video.")

    async with TranscriptionOrchestrator("key", client=client) as orchestrator:
        result = await orchestrator.transcribe(url="https://example.com/v")

    assert result.transcript == "Sorry, I could not read the video."
    assert result.raw_response_fallback == "Sorry, I could not read the video."
    assert result.notes == ()


@pytest.mark.asyncio
async def test_transcribe_raises_terminal_error():
    client = _fake_client()

    async with TranscriptionOrchestrator("key", client=client) as orchestrator:
        with pytest.raises(MissingInput):
            await orchestrator.transcribe()


@pytest.mark.asyncio
async def test_cancel_mid_poll_emits_no_terminal_record():
    client = _fake_client(statuses=[_handle(FileState.PROCESSING)] * 5)
    sleeping = asyncio.Event()

    async def blocking_sleep(seconds):
        sleeping.set()
        await asyncio.Event().wait()

    async with TranscriptionOrchestrator("key", client=client, sleep=blocking_sleep) as orchestrator:
        process = orchestrator.run(payload=_payload())
        records = []
        async for record in process:
            records.append(record)
            if isinstance(record, FileProcessing):
                await sleeping.wait()
                await process.cancel()

    assert [type(r) for r in records] == [UploadStart, UploadComplete, FileProcessing]
    assert process.state == ProcessState.CANCELLED
    assert process.closed is True
    assert process.result is None
    assert process.error is None
    client.generate.assert_not_awaited()


@pytest.mark.asyncio
async def test_consumer_leaving_early_cancels_run():
    client = _fake_client(statuses=[_handle(FileState.PROCESSING)] * 5)

    async def blocking_sleep(seconds):
        await asyncio.Event().wait()

    async with TranscriptionOrchestrator("key", client=client, sleep=blocking_sleep) as orchestrator:
        process = orchestrator.run(payload=_payload())
        async with process:
            async for record in process:
                if isinstance(record, FileProcessing):
                    break

    assert process.state == ProcessState.CANCELLED
    assert process.closed is True


@pytest.mark.asyncio
async def test_orchestrator_exit_cancels_running_process():
    client = _fake_client(statuses=[_handle(FileState.PROCESSING)] * 5)

    async def blocking_sleep(seconds):
        await asyncio.Event().wait()

    async with TranscriptionOrchestrator("key", client=client, sleep=blocking_sleep) as orchestrator:
        process = orchestrator.run(payload=_payload())
        await process.start()
        for _ in range(20):
            await asyncio.sleep(0)

    assert process.state == ProcessState.CANCELLED
    assert process.closed is True


@pytest.mark.asyncio
async def test_side_channels():
    client = _fake_client(upload_state=FileState.ACTIVE)

    async def send_payload(session_url, payload, progress_callback=None):
        await progress_callback(5, 10)
        await progress_callback(10, 10)
        return _handle(FileState.ACTIVE)

    client.send_payload.side_effect = send_payload
    progress = []
    phases = []
    results = []

    async with TranscriptionOrchestrator("key", client=client) as orchestrator:
        process = orchestrator.run(payload=_payload())
        process.on_upload_progress(lambda p: progress.append((p.filename, p.percent)))
        process.on_status(lambda event: phases.append(event.phase))
        process.on_result(results.append)
        await process.wait()

    assert progress == [("talk.mp4", 50.0), ("talk.mp4", 100.0)]
    assert phases == [
        "uploading",
        "upload-complete",
        "file-active",
        "generate-start",
        "generate-received",
    ]
    assert len(results) == 1


@pytest.mark.asyncio
async def test_independent_runs_do_not_share_state():
    client = _fake_client(upload_state=FileState.ACTIVE)

    async with TranscriptionOrchestrator("key", client=client) as orchestrator:
        first, second = await asyncio.gather(
            _collect(orchestrator.run(payload=_payload(b"abc"))),
            _collect(orchestrator.run(url="https://example.com/v")),
        )

    assert isinstance(first[-1], ResultRecord)
    assert isinstance(second[-1], ResultRecord)
    assert first[0] == UploadStart("talk.mp4", "video/mp4", 3)
    assert not any(isinstance(r, UploadStart) for r in second)


@pytest.mark.asyncio
async def test_records_serialize_to_ndjson():
    client = _fake_client(upload_state=FileState.ACTIVE)

    async with TranscriptionOrchestrator("key", client=client) as orchestrator:
        records = await _collect(orchestrator.run(payload=_payload()))

    lines = [json.loads(encode_ndjson(r)) for r in records]
    assert [line["type"] for line in lines] == ["status"] * 5 + ["result"]
    assert lines[-1]["data"]["notes"] == ["intro", "outro"]


@pytest.mark.asyncio
async def test_default_config_model_is_used():
    client = _fake_client()
    config = TranscribeConfig(model="gemini-2.0-flash")

    async with TranscriptionOrchestrator("key", config=config, client=client) as orchestrator:
        result = await orchestrator.transcribe(url="https://example.com/v")

    assert result.model == "gemini-2.0-flash"
    assert client.generate.await_args.args[1] == "gemini-2.0-flash"


@pytest.mark.asyncio
async def test_size_mismatch_is_reported_as_validation_error():
    client = _fake_client()
    candidate = PayloadCandidate(b"abc", "talk.mp4", "video/mp4", 2)

    async with TranscriptionOrchestrator("key", client=client) as orchestrator:
        records = await _collect(orchestrator.run(payload=candidate))

    assert len(records) == 1
    assert records[0].kind == "payload_size_mismatch"
    assert records[0].message != "Failed to process video. Check server logs for details."
    client.begin_upload.assert_not_awaited()


@pytest.mark.asyncio
async def test_cancelled_runs_are_released():
    client = _fake_client()
    client.get_file_status.side_effect = None
    client.get_file_status.return_value = _handle(FileState.PROCESSING)

    async def blocking_sleep(seconds):
        await asyncio.Event().wait()

    async with TranscriptionOrchestrator("key", client=client, sleep=blocking_sleep) as orchestrator:
        for _ in range(10):
            process = orchestrator.run(payload=_payload())
            async for record in process:
                if isinstance(record, FileProcessing):
                    await process.cancel()
            assert process.state == ProcessState.CANCELLED

        never_started = orchestrator.run(url="https://example.com/v")
        await never_started.cancel()

        await orchestrator.transcribe(url="https://example.com/v")
        with pytest.raises(MissingInput):
            await orchestrator.transcribe()

        assert orchestrator.active_processes == 0


@pytest.mark.asyncio
async def test_open_runs_are_tracked_until_closed():
    client = _fake_client()

    async with TranscriptionOrchestrator("key", client=client) as orchestrator:
        process = orchestrator.run(url="https://example.com/v")
        assert orchestrator.active_processes == 1
        await process.wait()
        assert orchestrator.active_processes == 0


@pytest.mark.asyncio
async def test_finished_stream_iterates_empty_again():
    client = _fake_client()

    async with TranscriptionOrchestrator("key", client=client) as orchestrator:
        process = orchestrator.run(url="https://example.com/v")
        first = await _collect(process)
        second = await asyncio.wait_for(_collect(process), timeout=1.0)
        third = await asyncio.wait_for(_collect(process), timeout=1.0)

    assert [type(r) for r in first] == [GenerateStart, GenerateReceived, ResultRecord]
    assert second == []
    assert third == []


@pytest.mark.asyncio
async def test_cancelled_stream_iterates_empty_again():
    client = _fake_client()

    async with TranscriptionOrchestrator("key", client=client) as orchestrator:
        process = orchestrator.run(url="https://example.com/v")
        await process.cancel()
        assert await asyncio.wait_for(_collect(process), timeout=1.0) == []
        assert await asyncio.wait_for(_collect(process), timeout=1.0) == []


def _telemetry(caplog):
    return [r.telemetry for r in caplog.records if hasattr(r, "telemetry")]


@pytest.mark.asyncio
async def test_success_telemetry_events(monkeypatch, caplog):
    monkeypatch.delenv("TELEMETRY_ENABLED", raising=False)
    client = _fake_client()

    with caplog.at_level(logging.INFO):
        async with TranscriptionOrchestrator("key", client=client) as orchestrator:
            process = orchestrator.run(url="https://example.com/v", request_id="req-42")
            await process.wait()

    events = _telemetry(caplog)
    assert [e["name"] for e in events] == [
        "process_request_received",
        "process_start_gemini",
        "gemini_transcribe",
        "transcribe_run",
        "process_success",
    ]
    assert all(e["request_id"] == "req-42" for e in events)
    assert events[1]["sourceType"] == "url"
    assert events[2]["outcome"] == "success"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs, event_name, field, value",
    [
        ({}, "process_missing_input", None, None),
        ({"url": "ftp://x"}, "process_invalid_video_url", "videoUrl", "ftp://x"),
        (
            {"payload": PayloadCandidate(b"abc", "a.mp3", "audio/mpeg", 3)},
            "process_invalid_upload_type",
            "mimeType",
            "audio/mpeg",
        ),
        (
            {"payload": PayloadCandidate(b"abc", "a.mp4", "video/mp4", 5)},
            "process_upload_size_mismatch",
            "actualBytes",
            3,
        ),
    ],
)
async def test_validation_failure_telemetry(monkeypatch, caplog, kwargs, event_name, field, value):
    monkeypatch.delenv("TELEMETRY_ENABLED", raising=False)
    client = _fake_client()

    with caplog.at_level(logging.INFO):
        async with TranscriptionOrchestrator("key", client=client) as orchestrator:
            await _collect(orchestrator.run(**kwargs))

    events = {e["name"]: e for e in _telemetry(caplog)}
    assert event_name in events
    assert "process_start_gemini" not in events
    assert "process_error" not in events
    if field is not None:
        assert events[event_name][field] == value


@pytest.mark.asyncio
async def test_upload_too_large_telemetry(monkeypatch, caplog):
    monkeypatch.delenv("TELEMETRY_ENABLED", raising=False)
    client = _fake_client()
    config = TranscribeConfig(max_upload_bytes=5)

    with caplog.at_level(logging.INFO):
        async with TranscriptionOrchestrator("key", config=config, client=client) as orchestrator:
            await _collect(orchestrator.run(payload=_payload()))

    events = {e["name"]: e for e in _telemetry(caplog)}
    assert events["process_upload_too_large"]["sizeBytes"] == 10
    assert events["process_upload_too_large"]["maxBytes"] == 5


@pytest.mark.asyncio
async def test_remote_failure_telemetry(monkeypatch, caplog):
    monkeypatch.delenv("TELEMETRY_ENABLED", raising=False)
    client = _fake_client(upload_state=FileState.FAILED)

    with caplog.at_level(logging.INFO):
        async with TranscriptionOrchestrator("key", client=client) as orchestrator:
            await _collect(orchestrator.run(payload=_payload()))

    events = {e["name"]: e for e in _telemetry(caplog)}
    assert events["process_error"]["kind"] == "remote_processing_failed"
    assert events["process_error"]["error"]["name"] == "RemoteProcessingFailed"
    assert events["gemini_transcribe"]["outcome"] == "error"
