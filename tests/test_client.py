"""Tests for the polling client (hippo/client.py)."""

import json

import httpx
import pytest

from hippo.client import TranscriptionClient
from hippo.errors import ClientRequestError, ErrorCode, PollTimeoutError, TranscriptionFailedError


class ScriptedApi:
    """Mock transport handler returning a scripted sequence of job statuses."""

    def __init__(self, statuses, result=None):
        self.statuses = list(statuses)
        self.result = result or {"job_id": "job-1", "transcript": "hello"}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/api/transcribe":
            return httpx.Response(200, json={"success": True, "job_id": "job-1", "status": "queued"})
        if path.startswith("/api/status/"):
            status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
            body = {"id": "job-1", "status": status}
            if status == "failed":
                body["error_message"] = "Deepgram API error: 500 - boom"
            return httpx.Response(200, json=body)
        if path.startswith("/api/result/"):
            return httpx.Response(200, json=self.result)
        if path == "/api/health":
            return httpx.Response(200, json={"status": "ok"})
        return httpx.Response(404, json={"success": False, "error": "Not found"})


def make_client(handler, sleeps=None):
    return TranscriptionClient(
        "http://hippo.test/",
        api_key="k",
        transport=httpx.MockTransport(handler),
        sleep=(sleeps.append if sleeps is not None else lambda s: None),
    )


class TestRequests:
    """Basic request handling."""

    def test_auth_header_and_base_url(self):
        """Requests carry the bearer token and hit the normalized base URL."""
        api = ScriptedApi(["completed"])
        with make_client(api) as client:
            client.get_status("job-1")

        request = api.requests[0]
        assert request.headers["Authorization"] == "Bearer k"
        assert str(request.url) == "http://hippo.test/api/status/job-1"

    def test_transcribe_posts_audio_key(self):
        """transcribe() sends the audio key as JSON."""
        api = ScriptedApi(["pending"])
        with make_client(api) as client:
            data = client.transcribe("audio/2024/01/15/a.mp3")

        assert data["job_id"] == "job-1"
        assert api.requests[0].method == "POST"
        assert json.loads(api.requests[0].content) == {"audio_key": "audio/2024/01/15/a.mp3"}

    def test_error_status_uses_body_error(self):
        """Non-2xx responses raise ClientRequestError with the API's message."""

        def handler(request):
            return httpx.Response(404, json={"success": False, "error": "Job not found: x"})

        with make_client(handler) as client:
            with pytest.raises(ClientRequestError) as exc:
                client.get_status("x")

        assert exc.value.status_code == 404
        assert exc.value.message == "Job not found: x"
        assert exc.value.error_code == ErrorCode.REQUEST_FAILED

    def test_timeout(self):
        """A transport timeout raises ClientRequestError('Request timeout')."""

        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with make_client(handler) as client:
            with pytest.raises(ClientRequestError) as exc:
                client.get_status("x")
        assert exc.value.message == "Request timeout"

    def test_health(self):
        """health() is a boolean and never raises."""

        def down(request):
            raise httpx.ConnectError("refused", request=request)

        with make_client(ScriptedApi(["pending"])) as client:
            assert client.health() is True
        with make_client(down) as client:
            assert client.health() is False


class TestPolling:
    """Bounded polling."""

    def test_waits_until_completed(self):
        """Polls at a fixed interval until completion, then fetches the result."""
        sleeps = []
        api = ScriptedApi(["pending", "processing", "completed"])

        with make_client(api, sleeps) as client:
            result = client.wait_for_transcription("job-1", max_attempts=5, interval=2.0)

        assert result["transcript"] == "hello"
        assert sleeps == [2.0, 2.0]

    def test_failed_job_raises(self):
        """A failed job raises TranscriptionFailedError with its message."""
        api = ScriptedApi(["processing", "failed"])

        with make_client(api) as client:
            with pytest.raises(TranscriptionFailedError) as exc:
                client.wait_for_transcription("job-1", max_attempts=5, interval=0)

        assert exc.value.message == "Deepgram API error: 500 - boom"

    def test_timeout_after_max_attempts(self):
        """Exhausting attempts raises PollTimeoutError, distinct from failure."""
        sleeps = []
        api = ScriptedApi(["processing"])

        with make_client(api, sleeps) as client:
            with pytest.raises(PollTimeoutError) as exc:
                client.wait_for_transcription("job-1", max_attempts=3, interval=5.0)

        assert exc.value.attempts == 3
        assert exc.value.error_code == ErrorCode.TIMEOUT
        assert len([r for r in api.requests if "/api/status/" in r.url.path]) == 3
        assert sleeps == [5.0, 5.0]

    def test_transcribe_and_wait(self):
        """transcribe_and_wait chains job creation and polling."""
        api = ScriptedApi(["completed"])

        with make_client(api) as client:
            result = client.transcribe_and_wait("audio/a.mp3", interval=0)

        assert result["job_id"] == "job-1"
        assert [r.url.path for r in api.requests] == [
            "/api/transcribe",
            "/api/status/job-1",
            "/api/result/job-1",
        ]
