import json
from typing import List

from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from cooked_agent.main import app, _sse_data_event
from cooked_agent.providers.mock import FailingGateway, MockGateway

SCORES = json.dumps(
    {
        "categoryScores": {
            "activity": {"score": 80},
            "skillSignals": {"score": 70},
            "growth": {"score": 60},
            "collaboration": {"score": 50},
        }
    }
)


def _lower_headers(resp) -> dict:
    return {k.lower(): v for k, v in (resp.headers or {}).items()}


def _get_metric_count(name: str, labels: dict) -> float:
    val = REGISTRY.get_sample_value(name, labels)
    return float(val) if val is not None else 0.0


def _use_gateway(monkeypatch, gw):
    monkeypatch.setattr(app.state, "gateway", gw, raising=False)
    return gw


def _create(client, uid, metrics_data, profile, **extra):
    body = {"metrics": metrics_data, "profile": profile}
    body.update(extra)
    r = client.post("/sessions", json=body, headers={"X-User-Id": uid})
    assert r.status_code == 200, r.text
    return r.json()


def _sse_lines(resp) -> List[str]:
    lines: List[str] = []
    for line in resp.iter_lines():
        if line is None:
            continue
        lines.append(line)
    return lines


def _result_event(lines: List[str]) -> dict:
    idx = lines.index("event: result")
    return json.loads(lines[idx + 1][len("data: "):])


def test_sse_data_event_prefixes_every_line():
    assert _sse_data_event("a\nb") == "data: a\ndata: b\n\n"
    assert _sse_data_event("") == "data: \n\n"


def test_health_and_metrics_endpoints():
    with TestClient(app) as client:
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json() == {"status": "ok"}
        m = client.get("/metrics")
        assert m.status_code == 200
        assert "cooked_http_requests_total" in m.text


def test_http_metrics_increment_on_2xx_and_4xx():
    with TestClient(app) as client:
        before_ok = _get_metric_count("cooked_http_requests_total", {"method": "GET", "path": "/health", "status_class": "2xx"})
        before_dur = _get_metric_count("cooked_http_request_duration_seconds_count", {"method": "GET", "path": "/health"})
        before_404 = _get_metric_count("cooked_http_requests_total", {"method": "GET", "path": "/nope", "status_class": "4xx"})

        assert client.get("/health").status_code == 200
        assert client.get("/nope").status_code == 404

        assert _get_metric_count("cooked_http_requests_total", {"method": "GET", "path": "/health", "status_class": "2xx"}) >= before_ok + 1
        assert _get_metric_count("cooked_http_request_duration_seconds_count", {"method": "GET", "path": "/health"}) >= before_dur + 1
        assert _get_metric_count("cooked_http_requests_total", {"method": "GET", "path": "/nope", "status_class": "4xx"}) >= before_404 + 1


def test_request_id_is_echoed_or_generated():
    with TestClient(app) as client:
        r = client.get("/health", headers={"X-Request-Id": "rid-123"})
        assert r.headers.get("X-Request-Id") == "rid-123"
        r2 = client.get("/health")
        assert r2.headers.get("X-Request-Id")


def test_create_session_validates_body():
    with TestClient(app) as client:
        r = client.post("/sessions", json={"metrics": {}}, headers={"X-User-Id": "u-bad"})
        assert r.status_code == 400


def test_free_plan_session_ignores_display_name(monkeypatch, metrics_data, profile):
    _use_gateway(monkeypatch, MockGateway())
    with TestClient(app) as client:
        s = _create(client, "u-free", metrics_data, profile, planId="free", displayName="Chef")
        assert s["plan"] == "free"
        assert s["displayName"] == "AmICooked Agent"
        assert s["memoryStatus"]["hasContext"] is True


def test_chat_message_non_streaming(monkeypatch, metrics_data, profile):
    gw = _use_gateway(monkeypatch, MockGateway())
    with TestClient(app) as client:
        s = _create(client, "u-chat", metrics_data, profile, planId="student")
        r = client.post(f"/sessions/{s['sessionId']}/messages", json={"message": "How am I doing?"}, headers={"X-User-Id": "u-chat"})
        assert r.status_code == 200
        body = r.json()
        assert "# USER MESSAGE\nHow am I doing?" in body["response"]
        assert body["memoryStatus"]["messageCount"] == 2
        assert body["chatId"] is None
        assert "# MODE: Conversational follow-up" in gw.calls[-1]["system"]


def test_chat_stream_headers_and_result_event(monkeypatch, metrics_data, profile):
    _use_gateway(monkeypatch, MockGateway())
    with TestClient(app) as client:
        s = _create(client, "u-sse", metrics_data, profile)
        with client.stream(
            "POST",
            f"/sessions/{s['sessionId']}/messages",
            json={"message": "ping", "stream": True},
            headers={"accept": "text/event-stream", "x-request-id": "rid-abc", "X-User-Id": "u-sse"},
        ) as resp:
            h = _lower_headers(resp)
            assert "text/event-stream" in (h.get("content-type") or "")
            assert "charset" in (h.get("content-type") or "").lower()
            assert "no-cache" in (h.get("cache-control") or "").lower()
            assert "no-transform" in (h.get("cache-control") or "").lower()
            assert (h.get("connection") or "").lower().find("keep-alive") >= 0
            assert (h.get("x-accel-buffering") or "").lower() == "no"
            assert h.get("x-request-id") == "rid-abc"

            lines = _sse_lines(resp)

        assert lines[0] == "data: ## USE"
        result = _result_event(lines)
        assert result["response"].startswith("## USER PROFILE")
        assert result["memoryStatus"]["messageCount"] == 2
        assert "data: [DONE]" in [l.strip() for l in lines]


def test_stream_error_is_an_event_then_done(monkeypatch, metrics_data, profile):
    _use_gateway(monkeypatch, FailingGateway())
    with TestClient(app) as client:
        s = _create(client, "u-sse-err", metrics_data, profile)
        with client.stream(
            "POST",
            f"/sessions/{s['sessionId']}/messages?stream=true",
            json={"message": "ping"},
            headers={"X-User-Id": "u-sse-err"},
        ) as resp:
            assert resp.status_code == 200
            lines = _sse_lines(resp)
        idx = lines.index("event: error")
        assert json.loads(lines[idx + 1][len("data: "):])["error"] == "provider_error"
        assert "data: [DONE]" in [l.strip() for l in lines]


def test_turns_persist_to_saved_chat(monkeypatch, metrics_data, profile):
    _use_gateway(monkeypatch, MockGateway())
    headers = {"X-User-Id": "u-persist"}
    with TestClient(app) as client:
        s = _create(client, "u-persist", metrics_data, profile, planId="student")
        r1 = client.post(f"/sessions/{s['sessionId']}/messages", json={"message": "first", "createChat": True}, headers=headers)
        chat_id = r1.json()["chatId"]
        assert chat_id
        r2 = client.post(f"/sessions/{s['sessionId']}/messages", json={"message": "second"}, headers=headers)
        assert r2.json()["chatId"] == chat_id

        resumed = _create(client, "u-persist", metrics_data, profile, planId="student", chatId=chat_id)
        assert resumed["chatId"] == chat_id
        assert resumed["memoryStatus"]["messageCount"] == 4


def test_unknown_or_foreign_session_is_404(monkeypatch, metrics_data, profile):
    _use_gateway(monkeypatch, MockGateway())
    with TestClient(app) as client:
        assert client.post("/sessions/nope/messages", json={"message": "x"}, headers={"X-User-Id": "u"}).status_code == 404
        s = _create(client, "owner", metrics_data, profile)
        r = client.post(f"/sessions/{s['sessionId']}/analysis", headers={"X-User-Id": "intruder"})
        assert r.status_code == 404
        assert r.json() == {"error": "session_not_found"}


def test_analysis_endpoint_returns_deterministic_level(monkeypatch, metrics_data, profile):
    _use_gateway(monkeypatch, MockGateway())
    with TestClient(app) as client:
        s = _create(client, "u-analysis", metrics_data, profile)
        r = client.post(f"/sessions/{s['sessionId']}/analysis", headers={"X-User-Id": "u-analysis"})
        assert r.status_code == 200
        body = r.json()
        assert body["level"] == 5
        assert body["levelName"] == "Cooked"
        assert set(body["categoryScores"]) == {"activity", "skillSignals", "growth", "collaboration"}


def test_analysis_stream_ends_with_result(monkeypatch, metrics_data, profile):
    _use_gateway(monkeypatch, MockGateway())
    with TestClient(app) as client:
        s = _create(client, "u-analysis-sse", metrics_data, profile)
        with client.stream(
            "POST", f"/sessions/{s['sessionId']}/analysis", json={"stream": True}, headers={"X-User-Id": "u-analysis-sse"}
        ) as resp:
            lines = _sse_lines(resp)
        assert any(l.startswith("data:") for l in lines)
        assert _result_event(lines)["level"] == 5


def test_provider_failure_maps_to_502(monkeypatch, metrics_data, profile):
    _use_gateway(monkeypatch, FailingGateway())
    with TestClient(app) as client:
        s = _create(client, "u-502", metrics_data, profile)
        r = client.post(f"/sessions/{s['sessionId']}/analysis", headers={"X-User-Id": "u-502"})
        assert r.status_code == 502
        assert r.json()["error"] == "provider_error"


def test_synthesis_failure_then_retry(monkeypatch, metrics_data, profile):
    _use_gateway(monkeypatch, MockGateway([SCORES, "garbled narrative"]))
    headers = {"X-User-Id": "u-synth"}
    with TestClient(app) as client:
        s = _create(client, "u-synth", metrics_data, profile)
        sid = s["sessionId"]

        assert client.post(f"/sessions/{sid}/analysis/synthesis", headers=headers).status_code == 409

        r = client.post(f"/sessions/{sid}/analysis", headers=headers)
        assert r.status_code == 502
        body = r.json()
        assert body["error"] == "synthesis_failed"
        assert body["scores"]["level"] == 7
        assert body["scores"]["levelName"] == "Toasted"

        retry = client.post(f"/sessions/{sid}/analysis/synthesis", headers=headers)
        assert retry.status_code == 200
        assert retry.json()["level"] == 7


def test_scoring_failure_maps_to_502(monkeypatch, metrics_data, profile):
    _use_gateway(monkeypatch, MockGateway(["nothing", "still nothing"]))
    with TestClient(app) as client:
        s = _create(client, "u-score-fail", metrics_data, profile)
        r = client.post(f"/sessions/{s['sessionId']}/analysis", headers={"X-User-Id": "u-score-fail"})
        assert r.status_code == 502
        assert r.json()["error"] == "scoring_failed"


def test_recommendations_and_skills(monkeypatch, metrics_data, profile):
    _use_gateway(monkeypatch, MockGateway())
    headers = {"X-User-Id": "u-skills"}
    with TestClient(app) as client:
        s = _create(client, "u-skills", metrics_data, profile)
        sid = s["sessionId"]

        r = client.post(f"/sessions/{sid}/recommendations", headers=headers)
        assert r.status_code == 200
        project = r.json()["projects"][0]
        assert project["name"] == "Deployed Task Tracker API"
        assert len(project["suggestedStack"]) == 3

        missing = client.post(f"/sessions/{sid}/skills/makeCoffee", headers=headers)
        assert missing.status_code == 404
        assert missing.json()["error"] == "skill_not_found"

        progress = client.post(f"/sessions/{sid}/skills/compareProgress", headers=headers)
        assert progress.status_code == 200
        assert progress.json() == {
            "skill": "compareProgress",
            "ok": False,
            "error": "no_previous_analysis",
            "message": "This is your first analysis. Complete some projects and return for a progress check!",
        }

        path = client.post(f"/sessions/{sid}/skills/generateLearningPath", headers=headers)
        assert path.json()["data"]["targetRole"] == "Backend Engineer"

        chat = client.post(
            f"/sessions/{sid}/project-messages",
            json={"message": "Where do I start?", "project": project},
            headers=headers,
        )
        assert chat.status_code == 200
        assert "# USER MESSAGE\nWhere do I start?" in chat.json()["response"]


def test_memory_operations(monkeypatch, metrics_data, profile):
    _use_gateway(monkeypatch, MockGateway())
    headers = {"X-User-Id": "u-mem"}
    with TestClient(app) as client:
        s = _create(client, "u-mem", metrics_data, profile, planId="pro")
        url = f"/sessions/{s['sessionId']}/memory"

        r = client.post(url, json={"op": "add", "item": {"type": "goal", "content": "Ship an API"}}, headers=headers)
        assert [m["content"] for m in r.json()["memory"]] == ["Ship an API"]

        r = client.post(url, json={"op": "identity", "identity": {"name": "Chef", "personality": "coach"}}, headers=headers)
        assert r.json()["ok"] is True
        assert r.json()["displayName"] == "Chef"

        r = client.post(url, json={"op": "disable"}, headers=headers)
        assert r.json()["memoryStatus"]["memoryEnabled"] is False

        r = client.post(url, json={"op": "delete", "index": 0}, headers=headers)
        assert r.json()["memory"] == []

        assert client.post(url, json={"op": "delete", "index": "zero"}, headers=headers).status_code == 400
        assert client.post(url, json={"op": "explode"}, headers=headers).status_code == 400

        resumed = _create(client, "u-mem", metrics_data, profile, planId="pro")
        assert resumed["displayName"] == "Chef"
        assert resumed["icon"]


def test_end_session_schedules_extraction_and_closes(monkeypatch, metrics_data, profile):
    _use_gateway(monkeypatch, MockGateway())
    headers = {"X-User-Id": "u-end"}
    with TestClient(app) as client:
        s = _create(client, "u-end", metrics_data, profile, planId="student")
        sid = s["sessionId"]
        client.post(f"/sessions/{sid}/messages", json={"message": "I want a backend job."}, headers=headers)

        r = client.post(f"/sessions/{sid}/end", headers=headers)
        assert r.status_code == 200
        assert r.json() == {"ended": True, "extractionScheduled": True}
        assert client.post(f"/sessions/{sid}/end", headers=headers).status_code == 404

        free = _create(client, "u-end-free", metrics_data, profile, planId="free")
        client.post(f"/sessions/{free['sessionId']}/messages", json={"message": "hi"}, headers={"X-User-Id": "u-end-free"})
        r = client.post(f"/sessions/{free['sessionId']}/end", headers={"X-User-Id": "u-end-free"})
        assert r.json()["extractionScheduled"] is False
