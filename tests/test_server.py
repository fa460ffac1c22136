from __future__ import annotations

from typing import Any, Optional

import httpx
from fastapi.testclient import TestClient

from axon_agent.config import AppConfig
from axon_agent.server import create_app


class _Box:
    def __init__(self, fs: dict[str, str]) -> None:
        self.fs = fs
        self.files = self

    def read(self, path: str, format: str = "text") -> str:
        name = path[len("/home/user/") :]
        if name not in self.fs:
            raise FileNotFoundError(path)
        return self.fs[name]

    def list(self, path: str, depth: int = 1) -> list[Any]:
        return []

    def run_code(self, code: str, timeout: Optional[float] = None) -> Any:
        raise RuntimeError("kernel died")

    def kill(self) -> None:
        pass


def _client(**cfg: Any) -> TestClient:
    fs = {"hello.py": "print('hello')\n", "site/index.html": "<h1>hi</h1>"}
    app = create_app(
        AppConfig(**cfg),
        sandbox_factory=lambda **kw: _Box(fs),
        search_transport=httpx.MockTransport(lambda r: httpx.Response(500, text="upstream down")),
    )
    return TestClient(app)


def test_health() -> None:
    r = _client().get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok" and body["timestamp"]
    assert body["capabilities"] == {"model": False, "search": False, "sandbox": False}


def test_sandbox_always_200() -> None:
    c = _client(e2b_api_key="k")
    r = c.post("/api/sandbox", json={"action": "execute", "code": "print(1)"})
    assert r.status_code == 200
    assert r.json()["success"] is False and "kernel died" in r.json()["error"]

    r = c.post("/api/sandbox", content=b"{not json", headers={"content-type": "application/json"})
    assert r.status_code == 200 and r.json()["error"] == "Failed to parse request"

    r = _client().post("/api/sandbox", json={"action": "execute", "code": "print(1)"})
    assert r.status_code == 200 and r.json()["error"] == "API key missing"


def test_search_routes() -> None:
    assert _client().get("/api/search").status_code == 400

    r = _client().get("/api/search", params={"query": "weather"})
    assert r.status_code == 200 and r.json()["simulated"] is True

    r = _client(tavily_api_key="k").get("/api/search", params={"query": "weather"})
    assert r.status_code == 502
    assert r.json()["error"] == "Search failed"


def test_download() -> None:
    c = _client(e2b_api_key="k")
    r = c.get("/api/download", params={"filename": "hello.py"})
    assert r.status_code == 200
    assert r.content == b"print('hello')\n"
    assert r.headers["content-type"] == "application/octet-stream"
    assert 'filename="hello.py"' in r.headers["content-disposition"]

    r = c.get("/api/download", params={"filename": "site/index.html"})
    assert r.status_code == 200 and r.content == b"<h1>hi</h1>"
    assert 'filename="index.html"' in r.headers["content-disposition"]

    assert c.get("/api/download", params={"filename": "nope.txt"}).status_code == 404
    assert c.get("/api/download", params={"filename": "/etc/passwd"}).status_code == 400
    assert c.get("/api/download", params={"filename": "../etc/passwd"}).status_code == 400
    assert c.get("/api/download").status_code == 400


def test_chat_and_session_lifecycle_with_fake_model() -> None:
    c = _client(fake_llm=True)
    r = c.post("/api/chat", json={"message": "search for today's weather in Paris"})
    assert r.status_code == 200
    body = r.json()
    assert body["turn"]["status"] == "completed"
    assert body["turn"]["message"]["content"]
    sid = body["session"]["id"]
    assert body["session"]["processing"] is False
    assert body["session"]["logs"][-1]["message"] == "Task completed successfully."

    sessions = c.get("/api/sessions").json()["sessions"]
    assert [s["id"] for s in sessions] == [sid]
    assert sessions[0]["icon_type"] == "search"

    snap = c.get(f"/api/sessions/{sid}").json()
    assert [m["role"] for m in snap["messages"]] == ["user", "assistant"]
    assert snap["capabilities"]["model"] is True

    r2 = c.post("/api/chat", json={"session_id": sid, "message": "hi"})
    assert r2.json()["session"]["id"] == sid
    assert len(r2.json()["session"]["messages"]) == 4

    assert c.post(f"/api/sessions/{sid}/cancel").json()["cancelled"] is True
    assert c.post(f"/api/sessions/{sid}/new").json()["messages"] == []
    assert c.delete(f"/api/sessions/{sid}").json() == {"deleted": True}
    assert c.get(f"/api/sessions/{sid}").status_code == 404
    assert c.delete(f"/api/sessions/{sid}").status_code == 404


def test_chat_without_model_key_is_a_turn_error_not_a_crash() -> None:
    r = _client().post("/api/chat", json={"message": "hello"})
    assert r.status_code == 200
    assert r.json()["turn"]["status"] == "error"
    assert "OPENAI_API_KEY" in r.json()["turn"]["error"]


def test_chat_rejects_blank_message() -> None:
    assert _client(fake_llm=True).post("/api/chat", json={"message": "   "}).status_code == 400


class _FreshBox:
    """Each sandbox starts empty; files die with it."""

    def __init__(self) -> None:
        self.fs: dict[str, str] = {}
        self.files = self

    def list(self, path: str, depth: int = 1) -> list[Any]:
        return [
            type("E", (), {"name": n, "path": f"/home/user/{n}", "type": "file", "size": len(c)})()
            for n, c in self.fs.items()
        ]

    def read(self, path: str, format: str = "text") -> Any:
        content = self.fs[path[len("/home/user/") :]]
        return bytearray(content.encode("utf-8")) if format == "bytes" else content

    def run_code(self, code: str, timeout: Optional[float] = None) -> Any:
        if "open('hello.py', 'w')" in code:
            self.fs["hello.py"] = "print('hello')\n"
        return type("X", (), {"logs": type("L", (), {"stdout": ["ok\n"], "stderr": []})(), "error": None, "text": None})()

    def kill(self) -> None:
        self.fs.clear()


def test_generated_file_downloads_after_its_sandbox_is_gone() -> None:
    app = create_app(AppConfig(fake_llm=True, e2b_api_key="k"), sandbox_factory=lambda **kw: _FreshBox())
    c = TestClient(app)
    body = c.post("/api/chat", json={"message": "write a python file that prints hello"}).json()
    assert [f["name"] for f in body["turn"]["message"]["generated_files"]] == ["hello.py"]
    sid = body["session"]["id"]

    r = c.get("/api/download", params={"filename": "hello.py"})
    assert r.status_code == 200 and r.content == b"print('hello')\n"
    r = c.get("/api/download", params={"filename": "hello.py", "session_id": sid})
    assert r.status_code == 200 and r.content == b"print('hello')\n"

    assert c.delete(f"/api/sessions/{sid}").json() == {"deleted": True}
    assert c.get("/api/download", params={"filename": "hello.py"}).status_code == 404
