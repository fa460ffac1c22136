from __future__ import annotations

from typing import Any, Optional

import pytest

from axon_agent.errors import ToolExecutionError
from axon_agent.sandbox import ArtifactStore, SandboxRunner, file_type_for, human_size


class _Entry:
    def __init__(self, rel: str, size: int, kind: str = "file") -> None:
        self.name = rel.rsplit("/", 1)[-1]
        self.path = f"/home/user/{rel}"
        self.type = kind
        self.size = size


class _Logs:
    def __init__(self, stdout: list[str], stderr: list[str]) -> None:
        self.stdout = stdout
        self.stderr = stderr


class _ExecError:
    name = "NameError"
    value = "name 'x' is not defined"


class _Execution:
    def __init__(self, stdout: list[str], error: Any = None) -> None:
        self.logs = _Logs(stdout, ["oops\n"] if error else [])
        self.error = error
        self.text = None


def _rel(path: str) -> str:
    return path[len("/home/user/") :] if path.startswith("/home/user/") else path


class _Files:
    """Flat dict of relative path -> text, listed the way E2B lists a tree."""

    def __init__(self, box: "_FakeSandbox") -> None:
        self._box = box
        self.depths: list[int] = []

    def list(self, path: str, depth: int = 1) -> list[_Entry]:
        self.depths.append(depth)
        out: list[_Entry] = []
        dirs: set[str] = set()
        for rel, content in self._box.fs.items():
            parts = rel.split("/")
            for i in range(1, min(len(parts), depth + 1)):
                dirs.add("/".join(parts[:i]))
            if len(parts) <= depth:
                out.append(_Entry(rel, len(content)))
        out.extend(_Entry(d, 4096, kind="dir") for d in sorted(dirs))
        return out

    def read(self, path: str, format: str = "text") -> Any:
        rel = _rel(path)
        if rel not in self._box.fs:
            raise FileNotFoundError(path)
        content = self._box.fs[rel]
        return bytearray(content.encode("utf-8")) if format == "bytes" else content

    def write(self, path: str, data: str) -> None:
        self._box.fs[_rel(path)] = data


class _CmdResult:
    def __init__(self, stdout: str, exit_code: int) -> None:
        self.stdout = stdout
        self.stderr = ""
        self.exit_code = exit_code


class _Commands:
    def run(self, cmd: str, timeout: Optional[float] = None) -> _CmdResult:
        return _CmdResult("hi\n", 0 if cmd.startswith("echo") else 2)


class _FakeSandbox:
    def __init__(self, *, fs: dict[str, str], creates: dict[str, str], error: Any = None) -> None:
        self.fs = dict(fs)
        self._creates = creates
        self._error = error
        self.files = _Files(self)
        self.commands = _Commands()
        self.killed = False
        self.code: list[str] = []

    def run_code(self, code: str, timeout: Optional[float] = None) -> _Execution:
        self.code.append(code)
        if self._error is not None:
            return _Execution([], error=self._error)
        self.fs.update(self._creates)
        return _Execution(["Wrote file\n"])

    def kill(self) -> None:
        self.killed = True


class _Factory:
    def __init__(self, **box_kwargs: Any) -> None:
        self.box_kwargs = box_kwargs
        self.created: list[_FakeSandbox] = []
        self.kwargs: list[dict[str, Any]] = []

    def __call__(self, **kwargs: Any) -> _FakeSandbox:
        self.kwargs.append(kwargs)
        box = _FakeSandbox(**self.box_kwargs)
        self.created.append(box)
        return box


def test_file_typing_and_sizes() -> None:
    assert file_type_for("report.PDF") == "document"
    assert file_type_for("bundle.zip") == "zip"
    assert file_type_for("data.csv") == "document"
    assert file_type_for("index.html") == "code"
    assert human_size(384) == "384 B"
    assert human_size(1229) == "1.2 KB"
    assert human_size(int(1.2 * 1024 * 1024)) == "1.2 MB"
    assert human_size(None) is None


def test_execute_reports_new_and_changed_files_only() -> None:
    factory = _Factory(
        fs={"old.txt": "same", "notes.md": "v1"},
        creates={"hello.py": "print('hello')\n", "notes.md": "v2 longer"},
    )
    runner = SandboxRunner(api_key="e2b-test", sandbox_factory=factory)
    res = runner.execute("with open('hello.py', 'w') as f:\n    f.write('x')\n", metadata={"sessionId": "s1"})
    assert res.success is True
    assert res.output == "Wrote file\n"
    names = sorted(f.name for f in res.files)
    assert names == ["hello.py", "notes.md"]
    hello = next(f for f in res.files if f.name == "hello.py")
    assert hello.type == "code" and hello.path == "/home/user/hello.py" and hello.size == "15 B"
    assert factory.created[0].killed is True
    assert factory.kwargs[0]["api_key"] == "e2b-test"
    assert factory.kwargs[0]["metadata"]["sessionId"] == "s1"


def test_execute_finds_files_in_subdirectories() -> None:
    factory = _Factory(
        fs={},
        creates={
            "site/index.html": "<h1>hi</h1>",
            "site/css/app.css": "h1{}",
            ".cache/pip/wheel.bin": "xx",
        },
    )
    res = SandboxRunner(api_key="k", sandbox_factory=factory).execute("import os\nos.makedirs('site')\n")
    assert res.success is True
    assert sorted(f.name for f in res.files) == ["site/css/app.css", "site/index.html"]
    page = next(f for f in res.files if f.name == "site/index.html")
    assert page.path == "/home/user/site/index.html" and page.type == "code"
    assert factory.created[0].files.depths == [4, 4]


def test_execute_keeps_file_bytes_after_sandbox_is_gone() -> None:
    store = ArtifactStore()
    factory = _Factory(fs={}, creates={"out/report.txt": "quarterly numbers\n"})
    runner = SandboxRunner(api_key="k", sandbox_factory=factory, artifacts=store)
    res = runner.execute("write report", metadata={"sessionId": "s1"})
    assert [f.name for f in res.files] == ["out/report.txt"]
    assert factory.created[0].killed is True

    assert store.get("out/report.txt", scope="s1") == b"quarterly numbers\n"
    assert store.get("out/report.txt") == b"quarterly numbers\n"
    assert store.get("out/report.txt", scope="other") is None
    assert store.drop("s1") == 1
    assert store.get("out/report.txt") is None


def test_artifact_store_prefers_newest_without_scope() -> None:
    store = ArtifactStore()
    store.put("a", "x.py", b"1")
    store.put("b", "x.py", b"2")
    assert store.get("x.py") == b"2"
    store.put("a", "x.py", b"3")
    assert store.get("x.py") == b"3"
    assert store.get("x.py", scope="b") == b"2"


def test_read_bytes_is_binary_safe() -> None:
    factory = _Factory(fs={"a.txt": "h\u00e9llo"}, creates={})
    data = SandboxRunner(api_key="k", sandbox_factory=factory).read_bytes("/home/user/a.txt")
    assert data == "h\u00e9llo".encode("utf-8")
    assert factory.created[0].killed is True


def test_execute_error_is_reported_not_raised() -> None:
    factory = _Factory(fs={}, creates={}, error=_ExecError())
    res = SandboxRunner(api_key="k", sandbox_factory=factory).execute("print(x)")
    assert res.success is False
    assert res.error == "NameError: name 'x' is not defined"
    assert res.output == "oops\n"
    assert factory.created[0].killed is True


def test_execute_without_key_raises_tool_error() -> None:
    with pytest.raises(ToolExecutionError, match="API key missing"):
        SandboxRunner(api_key=None).execute("print(1)")


def test_sandbox_killed_even_when_run_crashes() -> None:
    class _Crashing(_FakeSandbox):
        def run_code(self, code: str, timeout: Optional[float] = None) -> _Execution:
            raise ConnectionError("sandbox went away")

    boxes: list[_Crashing] = []

    def factory(**kwargs: Any) -> _Crashing:
        boxes.append(_Crashing(fs={}, creates={}))
        return boxes[-1]

    with pytest.raises(ToolExecutionError, match="ConnectionError"):
        SandboxRunner(api_key="k", sandbox_factory=factory).execute("print(1)")
    assert boxes[0].killed is True


def test_handle_contract_never_raises() -> None:
    factory = _Factory(fs={"a.txt": "hello"}, creates={})
    runner = SandboxRunner(api_key="k", sandbox_factory=factory)

    assert SandboxRunner(api_key=None).handle({"action": "execute", "code": "1"}) == {
        "success": False,
        "output": "E2B_API_KEY not configured. Please add it to your environment variables.",
        "error": "API key missing",
        "files": [],
    }
    assert runner.handle({"action": "nope"})["error"] == "Invalid action"
    assert runner.handle({"action": "execute"})["error"] == "Missing code parameter"

    cmd = runner.handle({"action": "command", "code": "echo hi"})
    assert cmd["success"] is True and cmd["output"] == "hi\n"
    assert runner.handle({"action": "command", "code": "false"})["success"] is False

    read = runner.handle({"action": "read_file", "filepath": "/home/user/a.txt"})
    assert read["content"] == "hello" and read["filename"] == "a.txt"

    missing = runner.handle({"action": "download", "filepath": "/home/user/zzz"})
    assert missing["success"] is False and "FileNotFoundError" in missing["error"]

    listed = runner.handle({"action": "list_files"})
    assert listed["files"] == [{"name": "a.txt", "path": "/home/user/a.txt", "type": "file"}]

    written = runner.handle({"action": "write_file", "filepath": "/home/user/b.txt", "content": "x"})
    assert written["success"] is True
