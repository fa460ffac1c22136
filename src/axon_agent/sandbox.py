"""axon_agent.sandbox

Remote code execution in an E2B sandbox.

Session discipline: one sandbox per call. `SandboxRunner` creates a sandbox,
runs the action and kills the sandbox in `finally`, so nothing leaks between
calls and no state survives them.

Created files are found by listing the working directory (a few levels deep,
hidden paths skipped) before and after the run; anything new (or whose size
changed) is reported under its path relative to the working directory. Their
bytes are copied into an `ArtifactStore` before the sandbox goes away, which is
where downloads are served from.

Two layers:
- `execute` / `command` / `write_file` / `read_file` / `list_files` raise
  `ToolExecutionError` on failure;
- `handle(request)` implements the HTTP contract and always returns a dict
  `{success, output?, error?, files}`.
"""

from __future__ import annotations

import logging
import posixpath
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from .errors import ToolExecutionError, ToolTimeoutError
from .models import FileType, GeneratedFile, JsonDict

_LOG = logging.getLogger("axon_agent.sandbox")

WORKDIR = "/home/user"

SANDBOX_ACTIONS: tuple[str, ...] = ("execute", "command", "write_file", "read_file", "download", "list_files")

_MISSING_KEY_OUTPUT = "E2B_API_KEY not configured. Please add it to your environment variables."

_ZIP_EXTS = {".zip", ".tar", ".gz", ".tgz"}
_DOC_EXTS = {".pdf", ".doc", ".docx", ".txt", ".md", ".csv", ".xlsx"}

_LIST_DEPTH = 4
_MAX_CAPTURE_BYTES = 25 * 1024 * 1024

SandboxFactory = Callable[..., Any]


def file_type_for(name: str) -> FileType:
    ext = posixpath.splitext(name.lower())[1]
    if ext in _ZIP_EXTS:
        return "zip"
    if ext in _DOC_EXTS:
        return "document"
    return "code"


def human_size(n: Optional[int]) -> Optional[str]:
    if n is None or n < 0:
        return None
    if n < 1024:
        return f"{n} B"
    if n < 1024 * 1024:
        return f"{n / 1024:.1f} KB"
    return f"{n / (1024 * 1024):.1f} MB"


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    output: str
    error: Optional[str] = None
    files: tuple[GeneratedFile, ...] = ()

    def to_dict(self) -> JsonDict:
        d: JsonDict = {
            "success": self.success,
            "output": self.output,
            "files": [f.to_dict() for f in self.files],
        }
        if self.error is not None:
            d["error"] = self.error
        return d


@dataclass
class _Entry:
    name: str
    path: str
    is_dir: bool = False
    size: Optional[int] = None


@dataclass
class _Manifest:
    entries: dict[str, _Entry] = field(default_factory=dict)

    def new_or_changed(self, after: "_Manifest") -> list[_Entry]:
        out: list[_Entry] = []
        for path, e in after.entries.items():
            if e.is_dir:
                continue
            before = self.entries.get(path)
            if before is None or (e.size is not None and e.size != before.size):
                out.append(e)
        return out


class ArtifactStore:
    """Bytes of generated files, keyed by (session id, relative name)."""

    def __init__(self) -> None:
        self._items: dict[tuple[str, str], bytes] = {}
        self._order: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def put(self, scope: str, name: str, data: bytes) -> None:
        key = (scope, name)
        with self._lock:
            self._items[key] = bytes(data)
            if key in self._order:
                self._order.remove(key)
            self._order.append(key)

    def get(self, name: str, *, scope: Optional[str] = None) -> Optional[bytes]:
        """Stored bytes for `name`; without a scope, the newest file of that name."""

        with self._lock:
            if scope is not None:
                return self._items.get((scope, name))
            for key in reversed(self._order):
                if key[1] == name:
                    return self._items[key]
        return None

    def drop(self, scope: str) -> int:
        with self._lock:
            keys = [k for k in self._order if k[0] == scope]
            for k in keys:
                del self._items[k]
                self._order.remove(k)
        return len(keys)


def _default_factory(**kwargs: Any) -> Any:
    from e2b_code_interpreter import Sandbox  # type: ignore[import-not-found]

    return Sandbox.create(**kwargs)


def _entry_from_info(info: Any) -> _Entry:
    base = str(getattr(info, "name", "") or "")
    path = str(getattr(info, "path", "") or posixpath.join(WORKDIR, base))
    name = posixpath.relpath(path, WORKDIR) if path.startswith(WORKDIR + "/") else base
    kind = getattr(info, "type", None)
    kind_s = str(getattr(kind, "value", kind) or "").lower()
    size = getattr(info, "size", None)
    return _Entry(
        name=name,
        path=path,
        is_dir=kind_s in ("dir", "directory"),
        size=int(size) if isinstance(size, int) else None,
    )


def _is_timeout(e: BaseException) -> bool:
    return isinstance(e, TimeoutError) or type(e).__name__.endswith("TimeoutException")


class SandboxRunner:
    def __init__(
        self,
        *,
        api_key: Optional[str],
        timeout_s: float = 120.0,
        lifetime_s: int = 86400,
        sandbox_factory: Optional[SandboxFactory] = None,
        artifacts: Optional[ArtifactStore] = None,
    ) -> None:
        self._api_key = api_key
        self._timeout_s = float(timeout_s)
        self._lifetime_s = int(lifetime_s)
        self._factory = sandbox_factory or _default_factory
        self._artifacts = artifacts

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    # ---- session ----

    def _open(self, metadata: Optional[JsonDict]) -> Any:
        if not self._api_key:
            raise ToolExecutionError("sandbox", "API key missing")
        meta = {"sessionId": "anonymous", "timestamp": datetime.now(tz=timezone.utc).isoformat()}
        for k, v in (metadata or {}).items():
            meta[str(k)] = str(v)
        try:
            return self._factory(api_key=self._api_key, timeout=self._lifetime_s, metadata=meta)
        except Exception as e:  # noqa: BLE001
            raise ToolExecutionError("sandbox", f"could not create sandbox: {type(e).__name__}: {e}") from e

    def _close(self, sbx: Any) -> None:
        try:
            sbx.kill()
        except Exception as e:  # noqa: BLE001
            _LOG.warning("sandbox_kill_failed error=%s", f"{type(e).__name__}: {e}")

    def _call(self, tool: str, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except ToolExecutionError:
            raise
        except Exception as e:  # noqa: BLE001
            if _is_timeout(e):
                raise ToolTimeoutError(tool, self._timeout_s) from e
            raise ToolExecutionError(tool, f"{type(e).__name__}: {e}") from e

    def _manifest(self, sbx: Any) -> _Manifest:
        m = _Manifest()
        for info in sbx.files.list(WORKDIR, depth=_LIST_DEPTH) or []:
            e = _entry_from_info(info)
            if not e.name or any(part.startswith(".") for part in e.name.split("/")):
                continue
            m.entries[e.path] = e
        return m

    def _capture(self, sbx: Any, entries: list[_Entry], scope: str) -> None:
        if self._artifacts is None:
            return
        for e in entries:
            if e.size is not None and e.size > _MAX_CAPTURE_BYTES:
                _LOG.warning("artifact_skipped name=%s size=%d", e.name, e.size)
                continue
            try:
                data = sbx.files.read(e.path, format="bytes")
            except Exception as ex:  # noqa: BLE001
                _LOG.warning("artifact_read_failed name=%s error=%s", e.name, f"{type(ex).__name__}: {ex}")
                continue
            if isinstance(data, str):
                data = data.encode("utf-8")
            self._artifacts.put(scope, e.name, bytes(data))

    # ---- actions ----

    def execute(self, code: str, *, metadata: Optional[JsonDict] = None) -> ExecutionResult:
        if not isinstance(code, str) or not code.strip():
            raise ToolExecutionError("execute", "Missing code parameter")
        sbx = self._open(metadata)
        try:
            before = self._call("execute", lambda: self._manifest(sbx))
            execution = self._call("execute", lambda: sbx.run_code(code, timeout=self._timeout_s))

            logs = getattr(execution, "logs", None)
            stdout = "".join(getattr(logs, "stdout", None) or [])
            stderr = "".join(getattr(logs, "stderr", None) or [])
            err = getattr(execution, "error", None)
            if err is not None:
                _LOG.info("sandbox_execute_error name=%s", getattr(err, "name", "?"))
                return ExecutionResult(
                    success=False,
                    output=stderr or stdout,
                    error=f"{getattr(err, 'name', 'Error')}: {getattr(err, 'value', '')}",
                )

            output = stdout or (getattr(execution, "text", None) or "")
            after = self._call("execute", lambda: self._manifest(sbx))
            created = before.new_or_changed(after)
            self._capture(sbx, created, str((metadata or {}).get("sessionId") or "anonymous"))
            files = tuple(
                GeneratedFile(name=e.name, type=file_type_for(e.name), size=human_size(e.size), path=e.path)
                for e in created
            )
            _LOG.info("sandbox_execute_ok output_chars=%d files=%d", len(output), len(files))
            return ExecutionResult(success=True, output=output, files=files)
        finally:
            self._close(sbx)

    def command(self, cmd: str, *, metadata: Optional[JsonDict] = None) -> JsonDict:
        if not isinstance(cmd, str) or not cmd.strip():
            raise ToolExecutionError("command", "Missing code parameter")
        sbx = self._open(metadata)
        try:
            try:
                result = sbx.commands.run(cmd, timeout=self._timeout_s)
            except Exception as e:  # noqa: BLE001
                # Non-zero exits surface as an exception that still carries the result.
                if getattr(e, "exit_code", None) is None:
                    if _is_timeout(e):
                        raise ToolTimeoutError("command", self._timeout_s) from e
                    raise ToolExecutionError("command", f"{type(e).__name__}: {e}") from e
                result = e
            exit_code = int(getattr(result, "exit_code", 0) or 0)
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            return {
                "success": exit_code == 0,
                "output": stdout or stderr or "Command executed",
                "exit_code": exit_code,
                "files": [],
            }
        finally:
            self._close(sbx)

    def write_file(self, filepath: str, content: str, *, metadata: Optional[JsonDict] = None) -> JsonDict:
        if not isinstance(filepath, str) or not filepath.strip():
            raise ToolExecutionError("write_file", "Missing filepath parameter")
        sbx = self._open(metadata)
        try:
            self._call("write_file", lambda: sbx.files.write(filepath, content or ""))
            return {"success": True, "output": f"File written: {filepath}", "files": []}
        finally:
            self._close(sbx)

    def read_file(self, filepath: str, *, metadata: Optional[JsonDict] = None) -> JsonDict:
        if not isinstance(filepath, str) or not filepath.strip():
            raise ToolExecutionError("read_file", "Missing filepath parameter")
        sbx = self._open(metadata)
        try:
            content = self._call("read_file", lambda: sbx.files.read(filepath))
            return {
                "success": True,
                "content": content,
                "filename": posixpath.basename(filepath),
                "files": [],
            }
        finally:
            self._close(sbx)

    def read_bytes(self, filepath: str, *, metadata: Optional[JsonDict] = None) -> bytes:
        sbx = self._open(metadata)
        try:
            data = self._call("download", lambda: sbx.files.read(filepath, format="bytes"))
        finally:
            self._close(sbx)
        return data.encode("utf-8") if isinstance(data, str) else bytes(data)

    def list_files(self, *, metadata: Optional[JsonDict] = None) -> JsonDict:
        sbx = self._open(metadata)
        try:
            manifest = self._call("list_files", lambda: self._manifest(sbx))
            files = [
                {"name": e.name, "path": e.path, "type": "dir" if e.is_dir else "file"}
                for e in manifest.entries.values()
            ]
            return {"success": True, "files": files}
        finally:
            self._close(sbx)

    # ---- HTTP contract ----

    def handle(self, request: JsonDict) -> JsonDict:
        """Run one sandbox request. Never raises; failures come back as `success: false`."""

        action = str(request.get("action") or "")
        metadata = request.get("metadata") if isinstance(request.get("metadata"), dict) else None

        if not self._api_key:
            return {"success": False, "output": _MISSING_KEY_OUTPUT, "error": "API key missing", "files": []}
        if action not in SANDBOX_ACTIONS:
            return {"success": False, "error": "Invalid action", "files": []}

        try:
            if action == "execute":
                code = request.get("code")
                if not isinstance(code, str) or not code.strip():
                    return {"success": False, "output": "No code provided", "error": "Missing code parameter", "files": []}
                return self.execute(code, metadata=metadata).to_dict()
            if action == "command":
                return self.command(str(request.get("code") or ""), metadata=metadata)
            if action == "write_file":
                return self.write_file(
                    str(request.get("filepath") or ""),
                    str(request.get("content") or ""),
                    metadata=metadata,
                )
            if action in ("read_file", "download"):
                return self.read_file(str(request.get("filepath") or ""), metadata=metadata)
            return self.list_files(metadata=metadata)
        except ToolExecutionError as e:
            _LOG.warning("sandbox_action_failed action=%s error=%s", action, e.reason)
            return {"success": False, "error": e.reason, "files": []}
        except Exception as e:  # noqa: BLE001
            _LOG.exception("sandbox_action_crashed action=%s", action)
            return {"success": False, "error": f"{type(e).__name__}: {e}", "files": []}
