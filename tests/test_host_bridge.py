import threading

import pytest

from ae_chat.app import ChatApp
from ae_chat.config import AppConfig
from ae_chat.core.errors import HostBridgeError
from ae_chat.host.bridge import EVAL_ERROR_SENTINEL, HostBridge
from ae_chat.storage.base import MemoryKeyValueStore


class FakeHost:
    """Records scripts and answers through the callback, optionally from another thread."""

    def __init__(self, answer="ok", threaded=False, silent=False):
        self.scripts: list[str] = []
        self._answer = answer
        self._threaded = threaded
        self._silent = silent

    def __call__(self, code, callback):
        self.scripts.append(code)
        if self._silent:
            return
        if self._threaded:
            threading.Timer(0.01, callback, args=(self._answer,)).start()
        else:
            callback(self._answer)


async def test_eval_returns_host_result():
    bridge = HostBridge(FakeHost("42"))
    assert await bridge.eval_script("1 + 41") == "42"


async def test_callback_from_another_thread():
    bridge = HostBridge(FakeHost("done", threaded=True))
    assert await bridge.eval_script("app.project.numItems") == "done"


async def test_error_sentinel_raises():
    bridge = HostBridge(FakeHost(EVAL_ERROR_SENTINEL))
    with pytest.raises(HostBridgeError):
        await bridge.eval_script("throw 1")


async def test_timeout_raises():
    bridge = HostBridge(FakeHost(silent=True), timeout=0.05)
    with pytest.raises(HostBridgeError, match="did not answer"):
        await bridge.eval_script("while(true){}")


async def test_evaluator_failure_raises():
    def broken(code, callback):
        raise RuntimeError("CSInterface missing")

    with pytest.raises(HostBridgeError, match="CSInterface missing"):
        await HostBridge(broken).eval_script("x")


async def test_apply_expression_quotes_arguments():
    host = FakeHost()
    bridge = HostBridge(host)

    await bridge.apply_expression('wiggle(2, 30) // "shake"', "Position")

    assert host.scripts == [
        'com.letterblack.genai.applyExpression("wiggle(2, 30) // \\"shake\\"", "Position")'
    ]


async def test_run_script_wraps_code():
    host = FakeHost()
    await HostBridge(host).run_script("app.beginUndoGroup('x');\nalert(1);")
    assert host.scripts == [
        'com.letterblack.genai.executeScript("app.beginUndoGroup(\'x\');\\nalert(1);")'
    ]


async def test_app_exposes_bridge_only_with_evaluator():
    host = FakeHost("applied")
    async with ChatApp(AppConfig(), kv=MemoryKeyValueStore(), evaluator=host) as app:
        assert await app.host.apply_expression("wiggle(2, 30)") == "applied"
    assert "wiggle(2, 30)" in host.scripts[0]

    async with ChatApp(AppConfig(), kv=MemoryKeyValueStore()) as app:
        assert app.host is None
