"""Async adapter over the host application's callback-style script bridge."""

from __future__ import annotations

import asyncio
import json
from typing import Callable, Optional

from ae_chat.core.errors import HostBridgeError
from ae_chat.log import get_logger

logger = get_logger(__name__)

# What the host returns when the evaluated script threw.
EVAL_ERROR_SENTINEL = "EvalScript error."
HOST_NAMESPACE = "com.letterblack.genai"

Evaluator = Callable[[str, Callable[[str], None]], None]


class HostBridge:
    """Wraps ``evaluator(code, callback)`` as ``await eval_script(code)``.

    The evaluator may invoke the callback from any thread; the result is
    handed back to the loop that awaited it.
    """

    def __init__(self, evaluator: Evaluator, timeout: float = 30.0):
        self._evaluator = evaluator
        self._timeout = timeout

    async def eval_script(self, code: str, timeout: Optional[float] = None) -> str:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[str] = loop.create_future()

        def _callback(result: str) -> None:
            def _resolve() -> None:
                if not future.done():
                    future.set_result(result)

            loop.call_soon_threadsafe(_resolve)

        logger.debug("host_eval", length=len(code))
        try:
            self._evaluator(code, _callback)
        except Exception as e:
            raise HostBridgeError(f"Host evaluator failed: {e}") from e

        wait = self._timeout if timeout is None else timeout
        try:
            result = await asyncio.wait_for(future, timeout=wait)
        except asyncio.TimeoutError as e:
            logger.error("host_eval_timeout", timeout=wait)
            raise HostBridgeError(f"Host did not answer within {wait} seconds") from e

        if result == EVAL_ERROR_SENTINEL:
            logger.error("host_eval_error")
            raise HostBridgeError("Host reported an error while evaluating the script")
        return result

    async def apply_expression(self, expression: str, property_name: str = "") -> str:
        """Apply *expression* to the selected layers' properties."""
        call = f"{HOST_NAMESPACE}.applyExpression({json.dumps(expression)}, {json.dumps(property_name)})"
        return await self.eval_script(call)

    async def run_script(self, script: str) -> str:
        """Run an ExtendScript snippet through the host's executeScript helper."""
        return await self.eval_script(f"{HOST_NAMESPACE}.executeScript({json.dumps(script)})")
