"""Node handlers for the flow engine.

Default handlers cover the control nodes (start, end, decision, wait),
assignment and a placeholder script handler. Everything that reaches the
outside world is injected; ``HttpRequestHandler`` is provided for the
common ``http_request`` case but must be registered explicitly.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

import httpx

from ..contracts import FlowNode, FlowNodeType

if TYPE_CHECKING:
    from .engine import FlowExecutionContext

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


@dataclass
class FlowNodeResult:
    """Outcome of a single node handler invocation."""

    success: bool = True
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    next_edge: Optional[str] = None


async def noop_handler(node: FlowNode, context: "FlowExecutionContext") -> FlowNodeResult:
    return FlowNodeResult()


async def assignment_handler(
    node: FlowNode, context: "FlowExecutionContext"
) -> FlowNodeResult:
    """Copy every key of ``node.config`` into the flow variables."""
    for key, value in node.config.items():
        context.variables[key] = value
    return FlowNodeResult()


async def script_handler(node: FlowNode, context: "FlowExecutionContext") -> FlowNodeResult:
    """Placeholder that never executes code.

    Deployments register a handler backed by a sandboxed execution service.
    """
    if node.config.get("script"):
        context.logger.warning(
            f"Default script handler used for node {node.id}; "
            "register a sandboxed handler for production"
        )
    return FlowNodeResult()


DEFAULT_HANDLERS = {
    FlowNodeType.START.value: noop_handler,
    FlowNodeType.END.value: noop_handler,
    FlowNodeType.DECISION.value: noop_handler,
    FlowNodeType.WAIT.value: noop_handler,
    FlowNodeType.ASSIGNMENT.value: assignment_handler,
    FlowNodeType.SCRIPT.value: script_handler,
}


def render_template(template: str, variables: Dict[str, Any]) -> str:
    """Replace ``{{name}}`` placeholders with flow variables.

    Unknown names are left untouched.
    """

    def _sub(match: re.Match[str]) -> str:
        key = match.group(1)
        return str(variables[key]) if key in variables else match.group(0)

    return _PLACEHOLDER.sub(_sub, template)


class HttpRequestHandler:
    """Handler for ``http_request`` nodes backed by ``httpx``.

    Node config::

        method: POST                 # default GET
        url: https://api.example.com/orders/{{order_id}}
        headers: {Authorization: Bearer ...}
        body: {...}                  # sent as JSON
        timeout: 10                  # seconds
        output: order_response       # variable receiving {status_code, body}

    A non-2xx status or a transport error fails the node.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        self._client = client
        self._timeout = timeout

    async def __call__(
        self, node: FlowNode, context: "FlowExecutionContext"
    ) -> FlowNodeResult:
        config = node.config
        url = config.get("url")
        if not url:
            return FlowNodeResult(success=False, error=f"Node {node.id} has no url")

        method = str(config.get("method", "GET")).upper()
        url = render_template(str(url), context.variables)
        timeout = float(config.get("timeout", self._timeout))
        output_key = config.get("output", f"{node.id}_response")

        try:
            response = await self._send(
                method,
                url,
                headers=config.get("headers") or None,
                json=config.get("body"),
                timeout=timeout,
            )
        except httpx.HTTPError as exc:
            context.logger.error(f"HTTP request for node {node.id} failed: {exc}")
            return FlowNodeResult(success=False, error=f"HTTP request failed: {exc}")

        try:
            body: Any = response.json()
        except ValueError:
            body = response.text

        if response.is_error:
            return FlowNodeResult(
                success=False,
                error=f"HTTP {response.status_code} from {method} {url}",
            )

        context.logger.info(f"Node {node.id}: {method} {url} -> {response.status_code}")
        return FlowNodeResult(
            output={output_key: {"status_code": response.status_code, "body": body}}
        )

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if self._client is not None:
            return await self._client.request(method, url, **kwargs)
        async with httpx.AsyncClient() as client:
            return await client.request(method, url, **kwargs)
