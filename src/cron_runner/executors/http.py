import asyncio
import json
import logging
from typing import Dict, Optional

import aiohttp

from cron_runner.domain.task import TaskDefinition
from cron_runner.domain.execution import ExecutionResult
from cron_runner.executors.protocol import ProtocolExecutor

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/json"
DRAIN_CHUNK_SIZE = 64 * 1024


def parse_headers(raw: Optional[str]) -> Dict[str, str]:
    """
    Decode the task's JSON header map. Anything that is not a JSON object yields no headers.
    """
    if not raw or not raw.strip():
        return {}
    try:
        decoded = json.loads(raw)
    except ValueError:
        logger.warning("Ignoring malformed request headers: %r", raw)
        return {}
    if not isinstance(decoded, dict):
        logger.warning("Ignoring request headers that are not a JSON object: %r", raw)
        return {}
    headers = {}
    for key, value in decoded.items():
        if value is None:
            continue
        if isinstance(value, bool):
            headers[str(key)] = json.dumps(value)
        elif isinstance(value, (str, int, float)):
            headers[str(key)] = str(value)
        else:
            logger.warning("Dropping request header %r with non-scalar value %r", key, value)
    return headers


async def drain_response(response: aiohttp.ClientResponse) -> None:
    """Read the body in chunks and discard it, so large responses are never held in memory."""
    async for _ in response.content.iter_chunked(DRAIN_CHUNK_SIZE):
        pass


class HttpTaskExecutor(ProtocolExecutor):
    """
    Task executor for making HTTP requests using aiohttp.
    """

    def build_request(self, task: TaskDefinition) -> Dict:
        headers = parse_headers(task.request_headers)
        body = task.request_body if task.request_body and task.http_method.carries_body else None
        if body is not None and not any(k.lower() == "content-type" for k in headers):
            headers["Content-Type"] = DEFAULT_CONTENT_TYPE
        return {
            "method": task.http_method.name,
            "url": task.endpoint,
            "headers": headers,
            "data": body,
        }

    async def async_execute(self, task: TaskDefinition, timeout_seconds: int) -> ExecutionResult:
        """
        Asynchronously execute the given task by making an HTTP request.

        Success is decided by the status code alone; the body is drained but not inspected.

        Args:
            task (TaskDefinition): The task to be executed.
            timeout_seconds (int): Total deadline for the request.
        """
        request = self.build_request(task)
        timeout = aiohttp.ClientTimeout(total=timeout_seconds)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(**request) as response:
                    await drain_response(response)
                    summary = f"{response.status} {response.reason or ''}".strip()
                    if 200 <= response.status < 300:
                        return ExecutionResult.succeeded(f"HTTP {summary}")
                    return ExecutionResult.failed(f"HTTP error: {summary}")
        except asyncio.TimeoutError:
            return ExecutionResult.failed(f"request timed out after {timeout_seconds}s")
        except aiohttp.ClientError as e:
            return ExecutionResult.failed(f"HTTP request failed: {e.__class__.__name__}: {e}")
        except Exception as e:
            return ExecutionResult.failed(f"Unexpected error: {str(e)}")
