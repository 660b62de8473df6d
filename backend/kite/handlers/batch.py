from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Sequence, Tuple

import structlog

from kite.handlers.base import rfc3339_now
from kite.schemas.kubernetes import ResourceIdentifier, RestartResult

logger = structlog.get_logger(__name__)

PARTIAL_CONTENT = 206

ItemOperation = Callable[[ResourceIdentifier], Awaitable[RestartResult]]


async def _bounded(item: ResourceIdentifier, operation: ItemOperation, timeout: float) -> RestartResult:
    try:
        return await asyncio.wait_for(operation(item), timeout=timeout)
    except asyncio.TimeoutError:
        return RestartResult(
            namespace=item.namespace,
            name=item.name,
            success=False,
            error=f"operation timed out after {timeout:g}s",
        )
    except Exception as exc:
        logger.exception("batch.item_error", namespace=item.namespace, name=item.name)
        return RestartResult(namespace=item.namespace, name=item.name, success=False, error=str(exc))


async def run_batch(
    items: Sequence[ResourceIdentifier],
    operation: ItemOperation,
    *,
    timeout: float,
) -> List[RestartResult]:
    """Run ``operation`` for every item concurrently and collect results in completion order.

    There is no concurrency ceiling; every item gets its own task and the
    same deadline. A failing or timed-out item never affects the others.
    """
    tasks = [asyncio.ensure_future(_bounded(item, operation, timeout)) for item in items]
    results: List[RestartResult] = []
    for next_done in asyncio.as_completed(tasks):
        results.append(await next_done)
    return results


def summarize(title: str, total: int, results: List[RestartResult]) -> Tuple[Dict[str, Any], int]:
    """Build the batch response body and pick 200 or 206."""
    successful = sum(1 for r in results if r.success)
    failed = len(results) - successful
    message = f"{title} completed: {successful} successful, {failed} failed"
    logger.info("batch.completed", title=title, total=total, successful=successful, failed=failed)
    payload = {
        "message": message,
        "total": total,
        "successful": successful,
        "failed": failed,
        "results": [r.model_dump(exclude_none=True) for r in results],
        "timestamp": rfc3339_now(),
    }
    return payload, (PARTIAL_CONTENT if failed else 200)
