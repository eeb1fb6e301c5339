#!/usr/bin/env python3
"""
Bulk service control across channels using a thread pool.

One action (e.g. restart every recorder) is fanned out to every targeted
channel concurrently. Each channel's outcome is captured independently: a
failure on one channel never aborts the others, and the caller always gets
the full per-channel breakdown.
"""

from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from headend_errors import HeadendError, NoValidTargets
from logging_config import setup_logging
from process_controller import ProcessController
from unit_resolver import ControlAction, ServiceKind

logger = setup_logging(__name__)


@dataclass
class BulkActionResult:
    """Outcome of the bulk action on one channel."""
    channel_id: int
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {'channel_id': self.channel_id, 'success': self.success}
        if self.error is not None:
            data['error'] = self.error
        return data


@dataclass
class BulkReport:
    """Aggregate of a bulk action; a partial failure is reported, not raised."""
    kind: ServiceKind
    action: ControlAction
    results: List[BulkActionResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def success(self) -> bool:
        return self.failed == 0

    @property
    def message(self) -> str:
        return f"{self.action.value} executed on {self.succeeded}/{len(self.results)} channels"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'kind': self.kind.value,
            'action': self.action.value,
            'message': self.message,
            'succeeded': self.succeeded,
            'failed': self.failed,
            'results': [r.to_dict() for r in self.results],
        }


class BulkOrchestrator:
    """
    Fans a single control action out across a set of channels.

    Provides concurrent control with a bounded worker pool and an overall
    time budget for the whole batch.
    """

    def __init__(
        self,
        controller: ProcessController,
        channel_ids: Callable[[], Iterable[int]],
        max_workers: int = 10,
        timeout: float = 60.0
    ):
        """
        Args:
            controller: Executes the per-channel control action
            channel_ids: Returns the known channel set
            max_workers: Maximum number of concurrent control calls
            timeout: Seconds the whole batch may take
        """
        self.controller = controller
        self._channel_ids = channel_ids
        self.max_workers = max_workers
        self.timeout = timeout

    def select_targets(self, requested: Optional[Iterable[Any]] = None) -> List[int]:
        """
        Work out which channels a bulk call targets.

        Args:
            requested: Explicit subset, or None/empty for every known channel

        Returns:
            Known channel IDs in request order, without duplicates

        Raises:
            NoValidTargets: If an explicit subset contains no known channel
        """
        known = list(self._channel_ids())
        if not requested:
            return known

        known_set = set(known)
        targets = []
        for value in requested:
            try:
                channel_id = int(value)
            except (TypeError, ValueError):
                logger.debug(f"Ignoring non-numeric channel id {value!r}")
                continue
            if channel_id in known_set and channel_id not in targets:
                targets.append(channel_id)

        if not targets:
            raise NoValidTargets(list(requested))
        return targets

    def bulk_control(self, kind: Any, action: Any, channel_ids: Optional[Iterable[Any]] = None) -> BulkReport:
        """
        Run one control action on every targeted channel concurrently.

        Raises:
            UnknownServiceKind, InvalidAction: Before anything is executed
            NoValidTargets: If an explicit subset matches no known channel
        """
        service_kind = ServiceKind.parse(kind)
        service_action = ControlAction.parse(action)
        targets = self.select_targets(channel_ids)

        logger.info(f"Starting bulk {service_action.value} of {service_kind.value} on {len(targets)} channels")

        outcomes: Dict[int, BulkActionResult] = {}
        executor = ThreadPoolExecutor(max_workers=max(1, min(self.max_workers, len(targets))))
        try:
            future_to_channel = {
                executor.submit(self.controller.control, channel_id, service_kind, service_action): channel_id
                for channel_id in targets
            }
            done, not_done = wait(future_to_channel, timeout=self.timeout)

            for future in done:
                channel_id = future_to_channel[future]
                try:
                    future.result()
                    outcomes[channel_id] = BulkActionResult(channel_id, True)
                except HeadendError as e:
                    logger.warning(f"✗ Bulk {service_action.value} failed on channel {channel_id}: {e.message}")
                    outcomes[channel_id] = BulkActionResult(channel_id, False, e.message)
                except Exception as e:
                    logger.error(f"Error during bulk {service_action.value} on channel {channel_id}: {e}",
                                 exc_info=True)
                    outcomes[channel_id] = BulkActionResult(channel_id, False, str(e))

            for future in not_done:
                channel_id = future_to_channel[future]
                future.cancel()
                logger.warning(f"✗ Bulk {service_action.value} on channel {channel_id} did not finish "
                               f"within {self.timeout}s")
                outcomes[channel_id] = BulkActionResult(
                    channel_id, False, f"timed out after {self.timeout}s"
                )
        finally:
            # Do not block on calls that overran the budget; their own command timeouts end them
            executor.shutdown(wait=False, cancel_futures=True)

        report = BulkReport(service_kind, service_action, [outcomes[c] for c in targets])
        logger.info(f"Bulk {service_action.value} on {service_kind.value}: "
                    f"{report.succeeded} succeeded, {report.failed} failed")
        return report
