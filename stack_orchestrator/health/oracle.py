"""
Health oracle: answers "is this endpoint already healthy?".

Escalation Order:
    1. Tier 1 - direct probes from this machine (requests). The primary
       probe must succeed, then every mandatory secondary probe;
       informational probes are logged only.
    2. Tier 2 - only when the primary probe failed AND the descriptor
       carries an instance handle AND a remote executor is configured:
       run the diagnostic script on the host and score its markers.
    3. Otherwise unhealthy, with the tier-1 error.

Both tiers share ONE outer time budget: every request gets the time
that is left, and tier 2 only receives what tier 1 did not use.

Usage:
    oracle = HealthOracle(health_config)
    result = oracle.check_endpoint(json_rpc_endpoint("http://10.0.0.5:3030"))
    result = oracle.wait_until_healthy(descriptor, max_retries=10, interval_ms=2000)
    summary = oracle.check_multiple([d1, d2, d3])
"""

import socket
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, List, Mapping, Optional, Sequence

import requests

from .. import constants as CONSTANTS
from ..core.protocols import RemoteExecutor
from ..core.exceptions import HealthCheckError
from ..core.types import HealthCheckResult, HealthConfig, MultiHealthResult
from ..logger import logger
from .probes import EndpointDescriptor, ProbeSpec, ResponseValidator, http_endpoint
from .remote import build_diagnostic_script, parse_markers, score_markers

# Extra time granted to the fan-out join on top of the per-check budget
_JOIN_GRACE_S = 1.0


@dataclass(frozen=True)
class _ProbeOutcome:
    ok: bool
    error: Optional[str] = None


class HealthOracle:
    """
    Tiered endpoint health checks with retry and fan-out.

    Args:
        config: Timeouts, retry policy, and tier-2 threshold
        session: requests session used for every HTTP probe
        remote_executor: Tier-2 channel; tier 2 is disabled without it
        marker_weights: Weights of the tier-2 markers
        sleep_fn / clock: Injectable for tests (seconds)
    """

    def __init__(
        self,
        config: Optional[HealthConfig] = None,
        session: Optional[requests.Session] = None,
        remote_executor: Optional[RemoteExecutor] = None,
        marker_weights: Optional[Mapping[str, float]] = None,
        sleep_fn: Optional[Callable[[float], None]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = config or HealthConfig()
        self.session = session or requests.Session()
        self.remote_executor = remote_executor
        self.marker_weights = dict(marker_weights) if marker_weights else None
        self._sleep = sleep_fn or time.sleep
        self._clock = clock or time.monotonic

    # ==========================================
    # Single Check
    # ==========================================

    def check_endpoint(
        self, descriptor: EndpointDescriptor, timeout_ms: Optional[int] = None
    ) -> HealthCheckResult:
        """
        Check one endpoint, escalating to tier 2 when allowed.

        Args:
            descriptor: What to probe
            timeout_ms: Outer budget for both tiers (defaults to config.timeout_ms)

        Returns:
            HealthCheckResult; never raises for probe failures.
        """
        budget_ms = timeout_ms if timeout_ms is not None else self.config.timeout_ms
        start = self._clock()
        deadline = start + budget_ms / 1000

        primary = self._probe(descriptor.primary, deadline)
        if primary.ok:
            for probe in descriptor.secondary:
                outcome = self._probe(probe, deadline)
                if not outcome.ok:
                    error = f"{probe.name} check failed: {outcome.error}"
                    logger.debug(f"✗ {descriptor.name}: {error}")
                    return HealthCheckResult(False, self._elapsed_ms(start), error)

            for probe in descriptor.informational:
                outcome = self._probe(probe, deadline)
                if not outcome.ok:
                    logger.warning(f"⚠ {descriptor.name}: {probe.name} check failed: {outcome.error}")

            response_time = self._elapsed_ms(start)
            logger.debug(f"✓ {descriptor.name} healthy ({response_time}ms)")
            return HealthCheckResult(True, response_time)

        tier1_error = primary.error
        if descriptor.instance_id and self.remote_executor is not None:
            remaining_s = deadline - self._clock()
            if remaining_s <= 0:
                return HealthCheckResult(
                    False, self._elapsed_ms(start),
                    f"{tier1_error} (no time left for remote diagnostic)",
                )
            logger.debug(
                f"{descriptor.name} unreachable, running remote diagnostic on {descriptor.instance_id}"
            )
            return self._check_remote(descriptor, remaining_s, start, tier1_error)

        logger.debug(f"✗ {descriptor.name}: {tier1_error}")
        return HealthCheckResult(False, self._elapsed_ms(start), tier1_error)

    def _check_remote(
        self,
        descriptor: EndpointDescriptor,
        remaining_s: float,
        start: float,
        tier1_error: Optional[str],
    ) -> HealthCheckResult:
        script = build_diagnostic_script(descriptor.diagnostic)
        try:
            output = self.remote_executor.execute(descriptor.instance_id, script, remaining_s)
        except HealthCheckError as e:
            return HealthCheckResult(
                False, self._elapsed_ms(start),
                f"{tier1_error}; remote diagnostic failed: {e}", tier=2,
            )

        weights = self.marker_weights or CONSTANTS.REMOTE_MARKER_WEIGHTS
        names = list(weights)
        score = score_markers(
            parse_markers(output, names),
            weights=weights,
            threshold=self.config.remote_healthy_threshold,
        )
        response_time = self._elapsed_ms(start)
        if score.healthy:
            logger.info(f"✓ {descriptor.name} healthy via remote diagnostic {score.describe()}")
            return HealthCheckResult(True, response_time, tier=2)

        logger.warning(f"⚠ {descriptor.name} remote diagnostic reports issues {score.describe()}")
        return HealthCheckResult(
            False, response_time, f"Remote health check failed {score.describe()}", tier=2
        )

    def _probe(self, probe: ProbeSpec, deadline: float) -> _ProbeOutcome:
        remaining = deadline - self._clock()
        if remaining <= 0:
            return _ProbeOutcome(False, "Health check timed out")

        try:
            response = self.session.request(
                probe.method,
                probe.url,
                json=probe.payload,
                headers={"Content-Type": "application/json"} if probe.payload is not None else None,
                timeout=remaining,
            )
        except requests.RequestException as e:
            return _ProbeOutcome(False, f"{probe.url} unreachable: {e}")

        if response.status_code != probe.expected_status:
            return _ProbeOutcome(
                False,
                f"Unexpected status code: {response.status_code} (expected {probe.expected_status})",
            )

        if probe.validator is not None:
            try:
                valid = probe.validator(response)
            except (ValueError, TypeError, KeyError):
                valid = False
            if not valid:
                return _ProbeOutcome(False, f"Invalid response structure from {probe.url}")

        return _ProbeOutcome(True)

    def _elapsed_ms(self, start: float) -> int:
        return int((self._clock() - start) * 1000)

    # ==========================================
    # Convenience Probes
    # ==========================================

    def check_http(
        self,
        url: str,
        expected_status: int = 200,
        validator: Optional[ResponseValidator] = None,
        timeout_ms: Optional[int] = None,
    ) -> HealthCheckResult:
        return self.check_endpoint(http_endpoint(url, expected_status, validator), timeout_ms)

    def check_tcp(self, host: str, port: int, timeout_ms: int = 5000) -> HealthCheckResult:
        """Check that a TCP port accepts connections."""
        start = self._clock()
        try:
            with socket.create_connection((host, port), timeout=timeout_ms / 1000):
                pass
        except socket.timeout:
            return HealthCheckResult(False, self._elapsed_ms(start), "Connection timeout")
        except OSError as e:
            return HealthCheckResult(False, self._elapsed_ms(start), str(e))
        return HealthCheckResult(True, self._elapsed_ms(start))

    # ==========================================
    # Polling & Fan-out
    # ==========================================

    def wait_until_healthy(
        self,
        descriptor: EndpointDescriptor,
        max_retries: Optional[int] = None,
        interval_ms: Optional[int] = None,
        timeout_ms: Optional[int] = None,
    ) -> HealthCheckResult:
        """
        Poll check_endpoint at a fixed interval until it reports healthy.

        Stops at the first healthy result, after max_retries attempts, or
        when timeout_ms has elapsed. The interval is slept only BETWEEN
        attempts, never after the last one.

        Returns:
            The first healthy result, or a synthesized failure.
        """
        max_retries = max_retries if max_retries is not None else self.config.max_retries
        interval_ms = interval_ms if interval_ms is not None else self.config.retry_interval_ms
        start = self._clock()
        deadline = start + timeout_ms / 1000 if timeout_ms is not None else None

        logger.info(f"Waiting for {descriptor.name} to become healthy (max {max_retries} attempts)")
        last_error = None
        attempts = 0
        for attempt in range(1, max_retries + 1):
            check_budget_ms = self.config.timeout_ms
            if deadline is not None:
                remaining_ms = int((deadline - self._clock()) * 1000)
                if remaining_ms <= 0:
                    break
                check_budget_ms = min(check_budget_ms, remaining_ms)

            attempts = attempt
            logger.debug(f"Health check attempt {attempt}/{max_retries} for {descriptor.name}")
            result = self.check_endpoint(descriptor, check_budget_ms)
            if result.healthy:
                logger.info(f"✓ {descriptor.name} became healthy after {attempt} attempt(s)")
                return result
            last_error = result.error

            if attempt < max_retries:
                sleep_s = interval_ms / 1000
                if deadline is not None:
                    sleep_s = min(sleep_s, max(deadline - self._clock(), 0))
                self._sleep(sleep_s)

        error = (
            f"{descriptor.name} did not become healthy after {attempts} attempt(s)"
            f" in {self._elapsed_ms(start)}ms"
        )
        if last_error:
            error = f"{error}: {last_error}"
        logger.error(f"✗ {error}")
        return HealthCheckResult(False, self._elapsed_ms(start), error)

    def check_multiple(
        self,
        descriptors: Sequence[EndpointDescriptor],
        timeout_ms: Optional[int] = None,
    ) -> MultiHealthResult:
        """
        Check several endpoints concurrently.

        Each probe runs in a worker thread and produces its own immutable
        result; results are combined in input order once all probes
        finished or the join deadline passed. Probes still running at the
        deadline, and probes that raised, are reported unhealthy.
        """
        if not descriptors:
            return MultiHealthResult(overall=True, results=())

        budget_ms = timeout_ms if timeout_ms is not None else self.config.timeout_ms
        workers = min(self.config.max_workers, len(descriptors))
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="health")
        try:
            futures = [
                pool.submit(self.check_endpoint, descriptor, budget_ms)
                for descriptor in descriptors
            ]
            wait(futures, timeout=budget_ms / 1000 + _JOIN_GRACE_S)

            results: List[HealthCheckResult] = []
            for descriptor, future in zip(descriptors, futures):
                if not future.done():
                    future.cancel()
                    results.append(HealthCheckResult(
                        False, budget_ms, f"{descriptor.name}: health check did not finish in time"
                    ))
                    continue
                exc = future.exception()
                if exc is not None:
                    results.append(HealthCheckResult(False, None, f"{descriptor.name}: {exc}"))
                else:
                    results.append(future.result())
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        first_error = next((r.error for r in results if not r.healthy), None)
        overall = all(r.healthy for r in results)
        if overall:
            logger.debug(f"✓ All {len(results)} endpoint(s) healthy")
        else:
            logger.warning(f"⚠ {sum(1 for r in results if not r.healthy)} of {len(results)} endpoint(s) unhealthy")
        return MultiHealthResult(overall=overall, results=tuple(results), first_error=first_error)
