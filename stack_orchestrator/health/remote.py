"""
Remote diagnostic channel (tier 2 of the health check).

When an endpoint cannot be reached directly but its host is known, a
canonical diagnostic script runs ON the host through AWS Systems Manager
(`AWS-RunShellScript`). The script prints one line per marker:

    process_running: YES
    dependency_reachable: NO
    ports_listening: YES
    self_reported_healthy: NO

score_markers() turns that output into a weighted verdict: healthy if
the self-reported marker is true, or if the weighted fraction of true
markers reaches the threshold (0.6 by default).
"""

import shlex
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .. import constants as CONSTANTS
from ..core.exceptions import HealthCheckError
from ..logger import logger
from .probes import DiagnosticSpec

SELF_REPORTED_MARKER = "self_reported_healthy"

_PENDING_STATUSES = {"Pending", "InProgress", "Delayed"}


# ==========================================
# Diagnostic Script & Scoring
# ==========================================

def build_diagnostic_script(diagnostic: DiagnosticSpec) -> str:
    """
    Render the canonical diagnostic script for a host.

    Every marker line is always printed, so a missing line in the
    output means the script did not run to completion.
    """
    lines = ["#!/bin/bash", "set +e"]

    if diagnostic.process_pattern:
        pattern = shlex.quote(diagnostic.process_pattern)
        lines.append(f'if pgrep -f {pattern} >/dev/null; then echo "process_running: YES"; '
                     f'else echo "process_running: NO"; fi')
    else:
        lines.append('echo "process_running: NO"')

    if diagnostic.dependency_url:
        url = shlex.quote(diagnostic.dependency_url)
        lines.append(f'if curl -sf --max-time 5 {url} >/dev/null; then '
                     f'echo "dependency_reachable: YES"; else echo "dependency_reachable: NO"; fi')
    else:
        lines.append('echo "dependency_reachable: NO"')

    if diagnostic.ports:
        checks = " && ".join(
            f"ss -ltn | grep -q ':{int(port)} '" for port in diagnostic.ports
        )
        lines.append(f'if {checks}; then echo "ports_listening: YES"; '
                     f'else echo "ports_listening: NO"; fi')
    else:
        lines.append('if [ "$(ss -ltn | tail -n +2 | wc -l)" -gt 0 ]; then '
                     'echo "ports_listening: YES"; else echo "ports_listening: NO"; fi')

    if diagnostic.health_url:
        url = shlex.quote(diagnostic.health_url)
        lines.append(f'if curl -sf --max-time 5 {url} >/dev/null; then '
                     f'echo "{SELF_REPORTED_MARKER}: YES"; else echo "{SELF_REPORTED_MARKER}: NO"; fi')
    else:
        lines.append(f'echo "{SELF_REPORTED_MARKER}: NO"')

    return "\n".join(lines) + "\n"


def parse_markers(output: str, marker_names) -> Dict[str, bool]:
    """Read `name: YES|NO` lines; markers that are absent count as false."""
    found = {}
    for line in output.splitlines():
        name, sep, value = line.partition(":")
        name = name.strip()
        if sep and name in marker_names:
            found[name] = value.strip().upper() == "YES"
    return {name: found.get(name, False) for name in marker_names}


@dataclass(frozen=True)
class MarkerScore:
    markers: Dict[str, bool]
    fraction: float
    healthy: bool

    def describe(self) -> str:
        passed = sum(1 for value in self.markers.values() if value)
        details = ", ".join(
            f"{name}={'YES' if value else 'NO'}" for name, value in self.markers.items()
        )
        return f"{passed}/{len(self.markers)} ({self.fraction:.2f}): {details}"


def score_markers(
    markers: Mapping[str, bool],
    weights: Optional[Mapping[str, float]] = None,
    threshold: float = CONSTANTS.REMOTE_HEALTHY_THRESHOLD,
) -> MarkerScore:
    """
    Weighted verdict over the diagnostic markers.

    Example:
        >>> score_markers({"process_running": True, "dependency_reachable": True,
        ...                "ports_listening": True, "self_reported_healthy": False}).healthy
        True
    """
    weights = weights or CONSTANTS.REMOTE_MARKER_WEIGHTS
    total = sum(weights.get(name, 1.0) for name in markers)
    passed = sum(weights.get(name, 1.0) for name, value in markers.items() if value)
    fraction = passed / total if total else 0.0
    healthy = bool(markers.get(SELF_REPORTED_MARKER)) or fraction >= threshold
    return MarkerScore(markers=dict(markers), fraction=fraction, healthy=healthy)


# ==========================================
# SSM Channel
# ==========================================

class SSMRemoteExecutor:
    """
    Runs shell scripts on EC2 instances through AWS Systems Manager.

    Args:
        ssm_client: boto3 SSM client
        poll_interval_ms: Delay between invocation status polls
        sleep_fn / clock: Injectable for tests
    """

    def __init__(
        self,
        ssm_client: Any,
        poll_interval_ms: int = CONSTANTS.REMOTE_POLL_INTERVAL_MS,
        sleep_fn: Optional[Callable[[float], None]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._ssm = ssm_client
        self.poll_interval_s = poll_interval_ms / 1000
        self._sleep = sleep_fn or time.sleep
        self._clock = clock or time.monotonic

    def execute(self, instance_id: str, script: str, timeout_s: float) -> str:
        """
        Send the script and wait for its standard output.

        Raises:
            HealthCheckError: If the command cannot be sent, fails on the
                host, or does not finish within timeout_s
        """
        deadline = self._clock() + timeout_s
        try:
            response = self._ssm.send_command(
                InstanceIds=[instance_id],
                DocumentName="AWS-RunShellScript",
                Parameters={"commands": script.splitlines()},
                TimeoutSeconds=max(30, int(timeout_s)),
            )
        except (ClientError, BotoCoreError) as e:
            raise HealthCheckError(f"SSM send_command failed for {instance_id}: {e}") from e

        command_id = response["Command"]["CommandId"]
        logger.debug(f"SSM command sent to {instance_id}, ID: {command_id}")

        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise HealthCheckError(
                    f"SSM command {command_id} did not finish within {timeout_s:.1f}s"
                )
            self._sleep(min(self.poll_interval_s, remaining))

            try:
                invocation = self._ssm.get_command_invocation(
                    CommandId=command_id, InstanceId=instance_id
                )
            except ClientError as e:
                if e.response.get("Error", {}).get("Code") == "InvocationDoesNotExist":
                    continue
                raise HealthCheckError(f"SSM get_command_invocation failed: {e}") from e
            except BotoCoreError as e:
                raise HealthCheckError(f"SSM get_command_invocation failed: {e}") from e

            status = invocation.get("Status")
            if status in _PENDING_STATUSES:
                continue
            if status == "Success":
                return invocation.get("StandardOutputContent", "")
            raise HealthCheckError(
                f"SSM command {command_id} ended with status {status}: "
                f"{invocation.get('StandardErrorContent', '').strip()}"
            )
