"""
CloudFormation stack output reader.

Reads the Outputs of deployed stacks through boto3. Each read is retried
a few times with a fixed delay, since freshly deployed stacks may not be
visible immediately. Outputs of several independent stacks are read
concurrently; every read produces its own StackOutputResult and the
results are combined only after the join.

Usage:
    reader = StackOutputReader(clients.client("cloudformation"))
    result = reader.read("NetworkStack")
    results = reader.read_many(["NetworkStack", "DatabaseStack"])
"""

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Sequence

from botocore.exceptions import BotoCoreError, ClientError

from .. import constants as CONSTANTS
from ..logger import logger


@dataclass(frozen=True)
class StackOutputResult:
    success: bool
    outputs: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None


class StackNotFoundError(Exception):
    """Raised internally when describe_stacks reports a missing stack."""


class StackOutputReader:
    """
    Reads stack outputs with retries.

    Args:
        cfn_client: boto3 CloudFormation client
        max_retries: Attempts per stack
        retry_delay_s: Fixed delay between attempts
        sleep_fn: Injectable for tests
    """

    def __init__(
        self,
        cfn_client: Any,
        max_retries: int = CONSTANTS.STACK_OUTPUT_RETRIES,
        retry_delay_s: float = CONSTANTS.STACK_OUTPUT_RETRY_DELAY_S,
        sleep_fn: Optional[Callable[[float], None]] = None,
    ):
        self._cfn = cfn_client
        self.max_retries = max_retries
        self.retry_delay_s = retry_delay_s
        self._sleep = sleep_fn or time.sleep

    def _describe(self, stack_name: str) -> Dict[str, Any]:
        try:
            response = self._cfn.describe_stacks(StackName=stack_name)
        except ClientError as e:
            if "does not exist" in str(e):
                raise StackNotFoundError(f"Stack '{stack_name}' not found") from e
            raise
        stacks = response.get("Stacks") or []
        if not stacks:
            raise StackNotFoundError(f"Stack '{stack_name}' not found")
        return stacks[0]

    def stack_exists(self, stack_name: str) -> bool:
        """True if the stack exists and is not deleted or mid-rollback."""
        try:
            stack = self._describe(stack_name)
        except StackNotFoundError:
            return False
        except (ClientError, BotoCoreError) as e:
            logger.debug(f"Could not describe stack {stack_name}: {e}")
            return False
        status = stack.get("StackStatus", "")
        return status.endswith("_COMPLETE") and status not in (
            "DELETE_COMPLETE", "ROLLBACK_COMPLETE"
        )

    def read(self, stack_name: str) -> StackOutputResult:
        """
        Read the outputs of one stack.

        Returns:
            StackOutputResult; success=False after all attempts failed.
        """
        logger.debug(f"Reading outputs from stack: {stack_name}")
        last_error = None
        for attempt in range(1, self.max_retries + 1):
            try:
                stack = self._describe(stack_name)
                outputs = {
                    item["OutputKey"]: item["OutputValue"]
                    for item in stack.get("Outputs") or []
                }
                logger.debug(f"Read {len(outputs)} output(s) from stack '{stack_name}'")
                return StackOutputResult(success=True, outputs=outputs)
            except StackNotFoundError as e:
                last_error = str(e)
            except (ClientError, BotoCoreError) as e:
                last_error = str(e)

            if attempt < self.max_retries:
                logger.debug(f"Attempt {attempt} failed, retrying in {self.retry_delay_s}s...")
                self._sleep(self.retry_delay_s)

        logger.warning(f"⚠ All {self.max_retries} attempts failed for stack {stack_name}: {last_error}")
        return StackOutputResult(success=False, error=last_error)

    def read_many(
        self,
        stack_names: Sequence[str],
        max_workers: int = CONSTANTS.STACK_OUTPUT_MAX_WORKERS,
    ) -> Dict[str, StackOutputResult]:
        """Read several stacks concurrently, keyed by stack name in input order."""
        if not stack_names:
            return {}
        logger.info(f"Reading outputs from {len(stack_names)} stack(s)")
        with ThreadPoolExecutor(max_workers=min(max_workers, len(stack_names))) as pool:
            results = list(pool.map(self.read, stack_names))
        return dict(zip(stack_names, results))
