"""
Deployment state persistence.

The orchestrator keeps a DeploymentState (layer name -> last recorded
outputs) and persists it through an injected StateStore. Three backends
are provided:

    LocalFileStateStore - JSON file, replaced atomically on save
    S3StateStore        - JSON object in an S3 bucket (boto3)
    InMemoryStateStore  - process-local, for tests and dry runs

Single-writer Rule:
    The file and S3 backends remember the timestamp of the state they
    loaded. If the persisted state changed in the meantime, save()
    refuses to overwrite it and raises StatePersistenceError.

Usage:
    store = create_state_store(config.global_config, base_dir=Path("."))
    state = store.load() or DeploymentState()
    store.save(state)
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, TYPE_CHECKING

from botocore.exceptions import BotoCoreError, ClientError

from .. import constants as CONSTANTS
from ..logger import logger
from .exceptions import StatePersistenceError
from .types import DeploymentState, GlobalConfig

if TYPE_CHECKING:
    from ..aws.session import AwsClientFactory


def _raw_timestamp(data: Any) -> Optional[str]:
    return data.get("timestamp") if isinstance(data, dict) else None


def _parse_state(data: Any, backend: str) -> DeploymentState:
    if not isinstance(data, dict):
        raise StatePersistenceError("Persisted state is not a JSON object", backend=backend)
    try:
        return DeploymentState.from_dict(data)
    except (KeyError, TypeError, AttributeError) as e:
        raise StatePersistenceError(f"Persisted state is malformed: {e}", backend=backend) from e


# ==========================================
# Local File Backend
# ==========================================

class LocalFileStateStore:
    """
    Stores the state as a JSON file.

    Args:
        path: Location of the state file
    """

    backend_name = CONSTANTS.STATE_BACKEND_LOCAL

    def __init__(self, path: Path):
        self.path = Path(path)
        self._loaded_timestamp: Optional[str] = None

    def _read(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StatePersistenceError(
                f"Could not read state file {self.path}: {e}", backend=self.backend_name
            ) from e

    def load(self) -> Optional[DeploymentState]:
        data = self._read()
        if data is None:
            self._loaded_timestamp = None
            return None
        # Owned from here on, even if the document turns out to be malformed
        self._loaded_timestamp = _raw_timestamp(data)
        state = _parse_state(data, self.backend_name)
        logger.debug(f"Loaded deployment state from {self.path} ({len(state.layers)} layer(s))")
        return state

    def save(self, state: DeploymentState) -> None:
        self._ensure_unchanged()
        state.touch()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=str(self.path.parent), prefix=f".{self.path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state.to_dict(), f, indent=2)
            os.replace(tmp_name, self.path)
        except OSError as e:
            raise StatePersistenceError(
                f"Could not write state file {self.path}: {e}", backend=self.backend_name
            ) from e
        self._loaded_timestamp = state.timestamp
        logger.debug(f"Saved deployment state to {self.path}")

    def delete(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise StatePersistenceError(
                f"Could not delete state file {self.path}: {e}", backend=self.backend_name
            ) from e
        self._loaded_timestamp = None
        logger.debug(f"Deleted deployment state {self.path}")

    def _ensure_unchanged(self) -> None:
        try:
            data = self._read()
        except StatePersistenceError:
            # Unreadable file: nothing trustworthy to protect
            return
        if not isinstance(data, dict):
            return
        on_disk = data.get("timestamp")
        if on_disk is not None and on_disk != self._loaded_timestamp:
            raise StatePersistenceError(
                f"State file {self.path} was modified by another writer "
                f"(expected {self._loaded_timestamp}, found {on_disk})",
                backend=self.backend_name,
            )


# ==========================================
# S3 Backend
# ==========================================

class S3StateStore:
    """
    Stores the state as a JSON object in S3.

    Args:
        s3_client: boto3 S3 client
        bucket: Bucket name
        key: Object key of the state document
    """

    backend_name = CONSTANTS.STATE_BACKEND_S3

    def __init__(self, s3_client: Any, bucket: str, key: str = CONSTANTS.DEFAULT_STATE_S3_KEY):
        self._s3 = s3_client
        self.bucket = bucket
        self.key = key
        self._loaded_timestamp: Optional[str] = None

    def _read(self) -> Optional[Dict[str, Any]]:
        try:
            response = self._s3.get_object(Bucket=self.bucket, Key=self.key)
            return json.loads(response["Body"].read())
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return None
            raise StatePersistenceError(
                f"Could not read s3://{self.bucket}/{self.key}: {e}", backend=self.backend_name
            ) from e
        except (BotoCoreError, json.JSONDecodeError) as e:
            raise StatePersistenceError(
                f"Could not read s3://{self.bucket}/{self.key}: {e}", backend=self.backend_name
            ) from e

    def load(self) -> Optional[DeploymentState]:
        data = self._read()
        if data is None:
            self._loaded_timestamp = None
            return None
        # Owned from here on, even if the document turns out to be malformed
        self._loaded_timestamp = _raw_timestamp(data)
        state = _parse_state(data, self.backend_name)
        return state

    def save(self, state: DeploymentState) -> None:
        current = self._read()
        if isinstance(current, dict):
            remote_timestamp = current.get("timestamp")
            if remote_timestamp is not None and remote_timestamp != self._loaded_timestamp:
                raise StatePersistenceError(
                    f"s3://{self.bucket}/{self.key} was modified by another writer",
                    backend=self.backend_name,
                )
        state.touch()
        try:
            self._s3.put_object(
                Bucket=self.bucket,
                Key=self.key,
                Body=json.dumps(state.to_dict(), indent=2).encode("utf-8"),
                ContentType="application/json",
            )
        except (ClientError, BotoCoreError) as e:
            raise StatePersistenceError(
                f"Could not write s3://{self.bucket}/{self.key}: {e}", backend=self.backend_name
            ) from e
        self._loaded_timestamp = state.timestamp

    def delete(self) -> None:
        try:
            self._s3.delete_object(Bucket=self.bucket, Key=self.key)
        except (ClientError, BotoCoreError) as e:
            raise StatePersistenceError(
                f"Could not delete s3://{self.bucket}/{self.key}: {e}", backend=self.backend_name
            ) from e
        self._loaded_timestamp = None


# ==========================================
# In-Memory Backend
# ==========================================

class InMemoryStateStore:
    """Keeps a serialized copy of the state in memory."""

    backend_name = CONSTANTS.STATE_BACKEND_MEMORY

    def __init__(self, initial: Optional[DeploymentState] = None):
        self._data: Optional[Dict[str, Any]] = initial.to_dict() if initial else None

    def load(self) -> Optional[DeploymentState]:
        if self._data is None:
            return None
        return DeploymentState.from_dict(json.loads(json.dumps(self._data)))

    def save(self, state: DeploymentState) -> None:
        state.touch()
        self._data = json.loads(json.dumps(state.to_dict()))

    def delete(self) -> None:
        self._data = None


def create_state_store(
    global_config: GlobalConfig,
    base_dir: Optional[Path] = None,
    aws: Optional["AwsClientFactory"] = None,
):
    """
    Build the state store selected by `global.state.backend`.

    Args:
        global_config: Global configuration
        base_dir: Directory relative state file paths are resolved against
        aws: Client factory, required for the s3 backend
    """
    state_config = global_config.state
    backend = state_config.backend

    if backend == CONSTANTS.STATE_BACKEND_MEMORY:
        return InMemoryStateStore()

    if backend == CONSTANTS.STATE_BACKEND_S3:
        if aws is None:
            raise StatePersistenceError("The s3 backend needs AWS access", backend=backend)
        return S3StateStore(aws.client("s3"), state_config.bucket, state_config.key)

    path = Path(state_config.path).expanduser()
    if not path.is_absolute() and base_dir is not None:
        path = Path(base_dir) / path
    return LocalFileStateStore(path)
