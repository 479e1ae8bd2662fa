"""
boto3 session factory.

All AWS access goes through a session built from the global
configuration, so profile and region are applied consistently.
"""

from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ProfileNotFound

from ..core.exceptions import ConfigValidationError
from ..core.types import GlobalConfig

# Retries of the SDK itself; our own retry loops sit on top
_CLIENT_CONFIG = Config(retries={"max_attempts": 3, "mode": "standard"})


def create_session(global_config: GlobalConfig) -> boto3.session.Session:
    """
    Create a boto3 session for the configured profile and region.

    Raises:
        ConfigValidationError: If the named profile does not exist
    """
    kwargs = {"region_name": global_config.aws_region}
    if global_config.aws_profile:
        kwargs["profile_name"] = global_config.aws_profile
    try:
        return boto3.session.Session(**kwargs)
    except ProfileNotFound as e:
        raise ConfigValidationError(
            f"AWS profile '{global_config.aws_profile}' not found", field="global.aws_profile"
        ) from e


class AwsClientFactory:
    """
    Lazily creates and caches boto3 clients for one configuration.

    Example:
        clients = AwsClientFactory(config.global_config)
        cfn = clients.client("cloudformation")
    """

    def __init__(self, global_config: GlobalConfig, session: Optional[boto3.session.Session] = None):
        self._global_config = global_config
        self._session = session
        self._clients: dict[str, Any] = {}

    @property
    def session(self) -> boto3.session.Session:
        if self._session is None:
            self._session = create_session(self._global_config)
        return self._session

    def client(self, service_name: str) -> Any:
        if service_name not in self._clients:
            try:
                self._clients[service_name] = self.session.client(
                    service_name, config=_CLIENT_CONFIG
                )
            except BotoCoreError as e:
                raise ConfigValidationError(
                    f"Could not create AWS client '{service_name}': {e}"
                ) from e
        return self._clients[service_name]
