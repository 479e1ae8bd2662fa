"""
AWS integration: boto3 sessions, CDK effector, CloudFormation outputs.
"""

from .cdk_manager import CdkManager, CdkResult
from .session import AwsClientFactory, create_session
from .stack_outputs import StackOutputReader, StackOutputResult

__all__ = [
    "AwsClientFactory",
    "CdkManager",
    "CdkResult",
    "StackOutputReader",
    "StackOutputResult",
    "create_session",
]
