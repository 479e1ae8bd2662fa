"""
Built-in layer kinds.

Importing this package registers every built-in kind with the
LayerRegistry:

    cdk    - CDK app deployed with `cdk deploy` (CdkLayer)
    script - deployment script from the layer's source (ScriptLayer)
"""

from .. import constants as CONSTANTS
from ..core.registry import LayerRegistry
from .base import BaseLayer
from .cdk_layer import CdkLayer
from .script_layer import ScriptLayer


def register_builtin_kinds() -> None:
    LayerRegistry.register(CONSTANTS.KIND_CDK, CdkLayer)
    LayerRegistry.register(CONSTANTS.KIND_SCRIPT, ScriptLayer)


register_builtin_kinds()

__all__ = ["BaseLayer", "CdkLayer", "ScriptLayer", "register_builtin_kinds"]
