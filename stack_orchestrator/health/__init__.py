"""
Health checking: tiered probes, remote diagnostics, retry and fan-out.
"""

from .oracle import HealthOracle
from .probes import (
    DiagnosticSpec,
    EndpointDescriptor,
    ProbeSpec,
    descriptor_from_config,
    http_endpoint,
    json_rpc_endpoint,
    service_endpoint,
)
from .remote import SSMRemoteExecutor, score_markers

__all__ = [
    "HealthOracle",
    "DiagnosticSpec",
    "EndpointDescriptor",
    "ProbeSpec",
    "descriptor_from_config",
    "http_endpoint",
    "json_rpc_endpoint",
    "service_endpoint",
    "SSMRemoteExecutor",
    "score_markers",
]
