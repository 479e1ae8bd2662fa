"""
Endpoint descriptors and probe definitions.

An EndpointDescriptor tells the HealthOracle how to probe one endpoint:

    primary        - liveness probe; must return structurally valid data
    secondary      - mandatory functional probes, run only after the
                     primary succeeded
    informational  - probes whose failure is logged but never flips the
                     result
    instance_id    - remote instance handle; enables the tier-2
                     diagnostic when the primary probe fails

Presets cover the common shapes:
    http_endpoint      - plain HTTP status check
    json_rpc_endpoint  - node exposing /status plus a JSON-RPC interface
    service_endpoint   - service depending on an RPC node, optionally
                         reachable through a remote diagnostic
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

import requests

ResponseValidator = Callable[[requests.Response], bool]


@dataclass(frozen=True)
class ProbeSpec:
    """
    One HTTP request and what counts as success.

    Attributes:
        name: Label used in logs and error messages
        url: Request URL
        method: "GET" or "POST"
        payload: JSON body for POST requests
        expected_status: Required HTTP status code
        validator: Extra check on the response; False or an exception
            while validating means "invalid response structure"
    """
    name: str
    url: str
    method: str = "GET"
    payload: Optional[Dict[str, Any]] = None
    expected_status: int = 200
    validator: Optional[ResponseValidator] = None


@dataclass(frozen=True)
class DiagnosticSpec:
    """
    Inputs of the canonical remote diagnostic script.

    Attributes:
        process_pattern: pgrep -f pattern of the service process
        dependency_url: URL the host must be able to reach
        ports: TCP ports that must have listeners
        health_url: Local URL whose 200 response means "self-reported healthy"
    """
    process_pattern: str = ""
    dependency_url: Optional[str] = None
    ports: Tuple[int, ...] = ()
    health_url: Optional[str] = None


@dataclass(frozen=True)
class EndpointDescriptor:
    name: str
    primary: ProbeSpec
    secondary: Tuple[ProbeSpec, ...] = ()
    informational: Tuple[ProbeSpec, ...] = ()
    instance_id: Optional[str] = None
    diagnostic: DiagnosticSpec = field(default_factory=DiagnosticSpec)


# ==========================================
# Validators
# ==========================================

def _json_has(*path: str) -> ResponseValidator:
    def _validate(response: requests.Response) -> bool:
        data = response.json()
        for key in path:
            if not isinstance(data, dict) or not data.get(key):
                return False
            data = data[key]
        return True
    return _validate


def _status_validator(expected_network_id: Optional[str]) -> ResponseValidator:
    def _validate(response: requests.Response) -> bool:
        data = response.json()
        if not isinstance(data, dict) or not data.get("sync_info"):
            return False
        if expected_network_id and data.get("chain_id") != expected_network_id:
            return False
        return True
    return _validate


def _rpc_body(request_id: str, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}


# ==========================================
# Presets
# ==========================================

def http_endpoint(
    url: str,
    expected_status: int = 200,
    validator: Optional[ResponseValidator] = None,
    name: Optional[str] = None,
) -> EndpointDescriptor:
    return EndpointDescriptor(
        name=name or url,
        primary=ProbeSpec(
            name="http", url=url, expected_status=expected_status, validator=validator
        ),
    )


def json_rpc_endpoint(
    url: str,
    expected_network_id: Optional[str] = None,
    name: Optional[str] = None,
) -> EndpointDescriptor:
    """
    Descriptor for an RPC node.

    The primary probe reads `<base>/status` and checks its sync info (and
    the network id, when given); a latest-block query is mandatory; the
    validator listing is informational.
    """
    base_url = url[: -len("/status")] if url.endswith("/status") else url.rstrip("/")
    return EndpointDescriptor(
        name=name or base_url,
        primary=ProbeSpec(
            name="status",
            url=f"{base_url}/status",
            validator=_status_validator(expected_network_id),
        ),
        secondary=(
            ProbeSpec(
                name="block query",
                url=base_url,
                method="POST",
                payload=_rpc_body("health-check", "block", {"block_id": None}),
                validator=_json_has("result", "header"),
            ),
        ),
        informational=(
            ProbeSpec(
                name="validators",
                url=base_url,
                method="POST",
                payload=_rpc_body("validator-check", "validators", {"block_id": None}),
                validator=_json_has("result"),
            ),
        ),
    )


def service_endpoint(
    url: str,
    dependency_rpc_url: Optional[str] = None,
    contract_id: Optional[str] = None,
    instance_id: Optional[str] = None,
    diagnostic: Optional[DiagnosticSpec] = None,
    health_path: str = "/health",
    name: Optional[str] = None,
) -> EndpointDescriptor:
    """
    Descriptor for a service that depends on an RPC node.

    Reaching the dependency RPC is mandatory; the service's own health
    path and the contract state query are informational. With an
    instance_id the tier-2 remote diagnostic is available.
    """
    base_url = url.rstrip("/")
    secondary = []
    informational = [ProbeSpec(name="health", url=f"{base_url}{health_path}")]
    if dependency_rpc_url:
        rpc_base = dependency_rpc_url.rstrip("/")
        secondary.append(ProbeSpec(
            name="dependency rpc",
            url=f"{rpc_base}/status",
            validator=_status_validator(None),
        ))
        if contract_id:
            informational.append(ProbeSpec(
                name="contract state",
                url=rpc_base,
                method="POST",
                payload=_rpc_body("contract-check", "query", {
                    "request_type": "view_state",
                    "account_id": contract_id,
                    "prefix_base64": "",
                    "finality": "final",
                }),
                validator=_json_has("result"),
            ))
    return EndpointDescriptor(
        name=name or base_url,
        primary=ProbeSpec(name="service", url=base_url),
        secondary=tuple(secondary),
        informational=tuple(informational),
        instance_id=instance_id,
        diagnostic=diagnostic or DiagnosticSpec(
            dependency_url=f"{dependency_rpc_url.rstrip('/')}/status" if dependency_rpc_url else None,
            health_url=f"http://localhost{health_path}",
        ),
    )


def descriptor_from_config(config: Dict[str, Any], name: str) -> Optional[EndpointDescriptor]:
    """
    Build a descriptor from a layer's `health` config block.

    Example config:
        health:
          type: rpc            # http | rpc | service
          url: http://10.0.0.5:3030
          expected_network_id: localnet

    Returns:
        None when the block names no URL.
    """
    url = config.get("url")
    if not url:
        return None
    kind = config.get("type", "http")
    if kind == "rpc":
        return json_rpc_endpoint(url, config.get("expected_network_id"), name=name)
    if kind == "service":
        diagnostic = None
        if config.get("diagnostic"):
            raw = config["diagnostic"]
            diagnostic = DiagnosticSpec(
                process_pattern=raw.get("process_pattern", ""),
                dependency_url=raw.get("dependency_url"),
                ports=tuple(int(port) for port in raw.get("ports", ())),
                health_url=raw.get("health_url"),
            )
        return service_endpoint(
            url,
            dependency_rpc_url=config.get("dependency_rpc_url"),
            contract_id=config.get("contract_id"),
            instance_id=config.get("instance_id"),
            diagnostic=diagnostic,
            health_path=config.get("health_path", "/health"),
            name=name,
        )
    return http_endpoint(url, int(config.get("expected_status", 200)), name=name)
