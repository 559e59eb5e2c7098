"""zsearch Doctor - environment and connectivity health checks."""

import sys
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import httpx

from zsearch.bridge.acquirer import client_scope
from zsearch.bridge.capabilities import TransportFactory
from zsearch.bridge.endpoints import Endpoints
from zsearch.bridge.invoker import ACCEPT
from zsearch.bridge.schema import EndpointClass
from zsearch.bridge.stdio import StdioTransportError, vision_transport
from zsearch.validation.config import Config

MIN_PYTHON = (3, 9)

PASS = "pass"
WARN = "warn"
FAIL = "fail"


@dataclass
class DoctorCheck:
    name: str
    status: str
    message: str


@dataclass
class DoctorResult:
    healthy: bool
    checks: List[DoctorCheck] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def check_config(config: Config) -> DoctorCheck:
    error = config.validate()
    if error is None:
        return DoctorCheck("config", PASS, "Configuration is valid")
    return DoctorCheck("config", FAIL, error)


def check_python(version_info: Tuple[int, ...] = tuple(sys.version_info)) -> DoctorCheck:
    version = ".".join(str(part) for part in version_info[:3])
    required = ".".join(str(part) for part in MIN_PYTHON)
    status = PASS if tuple(version_info[:2]) >= MIN_PYTHON else FAIL
    return DoctorCheck("python_version", status, f"Python {version} (>= {required} required)")


async def check_vision(
    api_key: str,
    mode: str = "ZAI",
    transport_factory: TransportFactory = vision_transport,
) -> DoctorCheck:
    """Spawn the vision server and list its tools. Failures only warn."""
    try:
        async with transport_factory(api_key, mode) as transport:
            await transport.list_tools()
    except StdioTransportError as e:
        return DoctorCheck("vision_mcp", WARN, f"Vision MCP server check failed: {e}")
    return DoctorCheck("vision_mcp", PASS, "Vision MCP server is reachable")


async def check_api_access(
    api_key: str,
    endpoints: Optional[Endpoints] = None,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = 30.0,
) -> Tuple[bool, DoctorCheck]:
    """
    POST ``tools/list`` to the web search endpoint with Bearer auth.

    Returns:
        ``(healthy, check)``; transport errors warn without flipping health.
    """
    url = (endpoints or Endpoints()).http_url(EndpointClass.WEB_SEARCH)
    try:
        async with client_scope(client) as http:
            response = await http.post(
                url,
                headers={
                    "Content-Type": "application/json",
                    "Accept": ACCEPT,
                    "Authorization": f"Bearer {api_key}",
                },
                json={"jsonrpc": "2.0", "id": 1, "method": "tools/list", "params": {}},
                timeout=timeout,
            )
    except httpx.HTTPError as e:
        return True, DoctorCheck("api_access", WARN, f"API check failed: {e}")

    if response.is_success:
        return True, DoctorCheck("api_access", PASS, "Z.AI MCP API is reachable and authenticated")

    if response.status_code in (401, 403):
        return False, DoctorCheck("api_access", FAIL, "API authentication failed. Check your API key.")

    try:
        detail = response.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        detail = response.reason_phrase
    return False, DoctorCheck("api_access", FAIL, f"API request failed: {response.status_code} {detail}")


async def run_checks(
    config: Config,
    include_vision: bool = True,
    client: Optional[httpx.AsyncClient] = None,
    transport_factory: TransportFactory = vision_transport,
) -> DoctorResult:
    """Run every check; a single ``fail`` makes the result unhealthy."""
    result = DoctorResult(healthy=True)

    for check in (check_config(config), check_python()):
        result.checks.append(check)
        if check.status == FAIL:
            result.healthy = False

    merged = config.merged
    if include_vision and merged.api_key:
        result.checks.append(await check_vision(merged.api_key, merged.mode, transport_factory))

    if merged.api_key:
        healthy, check = await check_api_access(
            merged.api_key,
            endpoints=Endpoints(merged.endpoints.base_url),
            client=client,
            timeout=merged.timeout,
        )
        result.checks.append(check)
        if not healthy:
            result.healthy = False

    return result
