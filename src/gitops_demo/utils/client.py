# ABOUTME: ArgoCD API and demo app health client for post-deployment verification
# ABOUTME: Async httpx wrapper with retry logic, structured errors and secret masking

"""
HTTP clients used to verify the GitOps deployment.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

After ``gitops-demo up`` and ``gitops-demo deploy`` the interesting question
is: did ArgoCD actually converge? This module answers it over HTTP:

1. ArgocdClient talks to the ArgoCD REST API (through a port-forward to
   argocd-server), logs in with the initial admin password and reads the
   Application's sync and health status.

2. probe_health() calls the demo app's ``/healthz`` endpoint (through a
   port-forward to the demo Service) and reports whether it answered with
   a success payload.

=============================================================================
ARGOCD REST API USED HERE
=============================================================================

    POST /api/v1/session              - exchange username/password for a token
    GET  /api/v1/applications/{name}  - Application spec and status

Authentication is a Bearer token in the Authorization header. Errors come
back as JSON: {"message": "...", "error": "..."}

=============================================================================
RETRIES
=============================================================================

Port-forwards and freshly started pods are flaky for the first seconds.
Requests are retried with tenacity:

- ArgoCD API: on timeouts, 3 attempts, exponential backoff (1s, 2s, ...)
- Health probe: on transport errors (connection refused, reset, timeout),
  5 attempts, exponential backoff; after that the failure is REPORTED, not
  raised, because an unhealthy app is a verification result.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from gitops_demo.errors import GitopsDemoError

if TYPE_CHECKING:
    from pydantic import SecretStr

logger = structlog.get_logger(__name__)


# =============================================================================
# SECRET MASKING
# =============================================================================

MASK = "***MASKED***"

# Patterns masking secret values inside free-form strings (error messages,
# annotations). re.I: Token, TOKEN and token all match.
SECRET_PATTERNS = [
    (re.compile(r"(token[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), rf"\1{MASK}"),
    (re.compile(r"(password[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), rf"\1{MASK}"),
    (re.compile(r"(secret[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), rf"\1{MASK}"),
    (re.compile(r"(bearer\s+)[^\s\"']+", re.I), rf"\1{MASK}"),
]

# Dictionary keys whose values are always masked
SENSITIVE_KEYS = frozenset(
    ["token", "password", "secret", "authorization", "credentials", "sshprivatekey"]
)


def mask_secrets(data: Any) -> Any:
    """
    Recursively mask sensitive values.

    - str: regex patterns applied
    - dict: values of SENSITIVE_KEYS replaced, other values recursed into
    - list: each item recursed into
    - anything else: returned unchanged
    """
    if isinstance(data, str):
        for pattern, replacement in SECRET_PATTERNS:
            data = pattern.sub(replacement, data)
        return data
    if isinstance(data, dict):
        return {
            k: MASK if k.lower() in SENSITIVE_KEYS else mask_secrets(v) for k, v in data.items()
        }
    if isinstance(data, list):
        return [mask_secrets(item) for item in data]
    return data


# =============================================================================
# ERRORS AND DATA CLASSES
# =============================================================================


class ArgocdError(GitopsDemoError):
    """
    Structured ArgoCD API error.

    USAGE:
    ------
    try:
        app = await client.get_application("demo-flask-app")
    except ArgocdError as e:
        print(f"Error {e.code}: {e.message}")  # Error 404: application not found
    """

    def __init__(self, code: int, message: str, details: str | None = None) -> None:
        self.code = code
        self.message = message
        self.details = details
        super().__init__(str(self))

    def __str__(self) -> str:
        base = f"ArgoCD API error ({self.code}): {self.message}"
        if self.details:
            base += f" - {self.details}"
        return base


@dataclass
class Application:
    """
    Flattened view of an ArgoCD Application.

    The same nested shape comes back from the REST API and from
    ``kubectl get application -o json``, so both paths use
    from_api_response():

        {
            "metadata": {"name": "demo-flask-app", "namespace": "argocd"},
            "spec": {"source": {...}, "destination": {...}, "syncPolicy": {...}},
            "status": {"sync": {"status": "Synced"}, "health": {"status": "Healthy"}}
        }
    """

    name: str
    namespace: str
    project: str

    repo_url: str
    path: str
    target_revision: str

    destination_server: str
    destination_namespace: str

    sync_status: str
    health_status: str

    sync_policy: dict[str, Any] | None = None
    operation_state: dict[str, Any] | None = None
    conditions: list[dict[str, Any]] | None = None

    @property
    def is_ready(self) -> bool:
        """Synced with Git and reported Healthy."""
        return self.sync_status == "Synced" and self.health_status == "Healthy"

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> Application:
        """
        Create an Application from an API or kubectl JSON document.

        Missing fields fall back to ArgoCD's own defaults ("default" project,
        "HEAD" revision) or "Unknown" for status values, since a freshly
        applied Application has no status block yet.
        """
        metadata = data.get("metadata", {})
        spec = data.get("spec", {})
        status = data.get("status", {})

        source = spec.get("source", {})
        destination = spec.get("destination", {})

        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", "argocd"),
            project=spec.get("project", "default"),
            repo_url=source.get("repoURL", ""),
            path=source.get("path", ""),
            target_revision=source.get("targetRevision", "HEAD"),
            destination_server=destination.get("server", ""),
            destination_namespace=destination.get("namespace", ""),
            sync_status=status.get("sync", {}).get("status", "Unknown"),
            health_status=status.get("health", {}).get("status", "Unknown"),
            sync_policy=spec.get("syncPolicy"),
            operation_state=status.get("operationState"),
            conditions=status.get("conditions"),
        )


@dataclass
class HealthReport:
    """Result of probing the demo app health endpoint."""

    url: str
    ok: bool
    status_code: int | None = None
    payload: Any = None
    error: str | None = None


# =============================================================================
# ARGOCD CLIENT
# =============================================================================


class ArgocdClient:
    """
    Async ArgoCD API client.

    LIFECYCLE:
    ----------
        async with ArgocdClient("https://localhost:8080") as client:
            await client.login("admin", password)
            app = await client.get_application("demo-flask-app")

    ``insecure`` defaults to True because a port-forwarded argocd-server
    presents its self-signed certificate.
    """

    def __init__(self, url: str, insecure: bool = True, timeout: float = 30.0) -> None:
        self._url = url.rstrip("/")
        self._insecure = insecure
        self._timeout = timeout
        self._token: str | None = None
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> ArgocdClient:
        self._client = httpx.AsyncClient(
            base_url=f"{self._url}/api/v1",
            headers={"Content-Type": "application/json"},
            timeout=self._timeout,
            verify=not self._insecure,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @retry(
        retry=retry_if_exception_type(httpx.TimeoutException),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _request(
        self,
        method: str,
        path: str,
        json_data: dict[str, Any] | None = None,
        mask: bool = True,
    ) -> dict[str, Any]:
        """
        Make an HTTP request to the ArgoCD API.

        Raises:
            ArgocdError: On HTTP status >= 400
            httpx.TimeoutException: After retries are exhausted
            RuntimeError: If used outside ``async with``
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")

        log = logger.bind(method=method, path=path)
        log.debug("Making ArgoCD API request")

        headers = {"Authorization": f"Bearer {self._token}"} if self._token else None
        response = await self._client.request(method, path, json=json_data, headers=headers)

        if response.status_code >= 400:
            error_body = response.text
            log.warning(
                "ArgoCD API error",
                status=response.status_code,
                body=mask_secrets(error_body[:200]),
            )

            message = f"HTTP {response.status_code}"
            details = None
            try:
                error_json = response.json()
                message = error_json.get("message", message)
                details = error_json.get("error")
            except ValueError:
                details = error_body[:200] if error_body else None

            raise ArgocdError(
                code=response.status_code,
                message=mask_secrets(message),
                details=mask_secrets(details) if details else None,
            )

        result = response.json() if response.content else {}
        if mask:
            result = mask_secrets(result)
        return result if isinstance(result, dict) else {}

    async def login(self, username: str, password: str | SecretStr) -> None:
        """
        Exchange username and password for a session token.

        ArgoCD API: POST /api/v1/session
        """
        secret = password if isinstance(password, str) else password.get_secret_value()
        data = await self._request(
            "POST",
            "/session",
            json_data={"username": username, "password": secret},
            mask=False,
        )
        token = data.get("token")
        if not token:
            raise ArgocdError(code=401, message="Login response contained no token")
        self._token = token
        logger.info("Logged into ArgoCD", username=username)

    async def get_application(self, name: str) -> Application:
        """
        Get an Application by name.

        ArgoCD API: GET /api/v1/applications/{name}
        """
        data = await self._request("GET", f"/applications/{name}")
        return Application.from_api_response(data)


# =============================================================================
# HEALTH PROBE
# =============================================================================


async def probe_health(
    base_url: str,
    path: str = "/healthz",
    attempts: int = 5,
    timeout: float = 5.0,
) -> HealthReport:
    """
    Probe the demo app health endpoint.

    Transport errors are retried; HTTP responses are never retried since a
    500 from the app is an answer, not a flake.

    Returns:
        HealthReport with ok=True for any 2xx response.
    """
    url = f"{base_url.rstrip('/')}{path}"
    log = logger.bind(url=url)

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
    )
    async def fetch(client: httpx.AsyncClient) -> httpx.Response:
        return await client.get(url)

    async with httpx.AsyncClient(timeout=timeout) as client:
        try:
            response = await fetch(client)
        except RetryError as e:
            error = str(e.last_attempt.exception())
            log.warning("Health probe unreachable", error=error)
            return HealthReport(url=url, ok=False, error=error)

    try:
        payload: Any = response.json()
    except ValueError:
        payload = response.text

    ok = response.is_success
    log.info("Health probe answered", status=response.status_code, ok=ok)
    return HealthReport(url=url, ok=ok, status_code=response.status_code, payload=payload)
