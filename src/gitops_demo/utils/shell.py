# ABOUTME: Command execution helpers for kind and kubectl
# ABOUTME: Fail-fast subprocess wrapper, prerequisite checks and port-forwarding

"""
Command execution helpers.

Every interaction with the cluster goes through the ``kind`` and ``kubectl``
command-line tools, exactly as an operator would type them. ``run()`` is the
single place that starts processes: it logs the command, captures output and
turns a non-zero exit into ``CommandError`` so a failed step stops the
bootstrap instead of silently continuing.
"""

from __future__ import annotations

import base64
import binascii
import json
import shutil
import socket
import subprocess
import tempfile
from dataclasses import dataclass
from typing import IO, TYPE_CHECKING, Any

import structlog
from tenacity import RetryError, retry, retry_if_result, stop_after_attempt, wait_fixed

from gitops_demo.errors import BootstrapError, CommandError, MissingDependencyError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence
    from types import TracebackType

logger = structlog.get_logger(__name__)

INSTALL_HINTS = {
    "kind": "brew install kind",
    "kubectl": "brew install kubectl",
}


@dataclass
class CommandResult:
    """Outcome of a finished command."""

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def require_tools(tools: Iterable[str]) -> None:
    """Check that every tool is on PATH.

    Raises:
        MissingDependencyError: For the first missing tool, with an install hint.
    """
    for tool in tools:
        if shutil.which(tool) is None:
            logger.error("Required tool missing", tool=tool)
            raise MissingDependencyError(tool, INSTALL_HINTS.get(tool))
        logger.debug("Required tool found", tool=tool)


def run(
    args: Sequence[str],
    input: str | None = None,  # noqa: A002 - mirrors subprocess.run
    check: bool = True,
    capture: bool = True,
    timeout: float | None = None,
) -> CommandResult:
    """Run a command and return its result.

    Args:
        args: Command and arguments
        input: Text fed to stdin (e.g. a manifest for ``-f -``)
        check: Raise CommandError on non-zero exit
        capture: Capture stdout/stderr; when False output streams to the terminal
        timeout: Seconds before the command is killed

    Raises:
        MissingDependencyError: The executable does not exist
        CommandError: Non-zero exit (with check=True) or timeout
    """
    argv = list(args)
    log = logger.bind(cmd=" ".join(argv))
    log.debug("Running command")

    try:
        proc = subprocess.run(  # noqa: S603
            argv,
            input=input,
            capture_output=capture,
            text=True,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError as e:
        raise MissingDependencyError(argv[0], INSTALL_HINTS.get(argv[0])) from e
    except subprocess.TimeoutExpired as e:
        log.warning("Command timed out", timeout=timeout)
        stderr = e.stderr.decode() if isinstance(e.stderr, bytes) else (e.stderr or "")
        raise CommandError(argv, None, stderr) from e

    result = CommandResult(
        args=argv,
        returncode=proc.returncode,
        stdout=proc.stdout or "",
        stderr=proc.stderr or "",
    )

    if check and not result.ok:
        log.warning("Command failed", returncode=result.returncode, stderr=result.stderr[:200])
        raise CommandError(argv, result.returncode, result.stderr)

    return result


class Kubectl:
    """kubectl bound to one kubeconfig context."""

    def __init__(self, context: str, runner: Callable[..., CommandResult] = run) -> None:
        self.context = context
        self._run = runner

    def _cmd(self, *args: str) -> list[str]:
        return ["kubectl", "--context", self.context, *args]

    def apply(self, manifest: str, namespace: str | None = None) -> CommandResult:
        """Apply manifest text through stdin."""
        args = self._cmd("apply", "-f", "-")
        if namespace:
            args[3:3] = ["-n", namespace]
        return self._run(args, input=manifest)

    def apply_url(self, url: str, namespace: str) -> CommandResult:
        """Apply a remote manifest into a namespace."""
        return self._run(self._cmd("apply", "-n", namespace, "-f", url))

    def wait_available(self, deployment: str, namespace: str, timeout: str) -> CommandResult:
        """Block until a deployment reports condition=available."""
        return self._run(
            self._cmd(
                "wait",
                "--for=condition=available",
                f"--timeout={timeout}",
                f"deployment/{deployment}",
                "-n",
                namespace,
            )
        )

    def get_json(self, kind: str, name: str, namespace: str | None = None) -> dict[str, Any]:
        """Fetch a single object as parsed JSON."""
        args = self._cmd("get", kind, name, "-o", "json")
        if namespace:
            args.extend(["-n", namespace])
        result = self._run(args)
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise BootstrapError(f"kubectl returned invalid JSON for {kind}/{name}") from e
        return data if isinstance(data, dict) else {}

    def secret_value(self, name: str, key: str, namespace: str) -> str:
        """Read and base64-decode one key of a Secret."""
        result = self._run(
            self._cmd("-n", namespace, "get", "secret", name, "-o", f"jsonpath={{.data.{key}}}")
        )
        encoded = result.stdout.strip()
        if not encoded:
            raise BootstrapError(f"Secret '{name}' has no '{key}' entry")
        try:
            return base64.b64decode(encoded, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise BootstrapError(f"Secret '{name}' key '{key}' is not valid base64") from e

    def cluster_info(self) -> str:
        return self._run(self._cmd("cluster-info")).stdout

    def get_nodes(self) -> str:
        return self._run(self._cmd("get", "nodes")).stdout

    def port_forward(
        self,
        namespace: str,
        service: str,
        local_port: int,
        remote_port: int,
    ) -> PortForward:
        return PortForward(self.context, namespace, service, local_port, remote_port)


class PortForward:
    """Background ``kubectl port-forward`` usable as a context manager.

        with kubectl.port_forward("argocd", "argocd-server", 8080, 443):
            ...  # https://localhost:8080 reaches the ArgoCD API
    """

    def __init__(
        self,
        context: str,
        namespace: str,
        service: str,
        local_port: int,
        remote_port: int,
        attempts: int = 20,
        wait_seconds: float = 0.5,
    ) -> None:
        self.context = context
        self.namespace = namespace
        self.service = service
        self.local_port = local_port
        self.remote_port = remote_port
        self._attempts = attempts
        self._wait = wait_seconds
        self._process: subprocess.Popen[bytes] | None = None
        self._stderr_log: IO[bytes] | None = None

    @property
    def args(self) -> list[str]:
        return [
            "kubectl",
            "--context",
            self.context,
            "-n",
            self.namespace,
            "port-forward",
            f"svc/{self.service}",
            f"{self.local_port}:{self.remote_port}",
        ]

    def _port_open(self) -> bool:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.settimeout(1)
            return sock.connect_ex(("127.0.0.1", self.local_port)) == 0

    def _wait_until_listening(self) -> bool:
        @retry(
            retry=retry_if_result(lambda ready: not ready),
            stop=stop_after_attempt(self._attempts),
            wait=wait_fixed(self._wait),
        )
        def poll() -> bool:
            if self._process is not None and self._process.poll() is not None:
                return True  # exited; no point waiting
            return self._port_open()

        try:
            poll()
        except RetryError:
            return False
        return self._process is not None and self._process.poll() is None

    def _read_stderr(self) -> str:
        if self._stderr_log is None:
            return ""
        self._stderr_log.seek(0)
        return self._stderr_log.read().decode(errors="replace")

    def start(self) -> None:
        """Start the port-forward and wait until the local port accepts connections.

        kubectl's stderr is written to a temporary file, never a pipe.

        Raises:
            MissingDependencyError: kubectl is not installed
            BootstrapError: The port never became reachable
        """
        log = logger.bind(service=self.service, namespace=self.namespace, port=self.local_port)
        self._stderr_log = tempfile.TemporaryFile()
        try:
            self._process = subprocess.Popen(  # noqa: S603
                self.args,
                stdout=subprocess.DEVNULL,
                stderr=self._stderr_log,
                start_new_session=True,
            )
        except FileNotFoundError as e:
            self._close_stderr_log()
            raise MissingDependencyError("kubectl", INSTALL_HINTS["kubectl"]) from e

        if not self._wait_until_listening():
            stderr = self._read_stderr()
            self.stop()
            log.warning("Port-forward failed", stderr=stderr[:200])
            raise BootstrapError(
                f"Port-forward to svc/{self.service} on port {self.local_port} did not start"
            )
        log.info("Port-forward established")

    def _close_stderr_log(self) -> None:
        if self._stderr_log is not None:
            self._stderr_log.close()
            self._stderr_log = None

    def stop(self) -> None:
        """Terminate the port-forward process."""
        if self._process is None:
            self._close_stderr_log()
            return
        try:
            self._process.terminate()
            self._process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            self._process.kill()
            self._process.wait()
        finally:
            self._close_stderr_log()
            self._process = None

    def __enter__(self) -> PortForward:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.stop()
