# ABOUTME: Command-line entry point for the gitops-demo bootstrap tool
# ABOUTME: Typer commands for cluster setup, manifest rendering, deployment and verification

"""gitops-demo command-line interface."""

from __future__ import annotations

import asyncio
import sys
from contextlib import ExitStack
from pathlib import Path

import httpx
import structlog
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from gitops_demo import __version__
from gitops_demo.argocd import ArgocdInstaller
from gitops_demo.bootstrap import Bootstrapper, BootstrapResult, next_steps
from gitops_demo.config import Settings, load_settings
from gitops_demo.errors import GitopsDemoError, MissingDependencyError
from gitops_demo.manifests import build_application, dump_yaml, set_image, write_manifests
from gitops_demo.utils.client import Application, ArgocdClient, HealthReport, probe_health
from gitops_demo.utils.logging import ActionJournal, configure_logging, set_run_id
from gitops_demo.utils.safety import ConfirmationGuard
from gitops_demo.utils.shell import Kubectl, require_tools

console = Console(soft_wrap=True)
err_console = Console(stderr=True, soft_wrap=True)
logger = structlog.get_logger(__name__)

app = typer.Typer(
    help="Bootstrap a local kind cluster with ArgoCD and deploy the demo app via GitOps.",
    no_args_is_help=True,
)

RULE = "━" * 51


# =============================================================================
# SHARED HELPERS
# =============================================================================


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj["settings"]


def _fail(error: Exception) -> typer.Exit:
    """Report an error and return the Exit to raise."""
    logger.error("Command failed", error=str(error), kind=type(error).__name__)
    marker = "❌" if isinstance(error, MissingDependencyError) else "✗"
    err_console.print(f"[red]{marker} {escape(str(error))}[/red]")
    return typer.Exit(code=1)


def _guard(yes: bool) -> ConfirmationGuard:
    return ConfirmationGuard(
        prompt=lambda question: typer.confirm(question, default=False),
        assume_yes=yes,
        interactive=sys.stdin.isatty(),
    )


def _print_summary(settings: Settings, result: BootstrapResult) -> None:
    console.print("")
    console.print(RULE)
    console.print("🎉 [bold]Setup Complete![/bold]")
    console.print(RULE)
    console.print("")
    console.print(f"📋 Cluster: {escape(result.cluster)}")
    console.print("🔐 ArgoCD Credentials:")
    console.print(f"   Username: {escape(result.username or '')}")
    console.print(f"   Password: {escape(result.password or '')}")
    for step in next_steps(settings):
        console.print("")
        console.print(f"[bold]{step.title}:[/bold]")
        for command in step.commands:
            console.print(f"   {escape(command)}")
    console.print("")
    console.print(RULE)


def _application_table(application: Application) -> Table:
    table = Table(title=f"Application {application.name}", show_header=False)
    table.add_column("field", style="bold")
    table.add_column("value")
    table.add_row("Project", application.project)
    table.add_row("Repository", application.repo_url)
    table.add_row("Path", application.path)
    table.add_row("Revision", application.target_revision)
    table.add_row(
        "Destination",
        f"{application.destination_namespace}@{application.destination_server}",
    )
    table.add_row("Sync", application.sync_status)
    table.add_row("Health", application.health_status)
    if application.operation_state:
        op = application.operation_state
        table.add_row(
            "Last operation",
            escape(f"{op.get('phase', 'Unknown')}: {op.get('message', 'N/A')}"),
        )
    for cond in application.conditions or []:
        table.add_row(escape(f"[{cond.get('type')}]"), escape(str(cond.get("message", "N/A"))))
    return table


# =============================================================================
# COMMANDS
# =============================================================================


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"gitops-demo {__version__}")
        raise typer.Exit()


@app.callback()
def cli(
    ctx: typer.Context,
    log_level: str | None = typer.Option(None, "--log-level", help="Override GITOPS_LOG_LEVEL"),
    json_logs: bool | None = typer.Option(None, "--json-logs/--console-logs", help="Log format"),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version"
    ),
) -> None:
    """Load settings and configure logging for every command."""
    set_run_id("")
    try:
        settings = load_settings()
    except ValidationError as e:
        configure_logging()
        raise _fail(e) from e

    level = (log_level or settings.log_level).upper()
    json_output = settings.log_json if json_logs is None else json_logs
    configure_logging(level=level, json_output=json_output)
    ctx.obj = {"settings": settings}


@app.command()
def up(
    ctx: typer.Context,
    yes: bool = typer.Option(
        False, "--yes", "-y", help="Recreate an existing cluster without asking"
    ),
) -> None:
    """Create the kind cluster and install ArgoCD."""
    settings = _settings(ctx)
    console.print("🚀 Setting up local Kind cluster with ArgoCD...")
    console.print("")

    bootstrapper = Bootstrapper(settings, _guard(yes), ActionJournal(settings.journal))
    try:
        result = bootstrapper.run()
    except GitopsDemoError as e:
        raise _fail(e) from e

    if result.reused:
        console.print("✅ Using existing cluster")
        console.print(result.cluster_info)
        return

    console.print("✅ Cluster created successfully")
    console.print(result.cluster_info)
    console.print(result.nodes)
    console.print("✅ ArgoCD installed successfully")
    _print_summary(settings, result)


@app.command()
def down(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Delete without asking"),
) -> None:
    """Delete the kind cluster."""
    settings = _settings(ctx)
    bootstrapper = Bootstrapper(settings, _guard(yes), ActionJournal(settings.journal))
    try:
        deleted = bootstrapper.teardown()
    except GitopsDemoError as e:
        raise _fail(e) from e

    if deleted:
        console.print(f"🗑️  Cluster '{escape(settings.cluster.name)}' deleted")
    else:
        console.print(f"Cluster '{escape(settings.cluster.name)}' left untouched")


@app.command()
def render(
    ctx: typer.Context,
    output: Path = typer.Option(Path("."), "--output", "-o", help="Repository root to write into"),
) -> None:
    """Write the Kubernetes, Kustomize and ArgoCD manifests."""
    for path in write_manifests(_settings(ctx), output):
        console.print(f"wrote {escape(str(path))}")


@app.command("set-image")
def set_image_command(
    ctx: typer.Context,
    tag: str = typer.Argument(..., help="New image tag, e.g. a commit SHA"),
    name: str | None = typer.Option(None, "--name", help="Image entry to update"),
    new_name: str | None = typer.Option(None, "--new-name", help="Replacement image name"),
    file: Path | None = typer.Option(None, "--file", "-f", help="kustomization.yaml to patch"),
) -> None:
    """Update the deployed image tag in kustomization.yaml."""
    settings = _settings(ctx)
    target = file or Path(settings.app.path) / "kustomization.yaml"
    try:
        entry = set_image(target, tag, name=name, new_name=new_name)
    except GitopsDemoError as e:
        raise _fail(e) from e
    image = entry.get("newName") or entry.get("name")
    console.print(f"✅ {escape(str(target))}: {escape(str(image))}:{escape(tag)}")


@app.command()
def deploy(
    ctx: typer.Context,
    file: Path | None = typer.Option(None, "--file", "-f", help="Application manifest to apply"),
) -> None:
    """Apply the ArgoCD Application so ArgoCD starts reconciling the demo app."""
    settings = _settings(ctx)
    try:
        require_tools(["kubectl"])
        manifest = file.read_text() if file else dump_yaml(build_application(settings))
        installer = ArgocdInstaller(Kubectl(settings.cluster.context), settings.argocd)
        installer.deploy_application(manifest, settings.app.namespace)
    except (OSError, GitopsDemoError) as e:
        raise _fail(e) from e

    ActionJournal(settings.journal).log_success("deploy_application", settings.app.name)
    console.print(f"📦 Application '{escape(settings.app.name)}' applied")
    console.print(f"   kubectl get applications -n {escape(settings.argocd.namespace)}")


@app.command()
def status(ctx: typer.Context) -> None:
    """Show the Application's sync and health status."""
    settings = _settings(ctx)
    try:
        require_tools(["kubectl"])
        installer = ArgocdInstaller(Kubectl(settings.cluster.context), settings.argocd)
        application = installer.get_application(settings.app.name)
    except GitopsDemoError as e:
        raise _fail(e) from e
    console.print(_application_table(application))


async def _verify(
    settings: Settings,
    password: str,
    argocd_url: str,
    app_url: str,
) -> tuple[Application, HealthReport]:
    async with ArgocdClient(argocd_url) as client:
        await client.login(settings.argocd.username, password)
        application = await client.get_application(settings.app.name)
    health = await probe_health(app_url, settings.app.health_path)
    return application, health


@app.command()
def verify(
    ctx: typer.Context,
    port_forward: bool = typer.Option(
        True, "--port-forward/--no-port-forward", help="Start kubectl port-forwards"
    ),
) -> None:
    """Check ArgoCD reports the app Synced/Healthy and that /healthz answers."""
    settings = _settings(ctx)
    argo, demo = settings.argocd, settings.app
    argocd_url = f"https://localhost:{argo.ui_local_port}"
    app_url = f"http://localhost:{demo.local_port}"

    try:
        require_tools(["kubectl"])
        kubectl = Kubectl(settings.cluster.context)
        password = ArgocdInstaller(kubectl, argo).admin_password()
        with ExitStack() as stack:
            if port_forward:
                argocd_forward = kubectl.port_forward(
                    argo.namespace, argo.server_deployment, argo.ui_local_port, 443
                )
                app_forward = kubectl.port_forward(
                    demo.namespace, demo.name, demo.local_port, demo.service_port
                )
                stack.enter_context(argocd_forward)
                stack.enter_context(app_forward)
            application, health = asyncio.run(_verify(settings, password, argocd_url, app_url))
    except (GitopsDemoError, httpx.HTTPError) as e:
        raise _fail(e) from e

    console.print(_application_table(application))
    if health.ok:
        payload = escape(str(health.payload))
        console.print(f"✅ {escape(health.url)} -> {health.status_code} {payload}")
    else:
        detail = health.error or f"{health.status_code} {health.payload}"
        console.print(f"[red]✗ {escape(health.url)} -> {escape(str(detail))}[/red]")

    passed = application.is_ready and health.ok
    ActionJournal(settings.journal).record(
        "verify",
        demo.name,
        "success" if passed else "error",
        {
            "sync": application.sync_status,
            "health": application.health_status,
            "healthz": health.ok,
        },
    )
    if not passed:
        raise typer.Exit(code=1)
    console.print("🎉 GitOps deployment verified")


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================


def main() -> None:
    """Run the gitops-demo CLI."""
    configure_logging(level="INFO")
    try:
        app()
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(130)


if __name__ == "__main__":
    main()
