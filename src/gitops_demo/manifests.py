# ABOUTME: Kubernetes, Kustomize, kind and ArgoCD manifest builders
# ABOUTME: Renders the desired state ArgoCD reconciles and patches the deployed image tag

"""
Manifest builders for the GitOps demo.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module is the single source of the declarative configuration the
repository hands to external systems:

    kind              <- build_kind_config()       (cluster shape)
    Kubernetes API    <- build_namespace()         manifests/namespace.yaml
                         build_deployment()        manifests/deployment.yaml
                         build_service()           manifests/service.yaml
    Kustomize         <- build_kustomization()     manifests/kustomization.yaml
    ArgoCD controller <- build_application()       argocd-application.yaml

The builders return plain dictionaries. ``render_manifests()`` turns them into
YAML text and ``write_manifests()`` stores them on disk. The YAML files
committed to the repository are exactly this output, so regenerating them
with ``gitops-demo render`` is a no-op unless settings changed.

=============================================================================
THE IMAGE TAG HAND-OFF
=============================================================================

The Deployment references the image by name only. The tag lives in the
``images`` section of kustomization.yaml:

    images:
    - name: ghcr.io/example/demo-flask-app
      newName: ghcr.io/example/demo-flask-app
      newTag: latest

A CI pipeline that builds a new image calls ``gitops-demo set-image <tag>``
(``set_image()`` below), commits the file, and ArgoCD rolls the Deployment.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
import yaml

from gitops_demo.errors import ManifestError

if TYPE_CHECKING:
    from gitops_demo.config import AppSettings, ClusterSettings, Settings

logger = structlog.get_logger(__name__)

Manifest = dict[str, Any]

APPLICATION_FILE = "argocd-application.yaml"

# Docker tag grammar: word characters, dots and dashes, up to 128 chars,
# not starting with a dot or dash.
TAG_PATTERN = re.compile(r"[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}")


# =============================================================================
# YAML RENDERING
# =============================================================================


class _ManifestDumper(yaml.SafeDumper):
    """SafeDumper that writes multi-line strings as literal blocks."""


def _represent_str(dumper: yaml.SafeDumper, data: str) -> yaml.ScalarNode:
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", data)


_ManifestDumper.add_representer(str, _represent_str)


def dump_yaml(document: Manifest) -> str:
    """Serialise one document, keeping key order as built."""
    return yaml.dump(
        document,
        Dumper=_ManifestDumper,
        sort_keys=False,
        default_flow_style=False,
    )


def load_manifest(path: Path) -> Manifest:
    """
    Parse a single-document YAML manifest.

    Raises:
        ManifestError: The file cannot be read, is not valid YAML, or is not a mapping.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ManifestError(f"Manifest not found: {path}") from e
    except OSError as e:
        raise ManifestError(f"Cannot read manifest {path}: {e.strerror or e}") from e
    except UnicodeDecodeError as e:
        raise ManifestError(f"Manifest {path} is not valid UTF-8") from e

    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ManifestError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(document, dict):
        raise ManifestError(f"Manifest {path} is not a mapping")
    return document


# =============================================================================
# CLUSTER
# =============================================================================


def build_kind_config(cluster: ClusterSettings) -> Manifest:
    """
    Build the kind cluster configuration.

    One control-plane node whose kubelet gets the ``ingress-ready=true``
    label (through a kubeadm InitConfiguration patch), with node ports 80
    and 443 published on the host.
    """
    init_patch = (
        "kind: InitConfiguration\n"
        "nodeRegistration:\n"
        "  kubeletExtraArgs:\n"
        f'    node-labels: "{cluster.node_labels}"\n'
    )
    return {
        "kind": "Cluster",
        "apiVersion": "kind.x-k8s.io/v1alpha4",
        "nodes": [
            {
                "role": "control-plane",
                "kubeadmConfigPatches": [init_patch],
                "extraPortMappings": [
                    {"containerPort": 80, "hostPort": cluster.http_host_port, "protocol": "TCP"},
                    {"containerPort": 443, "hostPort": cluster.https_host_port, "protocol": "TCP"},
                ],
            }
        ],
    }


# =============================================================================
# APPLICATION RESOURCES
# =============================================================================


def build_namespace(name: str) -> Manifest:
    return {
        "apiVersion": "v1",
        "kind": "Namespace",
        "metadata": {"name": name},
    }


def _http_probe(app: AppSettings, initial_delay: int, period: int) -> Manifest:
    return {
        "httpGet": {"path": app.health_path, "port": app.container_port},
        "initialDelaySeconds": initial_delay,
        "periodSeconds": period,
    }


def build_deployment(app: AppSettings) -> Manifest:
    """
    Build the demo app Deployment.

    Liveness and readiness probes both hit the health endpoint; the image
    has no tag here because Kustomize supplies it.
    """
    labels = {"app": app.name}
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": app.name, "labels": dict(labels)},
        "spec": {
            "replicas": app.replicas,
            "selector": {"matchLabels": dict(labels)},
            "template": {
                "metadata": {"labels": dict(labels)},
                "spec": {
                    "containers": [
                        {
                            "name": app.name,
                            "image": app.image,
                            "ports": [{"containerPort": app.container_port}],
                            "livenessProbe": _http_probe(app, initial_delay=10, period=10),
                            "readinessProbe": _http_probe(app, initial_delay=5, period=5),
                            "resources": {
                                "requests": {"cpu": "100m", "memory": "128Mi"},
                                "limits": {"cpu": "250m", "memory": "256Mi"},
                            },
                        }
                    ]
                },
            },
        },
    }


def build_service(app: AppSettings) -> Manifest:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": app.name, "labels": {"app": app.name}},
        "spec": {
            "type": "ClusterIP",
            "selector": {"app": app.name},
            "ports": [
                {
                    "name": "http",
                    "port": app.service_port,
                    "targetPort": app.container_port,
                    "protocol": "TCP",
                }
            ],
        },
    }


def build_kustomization(app: AppSettings) -> Manifest:
    return {
        "apiVersion": "kustomize.config.k8s.io/v1beta1",
        "kind": "Kustomization",
        "namespace": app.namespace,
        "resources": ["namespace.yaml", "deployment.yaml", "service.yaml"],
        "images": [
            {"name": app.image, "newName": app.image, "newTag": app.image_tag},
        ],
    }


def build_application(settings: Settings) -> Manifest:
    """
    Build the ArgoCD Application resource.

    SYNC POLICY:
    ------------
    automated.prune     -> resources deleted from Git are deleted from the cluster
    automated.selfHeal  -> manual drift in the cluster is reverted
    CreateNamespace     -> ArgoCD creates the destination namespace if missing
    """
    app = settings.app
    sync_policy: Manifest = {
        "automated": {"prune": app.prune, "selfHeal": app.self_heal},
    }
    if app.create_namespace:
        sync_policy["syncOptions"] = ["CreateNamespace=true"]

    return {
        "apiVersion": "argoproj.io/v1alpha1",
        "kind": "Application",
        "metadata": {"name": app.name, "namespace": settings.argocd.namespace},
        "spec": {
            "project": app.project,
            "source": {
                "repoURL": app.repo_url,
                "targetRevision": app.target_revision,
                "path": app.path,
            },
            "destination": {
                "server": app.destination_server,
                "namespace": app.namespace,
            },
            "syncPolicy": sync_policy,
        },
    }


# =============================================================================
# RENDER / WRITE
# =============================================================================


def build_manifests(settings: Settings) -> dict[str, Manifest]:
    """Map repository-relative paths to their documents."""
    app = settings.app
    base = app.path.strip("/")
    return {
        f"{base}/namespace.yaml": build_namespace(app.namespace),
        f"{base}/deployment.yaml": build_deployment(app),
        f"{base}/service.yaml": build_service(app),
        f"{base}/kustomization.yaml": build_kustomization(app),
        APPLICATION_FILE: build_application(settings),
    }


def render_manifests(settings: Settings) -> dict[str, str]:
    """Render every repository manifest to YAML text."""
    return {path: dump_yaml(doc) for path, doc in build_manifests(settings).items()}


def write_manifests(settings: Settings, root: Path) -> list[Path]:
    """
    Write every rendered manifest below ``root``.

    Returns:
        The written file paths, in render order.
    """
    written = []
    for relative, text in render_manifests(settings).items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text)
        written.append(target)
        logger.debug("Manifest written", path=str(target))
    logger.info("Manifests rendered", count=len(written), root=str(root))
    return written


# =============================================================================
# IMAGE TAG PATCH
# =============================================================================


def set_image(
    kustomization_path: Path,
    tag: str,
    name: str | None = None,
    new_name: str | None = None,
) -> Manifest:
    """
    Point a kustomization ``images`` entry at a new tag.

    This is the patch a CI pipeline applies after pushing an image. Only the
    selected entry changes; every other key is written back as loaded.

    Args:
        kustomization_path: Path to kustomization.yaml
        tag: New image tag, e.g. a commit SHA
        name: Image name of the entry to update. May be omitted when the file
              has exactly one entry. An unknown name adds a new entry.
        new_name: Optional replacement image name (``newName``)

    Returns:
        The updated images entry.

    Raises:
        ManifestError: Invalid tag, unreadable file, or ambiguous entry.
    """
    if not TAG_PATTERN.fullmatch(tag):
        raise ManifestError(f"Invalid image tag: {tag!r}")

    document = load_manifest(kustomization_path)
    images = document.get("images") or []
    if not isinstance(images, list):
        raise ManifestError(f"'images' in {kustomization_path} is not a list")

    if name is None:
        if len(images) != 1:
            raise ManifestError(
                f"{kustomization_path} has {len(images)} image entries; pass the image name"
            )
        entry = images[0]
        if not isinstance(entry, dict):
            raise ManifestError(f"Malformed image entry in {kustomization_path}")
    else:
        entry = next((i for i in images if isinstance(i, dict) and i.get("name") == name), None)
        if entry is None:
            entry = {"name": name}
            images.append(entry)

    entry["newTag"] = tag
    if new_name:
        entry["newName"] = new_name

    document["images"] = images
    kustomization_path.write_text(dump_yaml(document))
    logger.info("Image tag updated", image=entry.get("name"), tag=tag, path=str(kustomization_path))
    return entry
