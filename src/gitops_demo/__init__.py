# ABOUTME: gitops-demo package initialization
# ABOUTME: Exposes version information for the local GitOps bootstrap tool

"""
gitops-demo - Local kind cluster with ArgoCD and a GitOps-deployed demo app.

=============================================================================
WHAT DOES THIS PACKAGE DO?
=============================================================================

It wires up the smallest useful GitOps loop on a workstation:

1. PROVISIONS a kind cluster (one control-plane node, ports 80/443 published
   on the host as 8080/8443)
2. INSTALLS ArgoCD from the upstream stable manifest and waits for it
3. DECLARES the demo Flask app (Namespace, Deployment, Service, Kustomization)
   and the ArgoCD Application that points ArgoCD at those manifests in Git
4. VERIFIES that ArgoCD reports the app Synced/Healthy and that the app's
   /healthz endpoint answers

Reconciliation itself (diffing, sync scheduling, health evaluation) is done
by the ArgoCD controller and the Kubernetes API server, not by this package.

=============================================================================
PACKAGE STRUCTURE OVERVIEW
=============================================================================

gitops_demo/
├── __init__.py          <- YOU ARE HERE: Package entry point
├── cli.py               <- Typer commands (up, down, render, set-image, ...)
├── config.py            <- Settings from GITOPS_* environment variables
├── errors.py            <- Exception hierarchy
├── manifests.py         <- kind, Kubernetes, Kustomize and ArgoCD manifests
├── cluster.py           <- kind cluster lifecycle
├── argocd.py            <- ArgoCD install, readiness, admin password
├── bootstrap.py         <- End-to-end bootstrap orchestration
└── utils/
    ├── __init__.py      <- Utils subpackage marker
    ├── client.py        <- ArgoCD REST client and /healthz probe
    ├── logging.py       <- Structured logging and action journal
    ├── safety.py        <- Confirmation guard for destructive operations
    └── shell.py         <- kind/kubectl execution and port-forwarding
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
