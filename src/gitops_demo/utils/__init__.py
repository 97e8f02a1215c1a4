# ABOUTME: Utilities package initialization for gitops-demo
# ABOUTME: Contains shared utilities for commands, HTTP clients, safety and logging

"""
gitops-demo Utilities Package

Shared utilities:
    - shell.py: kind/kubectl execution, prerequisite checks, port-forwarding
    - client.py: ArgoCD REST client and health probe with retry logic
    - safety.py: Confirmation guard for destructive operations
    - logging.py: Structured logging with run IDs and the action journal
"""
