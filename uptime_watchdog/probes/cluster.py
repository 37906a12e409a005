"""Cluster pod listing through kubectl."""

import asyncio
import json
import subprocess
import time
from typing import Any

import structlog

from ..config import ClusterTarget
from ..errors import ProbeError
from ..models import Pod

logger = structlog.get_logger(__name__)


def pod_display_status(item: dict[str, Any]) -> str:
    """Derive the status kubectl would print for a pod."""
    metadata = item.get("metadata") or {}
    status = item.get("status") or {}
    if metadata.get("deletionTimestamp"):
        return "Terminating"

    phase = status.get("phase") or "Unknown"
    for container in status.get("containerStatuses") or []:
        state = container.get("state") or {}
        waiting = state.get("waiting")
        if waiting and waiting.get("reason"):
            return str(waiting["reason"])
        terminated = state.get("terminated")
        if terminated and terminated.get("reason") and phase != "Running":
            return str(terminated["reason"])
    return str(phase)


def parse_pod_list(payload: dict[str, Any]) -> list[Pod]:
    """Convert `kubectl get pods -o json` output into Pod objects."""
    pods = []
    for item in payload.get("items") or []:
        metadata = item.get("metadata") or {}
        name = metadata.get("name")
        namespace = metadata.get("namespace") or "default"
        if not name:
            continue
        containers = (item.get("status") or {}).get("containerStatuses") or []
        restarts = sum(int(c.get("restartCount") or 0) for c in containers)
        ready = bool(containers) and all(bool(c.get("ready")) for c in containers)
        pods.append(Pod(
            name=name,
            namespace=namespace,
            status=pod_display_status(item),
            restarts=restarts,
            node=(item.get("spec") or {}).get("nodeName"),
            ready=ready,
        ))
    return pods


class ClusterProbe:
    """Lists pods of a cluster.

    Unlike the health probes this raises ProbeError on failure: an empty
    listing caused by a failed command must not be reconciled as
    "every pod disappeared".
    """

    def _build_command(self, target: ClusterTarget, namespace: str | None) -> list[str]:
        command = [target.kubectl_path, "get", "pods", "-o", "json"]
        if namespace:
            command.extend(["--namespace", namespace])
        else:
            command.append("--all-namespaces")
        if target.kubeconfig:
            command.extend(["--kubeconfig", target.kubeconfig])
        if target.context:
            command.extend(["--context", target.context])
        return command

    def _run_command(self, command: list[str], timeout: float) -> str:
        """Execute a command and return its output."""
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=True
            )
            return result.stdout
        except FileNotFoundError as e:
            raise ProbeError(f"kubectl not found: {e}") from e
        except subprocess.CalledProcessError as e:
            logger.error("Command failed", command=" ".join(command), error=e.stderr)
            raise ProbeError(f"kubectl failed: {(e.stderr or '').strip()[:500]}") from e
        except subprocess.TimeoutExpired as e:
            logger.error("Command timed out", command=" ".join(command))
            raise ProbeError(f"kubectl timed out after {timeout:g}s") from e

    async def list_pods(self, target: ClusterTarget) -> list[Pod]:
        """List pods of every watched namespace within one timeout budget."""
        namespaces = target.namespaces or [None]
        deadline = time.monotonic() + target.timeout_seconds
        pods: list[Pod] = []
        for namespace in namespaces:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ProbeError(f"Pod listing exceeded {target.timeout_seconds:g}s")
            command = self._build_command(target, namespace)
            output = await asyncio.to_thread(self._run_command, command, remaining)
            try:
                payload = json.loads(output or "{}")
            except json.JSONDecodeError as e:
                raise ProbeError(f"Invalid kubectl output: {e}") from e
            pods.extend(parse_pod_list(payload))

        logger.debug("Listed pods", target_id=target.id, count=len(pods))
        return pods
