"""Namespace selection for PodMonitor service discovery."""

from .models import NamespaceSelector


def resolve_namespaces(selector: NamespaceSelector, own_namespace: str) -> list[str]:
    """
    Compute the namespaces a monitor discovers pods in.

    An empty result means all namespaces.
    """
    if selector.any:
        return []
    if not selector.match_names:
        return [own_namespace]
    return list(selector.match_names)
