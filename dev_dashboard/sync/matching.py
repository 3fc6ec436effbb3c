"""
Name matching between workflows, manifests and known services/resources.

Matching is by case-insensitive substring, which is ambiguous (a service
called "api" is contained in most workflow names). Ties are broken
deterministically instead of by storage order:

* manifest -> service: an exact name wins, then the candidate whose name
  length is closest to the manifest's service name;
* workflow -> service/resource: a match on the workflow name beats a match on
  the branch, then the longest (most specific) name wins.

Remaining ties fall back to (name, id) order.
"""
from typing import Optional, Sequence

from dev_dashboard.models import ActionType

BUILD_MARKERS = ("build", "ci")
DEPLOYMENT_MARKERS = ("deploy", "cd")


def classify_workflow(workflow_name: str) -> Optional[ActionType]:
    """Build if the name mentions build/ci, deployment if deploy/cd, else None."""
    name = (workflow_name or "").lower()
    if any(marker in name for marker in BUILD_MARKERS):
        return ActionType.BUILD
    if any(marker in name for marker in DEPLOYMENT_MARKERS):
        return ActionType.DEPLOYMENT
    return None


def _ordered(candidates):
    return sorted(candidates, key=lambda c: ((c.name or "").lower(), c.id or 0))


def match_service_for_manifest(service_name: str, services: Sequence):
    """
    Find the service an overlay directory name refers to.

    Containment is checked in both directions so that "svc" finds "svc-api"
    and "svc-api" finds "svc".
    """
    wanted = (service_name or "").lower()
    if not wanted:
        return None

    best = None
    best_distance = None
    for service in _ordered(services):
        name = (service.name or "").lower()
        if not name:
            continue
        if name == wanted:
            return service
        if name in wanted or wanted in name:
            distance = abs(len(name) - len(wanted))
            if best is None or distance < best_distance:
                best, best_distance = service, distance
    return best


def _longest_contained(text: str, candidates: Sequence):
    best = None
    for candidate in _ordered(candidates):
        name = (candidate.name or "").lower()
        if name and name in text and (best is None or len(name) > len(best.name)):
            best = candidate
    return best


def match_workflow_to_service(workflow_name: str, branch: str, services: Sequence):
    """Service whose name appears in the workflow name, else in the branch name."""
    match = _longest_contained((workflow_name or "").lower(), services)
    if match is None:
        match = _longest_contained((branch or "").lower(), services)
    return match


def match_workflow_to_resource(workflow_name: str, resources: Sequence):
    """Resource whose name appears in the workflow name."""
    return _longest_contained((workflow_name or "").lower(), resources)
