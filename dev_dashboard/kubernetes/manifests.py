"""
Kubernetes Manifests Module

Parsing helpers for kustomize overlays and plain Kubernetes manifests.
All functions are pure: they take file content or paths and never touch the network.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

import yaml

from dev_dashboard.outcome import Outcome

logger = logging.getLogger(__name__)

SERVICES_MARKER = "services"
OVERLAYS_MARKER = "overlays"
# services/<service>/overlays/<environment>/<region>/<namespace>/<file>
OVERLAY_PATH_SEGMENTS = 7


@dataclass(frozen=True)
class OverlayCoordinates:
    service: str
    environment: str
    region: str
    namespace: str


@dataclass(frozen=True)
class ResourceInfo:
    name: str
    path: str
    resource_type: str
    namespace: str = ""


def _strip_value(raw: str) -> str:
    return raw.strip().strip("\"'").strip()


def extract_image_tag(content: str, service_name: str) -> str:
    """
    Return the `newTag` of the `images:` entry that belongs to `service_name`.

    An entry belongs to the service when its `name` or `newName` contains the
    service name (case-sensitive). The scan is line based so that overlays
    that are not valid YAML still yield whatever can be read from them.
    Returns an empty string when the overlay does not set a tag for the service.
    """
    if not isinstance(content, str) or not service_name:
        return ""

    in_images = False
    in_service_image = False

    for original_line in content.splitlines():
        line = original_line.strip()

        if line == "images:":
            in_images = True
            in_service_image = False
            continue

        if not in_images:
            continue

        # Leaving the block: unindented line that is not a list item
        if (
            line
            and original_line[:1] not in (" ", "\t")
            and not line.startswith("-")
            and line != "---"
        ):
            in_images = False
            in_service_image = False
            continue

        # "name:" also covers "newName:"
        if "name:" in line and service_name in line:
            in_service_image = True
            continue

        if in_service_image and "newTag:" in line:
            _, _, value = line.partition("newTag:")
            return _strip_value(value)

        if line.startswith("-"):
            in_service_image = False

    return ""


def parse_overlay_path(path: str) -> Outcome[OverlayCoordinates]:
    """
    Derive deployment coordinates from an overlay file path.

    The only supported layout is
    ``services/<service>/overlays/<environment>/<region>/<namespace>/<file>``,
    relative to the repository root. Anything else is reported as an
    unrecognized layout rather than an error.
    """
    if not isinstance(path, str):
        return Outcome.not_applicable(f"unrecognized layout: {path!r}")

    normalized = path.strip()
    while normalized.startswith("./"):
        normalized = normalized[2:]
    parts = normalized.strip("/").split("/")

    if len(parts) < OVERLAY_PATH_SEGMENTS:
        return Outcome.not_applicable(
            f"unrecognized layout: {path} has {len(parts)} segments, "
            f"expected {OVERLAY_PATH_SEGMENTS}"
        )
    if parts[0] != SERVICES_MARKER or parts[2] != OVERLAYS_MARKER:
        return Outcome.not_applicable(
            f"unrecognized layout: {path} does not match "
            f"{SERVICES_MARKER}/<service>/{OVERLAYS_MARKER}/..."
        )

    service, environment, region, namespace = parts[1], parts[3], parts[4], parts[5]
    if not all([service, environment, region, namespace]):
        return Outcome.not_applicable(f"unrecognized layout: {path} has empty segments")

    return Outcome.found(OverlayCoordinates(service, environment, region, namespace))


def parse_resource_manifest(content: str, path: str) -> List[ResourceInfo]:
    """
    Return one ResourceInfo per document in `content` that declares a kind and
    a `metadata.name`. Unparseable YAML yields an empty list.
    """
    try:
        documents = list(yaml.safe_load_all(content))
    except yaml.YAMLError as e:
        logger.warning(f"Skipping unparseable manifest {path}: {e}")
        return []

    resources = []
    for doc in documents:
        resource = _resource_from_document(doc, path)
        if resource:
            resources.append(resource)
    return resources


def _resource_from_document(doc, path: str) -> Optional[ResourceInfo]:
    if not isinstance(doc, dict):
        return None
    kind = doc.get("kind")
    metadata = doc.get("metadata") or {}
    if not isinstance(metadata, dict):
        return None
    name = metadata.get("name")
    if not kind or not name:
        return None
    namespace = metadata.get("namespace") or ""
    return ResourceInfo(
        name=str(name),
        path=path,
        resource_type=str(kind),
        namespace=str(namespace),
    )


def is_manifest_file(name: str) -> bool:
    return name.endswith(".yaml") or name.endswith(".yml")
