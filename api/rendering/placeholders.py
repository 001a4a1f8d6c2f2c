"""Placeholder substitution for certificate designs.

A design is a canvas scene graph serialized as JSON. Nodes whose ``id``
carries the ``PLACEHOLDER-<field>`` marker are filled from a participant's
data; everything else in the document is passed through untouched.
"""

import json
import logging
from collections.abc import Mapping
from typing import Any

from rendering.errors import MalformedDesignError

logger = logging.getLogger(__name__)

PLACEHOLDER_PREFIX = "PLACEHOLDER-"


def parse_scene(scene_json: str) -> dict[str, Any]:
    """Parse a scene-graph document, checking its top-level shape.

    Raises:
        MalformedDesignError: If the JSON is invalid, the top level is not an
            object, or ``objects`` is present but not a list.
    """
    try:
        scene = json.loads(scene_json)
    except (TypeError, ValueError) as e:
        raise MalformedDesignError(f"Design is not valid JSON: {e}") from e

    if not isinstance(scene, dict):
        raise MalformedDesignError("Design must be a JSON object")

    objects = scene.get("objects")
    if objects is not None and not isinstance(objects, list):
        raise MalformedDesignError("Design 'objects' must be a list")

    return scene


def placeholder_field(node: Any) -> str | None:
    """Return the participant field a node is bound to, or None."""
    if not isinstance(node, dict):
        return None
    node_id = node.get("id")
    if not isinstance(node_id, str) or PLACEHOLDER_PREFIX not in node_id:
        return None
    return node_id.replace(PLACEHOLDER_PREFIX, "")


def placeholder_fields(scene_json: str) -> list[str]:
    """List the placeholder field names of a design, in document order."""
    scene = parse_scene(scene_json)
    fields = []
    for node in scene.get("objects") or []:
        field = placeholder_field(node)
        if field is not None:
            fields.append(field)
    return fields


def replace_placeholders(scene_json: str, participant_data: Mapping[str, Any]) -> str:
    """Fill placeholder nodes with participant values.

    Only the ``text`` of placeholder nodes changes. A field that is missing
    from ``participant_data`` or has an empty value keeps the node's
    existing text.

    Args:
        scene_json: Serialized scene graph
        participant_data: Field name to value mapping

    Returns:
        A new serialized scene graph

    Raises:
        MalformedDesignError: If the document cannot be parsed
    """
    scene = parse_scene(scene_json)

    missing: list[str] = []
    for node in scene.get("objects") or []:
        field = placeholder_field(node)
        if field is None:
            continue

        value = participant_data.get(field)
        if value is None or value == "":
            missing.append(field)
            continue

        node["text"] = value if isinstance(value, str) else str(value)

    if missing:
        logger.debug("placeholders.unfilled", extra={"fields": missing})

    return json.dumps(scene)
