"""Per-user habit list and design packages kept on the user record."""

import base64
import json
import logging
import secrets
import time
from typing import Any

from visionboard.errors import InvalidRequest, NotFound
from visionboard.services.identity_store import IdentityStore, UserRecord

logger = logging.getLogger(__name__)


def sanitize_habits(raw: list[Any]) -> list[dict[str, str]]:
    """Keep ``{id, name}`` pairs where both are non-empty."""
    habits = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        habit_id = str(item.get("id") or "")
        name = str(item.get("name") or "")
        if habit_id and name:
            habits.append({"id": habit_id, "name": name})
    return habits


async def replace_habits(store: IdentityStore, user: UserRecord, raw: list[Any]) -> list[dict[str, str]]:
    habits = sanitize_habits(raw)
    if not await store.save_habits(user.identity_id, habits):
        raise NotFound("user_not_found")
    return habits


def decode_design_token(token: str) -> dict[str, Any] | None:
    """Read the payload of a Canva design token JWT.

    The signature is not verified; the token only carries the design id.
    """
    parts = token.split(".")
    if len(parts) < 2:
        return None
    segment = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        payload = json.loads(base64.urlsafe_b64decode(segment))
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def resolve_design_id(body: dict[str, Any]) -> str:
    design_id = body.get("designId")
    if isinstance(design_id, str) and design_id:
        return design_id
    token = body.get("designToken")
    if isinstance(token, str):
        payload = decode_design_token(token) or {}
        design_id = payload.get("designId")
        if isinstance(design_id, str) and design_id:
            return design_id
    raise InvalidRequest("missing_designId")


def _num(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def mapped_elements_from_panel(body: dict[str, Any]) -> list[dict[str, Any]]:
    """Join the editor panel's ``selection`` with its ``mappings`` by key."""
    selection = body.get("selection") if isinstance(body.get("selection"), list) else []
    mappings = body.get("mappings") if isinstance(body.get("mappings"), list) else []
    habit_by_key = {}
    for m in mappings:
        if isinstance(m, dict):
            key, habit_id = str(m.get("key") or ""), str(m.get("habitId") or "")
            if key and habit_id:
                habit_by_key[key] = habit_id

    elements = []
    for s in selection:
        if not isinstance(s, dict):
            continue
        key = str(s.get("key") or "")
        habit_id = habit_by_key.get(key)
        if not habit_id:
            continue
        b = s.get("bounds") if isinstance(s.get("bounds"), dict) else {}
        bounds = None
        if any(b.get(k) is not None for k in ("left", "top", "width", "height")):
            bounds = {
                "x": _num(b.get("left")),
                "y": _num(b.get("top")),
                "w": _num(b.get("width")),
                "h": _num(b.get("height")),
                "rotation": _num(b.get("rotation")),
            }
        elements.append(
            {
                "selectionKey": key,
                "habitId": habit_id,
                "elementId": s.get("elementId") if isinstance(s.get("elementId"), str) else None,
                "kind": s.get("kind") if isinstance(s.get("kind"), str) else "unknown",
                "bounds": bounds,
                "raw": s.get("raw"),
            }
        )
    return elements


async def create_package(store: IdentityStore, user: UserRecord, body: dict[str, Any]) -> dict[str, Any]:
    """Store a design package (element to habit mappings), newest first."""
    design_id = resolve_design_id(body)
    mapped = body.get("mappedElements") if isinstance(body.get("mappedElements"), list) else []
    if not mapped and body.get("version") == 1:
        mapped = mapped_elements_from_panel(body)

    created_at = body.get("createdAt")
    package = {
        "id": secrets.token_hex(12),
        "designId": design_id,
        "title": body.get("title") if isinstance(body.get("title"), str) else None,
        "mappedElements": mapped,
        "createdAt": created_at if isinstance(created_at, (int, float)) else int(time.time() * 1000),
        "export": None,
    }
    if await store.update_packages(user.identity_id, lambda packages: [package, *packages]) is None:
        raise NotFound("user_not_found")
    logger.info("Package %s stored for %s (%d elements)", package["id"], user.identity_id, len(mapped))
    return package


def list_packages(user: UserRecord) -> list[dict[str, Any]]:
    return [
        {
            "id": p.get("id"),
            "designId": p.get("designId"),
            "title": p.get("title"),
            "createdAt": p.get("createdAt"),
            "hasExport": bool(((p.get("export") or {}).get("urls")) or []),
        }
        for p in user.packages
    ]


def latest_package(user: UserRecord) -> dict[str, Any]:
    if not user.packages:
        raise NotFound("no_packages")
    return user.packages[0]


def find_package(user: UserRecord, package_id: str) -> dict[str, Any]:
    for p in user.packages:
        if p.get("id") == package_id:
            return p
    raise NotFound("package_not_found")


async def attach_export(store: IdentityStore, identity_id: str, package_id: str, summary: dict[str, Any]) -> bool:
    """Set ``export`` on one package; False when the package is gone."""
    found = False

    def attach(packages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        nonlocal found
        updated = []
        for p in packages:
            if p.get("id") == package_id:
                p = {**p, "export": summary}
                found = True
            updated.append(p)
        return updated

    await store.update_packages(identity_id, attach)
    return found
