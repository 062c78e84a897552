"""Design import: crop each element of an exported page into a template.

Exports the current design page as PNG, then turns every element into a
goal-canvas component. Image elements are cropped with Pillow and stored as
``TemplateImage`` rows; text elements carry a best-effort text style.
"""

import hashlib
import io
import logging
import math
from dataclasses import dataclass
from typing import Any

from PIL import Image, UnidentifiedImageError
from sqlalchemy.ext.asyncio import AsyncSession

from visionboard.database import upsert
from visionboard.errors import ExportMissingUrls, UpstreamError
from visionboard.models.base import utcnow
from visionboard.models.export_job import TemplateImage
from visionboard.services.canva_client import CanvaClient
from visionboard.services.export_service import ExportPoller

logger = logging.getLogger(__name__)

# Flutter TextAlign indices
TEXT_ALIGN = {"left": 0, "right": 1, "center": 2, "justify": 3, "start": 4, "end": 5}


@dataclass(frozen=True)
class CropRect:
    left: int
    top: int
    width: int
    height: int

    @property
    def box(self) -> tuple[int, int, int, int]:
        return (self.left, self.top, self.left + self.width, self.top + self.height)


def _is_num(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def normalize_crop_rect(
    left: float, top: float, width: float, height: float, img_w: int, img_h: int
) -> CropRect | None:
    """Clamp an element rectangle to the image, in pixels.

    Rectangles whose coordinates are all within 1.5 are fractions of the
    image size.
    """
    values = (left, top, width, height)
    if not all(_is_num(v) for v in values):
        return None
    if max(abs(v) for v in values) <= 1.5:
        left, top, width, height = left * img_w, top * img_h, width * img_w, height * img_h

    ll = max(0, min(img_w - 1, round(left)))
    tt = max(0, min(img_h - 1, round(top)))
    ww = max(1, min(img_w - ll, round(width)))
    hh = max(1, min(img_h - tt, round(height)))
    return CropRect(ll, tt, ww, hh)


def maybe_rotation_rad(value: Any) -> float:
    """Radians; magnitudes beyond a full turn are taken as degrees."""
    if not _is_num(value):
        return 0.0
    if abs(value) > 2 * math.pi + 0.01:
        return math.radians(value)
    return float(value)


def parse_argb_color(value: Any) -> int | None:
    """``#RRGGBB``, ``#AARRGGBB``, an ARGB int or ``{r, g, b, a}`` as unsigned ARGB."""
    if _is_num(value):
        return int(value) & 0xFFFFFFFF
    if isinstance(value, str):
        s = value.strip().lower()
        if s.startswith("#") and len(s) in (7, 9):
            try:
                n = int(s[1:], 16)
            except ValueError:
                return None
            return 0xFF000000 | n if len(s) == 7 else n
        return None
    if isinstance(value, dict):
        r = value.get("r", value.get("red"))
        g = value.get("g", value.get("green"))
        b = value.get("b", value.get("blue"))
        a = value.get("a", value.get("alpha"))
        if not all(_is_num(c) for c in (r, g, b)):
            return None
        has_alpha = _is_num(a)
        fractional = max(abs(r), abs(g), abs(b), abs(a) if has_alpha else 1) <= 1.5

        def channel(c: float) -> int:
            return max(0, min(255, round(c * 255 if fractional else c)))

        aa = channel(a) if has_alpha else 255
        return (aa << 24) | (channel(r) << 16) | (channel(g) << 8) | channel(b)
    return None


def text_align_index(value: Any) -> int:
    if _is_num(value):
        return max(0, min(5, round(value)))
    if isinstance(value, str):
        return TEXT_ALIGN.get(value.lower(), 0)
    return 0


def text_style(source: dict[str, Any]) -> dict[str, Any]:
    style: dict[str, Any] = {}
    color = parse_argb_color(source.get("color") or source.get("textColor") or source.get("fillColor"))
    if color is not None:
        style["color"] = color
    if _is_num(source.get("fontSize")):
        style["fontSize"] = source["fontSize"]
    if isinstance(source.get("fontFamily"), str) and source["fontFamily"]:
        style["fontFamily"] = source["fontFamily"]
    if _is_num(source.get("fontWeight")):
        style["fontWeight"] = max(0, min(8, round(source["fontWeight"])))
    if _is_num(source.get("fontStyle")):
        style["fontStyle"] = max(0, min(1, round(source["fontStyle"])))
    return style


def element_rect(element: dict[str, Any]) -> tuple[float, float, float, float] | None:
    def pick(*keys: str) -> float | None:
        for key in keys:
            if _is_num(element.get(key)):
                return element[key]
        return None

    left, top = pick("left", "x"), pick("top", "y")
    width, height = pick("width", "w"), pick("height", "h")
    if left is None or top is None or width is None or height is None:
        return None
    if width <= 0 or height <= 0:
        return None
    return left, top, width, height


def stable_id(prefix: str, design_id: str, index: int, rect: CropRect, length: int = 32) -> str:
    """Same design, element index and geometry always give the same id."""
    seed = f"{design_id}:{index}:{rect.left},{rect.top},{rect.width},{rect.height}"
    return f"{prefix}{hashlib.sha256(seed.encode('utf-8')).hexdigest()[:length]}"


def template_image_path(image_id: str) -> str:
    return f"/template-images/{image_id}"


def crop_png(image: Image.Image, rect: CropRect) -> bytes:
    out = io.BytesIO()
    image.crop(rect.box).save(out, format="PNG")
    return out.getvalue()


async def store_template_image(db: AsyncSession, image_id: str, created_by: str, data: bytes) -> None:
    now = utcnow()
    stmt = upsert(db, TemplateImage).values(
        id=image_id, created_by=created_by, content_type="image/png", bytes=data, updated_at=now
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[TemplateImage.id],
        set_={"bytes": stmt.excluded.bytes, "created_by": created_by, "updated_at": now},
    )
    await db.execute(stmt)


class DesignImporter:
    def __init__(self, poller: ExportPoller, canva: CanvaClient) -> None:
        self._poller = poller
        self._canva = canva

    async def import_current_page(
        self,
        db: AsyncSession,
        *,
        created_by: str,
        access_token: str,
        design_id: str,
        elements: list[Any],
    ) -> dict[str, Any]:
        result = await self._poller.export_design(access_token, design_id, {"type": "png"})
        url = result.first_url
        if url is None:
            raise ExportMissingUrls(
                "Export returned no image URL", status=result.status, jobId=result.job_id
            )

        png = await self._canva.download(url)
        try:
            source = Image.open(io.BytesIO(png))
            source.load()
        except (UnidentifiedImageError, OSError) as e:
            raise UpstreamError("Exported page could not be decoded") from e
        img_w, img_h = source.size

        components = []
        crops = 0
        for index, element in enumerate(elements):
            if not isinstance(element, dict):
                continue
            raw_rect = element_rect(element)
            if raw_rect is None:
                continue
            rect = normalize_crop_rect(*raw_rect, img_w, img_h)
            if rect is None:
                continue

            raw_text = element.get("text").strip() if isinstance(element.get("text"), str) else ""
            kind = element.get("type").lower() if isinstance(element.get("type"), str) else ""
            common = {
                "position": {"dx": rect.left, "dy": rect.top},
                "size": {"w": rect.width, "h": rect.height},
                "scale": 1,
                "zIndex": len(components),
                "habits": [],
                "tasks": [],
                "isDisabled": False,
            }

            if raw_text or "text" in kind:
                style_src = element.get("style") if isinstance(element.get("style"), dict) else element
                components.append(
                    {
                        "type": "text",
                        "id": stable_id("canva_text_", design_id, index, rect, 20),
                        "rotation": maybe_rotation_rad(element.get("rotation")),
                        **common,
                        "text": raw_text or f"Text {index + 1}",
                        "style": text_style(style_src),
                        "textAlign": text_align_index(style_src.get("textAlign", style_src.get("align"))),
                    }
                )
                continue

            # Crops are axis aligned; element rotation is dropped
            image_id = stable_id("timg_", design_id, index, rect)
            await store_template_image(db, image_id, created_by, crop_png(source, rect))
            crops += 1
            components.append(
                {
                    "type": "image",
                    "id": stable_id("canva_layer_", design_id, index, rect, 20),
                    "rotation": 0,
                    **common,
                    "imagePath": template_image_path(image_id),
                    "goal": {
                        "title": raw_text[:80] if raw_text else f"Layer {index + 1}",
                        "category": None,
                        "deadline": None,
                        "cbt_metadata": None,
                        "action_plan": None,
                    },
                }
            )

        await db.commit()
        logger.info(
            "Imported design %s: %d components, %d image crops (%dx%d)",
            design_id,
            len(components),
            crops,
            img_w,
            img_h,
        )
        return {
            "ok": True,
            "exportUrl": url,
            "imageWidth": img_w,
            "imageHeight": img_h,
            "template": {
                "kind": "goal_canvas",
                "templateJson": {"canvasSize": {"w": img_w, "h": img_h}, "components": components},
            },
        }
