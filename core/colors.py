"""Mapping between tag palette colors and Google Calendar event colors."""
from __future__ import annotations

from typing import Dict, Optional, Tuple

from core.settings import GOOGLE_SYNC

# Google event colors 1-11 with their reference RGB values.
GOOGLE_EVENT_COLORS: Dict[str, Dict[str, str]] = {
    "1": {"label": "Lavender", "hex": "#7986CB"},
    "2": {"label": "Sage", "hex": "#33B679"},
    "3": {"label": "Grape", "hex": "#9C27B0"},
    "4": {"label": "Flamingo", "hex": "#E67C73"},
    "5": {"label": "Banana", "hex": "#FFD54F"},
    "6": {"label": "Tangerine", "hex": "#FF8A65"},
    "7": {"label": "Peacock", "hex": "#039BE5"},
    "8": {"label": "Graphite", "hex": "#616161"},
    "9": {"label": "Blueberry", "hex": "#4285F4"},
    "10": {"label": "Basil", "hex": "#0B8043"},
    "11": {"label": "Tomato", "hex": "#E53935"},
}

# Tag palette first, then older Google-style hex values still found in stored tags.
HEX_TO_COLOR_ID: Dict[str, str] = {
    "EF4444": "11",
    "F97316": "6",
    "F59E0B": "5",
    "EAB308": "5",
    "84CC16": "10",
    "22C55E": "10",
    "10B981": "10",
    "14B8A6": "7",
    "06B6D4": "7",
    "0EA5E9": "9",
    "3B82F6": "9",
    "6366F1": "3",
    "8B5CF6": "3",
    "A855F7": "3",
    "D946EF": "4",
    "EC4899": "4",
    "F43F5E": "4",
    "78716C": "8",
    "4285F4": "9",
    "3F51B5": "9",
    "34A853": "10",
    "0B8043": "10",
    "FBBC04": "5",
    "F6BF26": "5",
    "EA4335": "11",
    "D50000": "11",
    "9C27B0": "3",
    "8E24AA": "3",
    "FF5722": "6",
    "FF8A65": "6",
    "7986CB": "1",
    "33B679": "2",
    "E67C73": "4",
    "039BE5": "7",
    "616161": "8",
}


def normalize_hex(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    cleaned = value.strip().lstrip("#").upper()
    if len(cleaned) == 8:
        cleaned = cleaned[2:]
    if len(cleaned) != 6:
        return None
    try:
        int(cleaned, 16)
    except ValueError:
        return None
    return cleaned


def _rgb(hex_value: str) -> Tuple[int, int, int]:
    raw = hex_value.lstrip("#")
    return int(raw[0:2], 16), int(raw[2:4], 16), int(raw[4:6], 16)


def closest_color_id(hex_value: str) -> str:
    r, g, b = _rgb(hex_value)
    best_id = GOOGLE_SYNC.default_color_id
    best_distance = float("inf")
    for color_id, meta in GOOGLE_EVENT_COLORS.items():
        cr, cg, cb = _rgb(meta["hex"])
        distance = (r - cr) ** 2 + (g - cg) ** 2 + (b - cb) ** 2
        if distance < best_distance:
            best_distance = distance
            best_id = color_id
    return best_id


def hex_to_color_id(value: Optional[str]) -> str:
    """Return the Google ``colorId`` for a tag color, defaulting to Blueberry."""
    normalized = normalize_hex(value)
    if normalized is None:
        return GOOGLE_SYNC.default_color_id
    mapped = HEX_TO_COLOR_ID.get(normalized)
    if mapped:
        return mapped
    return closest_color_id(normalized)


def color_label(color_id: Optional[str]) -> str:
    meta = GOOGLE_EVENT_COLORS.get(color_id or "", GOOGLE_EVENT_COLORS[GOOGLE_SYNC.default_color_id])
    return meta["label"]


__all__ = [
    "GOOGLE_EVENT_COLORS",
    "HEX_TO_COLOR_ID",
    "normalize_hex",
    "closest_color_id",
    "hex_to_color_id",
    "color_label",
]
