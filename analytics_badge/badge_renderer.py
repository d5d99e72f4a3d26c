"""
SVG badge layout and rendering.
Pure functions: weekly users count -> labels, colour and pixel geometry -> SVG.
"""

from dataclasses import dataclass
from typing import Dict, Tuple

LEFT_LABEL = "users"
LABEL_SUFFIX = "/week"
LABEL_BACKGROUND = "#555"

GREEN = "#4c1"
AMBER = "#a4a61d"
RED = "#e05d44"

BASE_WIDTH = 10
DEFAULT_CHAR_WIDTH = 8


def _widths(chars: str, width: int) -> Dict[str, int]:
    return {c: width for c in chars}


# Single-character SVG text widths measured in Chrome.
# These decide rect widths, so they must not be approximated.
CHAR_WIDTHS: Dict[str, int] = {
    **_widths("i", 2),
    **_widths(";I\\fjlrt", 4),
    **_widths("13579:?EFJPTZ[]`bcdgkopsvy", 6),
    **_widths("KL", 7),
    **_widths("<>@GOWm", 10),
}


@dataclass(frozen=True)
class BadgeLayout:
    left_label: str
    right_label: str
    left_width: int
    right_width: int
    left_center: int
    right_center: int
    total_width: int
    color: str


def format_magnitude(n: int) -> Tuple[str, str]:
    """
    Abbreviate a count and pick its colour.
    Thresholds are strict, so exactly 1,000 and 1,000,000 stay in the lower bucket.
    """
    if n > 1_000_000:
        return f"{n // 1_000_000}M", GREEN
    if n > 1_000:
        return f"{n // 1_000}k", AMBER
    return str(n), RED


def text_width(s: str) -> int:
    return BASE_WIDTH + sum(CHAR_WIDTHS.get(c, DEFAULT_CHAR_WIDTH) for c in s)


def layout(metric: int) -> BadgeLayout:
    """Compute the two-segment badge geometry for a weekly users count."""
    # Negative counts are clamped rather than rendered as "-5/week"
    metric = max(metric, 0)
    number, color = format_magnitude(metric)
    right = number + LABEL_SUFFIX

    left_width = text_width(LEFT_LABEL)
    right_width = text_width(right)
    return BadgeLayout(
        left_label=LEFT_LABEL,
        right_label=right,
        left_width=left_width,
        right_width=right_width,
        left_center=left_width // 2 + 1,
        right_center=left_width + right_width // 2 - 1,
        total_width=left_width + right_width,
        color=color,
    )


def render_svg(badge: BadgeLayout) -> str:
    """Serialize a layout as a flat shields-style SVG badge."""
    return f'''<svg xmlns="http://www.w3.org/2000/svg" width="{badge.total_width}" height="20">
  <linearGradient id="smooth" x2="0" y2="100%">
    <stop offset="0" stop-color="#bbb" stop-opacity=".1"/>
    <stop offset="1" stop-opacity=".1"/>
  </linearGradient>
  <clipPath id="round">
    <rect width="{badge.total_width}" height="20" rx="3" fill="#fff"/>
  </clipPath>
  <g clip-path="url(#round)">
    <rect width="{badge.left_width}" height="20" fill="{LABEL_BACKGROUND}"/>
    <rect x="{badge.left_width}" width="{badge.right_width}" height="20" fill="{badge.color}"/>
    <rect width="{badge.total_width}" height="20" fill="url(#smooth)"/>
  </g>
  <g fill="#fff" text-anchor="middle" font-family="DejaVu Sans,Verdana,Geneva,sans-serif" font-size="11">
    <text x="{badge.left_center}" y="15" fill="#010101" fill-opacity=".3">{badge.left_label}</text>
    <text x="{badge.left_center}" y="14">{badge.left_label}</text>
    <text x="{badge.right_center}" y="15" fill="#010101" fill-opacity=".3">{badge.right_label}</text>
    <text x="{badge.right_center}" y="14">{badge.right_label}</text>
  </g>
</svg>'''
