"""
Cause color palette.

Top-level causes cycle through CAUSE_PALETTE; subcauses are shades of
their parent's color so the hierarchy reads at a glance.
"""
from __future__ import annotations

CAUSE_PALETTE = (
    "#ef4444", "#f97316", "#eab308", "#22c55e", "#10b981", "#06b6d4",
    "#3b82f6", "#6366f1", "#8b5cf6", "#d946ef", "#ec4899", "#f43f5e",
)

UNCLUSTERED_COLOR = "#6b7280"


def palette_color(index: int) -> str:
    """Color for the index-th top-level cause (palette cycles)."""
    return CAUSE_PALETTE[index % len(CAUSE_PALETTE)]


def shade(hex_color: str, step: int) -> str:
    """Lighten (odd steps) or darken (even steps) a color; step 0 is unchanged."""
    if step <= 0:
        return hex_color
    value = hex_color.lstrip("#")
    r, g, b = (int(value[i:i + 2], 16) for i in (0, 2, 4))
    amount = min(0.6, 0.18 * ((step + 1) // 2))
    target = 255 if step % 2 == 1 else 0
    r, g, b = (round(c + (target - c) * amount) for c in (r, g, b))
    return f"#{r:02x}{g:02x}{b:02x}"
