"""
Data models for the render module.

Defines the two marker style presets and the popup wording.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class MarkerStyle:
    """Circle marker style, in the option names most map widgets use."""

    radius: int = 7
    fill_color: str = "#4fc3f7"
    color: str = "#4fc3f7"
    weight: int = 1
    opacity: float = 1.0
    fill_opacity: float = 0.7

    def to_dict(self) -> dict:
        """Serialize to dict (widget option names)."""
        return {
            "radius": self.radius,
            "fillColor": self.fill_color,
            "color": self.color,
            "weight": self.weight,
            "opacity": self.opacity,
            "fillOpacity": self.fill_opacity,
        }

    @classmethod
    def from_dict(cls, data: dict, defaults: Optional["MarkerStyle"] = None) -> "MarkerStyle":
        """Deserialize from dict (accepts widget or snake_case option names)."""
        base = defaults or cls()
        return cls(
            radius=data.get("radius", base.radius),
            fill_color=data.get("fillColor", data.get("fill_color", base.fill_color)),
            color=data.get("color", base.color),
            weight=data.get("weight", base.weight),
            opacity=data.get("opacity", base.opacity),
            fill_opacity=data.get("fillOpacity", data.get("fill_opacity", base.fill_opacity)),
        )


# Blue: someone is connected here right now
ACTIVE_STYLE = MarkerStyle()

# Gray: visited before
PAST_STYLE = MarkerStyle(
    fill_color="#9aa0a6",
    color="#7f7f7f",
    opacity=0.9,
    fill_opacity=0.6,
)


@dataclass
class RenderConfig:
    """Configuration for marker rendering."""

    version: int = 1
    active_style: MarkerStyle = field(default_factory=lambda: ACTIVE_STYLE)
    past_style: MarkerStyle = field(default_factory=lambda: PAST_STYLE)
    active_text: str = "Active users"  # Prefix of the live count
    past_text: str = "Visited before"  # Shown instead of a count

    def to_dict(self) -> dict:
        """Serialize to dict."""
        return {
            "version": self.version,
            "active_style": self.active_style.to_dict(),
            "past_style": self.past_style.to_dict(),
            "active_text": self.active_text,
            "past_text": self.past_text,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RenderConfig":
        """Deserialize from dict."""
        active_style = data.get("active_style")
        past_style = data.get("past_style")
        return cls(
            version=data.get("version", 1),
            active_style=MarkerStyle.from_dict(active_style or {}, defaults=ACTIVE_STYLE),
            past_style=MarkerStyle.from_dict(past_style or {}, defaults=PAST_STYLE),
            active_text=data.get("active_text", "Active users"),
            past_text=data.get("past_text", "Visited before"),
        )
