"""Data models for PresenceModule."""

from dataclasses import dataclass

from presence_map.core.keys import DEFAULT_PRECISION

MIN_KEY_PRECISION = 0
MAX_KEY_PRECISION = 6


@dataclass
class PresenceConfig:
    """Configuration for the presence module."""

    version: int = 1
    key_precision: int = DEFAULT_PRECISION  # Decimal places for coordinate keys

    def to_dict(self) -> dict:
        """Serialize to dict."""
        return {
            "version": self.version,
            "key_precision": self.key_precision,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PresenceConfig":
        """Deserialize from dict."""
        return cls(
            version=data.get("version", 1),
            key_precision=_clamp_precision(data.get("key_precision", DEFAULT_PRECISION)),
        )


def _clamp_precision(value) -> int:
    """Coerce to int and clamp to the supported range."""
    if isinstance(value, bool):
        raise ValueError(f"key_precision must be an integer, got {value!r}")
    try:
        precision = int(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"key_precision must be an integer, got {value!r}") from e
    return max(MIN_KEY_PRECISION, min(MAX_KEY_PRECISION, precision))
