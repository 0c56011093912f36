"""Audio filter state applied to a session's remote playback link.

The remote node replaces all filters on every update, so the session always
sends the complete ``FilterSettings`` payload. Timescale effects and
equalizer curves conflict: applying one clears the other.
"""

from __future__ import annotations

from typing import Any, Final

from pydantic import BaseModel, ConfigDict, Field

from playback_orchestrator.domain.music.value_objects import EqualizerPreset, FilterPreset


class EqualizerBand(BaseModel):
    model_config = ConfigDict(frozen=True)

    band: int = Field(ge=0, le=14)
    gain: float = Field(ge=-0.25, le=1.0)


class Timescale(BaseModel):
    model_config = ConfigDict(frozen=True)

    speed: float = Field(default=1.0, gt=0.0)
    pitch: float = Field(default=1.0, gt=0.0)
    rate: float = Field(default=1.0, gt=0.0)


class Rotation(BaseModel):
    model_config = ConfigDict(frozen=True)

    rotation_hz: float = Field(default=0.2, ge=0.0)


def _bands(*gains: float) -> tuple[EqualizerBand, ...]:
    return tuple(EqualizerBand(band=i, gain=g) for i, g in enumerate(gains))


EQUALIZER_PRESETS: Final[dict[EqualizerPreset, tuple[EqualizerBand, ...]]] = {
    EqualizerPreset.FLAT: (),
    EqualizerPreset.BASS: _bands(
        0.6, 0.67, 0.67, 0, -0.25, 0.15, -0.25, 0.23, 0.35, 0.45, 0.55, 0.6, 0.55, 0
    ),
    EqualizerPreset.ROCK: _bands(
        0.3, 0.25, 0.2, 0.1, 0.05, -0.05, -0.15, -0.2, -0.1, -0.05, 0.05, 0.1, 0.15, 0.2
    ),
    EqualizerPreset.JAZZ: _bands(
        0.3, 0.3, 0.2, 0.2, -0.2, -0.2, 0, 0.2, 0.25, 0.3, 0.3, 0.3, 0.3, 0.3
    ),
    EqualizerPreset.POP: _bands(
        -0.25, -0.2, -0.15, -0.1, -0.05, 0.05, 0.15, 0.2, 0.25, 0.25, 0.25, 0.25, 0.25, 0.25
    ),
}

NIGHTCORE: Final = Timescale(speed=1.1, pitch=1.1, rate=1.0)
VAPORWAVE: Final = Timescale(speed=0.8, pitch=0.8, rate=1.0)
EIGHT_D: Final = Rotation(rotation_hz=0.2)


class FilterSettings(BaseModel):
    """Immutable snapshot of every filter active on a session."""

    model_config = ConfigDict(frozen=True)

    equalizer: tuple[EqualizerBand, ...] = ()
    timescale: Timescale | None = None
    rotation: Rotation | None = None

    @property
    def active(self) -> list[str]:
        names: list[str] = []
        if self.equalizer:
            names.append("equalizer")
        if self.timescale is not None:
            names.append("timescale")
        if self.rotation is not None:
            names.append("rotation")
        return names

    @property
    def is_empty(self) -> bool:
        return not self.active

    def with_equalizer(self, preset: EqualizerPreset) -> FilterSettings:
        """Apply an equalizer curve, clearing any timescale effect."""
        return self.model_copy(
            update={"equalizer": EQUALIZER_PRESETS[preset], "timescale": None}
        )

    def with_preset(self, preset: FilterPreset, enabled: bool = True) -> FilterSettings:
        """Toggle an effect preset; timescale presets clear the equalizer."""
        if preset is FilterPreset.EIGHT_D:
            return self.model_copy(update={"rotation": EIGHT_D if enabled else None})

        if not enabled:
            return self.model_copy(update={"timescale": None})

        timescale = NIGHTCORE if preset is FilterPreset.NIGHTCORE else VAPORWAVE
        return self.model_copy(update={"timescale": timescale, "equalizer": ()})

    def conflicts_with(self, preset: FilterPreset | EqualizerPreset) -> list[str]:
        """Names of currently active filters that applying ``preset`` would clear."""
        if isinstance(preset, EqualizerPreset):
            return ["timescale"] if self.timescale is not None else []
        if preset is FilterPreset.EIGHT_D:
            return []
        return ["equalizer"] if self.equalizer else []

    def to_payload(self) -> dict[str, Any]:
        """Render the wire payload; an empty dict clears all filters remotely."""
        payload: dict[str, Any] = {}
        if self.equalizer:
            payload["equalizer"] = [b.model_dump() for b in self.equalizer]
        if self.timescale is not None:
            payload["timescale"] = self.timescale.model_dump()
        if self.rotation is not None:
            payload["rotation"] = {"rotationHz": self.rotation.rotation_hz}
        return payload
