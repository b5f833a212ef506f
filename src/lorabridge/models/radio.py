"""LoRa radio configuration and transfer state models."""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from typing import Final

from .enums import RadioDirection, RadioPhase

BANDWIDTHS_KHZ: Final[tuple[int, ...]] = (125, 250, 500)
SPREADING_FACTORS: Final[tuple[int, ...]] = (7, 9, 12)
CODING_RATES: Final[tuple[int, ...]] = (5, 7, 8)
ACK_INTERVALS: Final[tuple[int, ...]] = (3, 5, 7, 10, 15)
TX_POWERS_DBM: Final[tuple[int, ...]] = (10, 14, 17, 20)

# Wire key -> attribute name
_JSON_KEYS: Final[dict[str, str]] = {
    "bw": "bandwidth",
    "sf": "spreading_factor",
    "cr": "coding_rate",
    "ack": "ack_interval",
    "power": "power",
}


def _check_choice(name: str, value: int, allowed: tuple[int, ...]) -> None:
    if value not in allowed:
        raise ValueError(f"{name} out of range: {value} (must be one of {allowed})")


@dataclass(frozen=True, slots=True)
class RadioConfig:
    """LoRa modem parameters of the gateway.

    Serialised on the wire as a flat JSON object with integer values:
    {"bw":125,"sf":9,"cr":7,"ack":5,"power":17}
    """

    bandwidth: int = 125
    spreading_factor: int = 9
    coding_rate: int = 7
    ack_interval: int = 5
    power: int = 17

    def __post_init__(self) -> None:
        _check_choice("bandwidth", self.bandwidth, BANDWIDTHS_KHZ)
        _check_choice("spreading_factor", self.spreading_factor, SPREADING_FACTORS)
        _check_choice("coding_rate", self.coding_rate, CODING_RATES)
        _check_choice("ack_interval", self.ack_interval, ACK_INTERVALS)
        _check_choice("power", self.power, TX_POWERS_DBM)

    def to_json(self) -> str:
        """Serialise to the compact wire form."""
        return json.dumps(
            {key: getattr(self, attr) for key, attr in _JSON_KEYS.items()},
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, text: str, base: RadioConfig | None = None) -> RadioConfig:
        """Parse a wire object on top of ``base``.

        Keys missing from ``text`` keep the value from ``base`` (defaults if
        None); unknown keys are ignored.

        Raises:
            ValueError: If text is not a JSON object or a value is invalid
        """
        try:
            fields = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid radio config JSON: {e}") from e

        if not isinstance(fields, dict):
            raise ValueError(f"Radio config must be a JSON object, got {type(fields).__name__}")

        updates: dict[str, int] = {}
        for key, attr in _JSON_KEYS.items():
            if key not in fields:
                continue
            try:
                updates[attr] = int(fields[key])
            except (TypeError, ValueError) as e:
                raise ValueError(f"Invalid value for {key!r}: {fields[key]!r}") from e

        return replace(base or cls(), **updates)

    def __str__(self) -> str:
        return (
            f"BW: {self.bandwidth} kHz, SF: {self.spreading_factor}, "
            f"CR: 4/{self.coding_rate}, ACK: {self.ack_interval}, "
            f"Power: {self.power} dBm"
        )


@dataclass(slots=True)
class RadioTransferState:
    """Progress of the gateway's current radio transfer in one direction."""

    direction: RadioDirection
    phase: RadioPhase = RadioPhase.IDLE
    fragments_done: int = 0
    fragments_total: int = 0
    retries: int = 0
    file_name: str | None = None

    @property
    def percent(self) -> int:
        if self.fragments_total <= 0:
            return 0
        return min(100, self.fragments_done * 100 // self.fragments_total)

    def reset(self, phase: RadioPhase = RadioPhase.IDLE) -> None:
        self.phase = phase
        self.fragments_done = 0
        self.fragments_total = 0
        self.retries = 0
        self.file_name = None


@dataclass(frozen=True, slots=True)
class TxSummary:
    """Result of a completed radio transmission (TX_COMPLETE)."""

    size: int
    seconds: float
    kbps: float
