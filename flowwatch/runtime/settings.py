"""
Runtime per-symbol thresholds.

Read on every evaluation by the signal components and mutated by the
command channel. All access goes through a short-lived lock so a command
source running on another thread never observes a half-applied change.
"""
import logging
import threading
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, Optional

logger = logging.getLogger(__name__)


class ConfigValidationError(ValueError):
    """Rejected runtime configuration change."""


@dataclass(frozen=True)
class SymbolRuntimeConfig:
    """Thresholds for a single symbol."""
    min_volume_usd: float = 100_000.0
    min_dominance: float = 65.0
    min_price_change: float = 0.5
    cooldown_minutes: float = 15.0
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "minVolumeUSD": self.min_volume_usd,
            "minDominance": self.min_dominance,
            "minPriceChange": self.min_price_change,
            "cooldownMinutes": self.cooldown_minutes,
            "enabled": self.enabled,
        }


# External parameter name -> dataclass field
PARAM_FIELDS = {
    "minVolumeUSD": "min_volume_usd",
    "minDominance": "min_dominance",
    "minPriceChange": "min_price_change",
    "cooldownMinutes": "cooldown_minutes",
}


@dataclass(frozen=True)
class ConfigChange:
    """Result of a successful mutation."""
    symbol: str
    param: str
    old_value: Any
    new_value: Any


def validate_param(field_name: str, value: float) -> float:
    """Range-check a threshold; accepts either the field or the external name."""
    field_name = PARAM_FIELDS.get(field_name, field_name)
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ConfigValidationError(f"Value must be a number, got {value!r}")

    if value != value or value in (float("inf"), float("-inf")):
        raise ConfigValidationError("Value must be finite")

    if field_name == "min_dominance":
        if not 50 <= value <= 100:
            raise ConfigValidationError("minDominance must be between 50 and 100")
    elif field_name in ("min_volume_usd", "min_price_change", "cooldown_minutes"):
        if value < 0:
            raise ConfigValidationError(f"{_external_name(field_name)} must not be negative")
    else:
        raise ConfigValidationError(f"Unknown parameter: {field_name}")
    return value


def _external_name(field_name: str) -> str:
    for external, internal in PARAM_FIELDS.items():
        if internal == field_name:
            return external
    return field_name


class RuntimeConfig:
    """
    Concurrency-safe map of symbol -> SymbolRuntimeConfig.

    Entries are immutable; a mutation swaps in a new instance under the lock,
    so readers always see a consistent snapshot without holding the lock.
    """

    def __init__(
        self,
        symbols: Iterable[str] = (),
        defaults: Optional[SymbolRuntimeConfig] = None,
        overrides: Optional[Dict[str, Dict[str, float]]] = None
    ):
        self._lock = threading.Lock()
        self._defaults = defaults or SymbolRuntimeConfig()
        self._configs: Dict[str, SymbolRuntimeConfig] = {}

        overrides = overrides or {}
        for symbol in symbols:
            symbol = symbol.upper()
            values = {
                PARAM_FIELDS.get(name, name): validate_param(name, value)
                for name, value in overrides.get(symbol, {}).items()
            }
            self._configs[symbol] = replace(self._defaults, **values)

    def get(self, symbol: str) -> Optional[SymbolRuntimeConfig]:
        return self._configs.get(symbol.upper())

    def get_all(self) -> Dict[str, SymbolRuntimeConfig]:
        with self._lock:
            return dict(self._configs)

    def symbols(self) -> list:
        with self._lock:
            return list(self._configs)

    def _require(self, symbol: str) -> SymbolRuntimeConfig:
        current = self._configs.get(symbol)
        if current is None:
            raise ConfigValidationError(f"Unknown symbol: {symbol}")
        return current

    def set(self, symbol: str, param: str, value: Any) -> ConfigChange:
        """Set a numeric threshold; raises ConfigValidationError and leaves state untouched."""
        symbol = symbol.upper()
        field_name = PARAM_FIELDS.get(param)
        if field_name is None:
            raise ConfigValidationError(
                f"Unknown parameter: {param}. Expected one of: {', '.join(PARAM_FIELDS)}"
            )
        new_value = validate_param(field_name, value)

        with self._lock:
            current = self._require(symbol)
            old_value = getattr(current, field_name)
            self._configs[symbol] = replace(current, **{field_name: new_value})

        logger.info(f"[CONFIG] {symbol} {param}: {old_value} -> {new_value}")
        return ConfigChange(symbol=symbol, param=param, old_value=old_value, new_value=new_value)

    def set_enabled(self, symbol: str, enabled: bool) -> ConfigChange:
        symbol = symbol.upper()
        with self._lock:
            current = self._require(symbol)
            old_value = current.enabled
            self._configs[symbol] = replace(current, enabled=enabled)

        logger.info(f"[CONFIG] {symbol} enabled: {old_value} -> {enabled}")
        return ConfigChange(symbol=symbol, param="enabled", old_value=old_value, new_value=enabled)

    def enable(self, symbol: str) -> ConfigChange:
        return self.set_enabled(symbol, True)

    def disable(self, symbol: str) -> ConfigChange:
        return self.set_enabled(symbol, False)

    def as_dict(self) -> Dict[str, Dict[str, Any]]:
        return {symbol: cfg.to_dict() for symbol, cfg in self.get_all().items()}

    @staticmethod
    def defaults_from(thresholds) -> SymbolRuntimeConfig:
        """Build the default entry from a ThresholdDefaults config section."""
        values = {
            name: validate_param(name, getattr(thresholds, name))
            for name in PARAM_FIELDS.values()
        }
        return SymbolRuntimeConfig(**values)


__all__ = [
    "ConfigValidationError",
    "SymbolRuntimeConfig",
    "RuntimeConfig",
    "ConfigChange",
    "PARAM_FIELDS",
    "validate_param",
]
