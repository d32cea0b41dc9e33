"""
Configuration for WebCleaner.

Defaults are the refiner, synthesizer and engine constants.
`CleanerConfig.from_env()` overlays WEBCLEANER_* environment variables.
"""

from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional
import os


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


# env var -> (field name, converter)
ENV_OVERRIDES = {
    "WEBCLEANER_DEBOUNCE_MS": ("debounce_ms", int),
    "WEBCLEANER_POLL_INTERVAL_MS": ("poll_interval_ms", int),
    "WEBCLEANER_EFFECT": ("effect", str),
    "WEBCLEANER_STORE": ("store_path", str),
    "WEBCLEANER_HEADLESS": ("headless", _as_bool),
    "WEBCLEANER_DEBUG": ("debug", _as_bool),
}


@dataclass
class CleanerConfig:
    """Tunable settings shared by the engine, refiner and synthesizer."""
    # Reconciliation
    debounce_ms: int = 200  # quiet period before re-applying rules
    poll_interval_ms: int = 100  # mutation buffer poll (Selenium backend)
    effect: str = "blur"  # blur, hide
    blur_radius_px: int = 8
    # Selector synthesis
    max_path_depth: int = 6
    max_path_classes: int = 3
    # Target refinement
    root_area_ratio: float = 0.9
    large_area_ratio: float = 0.7
    # Host
    store_path: str = "~/.webcleaner/rules.json"
    headless: bool = False
    debug: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None, **overrides: Any) -> "CleanerConfig":
        """
        Build a config from defaults, environment variables and explicit overrides.

        Explicit keyword overrides win over the environment; ``None`` values
        are ignored so CLI options that were not given fall through.
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for env_name, (field_name, convert) in ENV_OVERRIDES.items():
            raw = environ.get(env_name)
            if raw is None or raw == "":
                continue
            try:
                values[field_name] = convert(raw)
            except ValueError:
                raise ValueError(f"Invalid value for {env_name}: {raw!r}")

        known = {f.name for f in fields(cls)}
        for key, value in overrides.items():
            if key not in known:
                raise TypeError(f"Unknown config option: {key}")
            if value is not None:
                values[key] = value

        return cls(**values)

    def with_overrides(self, **changes: Any) -> "CleanerConfig":
        """Copy of this config with the non-None changes applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    @property
    def resolved_store_path(self) -> str:
        return os.path.abspath(os.path.expanduser(self.store_path))
