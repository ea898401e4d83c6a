"""Data model for scanned plugin artifacts."""

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Artifact:
    """One file (or directory) of a plugin that rules are evaluated against."""
    plugin: str          # Plugin directory name
    component: str       # Path relative to the plugin root, "/" separated
    plugin_root: Path

    @property
    def path(self) -> Path:
        if self.component in ("", "."):
            return self.plugin_root
        return self.plugin_root / self.component

    @property
    def component_type(self) -> str:
        """Top-level directory of the component, e.g. "hooks"."""
        return self.component.split("/", 1)[0] if "/" in self.component else ""
