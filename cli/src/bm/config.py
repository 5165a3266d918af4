"""Configuration management for the Brand Monitor CLI."""

import os
from dataclasses import dataclass
from pathlib import Path

import yaml

API_KEY_ENV_VAR = "BRAND_MONITOR_YOUTUBE_API_KEY"


def config_path() -> Path:
    return Path.home() / ".config" / "brand-monitor" / "config.yaml"


@dataclass
class Config:
    """Brand Monitor CLI configuration."""

    youtube_api_key: str | None = None
    output_dir: Path = Path(".")
    order: str = "time"
    max_pages: int = 5

    @classmethod
    def load(cls, *, use_environment: bool = True) -> "Config":
        """Load config from ~/.config/brand-monitor/config.yaml; the environment wins for the API key."""
        data = {}
        path = config_path()
        if path.exists():
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

        env_key = os.environ.get(API_KEY_ENV_VAR, "").strip() if use_environment else ""
        api_key = env_key or data.get("youtube_api_key")
        return cls(
            youtube_api_key=api_key or None,
            output_dir=Path(data.get("output_dir", ".")).expanduser(),
            order=data.get("order", "time"),
            max_pages=int(data.get("max_pages", 5)),
        )

    def save(self):
        """Save config to file."""
        path = config_path()
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump({
                "youtube_api_key": self.youtube_api_key,
                "output_dir": str(self.output_dir),
                "order": self.order,
                "max_pages": self.max_pages,
            }, f)
