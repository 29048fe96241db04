from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, List

import yaml

from .errors import ConfigError
from .models import LeagueConfig

TOKEN_ENV = {
    "tank01": ("TANK01_API_KEY", "RAPIDAPI_KEY"),
}


@dataclass
class Config:
    raw: Dict[str, Any]

    @property
    def region(self) -> str:
        return self.raw.get("region", "us-east-1")

    @property
    def providers(self) -> Dict[str, Any]:
        return self.raw.get("providers", {})

    @property
    def primary_provider(self) -> str:
        return self.raw.get("primary_provider", "tank01")

    @property
    def backup_provider(self) -> str:
        return self.raw.get("backup_provider", "espn")

    @property
    def polling(self) -> Dict[str, Any]:
        return self.raw.get("polling", {})

    @property
    def circuit_breaker(self) -> Dict[str, Any]:
        return self.raw.get("circuit_breaker", {})

    @property
    def mapping(self) -> Dict[str, Any]:
        return self.raw.get("mapping", {})

    @property
    def events(self) -> Dict[str, Any]:
        return self.raw.get("events", {})

    @property
    def scoring(self) -> Dict[str, Dict[str, float]]:
        return self.raw.get("scoring", {})

    @property
    def leagues(self) -> List[LeagueConfig]:
        return [LeagueConfig.from_dict(league) for league in self.raw.get("leagues", [])]

    def provider(self, name: str) -> Dict[str, Any]:
        try:
            return self.providers[name]
        except KeyError:
            raise ConfigError(f"No configuration for provider '{name}'") from None


def load_config(path: str = "config.yaml") -> Config:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    cfg = Config(raw)
    for name in (cfg.primary_provider, cfg.backup_provider):
        if name not in cfg.providers:
            raise ConfigError(f"providers.{name} is required")
    for league in raw.get("leagues", []):
        if "league_id" not in league or "platform" not in league:
            raise ConfigError("every league needs league_id and platform")
    return cfg


def get_api_token(provider: str) -> str:
    names = TOKEN_ENV.get(provider, (f"{provider.upper()}_API_KEY",))
    for name in names:
        token = os.getenv(name)
        if token:
            return token
    raise ConfigError(f"Missing API token for {provider}; set {' or '.join(names)}")
