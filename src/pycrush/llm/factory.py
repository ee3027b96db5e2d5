from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import yaml

from ..errors import ConfigError
from .openai_compat import OpenAICompatProvider
from .provider import ModelProviderClient

logger = logging.getLogger(__name__)

_ENV_PATTERN = re.compile(r"\$\{(\w+)\}")


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    base_url: str
    model: str
    api_key: str
    small_model: str | None = None


class ProviderRegistry:
    def __init__(self) -> None:
        self._items: Dict[str, ProviderConfig] = {}

    def add(self, cfg: ProviderConfig) -> None:
        key = cfg.name.strip().lower()
        if not key:
            raise ConfigError("Provider name cannot be empty.")
        self._items[key] = cfg

    def get(self, name: str) -> ProviderConfig:
        key = (name or "").strip().lower()
        if not key:
            raise ConfigError("Missing --provider.")
        if key not in self._items:
            known = ", ".join(sorted(self._items.keys())) or "(none)"
            raise ConfigError(f"Unknown provider '{name}'. Known providers: {known}")
        return self._items[key]

    def names(self) -> list[str]:
        return sorted(self._items.keys())


def _expand_env_placeholders(s: str) -> str:
    def repl(m: re.Match) -> str:
        var = m.group(1)
        val = os.getenv(var)
        if not val:
            raise ConfigError(f"API key placeholder '${{{var}}}' not found in environment or is empty.")
        return val

    return _ENV_PATTERN.sub(repl, s)


def load_provider_registry(yaml_path: str | Path) -> ProviderRegistry:
    p = Path(yaml_path).expanduser().resolve()
    if not p.exists():
        raise ConfigError(f"Config YAML not found: {p}")

    data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    providers = data.get("providers")
    if not isinstance(providers, dict) or not providers:
        raise ConfigError("YAML must contain a non-empty 'providers:' mapping.")

    reg = ProviderRegistry()

    for name, cfg in providers.items():
        if not isinstance(cfg, dict):
            raise ConfigError(f"providers.{name} must be a mapping/dict.")

        base_url = cfg.get("PYCRUSH_BASE_URL")
        model = cfg.get("PYCRUSH_MODEL")
        api_key = cfg.get("PYCRUSH_API_KEY")
        small_model = cfg.get("PYCRUSH_SMALL_MODEL")

        missing = [k for k, v in {
            "PYCRUSH_BASE_URL": base_url,
            "PYCRUSH_MODEL": model,
            "PYCRUSH_API_KEY": api_key,
        }.items() if not v]
        if missing:
            raise ConfigError(f"providers.{name} missing required field(s): {', '.join(missing)}")

        base_url = str(base_url).strip()
        model = str(model).strip()
        api_key = _expand_env_placeholders(str(api_key).strip())

        if not base_url or not model or not api_key:
            raise ConfigError(f"providers.{name} has empty base_url/model/api_key after stripping.")

        reg.add(ProviderConfig(
            name=str(name),
            base_url=base_url,
            model=model,
            api_key=api_key,
            small_model=str(small_model).strip() if small_model else None,
        ))

    return reg


def resolve_providers(
    provider: Optional[str],
    *,
    yaml_path: Optional[Path] = None,
    model: Optional[str] = None,
) -> dict[str, ModelProviderClient]:
    """Build one client per model tier ("large", "small").

    The small tier falls back to the large model when the YAML does not name one.
    """
    if not provider:
        raise ConfigError("Missing --provider (must match a name in pycrush.yaml).")

    yaml_path = (yaml_path or Path("pycrush.yaml")).expanduser().resolve()
    logger.info("provider config: %s", yaml_path)
    cfg = load_provider_registry(yaml_path).get(provider)

    large = model or cfg.model
    small = cfg.small_model or large
    return {
        "large": OpenAICompatProvider(model=large, base_url=cfg.base_url, api_key=cfg.api_key, provider_name=cfg.name),
        "small": OpenAICompatProvider(model=small, base_url=cfg.base_url, api_key=cfg.api_key, provider_name=cfg.name),
    }
