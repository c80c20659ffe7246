from __future__ import annotations

import os
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel

from .errors import ConfigurationError
from .models import NATIVE_RUNTIME
from .sandbox import SandboxLimits

API_KEY_ENV_VARS = ("GEMINI_API_KEY", "API_KEY")


@dataclass
class EngineConfig:
    config_id: str
    native_runtime: str
    max_source_length: int
    max_nodes: int
    max_loop_iterations: int
    max_power_exponent: float
    result_indent: int
    generator_model: str
    generator_timeout: float
    analysis_min_steps: int

    @staticmethod
    def default() -> "EngineConfig":
        return EngineConfig(
            config_id="default",
            native_runtime=NATIVE_RUNTIME,
            max_source_length=4000,
            max_nodes=1000,
            max_loop_iterations=10000,
            max_power_exponent=1000.0,
            result_indent=2,
            generator_model="gemini-2.5-flash",
            generator_timeout=30.0,
            analysis_min_steps=2,
        )

    def limits(self) -> SandboxLimits:
        return SandboxLimits(
            max_source_length=self.max_source_length,
            max_nodes=self.max_nodes,
            max_loop_iterations=self.max_loop_iterations,
            max_power_exponent=self.max_power_exponent,
            result_indent=self.result_indent,
        )

    def generator_settings(self, api_key: Optional[str] = None) -> "GeneratorSettings":
        return GeneratorSettings(
            model=self.generator_model,
            timeout=self.generator_timeout,
            api_key=api_key if api_key is not None else api_key_from_env(),
        )


class GeneratorSettings(BaseModel):
    model: str = "gemini-2.5-flash"
    endpoint: str = "https://generativelanguage.googleapis.com/v1beta"
    timeout: float = 30.0
    api_key: Optional[str] = None


def api_key_from_env() -> Optional[str]:
    for name in API_KEY_ENV_VARS:
        value = os.environ.get(name)
        if value:
            return value
    return None


class ConfigParser:
    """Minimal DSL parser for engine configuration files.

    Grammar:
      engine <id> {
        native_runtime = "python"
        max_nodes = 1000
        max_power_exponent = 1000.0
        generator_model = "gemini-2.5-flash"
      }
    """

    _header = re.compile(r"engine\s+([a-zA-Z0-9_-]+)\s*\{")
    _int = re.compile(r"^[+-]?\d+$")
    _float = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?$")

    _int_fields = {"max_source_length", "max_nodes", "max_loop_iterations", "result_indent", "analysis_min_steps"}
    _float_fields = {"max_power_exponent", "generator_timeout"}

    def parse(self, text: str) -> EngineConfig:
        lines = [l.strip() for l in text.splitlines() if l.strip() and not l.strip().startswith("#")]
        if not lines or not lines[0].startswith("engine "):
            raise ConfigurationError("Config must start with 'engine <id> {'")
        m = self._header.match(lines[0])
        if not m:
            raise ConfigurationError("Invalid engine header")

        fields_: Dict[str, Any] = {}
        for l in lines[1:]:
            if l == "}":
                break
            if "=" not in l:
                continue
            k, v = [x.strip() for x in l.split("=", 1)]
            fields_[k] = self._value(k, v)

        config = EngineConfig.default()
        config.config_id = m.group(1)
        known = {f.name for f in fields(EngineConfig)}
        for k, v in fields_.items():
            if k in known:
                setattr(config, k, v)
        self.check(config)
        return config

    def parse_file(self, path: str | Path) -> EngineConfig:
        return self.parse(Path(path).read_text(encoding="utf-8"))

    def _value(self, key: str, raw: str) -> Any:
        if key in self._int_fields:
            if not self._int.match(raw):
                raise ConfigurationError(f"{key} must be an integer", field=key)
            return int(raw)
        if key in self._float_fields:
            if not self._float.match(raw):
                raise ConfigurationError(f"{key} must be a number", field=key)
            return float(raw)
        return raw.strip('"\'')

    @staticmethod
    def check(config: EngineConfig) -> None:
        for name in ("max_source_length", "max_nodes", "max_loop_iterations", "max_power_exponent", "generator_timeout"):
            if getattr(config, name) <= 0:
                raise ConfigurationError(f"{name} must be positive", field=name)
        if config.result_indent < 0:
            raise ConfigurationError("result_indent must not be negative", field="result_indent")
        if config.analysis_min_steps < 1:
            raise ConfigurationError("analysis_min_steps must be at least 1", field="analysis_min_steps")
        if config.native_runtime != NATIVE_RUNTIME:
            raise ConfigurationError(
                f"native_runtime '{config.native_runtime}' is not executable; only '{NATIVE_RUNTIME}' is",
                field="native_runtime",
            )


def load_config(path: Optional[str | Path]) -> EngineConfig:
    if not path:
        return EngineConfig.default()
    return ConfigParser().parse_file(path)
