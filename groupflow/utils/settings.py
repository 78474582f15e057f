from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from groupflow.errors import ConfigurationError


class LLMConfig(BaseModel):
    provider: str = "openai"
    model: str
    temperature: float = 0.0
    base_url: Optional[str] = None
    api_key_env: str = "OPENAI_API_KEY"


class AgentConfig(BaseModel):
    type: Literal["remote", "model", "default", "user_proxy"]
    description: str = ""
    url: Optional[str] = None
    endpoint: str = "chat"
    system_message: str = "You are a helpful assistant."
    default_reply: str = ""
    human_input_mode: Literal["always", "never", "auto"] = "always"
    print_messages: bool = True


class TransitionConfig(BaseModel):
    from_agent: str = Field(alias="from")
    to_agent: str = Field(alias="to")
    max_messages: Optional[int] = None
    min_messages: Optional[int] = None


class WorkflowConfig(BaseModel):
    max_rounds: int = Field(default=10, ge=1)
    termination_keyword: str = "TERMINATE"
    admin: Optional[str] = None
    stream: bool = False


class HttpConfig(BaseModel):
    timeout: float = 30.0


class LoggingConfig(BaseModel):
    level: str = "INFO"


class AppConfig(BaseModel):
    llm: Optional[LLMConfig] = None
    agents: Dict[str, AgentConfig]
    transitions: List[TransitionConfig] = Field(default_factory=list)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(env: str = "base", config_dir: str | Path = "configs") -> AppConfig:
    """Read ``base.yaml`` and merge ``<env>.yaml`` over it when present."""
    root = Path(config_dir)
    base = _read_yaml(root / "base.yaml")
    if env != "base":
        override_path = root / f"{env}.yaml"
        if override_path.exists():
            base = _merge_dicts(base, _read_yaml(override_path))
    try:
        config = AppConfig.model_validate(base)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid configuration in {root}: {exc}") from exc
    _check_references(config)
    return config


def _check_references(config: AppConfig) -> None:
    names = set(config.agents)
    for t in config.transitions:
        for name in (t.from_agent, t.to_agent):
            if name not in names:
                raise ConfigurationError(f"transition references unknown agent {name!r}")
    admin = config.workflow.admin
    if admin is not None and admin not in names:
        raise ConfigurationError(f"admin {admin!r} is not a configured agent")
    if config.llm is None and any(a.type == "model" for a in config.agents.values()):
        raise ConfigurationError("model agents need an 'llm' section")


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"config file not found: {path}")
    return yaml.safe_load(path.read_text(encoding="utf-8")) or {}


def _merge_dicts(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _merge_dicts(base[key], value)
        else:
            merged[key] = value
    return merged
