"""配置加载。

支持 YAML 配置、环境变量占位符 `${VAR}` 展开，以及 .env/.env.local 自动加载；
展开后的字典交给 `MainConfig`（pydantic）做强校验。
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml

from shared.config.schema import MainConfig

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _load_env_file(env_path: Path):
    if not env_path.exists():
        return
    for line in env_path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def _load_envs(cfg_path: Path):
    """
    加载配置文件目录与仓库根目录下的 .env/.env.local（不覆盖已有环境变量）。
    """
    candidates = [
        cfg_path.parent / ".env",
        cfg_path.parent / ".env.local",
        cfg_path.parent.parent / ".env",
        cfg_path.parent.parent / ".env.local",
    ]
    for env_file in candidates:
        _load_env_file(env_file)


def expand_env(value: Any) -> Any:
    """递归展开 `${VAR}`；变量未设置时抛 ValueError，避免静默替换为空。"""
    if isinstance(value, str):
        def replacer(match):
            var_name = match.group(1)
            if var_name not in os.environ:
                raise ValueError(f"Missing environment variable: {var_name}")
            return os.environ[var_name]

        return _ENV_PATTERN.sub(replacer, value)
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    return value


def load_config(path: str, load_env: bool = True, expand_env_vars: bool = True) -> MainConfig:
    """从 YAML 读取并解析配置。

    Parameters
    ----------
    path:
        配置文件路径。
    load_env:
        是否自动加载 .env/.env.local。
    expand_env_vars:
        是否展开 `${VAR}` 占位符。

    Returns
    -------
    MainConfig
        校验后的配置对象。

    Raises
    ------
    FileNotFoundError
        配置文件不存在。
    ValueError
        顶层不是映射或缺失环境变量。
    pydantic.ValidationError
        字段类型错误、未知字段等。
    """
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    if load_env:
        _load_envs(cfg_path)

    with cfg_path.open("r", encoding="utf-8") as f:
        raw_cfg = yaml.safe_load(f) or {}
    if not isinstance(raw_cfg, dict):
        raise ValueError(f"Config root must be a mapping: {cfg_path}")

    if expand_env_vars:
        raw_cfg = expand_env(raw_cfg)
    return MainConfig.model_validate(raw_cfg)
