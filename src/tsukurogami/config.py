import dataclasses
import json
import os
import string
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit, urlunsplit

import yaml
from dotenv import load_dotenv

CONFIG_VERSION = 1

DEFAULT_XCODE_URL = "https://localhost:20343"
LEGACY_BOTS_SUFFIX = "/api/bots"

XCODE_CREDENTIALS_ENV = "TSUKUROGAMI_XCODE_CREDENTIALS"
BITBUCKET_CREDENTIALS_ENV = "TSUKUROGAMI_BITBUCKET_CREDENTIALS"

DEFAULT_CONFIG: Dict[str, Any] = {
    "version": CONFIG_VERSION,
    "xcode": {
        "url": DEFAULT_XCODE_URL,
        "credentials": None,
        "trunk_branch": "master",
        "template_name_pattern": None,
    },
    "bitbucket": {
        "url": None,
        "credentials": None,
        "build_url": None,
    },
    "server": {
        "host": "0.0.0.0",
        "port": 4444,
        "callback_host": None,
    },
    "tls": {
        # Xcode Server ships with a self-signed certificate.
        "skip_verify": True,
    },
    "log": {
        "path": None,
        "max_bytes": 10_000_000,
        "backup_count": 3,
        "buffer_lines": 1000,
    },
}

# Keys of the original flat JSON config file.
LEGACY_KEYS = {
    "xcodeURL": ("xcode", "url"),
    "bitbucketURL": ("bitbucket", "url"),
    "xcodeCredentials": ("xcode", "credentials"),
    "bitbucketCredentials": ("bitbucket", "credentials"),
    "port": ("server", "port"),
    "skipVerify": ("tls", "skip_verify"),
}


class ConfigError(Exception):
    """Raised when configuration is invalid."""


@dataclasses.dataclass
class LogConfig:
    path: Optional[Path]
    max_bytes: int
    backup_count: int
    buffer_lines: int = 1000


@dataclasses.dataclass
class BridgeConfig:
    raw: Dict[str, Any]
    xcode_url: str
    xcode_credentials: str
    trunk_branch: str
    template_name_pattern: Optional[str]
    bitbucket_url: str
    bitbucket_credentials: str
    build_url: str
    server_host: str
    server_port: int
    callback_host: Optional[str]
    skip_verify: bool
    log: LogConfig

    @property
    def verify_tls(self) -> bool:
        return not self.skip_verify

    def missing_required(self) -> List[str]:
        missing = []
        if not self.xcode_url:
            missing.append("xcode.url")
        if not self.bitbucket_url:
            missing.append("bitbucket.url")
        if not self.xcode_credentials:
            missing.append("xcode.credentials")
        if not self.bitbucket_credentials:
            missing.append("bitbucket.credentials")
        return missing


def _merge_defaults(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = json.loads(json.dumps(base))
    for key, value in overrides.items():
        if isinstance(value, dict) and key in merged and isinstance(merged[key], dict):
            merged[key] = _merge_defaults(merged[key], value)
        else:
            merged[key] = value
    return merged


def _translate_legacy_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    """Map the flat camelCase keys of old JSON configs onto the nested layout."""
    translated: Dict[str, Any] = {}
    for key, value in data.items():
        target = LEGACY_KEYS.get(key)
        if target is None:
            translated[key] = value
            continue
        section, field = target
        translated.setdefault(section, {})
        if isinstance(translated[section], dict):
            translated[section][field] = value
    return translated


def normalize_xcode_url(url: Optional[str]) -> str:
    """Return the server base URL, dropping a trailing legacy ``/api/bots``."""
    if not url:
        return ""
    normalized = str(url).strip().rstrip("/")
    if normalized.endswith(LEGACY_BOTS_SUFFIX):
        normalized = normalized[: -len(LEGACY_BOTS_SUFFIX)]
    return normalized


def normalize_bitbucket_url(url: Optional[str]) -> str:
    """Bitbucket URLs are often configured without a scheme; default to http."""
    if not url:
        return ""
    normalized = str(url).strip().rstrip("/")
    parts = urlsplit(normalized)
    if not parts.scheme:
        parts = urlsplit(f"http://{normalized}")
    return urlunsplit(parts)


def _load_dotenv_for_config(config_path: Optional[Path]) -> None:
    """Load a ``.env`` file beside the config file, if present."""
    if config_path is None:
        return
    candidate = config_path.parent / ".env"
    try:
        if candidate.exists():
            load_dotenv(dotenv_path=candidate, override=False)
    except OSError:
        pass


def read_config_file(config_path: Path) -> Dict[str, Any]:
    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ConfigError(f"Unable to read config file {config_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid config file {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")
    return data


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
    env: Optional[Dict[str, str]] = None,
) -> BridgeConfig:
    """
    Build the bridge configuration.

    Precedence, lowest first: defaults, config file, explicit overrides
    (command line flags). Credentials left empty by the file are taken from
    the environment before overrides apply.
    """
    data: Dict[str, Any] = {}
    if config_path is not None:
        _load_dotenv_for_config(config_path)
        data = _translate_legacy_keys(read_config_file(config_path))
    merged = _merge_defaults(DEFAULT_CONFIG, data)
    _validate_sections(merged)

    source = os.environ if env is None else env
    if not merged["xcode"].get("credentials") and source.get(XCODE_CREDENTIALS_ENV):
        merged["xcode"]["credentials"] = source[XCODE_CREDENTIALS_ENV]
    if not merged["bitbucket"].get("credentials") and source.get(
        BITBUCKET_CREDENTIALS_ENV
    ):
        merged["bitbucket"]["credentials"] = source[BITBUCKET_CREDENTIALS_ENV]

    if overrides:
        merged = _merge_defaults(
            merged,
            {
                section: {k: v for k, v in values.items() if v is not None}
                for section, values in overrides.items()
            },
        )

    _validate_config(merged)
    return _build_config(merged)


def _build_config(cfg: Dict[str, Any]) -> BridgeConfig:
    xcode_cfg = cfg["xcode"]
    bitbucket_cfg = cfg["bitbucket"]
    server_cfg = cfg["server"]
    log_cfg = cfg["log"]
    xcode_url = normalize_xcode_url(xcode_cfg.get("url"))
    log_path = log_cfg.get("path")
    return BridgeConfig(
        raw=cfg,
        xcode_url=xcode_url,
        xcode_credentials=str(xcode_cfg.get("credentials") or ""),
        trunk_branch=str(xcode_cfg.get("trunk_branch") or "master"),
        template_name_pattern=xcode_cfg.get("template_name_pattern") or None,
        bitbucket_url=normalize_bitbucket_url(bitbucket_cfg.get("url")),
        bitbucket_credentials=str(bitbucket_cfg.get("credentials") or ""),
        build_url=str(bitbucket_cfg.get("build_url") or xcode_url),
        server_host=str(server_cfg.get("host")),
        server_port=int(server_cfg.get("port")),
        callback_host=server_cfg.get("callback_host") or None,
        skip_verify=bool(cfg["tls"].get("skip_verify")),
        log=LogConfig(
            path=Path(log_path) if log_path else None,
            max_bytes=int(log_cfg.get("max_bytes")),
            backup_count=int(log_cfg.get("backup_count")),
            buffer_lines=int(log_cfg.get("buffer_lines")),
        ),
    )


def _validate_sections(cfg: Dict[str, Any]) -> None:
    if cfg.get("version") != CONFIG_VERSION:
        raise ConfigError(f"Unsupported config version; expected {CONFIG_VERSION}")
    for section in ("xcode", "bitbucket", "server", "tls", "log"):
        if not isinstance(cfg.get(section), dict):
            raise ConfigError(f"{section} section must be a mapping")


def _validate_config(cfg: Dict[str, Any]) -> None:
    _validate_sections(cfg)
    for section in ("xcode", "bitbucket"):
        for key in ("url", "credentials"):
            val = cfg[section].get(key)
            if val is not None and not isinstance(val, str):
                raise ConfigError(f"{section}.{key} must be a string")
        creds = cfg[section].get("credentials")
        if creds and ":" not in creds:
            raise ConfigError(f"{section}.credentials must look like username:password")
    if not isinstance(cfg["xcode"].get("trunk_branch", ""), str):
        raise ConfigError("xcode.trunk_branch must be a string")
    pattern = cfg["xcode"].get("template_name_pattern")
    if pattern is not None:
        if not isinstance(pattern, str):
            raise ConfigError("xcode.template_name_pattern must be a string or null")
        if "{repo}" not in pattern:
            raise ConfigError("xcode.template_name_pattern must contain {repo}")
        try:
            fields = {field for _, field, _, _ in string.Formatter().parse(pattern)}
        except ValueError as exc:
            raise ConfigError(f"xcode.template_name_pattern is malformed: {exc}") from exc
        if fields - {"repo", None}:
            raise ConfigError(
                "xcode.template_name_pattern may only use the {repo} placeholder"
            )
    build_url = cfg["bitbucket"].get("build_url")
    if build_url is not None and not isinstance(build_url, str):
        raise ConfigError("bitbucket.build_url must be a string or null")
    server = cfg["server"]
    if not isinstance(server.get("host", ""), str):
        raise ConfigError("server.host must be a string")
    port = server.get("port")
    if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
        raise ConfigError("server.port must be an integer between 1 and 65535")
    callback_host = server.get("callback_host")
    if callback_host is not None and not isinstance(callback_host, str):
        raise ConfigError("server.callback_host must be a string or null")
    if not isinstance(cfg["tls"].get("skip_verify", True), bool):
        raise ConfigError("tls.skip_verify must be boolean")
    log_cfg = cfg["log"]
    if log_cfg.get("path") is not None and not isinstance(log_cfg.get("path"), str):
        raise ConfigError("log.path must be a string path or null")
    for key in ("max_bytes", "backup_count", "buffer_lines"):
        if not isinstance(log_cfg.get(key, 0), int):
            raise ConfigError(f"log.{key} must be an integer")
    if log_cfg.get("buffer_lines", 1) < 1:
        raise ConfigError("log.buffer_lines must be positive")
