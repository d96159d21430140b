"""
Documents exchanged with the Xcode Server bot API.

Only the fields tsukurogami manages are typed. Everything else the server
sends is kept in ``extra`` and written back untouched, so schema drift on the
server side never loses configuration when a bot is duplicated.
"""

import copy
import dataclasses
from typing import Any, Dict, List, Optional

from .errors import ProtocolError

PHASE_PRE_BUILD = 1
PHASE_POST_BUILD = 2

TRIGGER_TYPE_SCRIPT = 1

# Xcode Server schedule types: 1 periodic, 2 on commit, 3 manual.
SCHEDULE_MANUAL = 3

_CONDITION_KEYS = {
    "on_analyzer_warnings": "onAnalyzerWarnings",
    "on_build_errors": "onBuildErrors",
    "on_failing_tests": "onFailingTests",
    "on_success": "onSuccess",
    "on_warnings": "onWarnings",
}
_TRIGGER_KEYS = {
    "phase",
    "scriptBody",
    "name",
    "type",
    "emailConfiguration",
    "conditions",
}
_CONFIGURATION_KEYS = {"triggers", "buildEnvironmentVariables", "scheduleType"}


def _require_mapping(value: Any, what: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ProtocolError(f"{what} must be a JSON object, got {type(value).__name__}")
    return value


def _as_int(value: Any, what: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProtocolError(f"{what} must be a number, got {value!r}")
    return int(value)


@dataclasses.dataclass
class TriggerConditions:
    on_analyzer_warnings: bool = False
    on_build_errors: bool = False
    on_failing_tests: bool = False
    on_success: bool = False
    on_warnings: bool = False
    status: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TriggerConditions":
        if data is None:
            return cls()
        data = _require_mapping(data, "trigger conditions")
        kwargs: Dict[str, Any] = {
            attr: bool(data.get(key, False)) for attr, key in _CONDITION_KEYS.items()
        }
        kwargs["status"] = _as_int(data.get("status"), "conditions.status")
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            key: getattr(self, attr) for attr, key in _CONDITION_KEYS.items()
        }
        payload["status"] = self.status
        return payload

    def any_set(self) -> bool:
        return any(getattr(self, attr) for attr in _CONDITION_KEYS)


@dataclasses.dataclass
class Trigger:
    """A pre- or post-build hook attached to a bot configuration."""

    phase: int
    type: int
    name: str
    script_body: str = ""
    conditions: TriggerConditions = dataclasses.field(
        default_factory=TriggerConditions
    )
    email_configuration: Optional[Any] = None
    extra: Dict[str, Any] = dataclasses.field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Trigger":
        data = _require_mapping(data, "trigger")
        return cls(
            phase=_as_int(data.get("phase"), "trigger.phase"),
            type=_as_int(data.get("type"), "trigger.type"),
            name=str(data.get("name") or ""),
            script_body=str(data.get("scriptBody") or ""),
            conditions=TriggerConditions.from_dict(data.get("conditions")),
            email_configuration=copy.deepcopy(data.get("emailConfiguration")),
            extra={
                key: copy.deepcopy(value)
                for key, value in data.items()
                if key not in _TRIGGER_KEYS
            },
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = copy.deepcopy(self.extra)
        payload["phase"] = self.phase
        if self.script_body:
            payload["scriptBody"] = self.script_body
        payload["name"] = self.name
        payload["type"] = self.type
        if self.email_configuration is not None:
            payload["emailConfiguration"] = copy.deepcopy(self.email_configuration)
        payload["conditions"] = self.conditions.to_dict()
        return payload


@dataclasses.dataclass
class Configuration:
    triggers: List[Trigger] = dataclasses.field(default_factory=list)
    env_vars: Dict[str, Any] = dataclasses.field(default_factory=dict)
    schedule_type: int = 0
    extra: Dict[str, Any] = dataclasses.field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Configuration":
        data = _require_mapping(data, "configuration")
        raw_triggers = data.get("triggers")
        if raw_triggers is None:
            raw_triggers = []
        if not isinstance(raw_triggers, list):
            raise ProtocolError("configuration.triggers must be a list")
        env_vars = data.get("buildEnvironmentVariables")
        if env_vars is None:
            env_vars = {}
        _require_mapping(env_vars, "configuration.buildEnvironmentVariables")
        return cls(
            triggers=[Trigger.from_dict(item) for item in raw_triggers],
            env_vars=dict(env_vars),
            schedule_type=_as_int(data.get("scheduleType"), "scheduleType"),
            extra={
                key: copy.deepcopy(value)
                for key, value in data.items()
                if key not in _CONFIGURATION_KEYS
            },
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = copy.deepcopy(self.extra)
        payload["triggers"] = [trigger.to_dict() for trigger in self.triggers]
        payload["buildEnvironmentVariables"] = copy.deepcopy(self.env_vars)
        payload["scheduleType"] = self.schedule_type
        return payload

    def env_str(self, name: str) -> Optional[str]:
        """Return a build environment variable when it is a string."""
        value = self.env_vars.get(name)
        return value if isinstance(value, str) else None


@dataclasses.dataclass
class Bot:
    name: str
    configuration: Configuration = dataclasses.field(default_factory=Configuration)
    id: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Bot":
        data = _require_mapping(data, "bot")
        return cls(
            id=str(data.get("_id") or ""),
            name=str(data.get("name") or ""),
            configuration=Configuration.from_dict(data.get("configuration") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if self.id:
            payload["_id"] = self.id
        payload["name"] = self.name
        payload["configuration"] = self.configuration.to_dict()
        return payload
