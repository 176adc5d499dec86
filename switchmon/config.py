"""Configuration models and JSON loader.

The JSON layout accepts both snake_case keys and the legacy PascalCase keys
(``PollIntervalSeconds``, ``Switches``, ``IPAddress`` ...). Scalar values of
the wrong type fall back to their defaults; switch entries without a name,
IP address or community are skipped.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    ValidatorFunctionWrapHandler,
    field_validator,
)

from switchmon._util import fallback_to_default
from switchmon.exceptions import ConfigError

DEFAULT_SNMP_PORT = 161
DEFAULT_SFLOW_PORT = 6343


def _aliases(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class SnmpV3User(BaseModel):
    """SNMPv3 user credentials.

    Only a configuration hook: requests for a target referencing a v3 user
    fail with ``unsupported``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(validation_alias=_aliases("name", "Name"))
    auth_protocol: str = Field(default="SHA", validation_alias=_aliases("auth_protocol", "AuthProtocol"))
    auth_password: str | None = Field(default=None, validation_alias=_aliases("auth_password", "AuthPassword"))
    priv_protocol: str = Field(default="NONE", validation_alias=_aliases("priv_protocol", "PrivProtocol"))
    priv_password: str | None = Field(default=None, validation_alias=_aliases("priv_password", "PrivPassword"))
    context: str | None = Field(default=None, validation_alias=_aliases("context", "Context"))

    def __str__(self) -> str:
        return f"SnmpV3User(name={self.name}, auth={self.auth_protocol}, priv={self.priv_protocol})"


class SwitchTarget(BaseModel):
    """Identity and polling policy for one switch."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(validation_alias=_aliases("name", "Name"))
    ip_address: str = Field(validation_alias=_aliases("ip_address", "IPAddress"))
    community: str = Field(default="public", validation_alias=_aliases("community", "Community"))
    snmp_port: int | None = Field(default=None, validation_alias=_aliases("snmp_port", "SnmpPort"))
    include_if_indices: list[int] | None = Field(
        default=None, validation_alias=_aliases("include_if_indices", "IncludeIfIndices")
    )
    snmpv3_user: str | None = Field(default=None, validation_alias=_aliases("snmpv3_user", "SnmpV3User"))


class SFlowSettings(BaseModel):
    """sFlow listener settings."""

    model_config = ConfigDict(populate_by_name=True)

    port: int = Field(default=DEFAULT_SFLOW_PORT, validation_alias=_aliases("port", "SFlowPort"))
    bind_address: str = Field(default="0.0.0.0", validation_alias=_aliases("bind_address", "SFlowBindIP"))
    debug: bool = Field(default=False, validation_alias=_aliases("debug", "SFlowDebug"))
    dump_first_n: int = Field(default=0, validation_alias=_aliases("dump_first_n", "SFlowDumpFirstN"))
    dump_dir: Path = Field(default=Path("."), validation_alias=_aliases("dump_dir", "SFlowDumpDir"))

    @field_validator("port", "bind_address", "debug", "dump_first_n", mode="wrap")
    @classmethod
    def _default_on_error(cls, value: Any, handler: ValidatorFunctionWrapHandler, info: ValidationInfo) -> Any:
        return fallback_to_default(cls, info.field_name or "", value, handler)

    @field_validator("bind_address")
    @classmethod
    def _blank_bind_means_any(cls, value: str) -> str:
        return value.strip() or "0.0.0.0"


class MonitorConfig(BaseModel):
    """Complete collector configuration."""

    model_config = ConfigDict(populate_by_name=True)

    poll_interval_seconds: int = Field(
        default=10, ge=1, validation_alias=_aliases("poll_interval_seconds", "PollIntervalSeconds")
    )
    max_interfaces: int = Field(default=10, ge=0, validation_alias=_aliases("max_interfaces", "MaxInterfaces"))
    use_high_capacity: bool = Field(
        default=True, validation_alias=_aliases("use_high_capacity", "UseIfXTable", "UseHighCapacity")
    )
    snmp_timeout_ms: int = Field(default=1500, ge=1, validation_alias=_aliases("snmp_timeout_ms", "SnmpTimeoutMs"))
    snmp_retries: int = Field(default=1, ge=0, validation_alias=_aliases("snmp_retries", "SnmpRetries"))
    snmp_retry_backoff_ms: int = Field(
        default=200, ge=0, validation_alias=_aliases("snmp_retry_backoff_ms", "SnmpRetryBackoffMs")
    )
    default_snmp_port: int = Field(
        default=DEFAULT_SNMP_PORT, validation_alias=_aliases("default_snmp_port", "DefaultSnmpPort")
    )
    probe_ports: list[int] = Field(
        default_factory=lambda: [DEFAULT_SNMP_PORT], validation_alias=_aliases("probe_ports", "SnmpProbePorts")
    )
    show_error_details: bool = Field(
        default=False, validation_alias=_aliases("show_error_details", "ShowSnmpErrorDetails")
    )
    switches: list[SwitchTarget] = Field(default_factory=list, validation_alias=_aliases("switches", "Switches"))
    snmpv3_users: list[SnmpV3User] = Field(
        default_factory=list, validation_alias=_aliases("snmpv3_users", "SnmpV3Users")
    )
    history_dir: Path = Field(default=Path("history"), validation_alias=_aliases("history_dir", "HistoryDir"))
    retention_days: int = Field(default=30, ge=1, validation_alias=_aliases("retention_days", "HistoryRetentionDays"))
    sflow: SFlowSettings = Field(default_factory=SFlowSettings)
    agent_names: dict[str, str] = Field(default_factory=dict)

    @field_validator(
        "poll_interval_seconds",
        "max_interfaces",
        "use_high_capacity",
        "snmp_timeout_ms",
        "snmp_retries",
        "snmp_retry_backoff_ms",
        "default_snmp_port",
        "probe_ports",
        "show_error_details",
        "retention_days",
        mode="wrap",
    )
    @classmethod
    def _default_on_error(cls, value: Any, handler: ValidatorFunctionWrapHandler, info: ValidationInfo) -> Any:
        return fallback_to_default(cls, info.field_name or "", value, handler)

    @field_validator("switches", mode="before")
    @classmethod
    def _skip_invalid_switches(cls, value: Any) -> Any:
        if not isinstance(value, list):
            logger.warning(f"Switches must be a list, got {type(value).__name__}")
            return []
        valid: list[SwitchTarget] = []
        for entry in value:
            try:
                target = SwitchTarget.model_validate(entry)
            except ValidationError as e:
                logger.warning(f"Skipping invalid switch entry {entry!r}: {e.error_count()} error(s)")
                continue
            if not (target.name.strip() and target.ip_address.strip() and target.community.strip()):
                logger.warning(f"Skipping switch entry without name/IP/community: {entry!r}")
                continue
            valid.append(target)
        return valid

    def v3_user(self, name: str) -> SnmpV3User | None:
        """Look up a configured SNMPv3 user by name (case-insensitive)."""
        for user in self.snmpv3_users:
            if user.name.lower() == name.lower():
                return user
        return None

    def agent_name(self, agent_ip: str) -> str:
        return self.agent_names.get(agent_ip, agent_ip)


def _collect_legacy_sflow(raw: dict[str, Any]) -> dict[str, Any]:
    """Lift flat ``SFlow*`` keys into the nested ``sflow`` section."""
    sflow = dict(raw.get("sflow") or {})
    for key in ("SFlowPort", "SFlowBindIP", "SFlowDebug", "SFlowDumpFirstN", "SFlowDumpDir"):
        if key in raw:
            sflow.setdefault(key, raw.pop(key))
    if sflow:
        raw["sflow"] = sflow
    return raw


def _collect_legacy_agents(raw: dict[str, Any]) -> dict[str, Any]:
    """Convert a legacy ``SFlowAgents`` list of ``{IPAddress, Name}`` into ``agent_names``."""
    agents = raw.pop("SFlowAgents", None)
    if not isinstance(agents, list):
        return raw
    names = dict(raw.get("agent_names") or {})
    for entry in agents:
        if not isinstance(entry, dict):
            continue
        ip = str(entry.get("IPAddress") or "").strip()
        name = str(entry.get("Name") or "").strip()
        if ip and name:
            names[ip] = name
    raw["agent_names"] = names
    return raw


def parse_config(raw: dict[str, Any]) -> MonitorConfig:
    """Build a MonitorConfig from an already-decoded JSON object."""
    if not isinstance(raw, dict):
        raise ConfigError(f"configuration root must be a JSON object, got {type(raw).__name__}")
    data = _collect_legacy_agents(_collect_legacy_sflow(dict(raw)))
    try:
        return MonitorConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {e}") from e


def load_config(path: str | Path) -> MonitorConfig:
    """Load a MonitorConfig from a JSON file.

    Raises:
        ConfigError: If the file is missing, unreadable or not valid JSON.
    """
    config_path = Path(path)
    try:
        text = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot read configuration {config_path}: {e}") from e
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"configuration {config_path} is not valid JSON: {e}") from e

    config = parse_config(raw)
    logger.info(
        f"Loaded configuration {config_path}: {len(config.switches)} switch(es), "
        f"poll every {config.poll_interval_seconds}s, sFlow port {config.sflow.port}"
    )
    return config
