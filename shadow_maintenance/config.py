"""
Configuration for Shadow Maintenance

Settings are read from the environment once per process, validated, and
passed explicitly into the worker and coordinator. boto3 clients come from a
cached factory so warm Lambda invocations reuse connections.
"""

import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

import boto3
from botocore.config import Config

from shadow_maintenance.shadows.schema import ShadowConfig, ShadowConfigError

logger = logging.getLogger(__name__)

DEFAULT_SEGMENTS = 8
DEFAULT_DRY_RUN = True
DEFAULT_PAGE_LIMIT = 100

CLIENT_RETRY_CONFIG = Config(retries={"max_attempts": 3, "mode": "standard"})


class ConfigurationError(Exception):
    """Raised when required deployment configuration is missing or invalid."""

    code = "CONFIG_ERROR"


def _require(environ: Mapping[str, str], names: Tuple[str, ...]) -> Dict[str, str]:
    values = {name: (environ.get(name) or "").strip() for name in names}
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}"
        )
    return values


def _region(environ: Mapping[str, str]) -> str:
    return (environ.get("REGION") or environ.get("AWS_REGION") or "").strip()


def _optional_positive_int(environ: Mapping[str, str], name: str) -> Optional[int]:
    raw = (environ.get(name) or "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a positive integer, got {raw!r}") from None
    if value <= 0:
        raise ConfigurationError(f"{name} must be a positive integer, got {raw!r}")
    return value


@dataclass(frozen=True)
class WorkerSettings:
    """Deployment settings of the segment worker."""

    env: str
    region: str
    table_name: str
    shadow_config: ShadowConfig
    pushgateway_url: Optional[str] = None
    scan_page_size: Optional[int] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "WorkerSettings":
        """
        Load worker settings.

        Required: ENV, REGION (or AWS_REGION), TABLE_NAME, SHADOW_CONFIG.

        Raises:
            ConfigurationError: If a variable is missing or SHADOW_CONFIG is malformed
        """
        environ = os.environ if environ is None else environ
        values = _require(environ, ("ENV", "TABLE_NAME", "SHADOW_CONFIG"))
        region = _region(environ)
        if not region:
            raise ConfigurationError("Missing required environment variables: REGION")

        try:
            shadow_config = ShadowConfig.from_base64(values["SHADOW_CONFIG"])
        except ShadowConfigError as e:
            raise ConfigurationError(f"Invalid SHADOW_CONFIG: {e}") from e

        return cls(
            env=values["ENV"],
            region=region,
            table_name=values["TABLE_NAME"],
            shadow_config=shadow_config,
            pushgateway_url=(environ.get("PUSHGATEWAY_URL") or "").strip() or None,
            scan_page_size=_optional_positive_int(environ, "SCAN_PAGE_SIZE"),
        )


@dataclass(frozen=True)
class CoordinatorSettings:
    """Deployment settings of the maintenance coordinator."""

    env: str
    region: str
    state_machine_arn: str
    allowed_resources: FrozenSet[str]

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "CoordinatorSettings":
        """
        Load coordinator settings.

        Required: ENV, REGION (or AWS_REGION), STATE_MACHINE_ARN, ALLOW_RESOURCES.

        Raises:
            ConfigurationError: If a variable is missing or the allow-list is empty
        """
        environ = os.environ if environ is None else environ
        values = _require(environ, ("ENV", "STATE_MACHINE_ARN", "ALLOW_RESOURCES"))
        region = _region(environ)
        if not region:
            raise ConfigurationError("Missing required environment variables: REGION")

        allowed = frozenset(
            name.strip() for name in values["ALLOW_RESOURCES"].split(",") if name.strip()
        )
        if not allowed:
            raise ConfigurationError("ALLOW_RESOURCES must list at least one resource")

        return cls(
            env=values["ENV"],
            region=region,
            state_machine_arn=values["STATE_MACHINE_ARN"],
            allowed_resources=allowed,
        )


class ClientFactory:
    """
    Cached factory for boto3 clients.

    One client per (service, region) for the lifetime of the factory;
    create the factory once per process and pass it where clients are needed.
    """

    def __init__(self, session: Optional[boto3.session.Session] = None):
        self._session = session
        self._clients: Dict[Tuple[str, str], Any] = {}
        self._lock = threading.Lock()

    def client(self, service: str, region: str):
        key = (service, region)
        with self._lock:
            if key not in self._clients:
                session = self._session or boto3.session.Session()
                self._clients[key] = session.client(
                    service, region_name=region, config=CLIENT_RETRY_CONFIG
                )
                logger.debug(f"Created {service} client for {region}")
            return self._clients[key]

    def dynamodb(self, region: str):
        return self.client("dynamodb", region)

    def stepfunctions(self, region: str):
        return self.client("stepfunctions", region)

    def clear(self) -> None:
        with self._lock:
            self._clients.clear()
