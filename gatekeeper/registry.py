"""
Service registry: service id -> allowed path prefixes and trusted public keys.
Built once at startup from the services TOML file and read-only afterwards, so request
handlers share it without locking. Any problem in the file is a ConfigError.
"""
import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping

from gatekeeper.errors import ConfigError, ServiceNotFoundError
from gatekeeper.keys import PublicKey, parse_public_key_from_pem
from gatekeeper.paths import normalize_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Service:
    id: str
    paths: tuple[str, ...]
    # Attempt order when verifying; first key that verifies wins
    keys: tuple[PublicKey, ...]


class Registry:
    def __init__(self, services: Mapping[str, Service]):
        self._services = dict(services)

    def __len__(self) -> int:
        return len(self._services)

    def __contains__(self, service_id: object) -> bool:
        return service_id in self._services

    @property
    def service_ids(self) -> list[str]:
        return list(self._services)

    def get_service(self, service_id: str) -> Service:
        try:
            return self._services[service_id]
        except KeyError:
            raise ServiceNotFoundError(f"Could not find service {service_id}") from None


def _string_list(record: Mapping[str, Any], field: str, service_id: str) -> list[str]:
    value = record.get(field, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"{field} in {service_id} must be a list of strings")
    return value


def _build_service(record: Mapping[str, Any]) -> Service:
    if not isinstance(record, Mapping):
        raise ConfigError("Each service must be a table")
    service_id = record.get("id", "")
    if not isinstance(service_id, str):
        raise ConfigError("id must be a string")
    if service_id == "":
        raise ConfigError("id is empty")

    paths = _string_list(record, "paths", service_id)
    if not paths:
        raise ConfigError(f"No paths in {service_id}")
    pems = _string_list(record, "public_keys", service_id)
    if not pems:
        raise ConfigError(f"No public_keys in {service_id}")

    normalized: list[str] = []
    for path in paths:
        path = normalize_path(path)
        if path not in normalized:
            normalized.append(path)

    keys = []
    for i, pem in enumerate(pems):
        try:
            keys.append(parse_public_key_from_pem(pem))
        except ValueError as e:
            raise ConfigError(f"Failed to read public key #{i} in {service_id}: {e}") from e

    return Service(id=service_id, paths=tuple(normalized), keys=tuple(keys))


def load_registry(records: Iterable[Mapping[str, Any]] | None) -> Registry:
    """Build a Registry from parsed service records. Raises ConfigError."""
    records = list(records or [])
    if not records:
        raise ConfigError("No services defined")
    services: dict[str, Service] = {}
    for record in records:
        service = _build_service(record)
        if service.id in services:
            raise ConfigError(f"Service {service.id} already exists")
        services[service.id] = service
        logger.debug("Loaded service %s (%d paths, %d keys)", service.id, len(service.paths), len(service.keys))
    return Registry(services)


def load_registry_file(path: str | Path) -> Registry:
    """Read the services TOML file and build a Registry. Raises ConfigError."""
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except OSError as e:
        raise ConfigError(f"Could not read services file {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e
    services = data.get("services")
    if services is not None and not isinstance(services, list):
        raise ConfigError("services must be an array of tables")
    registry = load_registry(services)
    logger.info("Loaded %d services from %s", len(registry), path)
    return registry
