"""Loading and validation of YAML profile definitions."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from blemaster.core.errors import ProfileLoadError, ProfileValidationError
from blemaster.core.profile import resolve_permission

_UUID_RE = re.compile(r"^[0-9a-f]{4}$|^[0-9a-f]{8}$|^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
_NUMBER_RE = re.compile(r"^(0x[0-9a-f]+|\d+)$", re.IGNORECASE)
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


class TextScalarLoader(UniqueKeyLoader):
    """Keeps numeric-looking scalars such as ``2902`` as text, for UUID maps."""


def _drop_resolvers(loader_cls: type[yaml.SafeLoader], tags: set[str]) -> None:
    loader_cls.yaml_implicit_resolvers = {
        first_char: [(tag, regexp) for tag, regexp in mappings if tag not in tags]
        for first_char, mappings in yaml.SafeLoader.yaml_implicit_resolvers.items()
    }


_drop_resolvers(UniqueKeyLoader, {"tag:yaml.org,2002:bool"})
_drop_resolvers(
    TextScalarLoader,
    {"tag:yaml.org,2002:bool", "tag:yaml.org,2002:int", "tag:yaml.org,2002:float"},
)


def _construct_mapping(loader: yaml.SafeLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ProfileValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class ProfileSpec:
    name: str
    services: dict[str, dict[str, tuple[str, ...]]]
    permissions: dict[str, int]


def load_schema_validator(schema_name: str) -> Any:
    schema_text = resources.files("blemaster.schemas").joinpath(schema_name).read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def read_yaml(path: Path, *, loader: type[yaml.SafeLoader] = UniqueKeyLoader) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ProfileLoadError(f"Could not read file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=loader)
    except yaml.YAMLError as exc:
        raise ProfileValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ProfileValidationError(f"File {path} must contain a mapping at root")
    return loaded


def validate_document(doc: dict[str, Any], schema_name: str, source: Path | str) -> None:
    validator = load_schema_validator(schema_name)
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ProfileValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc


def _normalize_uuid(value: str, *, context: str) -> str:
    normalized = value.strip().lower()
    if not _UUID_RE.match(normalized):
        raise ProfileValidationError(
            f"{context} must be a 16-bit, 32-bit, or 128-bit UUID string"
        )
    return normalized


def _normalize_permission(value: int | str, *, context: str) -> int:
    try:
        if isinstance(value, str) and _NUMBER_RE.match(value.strip()):
            return int(value.strip(), 0)
        return resolve_permission(value)
    except ValueError as exc:
        raise ProfileValidationError(f"{context}: {exc}") from exc


def build_profile_spec(doc: dict[str, Any], source: Path | str) -> ProfileSpec:
    validate_document(doc, "profile.schema.json", source)

    services: dict[str, dict[str, tuple[str, ...]]] = {}
    for service_uuid, characteristics in doc["services"].items():
        service_key = _normalize_uuid(service_uuid, context=f"service {service_uuid}")
        if service_key in services:
            raise ProfileValidationError(f"Service {service_key} declared twice in {source}")
        charas: dict[str, tuple[str, ...]] = {}
        for chara_uuid, descriptor_uuids in characteristics.items():
            chara_key = _normalize_uuid(chara_uuid, context=f"{service_key}.{chara_uuid}")
            charas[chara_key] = tuple(
                _normalize_uuid(desc, context=f"{service_key}.{chara_key}.{desc}")
                for desc in descriptor_uuids
            )
        services[service_key] = charas

    permissions = {
        _normalize_uuid(uuid, context=f"permissions.{uuid}"): _normalize_permission(
            value, context=f"permissions.{uuid}"
        )
        for uuid, value in doc.get("permissions", {}).items()
    }

    name = doc.get("name") or Path(str(source)).stem
    LOGGER.debug("Loaded profile '%s' with %d service(s)", name, len(services))
    return ProfileSpec(name=name, services=services, permissions=permissions)


def load_profile_file(path: Path | str) -> ProfileSpec:
    source = Path(path)
    doc = read_yaml(source, loader=TextScalarLoader)
    return build_profile_spec(doc, source)
