from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Tuple


_REQUIRED_STRUCTURE: Dict[str, Tuple[str, ...]] = {
    "*": (
        "DB_HOST",
        "DB_NAME",
        "DB_USER",
        "DB_PASS",
        "DB_PORT",
        "DUMP_STORAGE",
        "DUMP_PATH",
    ),
    "local": (),
    "s3": (
        "AWS_KEY",
        "AWS_REGION",
        "AWS_SECRET",
        "AWS_BUCKET",
    ),
}

STORAGE_KINDS = tuple(kind for kind in _REQUIRED_STRUCTURE if kind != "*")


@dataclass(slots=True)
class SettingsValidator:
    schema: Mapping[str, Tuple[str, ...]]

    def required_keys(self, storage: str | None = None) -> Tuple[str, ...]:
        keys = tuple(self.schema.get("*", ()))
        if storage and storage in self.schema:
            keys += tuple(self.schema[storage])
        return keys

    def missing_keys(self, payload: Mapping[str, object]) -> Iterable[str]:
        """Return required keys that are absent or blank, in declaration order.

        Storage specific keys are only checked once ``DUMP_STORAGE`` itself
        names a known storage kind.
        """

        storage = str(payload.get("DUMP_STORAGE") or "").strip().lower()
        return [key for key in self.required_keys(storage) if not _present(payload.get(key))]


def _present(value: object) -> bool:
    if value is None:
        return False
    return bool(str(value).strip())


SETTINGS_VALIDATOR = SettingsValidator(_REQUIRED_STRUCTURE)

__all__ = ["SETTINGS_VALIDATOR", "STORAGE_KINDS", "SettingsValidator"]
