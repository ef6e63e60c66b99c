"""Identity keys and source derivation for incoming records."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping

ID_PREFIX = "id:"
NAME_ADDRESS_PREFIX = "name_address:"
CANONICAL_URL_FIELDS = ("source", "url", "website", "tabelog_url")

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class Identity:
    """An identity key plus the components it was built from.

    ``matchable`` is decided from the components, never from the joined key:
    a ``|`` inside a name cannot make an empty address look present.
    """

    key: str
    matchable: bool
    name: str = ""
    address: str = ""

    @property
    def by_name_address(self) -> bool:
        return self.key.startswith(NAME_ADDRESS_PREFIX)


@dataclass(slots=True)
class MappedRecord:
    """A record ready for reconciliation."""

    source: str
    data: dict[str, Any]
    identity: Identity
    notes: str | None = field(default=None)

    @property
    def identity_key(self) -> str:
        return self.identity.key

    @property
    def matchable(self) -> bool:
        return self.identity.matchable

    @property
    def stored_identity_key(self) -> str | None:
        """Key persisted on the lead row; unmatchable keys are stored as NULL."""

        return self.identity.key if self.identity.matchable else None


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _external_id(record: Mapping[str, Any]) -> str:
    return _text(record.get("id"))


def name_address_identity(name: Any, address: Any) -> Identity:
    norm_name, norm_address = _text(name).lower(), _text(address).lower()
    return Identity(
        key=f"{NAME_ADDRESS_PREFIX}{norm_name}|{norm_address}",
        # an empty component would collapse every record missing it into one lead
        matchable=bool(norm_name) and bool(norm_address),
        name=norm_name,
        address=norm_address,
    )


def name_address_key(name: Any, address: Any) -> str:
    return name_address_identity(name, address).key


def resolve_identity(record: Mapping[str, Any]) -> Identity:
    """External id when present, else normalised name and address. Never raises."""

    external_id = _external_id(record)
    if external_id:
        return Identity(key=ID_PREFIX + external_id, matchable=True)
    return name_address_identity(record.get("name"), record.get("address"))


def compute_identity_key(record: Mapping[str, Any]) -> str:
    """Return the deduplication key for a raw record. Never raises."""

    return resolve_identity(record).key


def compute_source_url(record: Mapping[str, Any], default_source: str) -> str:
    """Return the record's canonical URL, or a deterministic synthetic one."""

    for field_name in CANONICAL_URL_FIELDS:
        candidate = _text(record.get(field_name))
        if candidate:
            return candidate
    external_id = _external_id(record)
    if external_id:
        key = external_id
    else:
        key = f"{_text(record.get('name'))}-{_text(record.get('address')) or 'unknown'}"
    return f"{default_source}://{_WHITESPACE.sub('-', key)}"


def lead_identity_keys(lead: Mapping[str, Any]) -> set[str]:
    """Matchable identity keys an existing lead answers to.

    The stored key is written only when it was matchable, so any non-empty
    value is trusted; the payload's name and address are checked directly.
    """

    keys: set[str] = set()
    stored = lead.get("identity_key")
    if isinstance(stored, str) and stored:
        keys.add(stored)
    data = lead.get("data")
    if isinstance(data, Mapping):
        derived = name_address_identity(data.get("name"), data.get("address"))
        if derived.matchable:
            keys.add(derived.key)
    return keys


def map_record(record: Mapping[str, Any], default_source: str) -> MappedRecord:
    """Turn a raw scraped/imported mapping into a :class:`MappedRecord`.

    A nested ``data`` mapping is taken as the payload when present;
    otherwise the whole record is carried through untouched.
    """

    nested = record.get("data")
    if isinstance(nested, Mapping):
        payload = dict(nested)
        view: Mapping[str, Any] = {**record, **payload}
    else:
        payload = dict(record)
        view = record
    notes = record.get("notes") or record.get("note")
    return MappedRecord(
        source=compute_source_url(record, default_source),
        data=payload,
        identity=resolve_identity(view),
        notes=_text(notes) or None,
    )


__all__ = [
    "Identity",
    "MappedRecord",
    "compute_identity_key",
    "compute_source_url",
    "lead_identity_keys",
    "map_record",
    "name_address_identity",
    "name_address_key",
    "resolve_identity",
]
