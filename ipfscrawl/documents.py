"""Documents stored in search indexes, with their JSON and binary forms."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

import cbor2
import lz4.frame

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

_TIME_RE = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})"
)


def _format_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    if value.microsecond:
        text += f".{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset() or timedelta(0)
    if not offset:
        return text + "Z"
    sign = "-" if offset < timedelta(0) else "+"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def _parse_time(value: Any, name: str) -> datetime:
    if not isinstance(value, str):
        raise ValueError(f"{name}: expected a timestamp string")
    match = _TIME_RE.fullmatch(value)
    if match is None:
        raise ValueError(f"{name}: invalid timestamp {value!r}")
    year, month, day, hour, minute, second, frac, zone = match.groups()
    micro = int((frac or "").ljust(6, "0")[:6])
    if zone == "Z":
        tz = timezone.utc
    else:
        sign = -1 if zone[0] == "-" else 1
        tz = timezone(sign * timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6])))
    try:
        return datetime(
            int(year), int(month), int(day), int(hour), int(minute), int(second), micro, tzinfo=tz
        )
    except ValueError as exc:
        raise ValueError(f"{name}: {exc}") from exc


def _mapping(value: Any, name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ValueError(f"{name}: expected a JSON object")
    return value


def _string(value: Any, name: str, current: str = "") -> str:
    if value is None:
        return current
    if not isinstance(value, str):
        raise ValueError(f"{name}: expected a string")
    return value


def _float(value: Any, name: str, current: float = 0.0) -> float:
    if value is None:
        return current
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name}: expected a number")
    return float(value)


def _unsigned(value: Any, name: str, current: int = 0) -> int:
    if value is None:
        return current
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{name}: expected a non-negative integer")
    return value


class LinkType(Enum):
    """Type of the target of a directory link."""

    DIRECTORY = "Directory"
    FILE = "File"
    UNKNOWN = "Unknown"
    UNSUPPORTED = "Unsupported"


@dataclass
class Link:
    """Link from a directory to another document."""

    hash: str
    name: str = ""
    size: int = 0
    type: LinkType = LinkType.UNKNOWN


def _link_to_dict(link: Link) -> dict[str, Any]:
    return {"Hash": link.hash, "Name": link.name, "Size": link.size, "Type": link.type.value}


@dataclass(frozen=True)
class DocumentReference:
    """Named reference to a document from a parent."""

    parent_hash: str
    name: str


def _reference_to_dict(reference: DocumentReference) -> dict[str, str]:
    return {"parent_hash": reference.parent_hash, "name": reference.name}


def _references_from_json(value: Any, name: str = "references") -> list[DocumentReference]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{name}: expected a list")
    references = []
    for item in value:
        entry = _mapping(item, name)
        references.append(
            DocumentReference(
                parent_hash=_string(entry.get("parent_hash"), "parent_hash"),
                name=_string(entry.get("name"), "name"),
            )
        )
    return references


def encode_references(references: Iterable[DocumentReference]) -> bytes:
    """Serialise references as LZ4-framed CBOR arrays of [parent_hash, name]."""
    payload = cbor2.dumps([[r.parent_hash, r.name] for r in references])
    return lz4.frame.compress(payload)


def decode_references(data: bytes) -> list[DocumentReference]:
    """Decode references produced by encode_references."""
    try:
        payload = lz4.frame.decompress(data)
    except RuntimeError as exc:
        raise ValueError(f"invalid compressed references: {exc}") from exc
    items = cbor2.loads(payload)
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValueError("references: expected an array")
    references = []
    for item in items:
        if (
            not isinstance(item, list)
            or len(item) != 2
            or not all(isinstance(part, str) for part in item)
        ):
            raise ValueError(f"references: invalid entry {item!r}")
        references.append(DocumentReference(parent_hash=item[0], name=item[1]))
    return references


@dataclass
class Document:
    """Properties common to all indexed resources."""

    first_seen: datetime = ZERO_TIME
    last_seen: datetime = ZERO_TIME
    references: list[DocumentReference] = field(default_factory=list)
    size: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "first-seen": _format_time(self.first_seen),
            "last-seen": _format_time(self.last_seen),
            "references": [_reference_to_dict(r) for r in self.references],
            "size": self.size,
        }


@dataclass
class Directory(Document):
    """A directory resource with its links."""

    links: list[Link] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["links"] = [_link_to_dict(link) for link in self.links]
        return data


@dataclass
class Language:
    """Detected language of a file."""

    confidence: str = ""
    language: str = ""
    raw_score: float = 0.0


def _language_to_dict(language: Language) -> dict[str, Any]:
    return {
        "confidence": language.confidence,
        "language": language.language,
        "rawScore": language.raw_score,
    }


def _merge_language(current: Language, value: Any) -> Language:
    if value is None:
        return current
    data = _mapping(value, "language")
    return replace(
        current,
        confidence=_string(data.get("confidence"), "confidence", current.confidence),
        language=_string(data.get("language"), "language", current.language),
        raw_score=_float(data.get("rawScore"), "rawScore", current.raw_score),
    )


@dataclass
class NSFWClassification:
    """Scores returned by the NSFW classifier."""

    neutral: float = 0.0
    drawing: float = 0.0
    porn: float = 0.0
    hentai: float = 0.0
    sexy: float = 0.0


@dataclass
class NSFW:
    """NSFW classification of a file."""

    classification: NSFWClassification = field(default_factory=NSFWClassification)
    nsfw_server_version: str = ""
    model_cid: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> NSFW:
        fields = _mapping(data, "nsfw")
        raw = fields.get("classification")
        scores = {} if raw is None else _mapping(raw, "classification")
        classification = NSFWClassification(
            **{name: _float(scores.get(name), name) for name in
               ("neutral", "drawing", "porn", "hentai", "sexy")}
        )
        return cls(
            classification=classification,
            nsfw_server_version=_string(fields.get("nsfwServerVersion"), "nsfwServerVersion"),
            model_cid=_string(fields.get("modelCid"), "modelCid"),
        )


def _nsfw_to_dict(nsfw: NSFW) -> dict[str, Any]:
    c = nsfw.classification
    return {
        "classification": {
            "neutral": c.neutral,
            "drawing": c.drawing,
            "porn": c.porn,
            "hentai": c.hentai,
            "sexy": c.sexy,
        },
        "nsfwServerVersion": nsfw.nsfw_server_version,
        "modelCid": nsfw.model_cid,
    }


@dataclass
class File(Document):
    """A file resource with extracted content and metadata."""

    content: str = ""
    ipfs_tika_version: str = ""
    language: Language = field(default_factory=Language)
    metadata: dict[str, Any] = field(default_factory=dict)
    urls: list[str] = field(default_factory=list)
    nsfw: NSFW | None = None

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "content": self.content,
                "ipfs_tika_version": self.ipfs_tika_version,
                "language": _language_to_dict(self.language),
                "metadata": dict(self.metadata),
                "urls": list(self.urls),
            }
        )
        if self.nsfw is not None:
            data["nfsw"] = _nsfw_to_dict(self.nsfw)
        return data

    def merge_json(self, data: Any) -> None:
        """Merge decoded JSON into this file; raise ValueError on mismatched types."""
        fields = _mapping(data, "file")

        for key, attr in (("first-seen", "first_seen"), ("last-seen", "last_seen")):
            if fields.get(key) is not None:
                setattr(self, attr, _parse_time(fields[key], key))
        if "references" in fields:
            self.references = _references_from_json(fields["references"])
        self.size = _unsigned(fields.get("size"), "size", self.size)
        self.content = _string(fields.get("content"), "content", self.content)
        self.ipfs_tika_version = _string(
            fields.get("ipfs_tika_version"), "ipfs_tika_version", self.ipfs_tika_version
        )
        self.language = _merge_language(self.language, fields.get("language"))

        if "metadata" in fields:
            metadata = fields["metadata"]
            if metadata is None:
                self.metadata = {}
            else:
                self.metadata.update(_mapping(metadata, "metadata"))

        if "urls" in fields:
            urls = fields["urls"]
            if urls is None:
                self.urls = []
            elif isinstance(urls, list) and all(isinstance(u, str) for u in urls):
                self.urls = list(urls)
            else:
                raise ValueError("urls: expected a list of strings")

        if "nfsw" in fields:
            value = fields["nfsw"]
            self.nsfw = None if value is None else NSFW.from_dict(value)


@dataclass
class Invalid:
    """An invalid, unindexable resource."""

    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error}


@dataclass
class Partial:
    """An unreferenced partial block."""

    def to_dict(self) -> dict[str, Any]:
        return {}


@dataclass
class Update:
    """The updatable part of a document; empty parts are left out."""

    last_seen: datetime | None = None
    references: list[DocumentReference] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.last_seen is not None:
            data["last-seen"] = _format_time(self.last_seen)
        if self.references:
            data["references"] = [_reference_to_dict(r) for r in self.references]
        return data

    @classmethod
    def from_dict(cls, data: Any) -> Update:
        fields = _mapping(data, "update")
        last_seen = fields.get("last-seen")
        return cls(
            last_seen=None if last_seen is None else _parse_time(last_seen, "last-seen"),
            references=_references_from_json(fields.get("references")),
        )