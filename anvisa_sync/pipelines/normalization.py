"""Field normalization for upstream catalog payloads.

Maps tolerant, aliased source fields (pt-BR and CKAN-style English names)
onto the canonical column names of ``anvisa_sync.models``. Numbers and dates
are parsed defensively, and any source field that is not mapped is kept
verbatim in the record's metadata bag. Nothing in here raises on malformed
input: an item that cannot be identified becomes a ``Rejection``.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

logger = logging.getLogger(__name__)

DATE_FORMATS = (
    "%d/%m/%Y",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y %H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
)

ACTIVE = "ativo"
INACTIVE = "inativo"
PENDING = "pendente"

# Largest values the INTEGER and BIGINT columns accept
INT_MAX = 2**31 - 1
BIGINT_MAX = 2**63 - 1


@dataclass
class Rejection:
    """An upstream item that could not become a record."""
    entity: str
    external_id: str | None
    reason: str

    def as_dict(self) -> dict[str, Any]:
        return {"entity": self.entity, "external_id": self.external_id, "reason": self.reason}


def parse_int(value: Any) -> int | None:
    """Parse an integer from a number or numeric string; invalid input gives None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text.replace(",", "."))
        except ValueError:
            return None
        return int(number) if math.isfinite(number) else None
    return None


def parse_datetime(value: Any) -> datetime | None:
    """Parse ISO-8601 (``Z`` allowed) or ``dd/mm/yyyy`` dates; naive values are UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            parsed = None
            for fmt in DATE_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
            if parsed is None:
                return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def string_set(values: Any) -> list[str]:
    """Flatten CKAN-style ``[{"name": ...}]`` or plain strings into unique names."""
    names: list[str] = []
    for value in as_list(values):
        if isinstance(value, Mapping):
            value = value.get("name") or value.get("display_name")
        if value is None or isinstance(value, (list, dict)):
            continue
        name = str(value).strip()
        if name and name not in names:
            names.append(name)
    return names


def as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return list(value)
    if isinstance(value, (tuple, set)):
        return list(value)
    return [value]


def active_status(state: Any) -> str:
    return ACTIVE if state == "active" else INACTIVE


class FieldReader:
    """Reads aliased fields from one item and remembers which keys were used."""

    def __init__(self, item: Mapping[str, Any]):
        self.item = item
        self.consumed: set[str] = set()

    def _first(self, aliases: tuple[str, ...]) -> tuple[str | None, Any]:
        for key in aliases:
            value = self.item.get(key)
            if value is not None and value != "":
                return key, value
        return None, None

    def text(self, *aliases: str) -> str | None:
        key, value = self._first(aliases)
        if key is None or isinstance(value, (Mapping, list)):
            return None
        self.consumed.add(key)
        return str(value).strip() or None

    def integer(
        self,
        *aliases: str,
        default: int | None = None,
        maximum: int = INT_MAX,
    ) -> int | None:
        """Parsed integer, or ``default`` when unparseable or outside the column range."""
        key, value = self._first(aliases)
        parsed = parse_int(value)
        if parsed is None or not -maximum - 1 <= parsed <= maximum:
            return default
        self.consumed.add(key)
        return parsed

    def timestamp(self, *aliases: str) -> datetime | None:
        key, value = self._first(aliases)
        parsed = parse_datetime(value)
        if parsed is not None:
            self.consumed.add(key)
        return parsed

    def items(self, *aliases: str) -> list:
        key, value = self._first(aliases)
        if key is not None:
            self.consumed.add(key)
        return as_list(value)

    def mapping(self, *aliases: str) -> dict:
        key, value = self._first(aliases)
        if not isinstance(value, Mapping):
            return {}
        self.consumed.add(key)
        return dict(value)

    def names(self, key: str) -> list[str]:
        if key in self.item:
            self.consumed.add(key)
        return string_set(self.item.get(key))

    def skip(self, *keys: str) -> None:
        """Mark keys that are stored elsewhere (e.g. as child records)."""
        self.consumed.update(keys)

    def leftovers(self) -> dict[str, Any]:
        return {key: value for key, value in self.item.items() if key not in self.consumed}


def _nested_name(value: Any) -> str | None:
    if isinstance(value, Mapping):
        value = value.get("title") or value.get("name")
    if value is None or isinstance(value, (Mapping, list)):
        return None
    return str(value).strip() or None


# ---------------------------------------------------------------------------
# Per-entity normalizers: raw item -> column values
# ---------------------------------------------------------------------------

def normalize_dataset(item: Mapping[str, Any]) -> dict[str, Any]:
    f = FieldReader(item)
    groups = as_list(item.get("groups"))
    record = {
        "external_id": f.text("id"),
        "title": f.text("title", "name", "titulo"),
        "description": f.text("notes", "description", "descricao"),
        "organization": _nested_name(item.get("organization")),
        "category": _nested_name(groups[0]) if groups else None,
        "tags": f.names("tags"),
        "created_date": f.timestamp("created", "metadata_created"),
        "updated_date": f.timestamp("last_modified", "metadata_modified"),
        "resource_count": f.integer("num_resources", default=0),
        "status": active_status(item.get("state")),
    }
    f.skip("state", "resources", "organization", "groups")
    record["metadata_"] = f.leftovers()
    return record


def normalize_resource(item: Mapping[str, Any], *, dataset_id: int) -> dict[str, Any]:
    f = FieldReader(item)
    record = {
        "external_id": f.text("id"),
        "dataset_id": dataset_id,
        "name": f.text("name", "title"),
        "description": f.text("description"),
        "format": f.text("format"),
        "url": f.text("url"),
        "size_bytes": f.integer("size", maximum=BIGINT_MAX),
        "file_hash": f.text("hash"),
        "last_modified": f.timestamp("last_modified"),
        "status": ACTIVE,
    }
    record["metadata_"] = f.leftovers()
    return record


def normalize_legal_compliance(item: Mapping[str, Any]) -> dict[str, Any]:
    f = FieldReader(item)
    record = {
        "external_id": f.text("id"),
        "title": f.text("titulo", "title"),
        "description": f.text("descricao", "description"),
        "compliance_type": f.text("tipo"),
        "legal_norm": f.text("norma"),
        "legal_norm_url": f.text("url_norma"),
        "effective_date": f.timestamp("data_vigencia"),
        "status": f.text("status") or ACTIVE,
    }
    record["metadata_"] = f.leftovers()
    return record


def normalize_sustainability_goal(item: Mapping[str, Any]) -> dict[str, Any]:
    f = FieldReader(item)
    record = {
        "external_id": f.text("id"),
        "name": f.text("nome", "title"),
        "description": f.text("descricao", "description"),
        "goal_number": f.integer("numero", "ods_number"),
        "targets": f.items("metas"),
        "indicators": f.items("indicadores"),
    }
    record["metadata_"] = f.leftovers()
    return record


def normalize_format(item: Mapping[str, Any]) -> dict[str, Any]:
    f = FieldReader(item)
    source_format = item.get("format")
    record = {
        "external_id": f.text("id", "format"),
        "name": f.text("nome", "format"),
        "extension": f.text("extensao")
        or (source_format.lower() if isinstance(source_format, str) and source_format else None),
        "mime_type": f.text("mime_type", "mimetype"),
        "description": f.text("descricao", "description"),
    }
    record["metadata_"] = f.leftovers()
    return record


def normalize_data_request(item: Mapping[str, Any]) -> dict[str, Any]:
    f = FieldReader(item)
    record = {
        "external_id": f.text("id"),
        "protocol": f.text("protocolo"),
        "title": f.text("titulo", "title"),
        "description": f.text("descricao", "description"),
        "requester": f.text("solicitante"),
        "request_date": f.timestamp("data_solicitacao"),
        "status": f.text("status") or PENDING,
        "response_deadline": f.timestamp("prazo_resposta"),
        "category": f.text("categoria"),
    }
    record["metadata_"] = f.leftovers()
    return record


def normalize_organization(item: Mapping[str, Any]) -> dict[str, Any]:
    f = FieldReader(item)
    record = {
        "external_id": f.text("id"),
        "name": f.text("name", "title"),
        "acronym": f.text("acronym"),
        "description": f.text("description"),
        "organization_type": f.text("type"),
        "sphere": f.text("sphere"),
        "address": f.text("address"),
        "phone": f.text("phone"),
        "email": f.text("email"),
        "website": f.text("website"),
        "status": active_status(item.get("state")),
    }
    f.skip("state")
    record["metadata_"] = f.leftovers()
    return record


def normalize_organization_detail(
    item: Mapping[str, Any],
    *,
    organization_external_id: str,
    organization_id: int,
) -> dict[str, Any]:
    f = FieldReader(item)
    record = {
        "external_id": f"{organization_external_id}_detalhe",
        "organization_id": organization_id,
        "area_of_activity": f.text("area_atuacao"),
        "responsible": f.text("responsavel"),
        "responsible_role": f.text("cargo_responsavel"),
        "dataset_count": f.integer("package_count", default=0),
    }
    record["extra_data"] = f.leftovers()
    return record


def normalize_theme(item: Mapping[str, Any]) -> dict[str, Any]:
    f = FieldReader(item)
    record = {
        "external_id": f.text("id"),
        "name": f.text("name", "title"),
        "description": f.text("description"),
        "parent_category": f.text("parent"),
        "level": f.integer("level", default=1),
        "color_hex": f.text("color"),
        "icon": f.text("icon"),
        "dataset_count": f.integer("package_count", default=0),
    }
    record["metadata_"] = f.leftovers()
    return record


def normalize_reuse(item: Mapping[str, Any]) -> dict[str, Any]:
    f = FieldReader(item)
    record = {
        "external_id": f.text("id"),
        "title": f.text("titulo", "title"),
        "description": f.text("descricao", "description"),
        "author": f.text("autor", "author"),
        "author_organization": f.text("organizacao_autor"),
        "url": f.text("url"),
        "reuse_type": f.text("tipo"),
        "category": f.text("categoria"),
        "datasets_used": [str(v) for v in f.items("conjuntos_utilizados") if v is not None],
        "created_date": f.timestamp("data_criacao"),
        "status": f.text("status") or ACTIVE,
    }
    record["metadata_"] = f.leftovers()
    return record


def normalize_reuse_detail(
    item: Mapping[str, Any],
    *,
    reuse_external_id: str,
    reuse_id: int,
) -> dict[str, Any]:
    f = FieldReader(item)
    return {
        "external_id": f"{reuse_external_id}_detalhe",
        "reuse_id": reuse_id,
        "technologies": f.items("tecnologias_utilizadas"),
        "target_audience": f.text("publico_alvo"),
        "estimated_impact": f.text("impacto_estimado"),
        "metrics": f.mapping("metricas"),
        "user_feedback": f.mapping("feedback_usuarios"),
    }


def normalize_pending_reuse(item: Mapping[str, Any]) -> dict[str, Any]:
    f = FieldReader(item)
    record = {
        "external_id": f.text("id"),
        "title": f.text("titulo", "title"),
        "description": f.text("descricao", "description"),
        "author": f.text("autor", "author"),
        "submission_date": f.timestamp("data_submissao"),
        "approval_status": f.text("status_homologacao") or PENDING,
        "evaluation_notes": f.text("observacoes_avaliacao"),
        "evaluator": f.text("avaliador"),
        "evaluation_date": f.timestamp("data_avaliacao"),
    }
    record["metadata_"] = f.leftovers()
    return record


def normalize_item(
    entity: str,
    normalizer: Callable[..., dict[str, Any]],
    item: Any,
    **context: Any,
) -> dict[str, Any] | Rejection:
    """Validate one raw item and normalize it, or explain why it was rejected."""
    if not isinstance(item, Mapping):
        return Rejection(entity, None, f"expected a JSON object, got {type(item).__name__}")

    record = normalizer(item, **context)
    if not record.get("external_id"):
        return Rejection(entity, None, "missing external identifier")
    return record
