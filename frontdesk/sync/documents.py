from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from ..store import Collection, Record
from .keys import from_document_key


def record_to_document(record: Record) -> dict[str, Any]:
    """Serialize a record as a remote document body.

    The identifier travels as the document key, and local-only fields (the
    audio blob) are never part of the body.
    """

    record_type = type(record)
    local_only = record_type.local_only_fields()
    doc: dict[str, Any] = dict(record.extra)
    for attr, doc_field, _kind in record_type.data_fields():
        if attr in local_only:
            continue
        doc[doc_field] = getattr(record, attr)
    return doc


def changes_to_patch(collection: Collection, changes: Mapping[str, Any]) -> dict[str, Any]:
    record_type = collection.record_type
    local_only = record_type.local_only_fields()
    names = {attr: doc_field for attr, doc_field, _kind in record_type.data_fields()}
    return {names[attr]: value for attr, value in changes.items() if attr not in local_only}


def _coerce_int(value: Any, *, field: str) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"invalid {field}: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    try:
        return int(str(value).strip())
    except ValueError:
        try:
            return int(float(str(value).strip()))
        except ValueError:
            raise ValueError(f"invalid {field}: {value!r}") from None


def _coerce_ref(value: Any, *, field: str) -> Any:
    if value is None or value == "":
        return None
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, int | str):
        return from_document_key(value)
    raise ValueError(f"invalid {field}: {value!r}")


def record_from_document(
    collection: Collection, key: str, data: Mapping[str, Any] | None
) -> Record:
    """Build a record from a remote document.

    Raises ValueError for bodies that are not objects or carry values of the
    wrong type.
    """

    if not isinstance(data, Mapping):
        raise ValueError(f"{collection.value}/{key}: document body must be an object")
    record_type = collection.record_type
    local_only = record_type.local_only_fields()
    values: dict[str, Any] = {}
    consumed = {"id"}
    for attr, doc_field, kind in record_type.data_fields():
        consumed.add(doc_field)
        if attr in local_only or doc_field not in data:
            continue
        raw = data[doc_field]
        label = f"{collection.value}/{key} {doc_field}"
        if kind == "int":
            values[attr] = _coerce_int(raw, field=label)
        elif kind == "ref":
            values[attr] = _coerce_ref(raw, field=label)
        elif raw is None:
            values[attr] = None
        elif isinstance(raw, dict | list):
            raise ValueError(f"invalid {label}: {raw!r}")
        else:
            values[attr] = str(raw)
    extra = {k: v for k, v in data.items() if k not in consumed}
    return record_type(id=from_document_key(key), extra=extra, **values)
