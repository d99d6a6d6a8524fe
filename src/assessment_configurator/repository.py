from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from typing import Any

from .db import json_dumps
from .schema import ConfigurationSchema, load_schema
from .validation import ValidationResults

logger = logging.getLogger(__name__)

CONFIGURATION_STATUSES = {"draft", "active", "archived", "deleted"}
EDITABLE_STATUSES = {"draft", "active"}

CONFIGURATION_COLUMNS = """
    id, name, description, version, framework, category, schema_data, status, is_template, tags,
    target_audience, difficulty_level, estimated_minutes, locale, custom_metadata, created_by,
    created_at, updated_at
"""

_PLAIN_UPDATE_COLUMNS = ("name", "description", "version", "framework", "category", "difficulty_level", "locale")
_JSON_UPDATE_COLUMNS = ("tags", "target_audience", "custom_metadata")


class ConfigurationNotFoundError(LookupError):
    """Raised when a configuration id does not resolve to a live configuration."""


def _row_to_configuration(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": row["id"],
        "name": row["name"],
        "description": row["description"],
        "version": row["version"],
        "framework": row["framework"],
        "category": row["category"],
        "schema": json.loads(row["schema_data"]),
        "status": row["status"],
        "is_template": bool(row["is_template"]),
        "tags": json.loads(row["tags"]),
        "target_audience": json.loads(row["target_audience"]),
        "difficulty_level": row["difficulty_level"],
        "estimated_minutes": row["estimated_minutes"],
        "locale": row["locale"],
        "custom_metadata": json.loads(row["custom_metadata"]),
        "created_by": row["created_by"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


def is_usable(configuration: dict[str, Any]) -> bool:
    return configuration["status"] == "active"


def is_editable(configuration: dict[str, Any]) -> bool:
    return configuration["status"] in EDITABLE_STATUSES


def create_configuration(conn: sqlite3.Connection, payload: dict[str, Any]) -> dict[str, Any]:
    schema = load_schema(payload.get("schema") or {})
    configuration_id = str(payload.get("id") or uuid.uuid4())
    schema.id = configuration_id
    estimated = payload.get("estimated_minutes")
    try:
        with conn:
            conn.execute(
                """
                INSERT INTO configurations(
                    id, name, description, version, framework, category, schema_data, status, is_template, tags,
                    target_audience, difficulty_level, estimated_minutes, locale, custom_metadata, created_by
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, 'draft', ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    configuration_id,
                    str(payload.get("name") or schema.name or "Untitled Configuration"),
                    payload.get("description", schema.description),
                    str(payload.get("version") or schema.version),
                    payload.get("framework", schema.framework),
                    str(payload.get("category") or schema.category),
                    json_dumps(schema.to_dict()),
                    1 if payload.get("is_template") else 0,
                    json_dumps(list(payload.get("tags") or [])),
                    json_dumps(list(payload.get("target_audience") or [])),
                    payload.get("difficulty_level"),
                    int(estimated) if estimated is not None else None,
                    str(payload.get("locale") or "en"),
                    json_dumps(dict(payload.get("custom_metadata") or {})),
                    payload.get("created_by"),
                ),
            )
    except sqlite3.IntegrityError as exc:
        raise ValueError(f"configuration id already exists: {configuration_id}") from exc
    logger.info("configuration_created", extra={"configuration_id": configuration_id, "field_count": len(schema.field_ids())})
    created = get_configuration(conn, configuration_id)
    if created is None:
        raise ConfigurationNotFoundError(configuration_id)
    return created


def get_configuration(
    conn: sqlite3.Connection,
    configuration_id: str,
    include_deleted: bool = False,
) -> dict[str, Any] | None:
    row = conn.execute(
        f"SELECT {CONFIGURATION_COLUMNS} FROM configurations WHERE id = ?",
        (configuration_id,),
    ).fetchone()
    if row is None:
        return None
    if row["status"] == "deleted" and not include_deleted:
        return None
    return _row_to_configuration(row)


def load_configuration_schema(conn: sqlite3.Connection, configuration_id: str) -> ConfigurationSchema:
    configuration = get_configuration(conn, configuration_id)
    if configuration is None:
        raise ConfigurationNotFoundError(configuration_id)

    schema = load_schema(configuration["schema"])
    # stored columns are authoritative over the serialized copy
    schema.id = configuration["id"]
    schema.name = configuration["name"]
    schema.description = configuration["description"]
    schema.version = configuration["version"]
    schema.framework = configuration["framework"]
    schema.category = configuration["category"]
    schema.created_by = configuration["created_by"]
    schema.metadata.tags = list(configuration["tags"])
    schema.metadata.target_audience = list(configuration["target_audience"])
    schema.metadata.difficulty_level = configuration["difficulty_level"]
    schema.metadata.estimated_minutes = configuration["estimated_minutes"]
    schema.metadata.is_template = configuration["is_template"]
    schema.metadata.is_active = configuration["status"] == "active"
    schema.metadata.locale = configuration["locale"]
    schema.metadata.custom = dict(configuration["custom_metadata"])
    return schema


def update_configuration(
    conn: sqlite3.Connection,
    configuration_id: str,
    changes: dict[str, Any],
) -> dict[str, Any] | None:
    if get_configuration(conn, configuration_id) is None:
        return None

    assignments: list[str] = []
    values: list[Any] = []
    for column in _PLAIN_UPDATE_COLUMNS:
        if column in changes:
            assignments.append(f"{column} = ?")
            values.append(changes[column])
    for column in _JSON_UPDATE_COLUMNS:
        if column in changes:
            assignments.append(f"{column} = ?")
            values.append(json_dumps(changes[column]))
    if "estimated_minutes" in changes:
        assignments.append("estimated_minutes = ?")
        values.append(int(changes["estimated_minutes"]) if changes["estimated_minutes"] is not None else None)
    if "is_template" in changes:
        assignments.append("is_template = ?")
        values.append(1 if changes["is_template"] else 0)
    if "schema" in changes:
        assignments.append("schema_data = ?")
        values.append(json_dumps(load_schema(changes["schema"]).to_dict()))
    if "status" in changes:
        status = _validated_status(changes["status"])
        assignments.append("status = ?")
        values.append(status)

    if assignments:
        with conn:
            conn.execute(
                f"UPDATE configurations SET {', '.join(assignments)}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (*values, configuration_id),
            )
        logger.info(
            "configuration_updated",
            extra={"configuration_id": configuration_id, "changed": sorted(set(changes) & _updatable_keys())},
        )
    return get_configuration(conn, configuration_id)


def _updatable_keys() -> set[str]:
    return {*_PLAIN_UPDATE_COLUMNS, *_JSON_UPDATE_COLUMNS, "estimated_minutes", "is_template", "schema", "status"}


def _validated_status(raw_status: Any) -> str:
    status = str(raw_status or "").strip().lower()
    if status not in CONFIGURATION_STATUSES:
        raise ValueError(f"unsupported configuration status: {raw_status}")
    return status


def update_configuration_status(
    conn: sqlite3.Connection,
    configuration_id: str,
    status: str,
) -> dict[str, Any] | None:
    return update_configuration(conn, configuration_id, {"status": status})


def delete_configuration(conn: sqlite3.Connection, configuration_id: str) -> bool:
    with conn:
        cursor = conn.execute(
            """
            UPDATE configurations SET status = 'deleted', updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND status != 'deleted'
            """,
            (configuration_id,),
        )
    deleted = cursor.rowcount > 0
    if deleted:
        logger.info("configuration_deleted", extra={"configuration_id": configuration_id})
    return deleted


def _filter_clause(filters: dict[str, Any] | None) -> tuple[str, list[Any]]:
    clauses = ["status != 'deleted'"]
    params: list[Any] = []
    filters = filters or {}

    for column in ("status", "category", "framework", "difficulty_level", "locale", "created_by"):
        value = filters.get(column)
        if value is not None and value != "":
            clauses.append(f"{column} = ?")
            params.append(value)
    if filters.get("is_template") is not None:
        clauses.append("is_template = ?")
        params.append(1 if filters["is_template"] else 0)
    for tag in filters.get("tags") or []:
        clauses.append("tags LIKE ?")
        params.append(f'%"{tag}"%')
    for audience in filters.get("target_audience") or []:
        clauses.append("target_audience LIKE ?")
        params.append(f'%"{audience}"%')
    query = str(filters.get("search_query") or "").strip()
    if query:
        clauses.append("(name LIKE ? OR description LIKE ?)")
        params.extend([f"%{query}%", f"%{query}%"])
    return " AND ".join(clauses), params


def list_configurations(
    conn: sqlite3.Connection,
    filters: dict[str, Any] | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    where, params = _filter_clause(filters)
    rows = conn.execute(
        f"""
        SELECT {CONFIGURATION_COLUMNS} FROM configurations
        WHERE {where}
        ORDER BY updated_at DESC, rowid DESC
        LIMIT ? OFFSET ?
        """,
        (*params, int(limit), int(offset)),
    ).fetchall()
    return [_row_to_configuration(row) for row in rows]


def count_configurations(conn: sqlite3.Connection, filters: dict[str, Any] | None = None) -> int:
    where, params = _filter_clause(filters)
    row = conn.execute(f"SELECT COUNT(*) AS count FROM configurations WHERE {where}", params).fetchone()
    return int(row["count"])


def search_configurations(
    conn: sqlite3.Connection,
    query: str,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    return list_configurations(conn, {"search_query": query}, limit=limit, offset=offset)


def list_templates(conn: sqlite3.Connection, limit: int = 50, offset: int = 0) -> list[dict[str, Any]]:
    return list_configurations(conn, {"is_template": True}, limit=limit, offset=offset)


def get_recent_configurations(conn: sqlite3.Connection, limit: int = 10) -> list[dict[str, Any]]:
    return list_configurations(conn, limit=limit)


def duplicate_from_template(
    conn: sqlite3.Connection,
    template_id: str,
    new_name: str,
    new_description: str | None = None,
    customizations: dict[str, Any] | None = None,
    created_by: str | None = None,
) -> dict[str, Any]:
    template = get_configuration(conn, template_id)
    if template is None or not template["is_template"]:
        raise ConfigurationNotFoundError(template_id)

    schema_payload = dict(template["schema"])
    schema_payload["defaults"] = {**(schema_payload.get("defaults") or {}), **(customizations or {})}
    return create_configuration(
        conn,
        {
            "name": new_name,
            "description": new_description if new_description is not None else template["description"],
            "version": template["version"],
            "framework": template["framework"],
            "category": template["category"],
            "schema": schema_payload,
            "is_template": False,
            "tags": template["tags"],
            "target_audience": template["target_audience"],
            "difficulty_level": template["difficulty_level"],
            "estimated_minutes": template["estimated_minutes"],
            "locale": template["locale"],
            "custom_metadata": {**template["custom_metadata"], "duplicated_from": template_id},
            "created_by": created_by,
        },
    )


def record_usage(
    conn: sqlite3.Connection,
    configuration_id: str,
    usage_context: str,
    user_id: str | None = None,
    usage_metadata: dict[str, Any] | None = None,
) -> None:
    with conn:
        conn.execute(
            """
            INSERT INTO configuration_usage(configuration_id, user_id, usage_context, usage_metadata)
            VALUES (?, ?, ?, ?)
            """,
            (configuration_id, user_id, usage_context, json_dumps(usage_metadata or {})),
        )


def save_submission(
    conn: sqlite3.Connection,
    configuration_id: str,
    form_data: dict[str, Any],
    results: ValidationResults,
    user_id: str | None = None,
) -> str:
    submission_id = str(uuid.uuid4())
    status = "completed" if results.is_valid else "failed"
    with conn:
        conn.execute(
            """
            INSERT INTO form_submissions(id, configuration_id, user_id, form_data, validation_results, status)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (submission_id, configuration_id, user_id, json_dumps(form_data), json_dumps(results.to_dict()), status),
        )
    logger.info(
        "form_submission_saved",
        extra={"submission_id": submission_id, "configuration_id": configuration_id, "status": status},
    )
    return submission_id


def get_submission(conn: sqlite3.Connection, submission_id: str) -> dict[str, Any] | None:
    row = conn.execute(
        """
        SELECT id, configuration_id, user_id, form_data, validation_results, status, submitted_at, updated_at
        FROM form_submissions WHERE id = ?
        """,
        (submission_id,),
    ).fetchone()
    if row is None:
        return None
    return {
        **dict(row),
        "form_data": json.loads(row["form_data"]),
        "validation_results": json.loads(row["validation_results"]),
    }


def get_statistics(conn: sqlite3.Connection) -> dict[str, Any]:
    total = conn.execute("SELECT COUNT(*) AS count FROM configurations WHERE status != 'deleted'").fetchone()
    active = conn.execute("SELECT COUNT(*) AS count FROM configurations WHERE status = 'active'").fetchone()
    templates = conn.execute(
        "SELECT COUNT(*) AS count FROM configurations WHERE is_template = 1 AND status != 'deleted'"
    ).fetchone()
    most_used = conn.execute(
        """
        SELECT u.configuration_id, COUNT(*) AS uses
        FROM configuration_usage u
        GROUP BY u.configuration_id
        ORDER BY uses DESC, u.configuration_id
        LIMIT 5
        """
    ).fetchall()
    by_category = conn.execute(
        """
        SELECT c.category, COUNT(*) AS uses
        FROM configuration_usage u JOIN configurations c ON c.id = u.configuration_id
        GROUP BY c.category
        """
    ).fetchall()
    by_framework = conn.execute(
        """
        SELECT c.framework, COUNT(*) AS uses
        FROM configuration_usage u JOIN configurations c ON c.id = u.configuration_id
        WHERE c.framework IS NOT NULL
        GROUP BY c.framework
        """
    ).fetchall()
    recent = conn.execute(
        """
        SELECT configuration_id, user_id, used_at, usage_context, usage_metadata
        FROM configuration_usage ORDER BY id DESC LIMIT 10
        """
    ).fetchall()
    return {
        "total_configurations": int(total["count"]),
        "active_configurations": int(active["count"]),
        "template_configurations": int(templates["count"]),
        "most_used_configurations": [[row["configuration_id"], int(row["uses"])] for row in most_used],
        "usage_by_category": {row["category"]: int(row["uses"]) for row in by_category},
        "usage_by_framework": {row["framework"]: int(row["uses"]) for row in by_framework},
        "recent_activity": [
            {**dict(row), "usage_metadata": json.loads(row["usage_metadata"])} for row in recent
        ],
    }


def authorize(conn: sqlite3.Connection, customer_id: str, api_key: str) -> bool:
    row = conn.execute("SELECT api_key FROM customer_access WHERE customer_id = ?", (customer_id,)).fetchone()
    return row is not None and row["api_key"] == api_key
