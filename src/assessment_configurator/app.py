from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from flask import Flask, abort, jsonify, redirect, render_template_string, request, session, url_for
from werkzeug.exceptions import BadRequest, HTTPException

from .conditions import parse_condition
from .db import connect, init_db
from .repository import (
    ConfigurationNotFoundError,
    authorize,
    count_configurations,
    create_configuration,
    delete_configuration,
    duplicate_from_template,
    get_configuration,
    get_recent_configurations,
    get_statistics,
    is_editable,
    is_usable,
    list_configurations,
    load_configuration_schema,
    record_usage,
    save_submission,
    search_configurations,
    update_configuration,
    update_configuration_status,
)
from .rules_engine import ConditionalEngine
from .schema import ConfigurationSchema, load_schema
from .validation import FormValidationEngine, FormValidationError, ensure_valid_form_data

ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "admin"

LOGIN_TEMPLATE = """
<!doctype html>
<title>Schema Studio - Sign in</title>
<h1>Schema Studio</h1>
{% if error %}<p class="error">{{ error }}</p>{% endif %}
<form method="post">
  <label>Username <input name="username"></label>
  <label>Password <input name="password" type="password"></label>
  <button type="submit">Sign in</button>
</form>
"""

INDEX_TEMPLATE = """
<!doctype html>
<title>Schema Studio</title>
<h1>Schema Studio</h1>
<p>{{ statistics.total_configurations }} configurations, {{ statistics.active_configurations }} active,
{{ statistics.template_configurations }} templates.</p>
<table>
  <tr><th>Name</th><th>Category</th><th>Status</th><th>Updated</th></tr>
  {% for configuration in configurations %}
  <tr>
    <td>{{ configuration.name }}</td>
    <td>{{ configuration.category }}</td>
    <td>{{ configuration.status }}</td>
    <td>{{ configuration.updated_at }}</td>
  </tr>
  {% endfor %}
</table>
<form method="post" action="{{ url_for('logout') }}"><button type="submit">Sign out</button></form>
"""

PUBLIC_ENDPOINTS = {"login", "static", "healthz"}


def _db_path(app: Flask) -> Path:
    return Path(app.config["DATABASE_PATH"])


def _configure_observability(app: Flask, app_name: str) -> None:
    app.config["APP_NAME"] = app_name
    level_name = os.environ.get("APP_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    app.logger.setLevel(level)
    logging.getLogger(__package__).setLevel(level)


def _is_api_request() -> bool:
    return request.path.startswith("/api/")


def _configure_error_handlers(app: Flask) -> None:
    @app.errorhandler(BadRequest)
    def handle_bad_request(error: BadRequest) -> Any:
        app.logger.warning("bad_request", extra={"path": request.path, "method": request.method, "error": str(error)})
        if _is_api_request():
            return jsonify({"error": "invalid request payload"}), 400
        return error

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException) -> Any:
        app.logger.warning(
            "http_error",
            extra={"path": request.path, "method": request.method, "status_code": error.code, "error": error.description},
        )
        if _is_api_request():
            return jsonify({"error": error.description}), error.code
        return error

    @app.errorhandler(ValueError)
    def handle_invalid_payload(error: ValueError) -> Any:
        app.logger.warning("invalid_payload", extra={"path": request.path, "method": request.method, "error": str(error)})
        if _is_api_request():
            return jsonify({"error": str(error)}), 400
        return str(error), 400

    @app.errorhandler(ConfigurationNotFoundError)
    def handle_missing_configuration(error: ConfigurationNotFoundError) -> Any:
        app.logger.info("configuration_not_found", extra={"path": request.path, "configuration_id": str(error)})
        return jsonify({"error": f"configuration not found: {error}"}), 404

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception) -> Any:
        app.logger.exception("unexpected_error", extra={"path": request.path, "method": request.method})
        if _is_api_request():
            return jsonify({"error": "internal server error"}), 500
        raise error


def _configure_health(app: Flask) -> None:
    @app.get("/healthz")
    def healthz() -> Any:
        return jsonify({"status": "ok", "app": app.config["APP_NAME"]})


def _is_logged_in() -> bool:
    return bool(session.get("username") and session.get("role"))


def _json_body() -> dict[str, Any]:
    payload = request.get_json(force=True, silent=False) or {}
    if not isinstance(payload, dict):
        raise BadRequest("request body must be a JSON object")
    return payload


def _form_data(payload: dict[str, Any]) -> dict[str, Any]:
    form_data = payload.get("form_data") or {}
    if not isinstance(form_data, dict):
        raise BadRequest("form_data must be a JSON object")
    return form_data


def _resolve_schema(conn: Any, payload: dict[str, Any]) -> ConfigurationSchema:
    configuration_id = payload.get("configuration_id")
    if configuration_id:
        return load_configuration_schema(conn, str(configuration_id))
    if "schema" not in payload:
        raise BadRequest("configuration_id or schema is required")
    return load_schema(payload["schema"])


def _pagination() -> tuple[int, int]:
    limit = request.args.get("limit", default=50, type=int)
    offset = request.args.get("offset", default=0, type=int)
    return max(1, min(limit, 200)), max(0, offset)


def _log_configuration_state_change(app: Flask, *, source: str, configuration: dict[str, Any]) -> None:
    app.logger.info(
        "configuration_state_changed",
        extra={
            "source": source,
            "configuration_id": configuration["id"],
            "status": configuration["status"],
            "username": session.get("username", "anonymous"),
        },
    )


def _configure_auth(app: Flask) -> None:
    app.secret_key = os.environ.get("SESSION_SECRET", "dev-secret-change-me")

    @app.before_request
    def require_login() -> Any:
        if request.endpoint in PUBLIC_ENDPOINTS:
            return None
        if _is_logged_in():
            return None
        if _is_api_request():
            return jsonify({"error": "authentication required"}), 401
        return redirect(url_for("login"))

    @app.route("/login", methods=["GET", "POST"])
    def login() -> Any:
        error = None
        if request.method == "POST":
            username = request.form.get("username", "")
            password = request.form.get("password", "")
            if username == ADMIN_USERNAME and password == ADMIN_PASSWORD:
                session["username"] = ADMIN_USERNAME
                session["role"] = "admin"
                app.logger.info("login_success", extra={"username": username, "role": "admin"})
                return redirect(url_for("index"))
            app.logger.warning("login_failed", extra={"username": username})
            error = "Invalid credentials"
        return render_template_string(LOGIN_TEMPLATE, error=error)

    @app.post("/logout")
    def logout() -> Any:
        app.logger.info("logout", extra={"username": session.get("username", "anonymous")})
        session.clear()
        return redirect(url_for("login"))


def create_schema_studio_app(database_path: str | None = None) -> Flask:
    app = Flask(__name__)
    _configure_observability(app, "studio")
    _configure_error_handlers(app)
    app.config["DATABASE_PATH"] = database_path or os.environ.get("FORMS_DB_PATH", "./data.db")
    init_db(_db_path(app))
    _configure_health(app)
    _configure_auth(app)
    engine = ConditionalEngine()
    validator = FormValidationEngine(engine=engine)

    @app.get("/")
    def index() -> str:
        conn = connect(_db_path(app))
        return render_template_string(
            INDEX_TEMPLATE,
            configurations=get_recent_configurations(conn),
            statistics=get_statistics(conn),
        )

    @app.get("/api/configurations")
    def configurations() -> Any:
        limit, offset = _pagination()
        filters: dict[str, Any] = {
            key: request.args.get(key)
            for key in ("status", "category", "framework", "difficulty_level", "locale", "created_by")
        }
        if "is_template" in request.args:
            filters["is_template"] = request.args.get("is_template", "").lower() in {"1", "true", "yes"}
        filters["tags"] = request.args.getlist("tag")
        filters["search_query"] = request.args.get("q")
        conn = connect(_db_path(app))
        return jsonify(
            {
                "configurations": list_configurations(conn, filters, limit=limit, offset=offset),
                "total": count_configurations(conn, filters),
                "limit": limit,
                "offset": offset,
            }
        )

    @app.post("/api/configurations")
    def add_configuration() -> Any:
        payload = _json_body()
        payload["created_by"] = session.get("username")
        conn = connect(_db_path(app))
        configuration = create_configuration(conn, payload)
        _log_configuration_state_change(app, source="studio.create", configuration=configuration)
        return jsonify(configuration), 201

    @app.get("/api/configurations/search")
    def search() -> Any:
        query = request.args.get("q", "").strip()
        if not query:
            raise BadRequest("q is required")
        limit, offset = _pagination()
        conn = connect(_db_path(app))
        return jsonify({"configurations": search_configurations(conn, query, limit=limit, offset=offset)})

    @app.get("/api/configurations/<configuration_id>")
    def configuration_detail(configuration_id: str) -> Any:
        conn = connect(_db_path(app))
        configuration = get_configuration(conn, configuration_id)
        if configuration is None:
            raise ConfigurationNotFoundError(configuration_id)
        return jsonify(configuration)

    @app.put("/api/configurations/<configuration_id>")
    def edit_configuration(configuration_id: str) -> Any:
        payload = _json_body()
        conn = connect(_db_path(app))
        existing = get_configuration(conn, configuration_id)
        if existing is None:
            raise ConfigurationNotFoundError(configuration_id)
        if not is_editable(existing):
            abort(409, description=f"configuration is {existing['status']} and cannot be edited")
        updated = update_configuration(conn, configuration_id, payload)
        if updated is None:
            raise ConfigurationNotFoundError(configuration_id)
        _log_configuration_state_change(app, source="studio.update", configuration=updated)
        return jsonify(updated)

    @app.delete("/api/configurations/<configuration_id>")
    def remove_configuration(configuration_id: str) -> Any:
        conn = connect(_db_path(app))
        if not delete_configuration(conn, configuration_id):
            raise ConfigurationNotFoundError(configuration_id)
        app.logger.info(
            "configuration_state_changed",
            extra={"source": "studio.delete", "configuration_id": configuration_id, "status": "deleted"},
        )
        return jsonify({"status": "deleted", "id": configuration_id})

    @app.post("/api/configurations/<configuration_id>/status")
    def change_status(configuration_id: str) -> Any:
        payload = _json_body()
        conn = connect(_db_path(app))
        updated = update_configuration_status(conn, configuration_id, str(payload.get("status", "")))
        if updated is None:
            raise ConfigurationNotFoundError(configuration_id)
        _log_configuration_state_change(app, source="studio.status", configuration=updated)
        return jsonify(updated)

    @app.post("/api/configurations/<configuration_id>/duplicate")
    def duplicate(configuration_id: str) -> Any:
        payload = _json_body()
        name = str(payload.get("name") or "").strip()
        if not name:
            raise BadRequest("name is required")
        conn = connect(_db_path(app))
        configuration = duplicate_from_template(
            conn,
            configuration_id,
            name,
            new_description=payload.get("description"),
            customizations=payload.get("customizations"),
            created_by=session.get("username"),
        )
        _log_configuration_state_change(app, source="studio.duplicate", configuration=configuration)
        return jsonify(configuration), 201

    @app.get("/api/statistics")
    def statistics() -> Any:
        conn = connect(_db_path(app))
        return jsonify(get_statistics(conn))

    @app.post("/api/schemas/validate")
    def validate_schema_payload() -> Any:
        payload = _json_body()
        schema = load_schema(payload.get("schema", payload))
        report = validator.validate_schema(schema)
        return jsonify({**report.to_dict(), "dependencies": engine.schema_dependencies(schema)})

    @app.post("/api/conditions/trace")
    def trace() -> Any:
        payload = _json_body()
        conn = connect(_db_path(app))
        schema = _resolve_schema(conn, payload)
        traced = engine.trace_form_conditions(schema, _form_data(payload))
        return jsonify(
            {
                "results": {field_id: result.to_dict() for field_id, result in traced.results.items()},
                "steps": traced.steps,
            }
        )

    return app


def create_form_runtime_app(database_path: str | None = None) -> Flask:
    app = Flask(__name__)
    _configure_observability(app, "runtime")
    _configure_error_handlers(app)
    app.config["DATABASE_PATH"] = database_path or os.environ.get("FORMS_DB_PATH", "./data.db")
    init_db(_db_path(app))
    _configure_health(app)
    engine = ConditionalEngine()
    validator = FormValidationEngine(engine=engine)

    def authorized_body(conn: Any) -> dict[str, Any]:
        payload = _json_body()
        customer_id = str(payload.get("customer_id", ""))
        api_key = str(payload.get("api_key", ""))
        if not authorize(conn, customer_id, api_key):
            app.logger.warning("authorization_failed", extra={"path": request.path, "customer_id": customer_id})
            abort(403)
        return payload

    @app.post("/api/conditions/evaluate")
    def evaluate() -> Any:
        conn = connect(_db_path(app))
        payload = authorized_body(conn)
        schema = _resolve_schema(conn, payload)
        form_data = _form_data(payload)
        results = engine.evaluate_form_conditions(schema, form_data)
        return jsonify(
            {
                "results": {field_id: result.to_dict() for field_id, result in results.items()},
                "sections": engine.evaluate_section_visibility(schema, form_data),
            }
        )

    @app.post("/api/conditions/dependencies")
    def dependencies() -> Any:
        conn = connect(_db_path(app))
        payload = authorized_body(conn)
        if "condition" in payload:
            return jsonify({"dependencies": engine.get_dependencies(parse_condition(payload["condition"]))})
        schema = _resolve_schema(conn, payload)
        return jsonify({"dependencies": engine.schema_dependencies(schema)})

    @app.post("/api/forms/validate")
    def validate_form() -> Any:
        conn = connect(_db_path(app))
        payload = authorized_body(conn)
        schema = _resolve_schema(conn, payload)
        results = validator.validate_form_data(schema, _form_data(payload))
        return jsonify(results.to_dict())

    @app.post("/api/forms/submit")
    def submit() -> Any:
        conn = connect(_db_path(app))
        payload = authorized_body(conn)
        configuration_id = str(payload.get("configuration_id") or "")
        if not configuration_id:
            raise BadRequest("configuration_id is required")
        configuration = get_configuration(conn, configuration_id)
        if configuration is None:
            raise ConfigurationNotFoundError(configuration_id)
        if not is_usable(configuration):
            abort(409, description=f"configuration is {configuration['status']} and does not accept submissions")

        schema = load_configuration_schema(conn, configuration_id)
        form_data = _form_data(payload)
        user_id = payload.get("user_id")
        try:
            results = ensure_valid_form_data(schema, form_data, validator)
        except FormValidationError as exc:
            submission_id = save_submission(conn, configuration_id, form_data, exc.results, user_id=user_id)
            return (
                jsonify({"status": "failed", "submission_id": submission_id, "validation": exc.results.to_dict()}),
                422,
            )

        submission_id = save_submission(conn, configuration_id, form_data, results, user_id=user_id)
        record_usage(
            conn,
            configuration_id,
            "form_submission",
            user_id=user_id,
            usage_metadata={"customer_id": payload.get("customer_id"), "submission_id": submission_id},
        )
        app.logger.info(
            "form_submitted",
            extra={"configuration_id": configuration_id, "customer_id": payload.get("customer_id")},
        )
        return jsonify({"status": "completed", "submission_id": submission_id, "validation": results.to_dict()}), 201

    return app
