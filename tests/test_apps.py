from assessment_configurator.app import create_form_runtime_app, create_schema_studio_app
from assessment_configurator.db import connect

CREDENTIALS = {"customer_id": "demo-customer", "api_key": "demo-key"}

SCHEMA = {
    "sections": [
        {
            "id": "profile",
            "title": "Profile",
            "fields": [
                {"id": "country", "label": "Country", "field_type": "select"},
                {"id": "state", "label": "State", "field_type": "text", "required": True},
                {"id": "email", "label": "Email", "field_type": "email", "required": True},
            ],
        }
    ],
    "conditional_logic": [
        {
            "id": "hide-state",
            "target": "state",
            "condition": {"type": "not_equals", "config": {"field": "country", "value": "US"}},
            "action": "Hide",
        }
    ],
}


def login(client) -> None:
    response = client.post("/login", data={"username": "admin", "password": "admin"})
    assert response.status_code == 302


def create_active_configuration(client) -> str:
    response = client.post("/api/configurations", json={"name": "Intake", "schema": SCHEMA})
    assert response.status_code == 201
    configuration_id = response.get_json()["id"]
    activated = client.post(f"/api/configurations/{configuration_id}/status", json={"status": "active"})
    assert activated.status_code == 200
    return configuration_id


def test_healthz_is_public(tmp_path) -> None:
    db = str(tmp_path / "app.db")

    studio = create_schema_studio_app(db).test_client().get("/healthz")
    runtime = create_form_runtime_app(db).test_client().get("/healthz")

    assert studio.get_json() == {"status": "ok", "app": "studio"}
    assert runtime.get_json() == {"status": "ok", "app": "runtime"}


def test_studio_requires_login(tmp_path) -> None:
    client = create_schema_studio_app(str(tmp_path / "app.db")).test_client()

    response = client.get("/")
    assert response.status_code == 302
    assert "/login" in response.location

    api_response = client.get("/api/configurations")
    assert api_response.status_code == 401


def test_login_rejects_invalid_credentials(tmp_path) -> None:
    client = create_schema_studio_app(str(tmp_path / "app.db")).test_client()

    response = client.post("/login", data={"username": "wrong", "password": "nope"})

    assert response.status_code == 200
    assert "Invalid credentials" in response.get_data(as_text=True)


def test_logout_clears_session(tmp_path) -> None:
    client = create_schema_studio_app(str(tmp_path / "app.db")).test_client()
    login(client)

    assert client.post("/logout").status_code == 302

    redirected = client.get("/")
    assert redirected.status_code == 302
    assert "/login" in redirected.location


def test_studio_configuration_lifecycle(tmp_path) -> None:
    client = create_schema_studio_app(str(tmp_path / "app.db")).test_client()
    login(client)

    created = client.post(
        "/api/configurations",
        json={"name": "Essay rubric", "category": "writing", "tags": ["rubric"], "schema": SCHEMA},
    )
    assert created.status_code == 201
    configuration = created.get_json()
    assert configuration["created_by"] == "admin"

    listed = client.get("/api/configurations?category=writing").get_json()
    assert listed["total"] == 1
    assert listed["configurations"][0]["id"] == configuration["id"]

    found = client.get("/api/configurations/search?q=essay").get_json()
    assert [item["id"] for item in found["configurations"]] == [configuration["id"]]

    updated = client.put(f"/api/configurations/{configuration['id']}", json={"description": "Updated"})
    assert updated.get_json()["description"] == "Updated"

    archived = client.post(f"/api/configurations/{configuration['id']}/status", json={"status": "archived"})
    assert archived.get_json()["status"] == "archived"
    locked = client.put(f"/api/configurations/{configuration['id']}", json={"description": "Again"})
    assert locked.status_code == 409

    deleted = client.delete(f"/api/configurations/{configuration['id']}")
    assert deleted.get_json() == {"status": "deleted", "id": configuration["id"]}
    assert client.get(f"/api/configurations/{configuration['id']}").status_code == 404

    page = client.get("/")
    assert page.status_code == 200
    assert "Schema Studio" in page.get_data(as_text=True)


def test_studio_rejects_invalid_schema_and_status(tmp_path) -> None:
    client = create_schema_studio_app(str(tmp_path / "app.db")).test_client()
    login(client)

    bad_schema = client.post(
        "/api/configurations",
        json={"name": "Broken", "schema": {"sections": [{"id": "s", "fields": [{"id": "a", "field_type": "warp"}]}]}},
    )
    assert bad_schema.status_code == 400
    assert "unknown field type" in bad_schema.get_json()["error"]

    configuration_id = create_active_configuration(client)
    bad_status = client.post(f"/api/configurations/{configuration_id}/status", json={"status": "launched"})
    assert bad_status.status_code == 400

    missing = client.post("/api/configurations/nope/status", json={"status": "active"})
    assert missing.status_code == 404


def test_studio_duplicate_template_and_statistics(tmp_path) -> None:
    client = create_schema_studio_app(str(tmp_path / "app.db")).test_client()
    login(client)
    template = client.post(
        "/api/configurations", json={"name": "Template", "is_template": True, "schema": SCHEMA}
    ).get_json()

    copy = client.post(
        f"/api/configurations/{template['id']}/duplicate",
        json={"name": "Course intake", "customizations": {"country": "US"}},
    )
    assert copy.status_code == 201
    assert copy.get_json()["schema"]["defaults"] == {"country": "US"}

    assert client.post(f"/api/configurations/{template['id']}/duplicate", json={}).status_code == 400

    statistics = client.get("/api/statistics").get_json()
    assert statistics["total_configurations"] == 2
    assert statistics["template_configurations"] == 1


def test_studio_validates_schemas_and_traces_conditions(tmp_path) -> None:
    client = create_schema_studio_app(str(tmp_path / "app.db")).test_client()
    login(client)
    schema = {
        **SCHEMA,
        "conditional_logic": SCHEMA["conditional_logic"]
        + [{"id": "ghost", "target": "zip", "condition": {"type": "is_empty", "config": {"field": "zip"}}, "action": "Show"}],
    }

    report = client.post("/api/schemas/validate", json={"schema": schema}).get_json()
    assert report["is_valid"] is False
    assert "Conditional rule 'ghost' target 'zip' does not exist" in report["global_errors"]
    assert report["dependencies"] == {"country": ["state"], "zip": ["zip"]}

    traced = client.post("/api/conditions/trace", json={"schema": schema, "form_data": {"country": "CA"}}).get_json()
    assert traced["results"]["state"]["is_visible"] is False
    assert [step["status"] for step in traced["steps"]] == ["applied", "skipped"]


def test_runtime_requires_api_key(tmp_path) -> None:
    client = create_form_runtime_app(str(tmp_path / "app.db")).test_client()

    response = client.post(
        "/api/conditions/evaluate",
        json={"customer_id": "demo-customer", "api_key": "wrong", "schema": SCHEMA, "form_data": {}},
    )

    assert response.status_code == 403


def test_runtime_evaluates_inline_schema(tmp_path) -> None:
    client = create_form_runtime_app(str(tmp_path / "app.db")).test_client()

    us = client.post("/api/conditions/evaluate", json={**CREDENTIALS, "schema": SCHEMA, "form_data": {"country": "US"}})
    ca = client.post("/api/conditions/evaluate", json={**CREDENTIALS, "schema": SCHEMA, "form_data": {"country": "CA"}})

    assert us.status_code == 200
    assert us.get_json()["results"]["state"]["is_visible"] is True
    assert ca.get_json()["results"]["state"]["is_visible"] is False
    assert ca.get_json()["results"]["state"]["applied_rules"] == ["hide-state"]
    assert ca.get_json()["sections"] == {"profile": True}


def test_runtime_rejects_malformed_payloads(tmp_path) -> None:
    client = create_form_runtime_app(str(tmp_path / "app.db")).test_client()

    no_schema = client.post("/api/conditions/evaluate", json={**CREDENTIALS, "form_data": {}})
    assert no_schema.status_code == 400

    bad_condition = client.post(
        "/api/conditions/dependencies",
        json={**CREDENTIALS, "condition": {"type": "equals", "config": {}}},
    )
    assert bad_condition.status_code == 400

    not_json = client.post("/api/conditions/evaluate", data="not json", content_type="application/json")
    assert not_json.status_code == 400


def test_runtime_dependencies(tmp_path) -> None:
    client = create_form_runtime_app(str(tmp_path / "app.db")).test_client()
    condition = {
        "type": "and",
        "config": {
            "conditions": [
                {"type": "equals", "config": {"field": "B", "value": 1}},
                {"type": "equals", "config": {"field": "A", "value": 2}},
            ]
        },
    }

    single = client.post("/api/conditions/dependencies", json={**CREDENTIALS, "condition": condition})
    whole = client.post("/api/conditions/dependencies", json={**CREDENTIALS, "schema": SCHEMA})

    assert single.get_json() == {"dependencies": ["A", "B"]}
    assert whole.get_json() == {"dependencies": {"country": ["state"]}}


def test_runtime_form_validation_and_submission(tmp_path) -> None:
    db = str(tmp_path / "app.db")
    studio = create_schema_studio_app(db).test_client()
    login(studio)
    configuration_id = create_active_configuration(studio)
    runtime = create_form_runtime_app(db).test_client()

    checked = runtime.post(
        "/api/forms/validate",
        json={**CREDENTIALS, "configuration_id": configuration_id, "form_data": {"country": "US"}},
    ).get_json()
    assert checked["is_valid"] is False
    assert set(checked["field_errors"]) == {"state", "email"}

    rejected = runtime.post(
        "/api/forms/submit",
        json={**CREDENTIALS, "configuration_id": configuration_id, "form_data": {"country": "US"}},
    )
    assert rejected.status_code == 422
    assert rejected.get_json()["status"] == "failed"

    accepted = runtime.post(
        "/api/forms/submit",
        json={
            **CREDENTIALS,
            "configuration_id": configuration_id,
            "user_id": "learner-1",
            "form_data": {"country": "CA", "email": "learner@example.com"},
        },
    )
    assert accepted.status_code == 201
    assert accepted.get_json()["status"] == "completed"

    conn = connect(db)
    statuses = [row["status"] for row in conn.execute("SELECT status FROM form_submissions ORDER BY submitted_at")]
    assert sorted(statuses) == ["completed", "failed"]
    usage = conn.execute("SELECT configuration_id, user_id, usage_context FROM configuration_usage").fetchall()
    assert [tuple(row) for row in usage] == [(configuration_id, "learner-1", "form_submission")]


def test_runtime_submission_requires_active_configuration(tmp_path) -> None:
    db = str(tmp_path / "app.db")
    studio = create_schema_studio_app(db).test_client()
    login(studio)
    draft = studio.post("/api/configurations", json={"name": "Draft", "schema": SCHEMA}).get_json()
    runtime = create_form_runtime_app(db).test_client()

    response = runtime.post(
        "/api/forms/submit",
        json={**CREDENTIALS, "configuration_id": draft["id"], "form_data": {"email": "a@example.com"}},
    )
    missing = runtime.post("/api/forms/submit", json={**CREDENTIALS, "configuration_id": "nope", "form_data": {}})

    assert response.status_code == 409
    assert missing.status_code == 404


def test_studio_rejects_duplicate_configuration_id(tmp_path) -> None:
    client = create_schema_studio_app(str(tmp_path / "app.db")).test_client()
    login(client)

    first = client.post("/api/configurations", json={"id": "intake", "name": "Intake", "schema": SCHEMA})
    second = client.post("/api/configurations", json={"id": "intake", "name": "Intake again", "schema": SCHEMA})

    assert first.status_code == 201
    assert second.status_code == 400
    assert "already exists" in second.get_json()["error"]


def test_studio_update_of_vanished_configuration_is_not_found(tmp_path, monkeypatch) -> None:
    client = create_schema_studio_app(str(tmp_path / "app.db")).test_client()
    login(client)
    created = client.post("/api/configurations", json={"name": "Intake", "schema": SCHEMA}).get_json()
    monkeypatch.setattr("assessment_configurator.app.update_configuration", lambda *args: None)

    response = client.put(f"/api/configurations/{created['id']}", json={"description": "Updated"})

    assert response.status_code == 404


def test_studio_schema_validation_accepts_mixed_type_bounds(tmp_path) -> None:
    client = create_schema_studio_app(str(tmp_path / "app.db")).test_client()
    login(client)
    schema = {
        "sections": [
            {
                "id": "s",
                "fields": [
                    {"id": "age", "label": "Age", "field_type": {"type": "number", "config": {"min": "1", "max": 5}}},
                    {"id": "size", "label": "Size", "field_type": {"type": "number", "config": {"min": "big", "max": 5}}},
                ],
            }
        ]
    }

    response = client.post("/api/schemas/validate", json={"schema": schema})

    assert response.status_code == 200
    assert response.get_json()["field_errors"] == {"size": ["Number field min must be a number"]}
