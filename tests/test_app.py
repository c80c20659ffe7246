import pytest

from workbench.app import create_app


@pytest.fixture
def client(generator):
    app = create_app(generator=generator)
    app.config["TESTING"] = True
    return app.test_client()


def test_run_commit_and_remove(client, motion):
    r = client.post("/project", json=motion.to_dict())
    assert r.status_code == 200
    assert r.get_json()["order"] == ["Velocity", "Distance"]
    assert client.get("/readiness").get_json() == {"Velocity": True, "Distance": False}

    client.post("/select", json={"formula": "Velocity"})
    r = client.post("/run")
    assert r.status_code == 200
    assert r.get_json()["result"] == "12.5"
    r = client.post("/commit")
    assert r.status_code == 201
    entry_id = r.get_json()["id"]

    assert client.get("/readiness").get_json()["Distance"] is True
    state = client.post("/select", json={"formula": "Distance"}).get_json()
    assert state["parameters"]["velocity"] == {"value": "12.5", "error": None}
    assert client.put("/parameters/time", json={"value": "4"}).get_json()["error"] is None
    assert client.post("/run").get_json()["result"] == "50"

    assert client.delete(f"/chain/{entry_id}").status_code == 200
    assert client.delete(f"/chain/{entry_id}").status_code == 404
    assert client.get("/chain").get_json() == []


def test_blocked_run_and_bad_requests(client, motion):
    client.post("/project", json=motion.to_dict())
    client.post("/select", json={"formula": "Distance"})
    r = client.post("/run")
    assert r.status_code == 422
    assert r.get_json()["kind"] == "blocked"
    assert client.post("/commit").status_code == 400
    assert client.post("/select", json={"formula": "Nope"}).status_code == 404
    assert client.put("/parameters/velocity", json={"value": "3"}).status_code == 400
    assert client.post("/project", json={"formulas": []}).status_code == 400


def test_forge_and_advisory(client, generator):
    r = client.post("/forge", json={"mode": "problem", "input": "plan a trip"})
    assert r.status_code == 200
    assert r.get_json()["project"]["projectName"] == "Motion"

    client.post("/select", json={"formula": "Velocity"})
    client.post("/run")
    client.post("/commit")
    snapshot = client.post("/advisory/suggestions").get_json()
    assert snapshot["suggestions"] == ["Compute the kinetic energy"]

    snapshot = client.post("/advisory/analysis").get_json()
    assert snapshot["analysis_error"] == "Analysis requires at least two steps in the chain."
    assert client.delete("/advisory/analysis").get_json()["analysis_error"] is None

    assert client.post("/ideas", json={"formula": "Velocity"}).get_json()["ideas"] == ["Trip planner"]

    generator.error = "quota exhausted"
    r = client.post("/forge", json={"mode": "problem", "input": "again"})
    assert r.status_code == 502
    assert r.get_json()["error"] == "Error: quota exhausted"


def test_cyclic_project_leaves_session_unchanged(client, motion):
    client.post("/project", json=motion.to_dict())
    client.post("/select", json={"formula": "Velocity"})
    cyclic = {
        "projectName": "Loop",
        "formulas": [
            {"formulaName": "A", "parameters": [{"name": "b", "source": "formula:B.output"}], "codeSnippets": {"python": "lambda b: b"}},
            {"formulaName": "B", "parameters": [{"name": "a", "source": "formula:A.output"}], "codeSnippets": {"python": "lambda a: a"}},
        ],
    }
    r = client.post("/project", json=cyclic)
    assert r.status_code == 400
    assert "cycle" in r.get_json()["error"]
    state = client.get("/state").get_json()
    assert state["project"]["projectName"] == "Motion"
    assert state["active"] == "Velocity"
