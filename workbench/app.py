from __future__ import annotations

import asyncio
from typing import Optional

from flask import Flask, current_app, jsonify, request

from formulaforge.config import EngineConfig
from formulaforge.generator import FormulaGenerator, GeminiFormulaGenerator
from formulaforge.project import Project
from formulaforge.session import Workbench


def create_app(config: Optional[EngineConfig] = None, generator: Optional[FormulaGenerator] = None) -> Flask:
    config = config or EngineConfig.default()
    if generator is None:
        generator = GeminiFormulaGenerator(config.generator_settings())

    app = Flask(__name__)
    app.config["WORKBENCH"] = Workbench(generator=generator, config=config)

    @app.errorhandler(KeyError)
    def not_found(e: KeyError):
        return jsonify({"error": e.args[0] if e.args else "not found"}), 404

    @app.errorhandler(ValueError)
    def bad_request(e: ValueError):
        return jsonify({"error": str(e)}), 400

    @app.get("/state")
    def state():
        return jsonify(_bench().state())

    @app.post("/project")
    def load_project():
        body = request.get_json(silent=True) or {}
        try:
            project = Project.from_dict(body)
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid project: {e}")
        order = project.execution_order()
        _bench().load_project(project)
        return jsonify({"ok": True, "project": project.name, "order": order})

    @app.post("/forge")
    def forge():
        body = request.get_json(silent=True) or {}
        bench = _bench()
        project = asyncio.run(bench.forge(
            str(body.get("mode", "problem")),
            str(body.get("input", "")),
            str(body.get("code", "")),
            str(body.get("difficulty", "1")),
            bool(body.get("inspire", False)),
        ))
        if project is None:
            return jsonify({"ok": False, "error": bench.forge_error}), 502 if bench.forge_error else 200
        return jsonify({"ok": True, "project": project.to_dict()})

    @app.post("/select")
    def select():
        body = request.get_json(silent=True) or {}
        bench = _bench()
        bench.select(str(body.get("formula", "")))
        return jsonify(bench.state())

    @app.put("/parameters/<name>")
    def set_parameter(name: str):
        body = request.get_json(silent=True) or {}
        error = _bench().set_value(name, str(body.get("value", "")))
        return jsonify({"parameter": name, "error": error})

    @app.post("/run")
    def run():
        outcome = _bench().run()
        return jsonify(outcome.to_dict()), 200 if outcome.ok else 422

    @app.post("/commit")
    def commit():
        entry = _bench().commit()
        return jsonify(entry.to_dict()), 201

    @app.get("/chain")
    def chain():
        return jsonify([e.to_dict() for e in _bench().chain])

    @app.delete("/chain/<entry_id>")
    def remove(entry_id: str):
        removed = _bench().remove(entry_id)
        return jsonify({"removed": removed}), 200 if removed else 404

    @app.get("/readiness")
    def readiness():
        return jsonify(_bench().readiness())

    @app.get("/advisory")
    def advisory():
        return jsonify(_bench().advisory.snapshot())

    @app.post("/advisory/suggestions")
    def suggestions():
        bench = _bench()
        asyncio.run(bench.suggest_next())
        return jsonify(bench.advisory.snapshot())

    @app.post("/advisory/analysis")
    def analysis():
        bench = _bench()
        asyncio.run(bench.analyze_chain())
        return jsonify(bench.advisory.snapshot())

    @app.delete("/advisory/analysis")
    def clear_analysis():
        bench = _bench()
        bench.clear_analysis()
        return jsonify(bench.advisory.snapshot())

    @app.post("/ideas")
    def ideas():
        body = request.get_json(silent=True) or {}
        bench = _bench()
        name = body.get("formula")
        asyncio.run(bench.ideas_for(bench.formula(name) if name else None))
        return jsonify({"ideas": bench.ideas, "error": bench.ideas_error})

    return app


def _bench() -> Workbench:
    return current_app.config["WORKBENCH"]


app = create_app()


if __name__ == "__main__":
    app.run(host="127.0.0.1", port=5000, debug=False)
