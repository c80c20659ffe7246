import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from .config import EngineConfig, load_config
from .errors import ConfigurationError
from .journal import ChainJournal
from .project import DependencyCycleError, Project
from .sandbox import execute
from .session import Workbench


def load_project(path: str) -> Project:
    with open(path, "r", encoding="utf-8") as f:
        return Project.from_dict(json.load(f))


def _config(args: argparse.Namespace) -> EngineConfig:
    try:
        return load_config(args.config)
    except (ConfigurationError, OSError) as e:
        print(f"Invalid config: {e}")
        sys.exit(2)


def _parse_overrides(items: List[str]) -> Dict[str, Dict[str, str]]:
    overrides: Dict[str, Dict[str, str]] = {}
    for item in items:
        if "=" not in item or "." not in item.split("=", 1)[0]:
            print(f"Bad --set value '{item}'; expected Formula.parameter=value")
            sys.exit(2)
        key, value = item.split("=", 1)
        formula, param = key.rsplit(".", 1)
        overrides.setdefault(formula, {})[param] = value
    return overrides


def command_eval(args: argparse.Namespace) -> None:
    config = _config(args)
    body = Path(args.file).read_text(encoding="utf-8") if args.file else args.body
    if not body:
        print("Provide --body or --file.")
        sys.exit(2)
    names = args.params.split(",") if args.params else None
    outcome = execute(body, args.args, names, config.limits())
    if outcome.ok:
        print(outcome.result)
        return
    print(f"{outcome.kind} error: {outcome.error}")
    sys.exit(1)


def command_project(args: argparse.Namespace) -> None:
    project = load_project(args.file)
    try:
        order = project.execution_order()
    except DependencyCycleError as e:
        print(str(e))
        sys.exit(1)
    print(f"{project.name}: {len(project.formulas)} formula(s)")
    for i, name in enumerate(order, start=1):
        reads = sorted({p.source.formula_name for p in project.get(name).sourced_parameters()})
        print(f"  {i}. {name}" + (f" (reads: {', '.join(reads)})" if reads else ""))
    external = project.external_sources()
    if external:
        print("External sources: " + ", ".join(external))


def command_replay(args: argparse.Namespace) -> None:
    config = _config(args)
    project = load_project(args.file)
    overrides = _parse_overrides(args.set or [])
    bench = Workbench(config=config)
    if args.journal:
        ChainJournal(args.journal).attach(bench.chain)
    bench.load_project(project)
    try:
        order = project.execution_order()
    except DependencyCycleError as e:
        print(str(e))
        sys.exit(1)

    for name in order:
        bench.select(name)
        for param, value in overrides.get(name, {}).items():
            try:
                bench.set_value(param, value)
            except (KeyError, ValueError) as e:
                print(f"{name}: {e.args[0]}")
                sys.exit(2)
        outcome = bench.run()
        if not outcome.ok:
            print(f"{name}: {outcome.error}")
            for param, message in outcome.parameter_errors.items():
                print(f"  {param}: {message}")
            sys.exit(1)
        entry = bench.commit()
        print(f"{name} = {entry.result}")


def command_serve(args: argparse.Namespace) -> None:
    from workbench.app import create_app

    app = create_app(config=_config(args))
    app.run(host=args.host, port=args.port, debug=False)


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Formula chain workbench CLI")
    parser.add_argument("--config", required=False, help="Engine config file")
    parser.add_argument("--log-level", default="WARNING")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_eval = subparsers.add_parser("eval", help="Run an implementation in the sandbox")
    p_eval.add_argument("--body", required=False)
    p_eval.add_argument("--file", required=False)
    p_eval.add_argument("--params", required=False, help="Comma-separated names for a bare expression")
    p_eval.add_argument("args", nargs="*")
    p_eval.set_defaults(func=command_eval)

    p_project = subparsers.add_parser("project", help="Show execution order and dependencies of a project file")
    p_project.add_argument("file")
    p_project.set_defaults(func=command_project)

    p_replay = subparsers.add_parser("replay", help="Run every formula of a project in dependency order")
    p_replay.add_argument("file")
    p_replay.add_argument("--set", action="append", help="Override a parameter: Formula.parameter=value")
    p_replay.add_argument("--journal", required=False)
    p_replay.set_defaults(func=command_replay)

    p_serve = subparsers.add_parser("serve", help="Start the workbench HTTP API")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=5000)
    p_serve.set_defaults(func=command_serve)

    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.WARNING))
    args.func(args)


if __name__ == "__main__":
    main()
