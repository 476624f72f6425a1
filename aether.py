import argparse
import sys
from pathlib import Path

from aether.aether_config import ConfigError, EngineConfig
from aether.aether_errors import AetherError
from aether.aether_printer import Printer
from aether.aether_runtime import Engine, version


def read_line(prompt: str) -> str:
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return sys.stdin.readline()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="aether", description="Run an Aether script or start the REPL.")
    parser.add_argument("script", nargs="?", help="script file to run; omit for the REPL")
    parser.add_argument("--allow-io", action="store_true", help="enable the file and HTTP built-ins")
    parser.add_argument("--optimize", action="store_true", help="enable all optimizer passes")
    parser.add_argument("--max-steps", type=int, metavar="N", help="step limit per evaluation")
    parser.add_argument("--config", metavar="FILE", help="YAML or JSON engine config")
    parser.add_argument("--version", action="version", version=f"aether {version()}")
    return parser


def make_engine(args) -> Engine:
    config = EngineConfig.load(args.config)
    if args.max_steps is not None:
        config.limits = config.limits.replace(max_steps=args.max_steps)
    if args.optimize:
        config.optimization = config.optimization.all()
    if args.script and config.base_dir is None:
        config.base_dir = str(Path(args.script).resolve().parent)
    return Engine(permissive=args.allow_io, config=config)


def print_trace(lines):
    for line in lines:
        print(line)


def print_value(printer: Printer, value) -> bool:
    try:
        print(printer.pformat(value))
    except AetherError as e:
        print(f"Error: {e}", file=sys.stderr)
        return False
    return True


def run_script_file(engine: Engine, file_path: str) -> int:
    """Run a script file non-interactively; returns the exit status."""
    try:
        source = Path(file_path).read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        return 1
    result = engine.handle_script(source)
    print_trace(result.trace)
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        return 1
    if result.value is not None and not print_value(Printer(), result.value):
        return 1
    return 0


def repl(engine: Engine) -> int:
    print(f"Aether REPL v{version()}")
    print("Type 'exit' or press Ctrl+D to quit.")
    printer = Printer()
    while True:
        raw = read_line(">> ")
        if raw == "":
            print("\nExiting.")
            return 0
        line = raw.strip()
        if not line:
            continue
        if line == "exit":
            return 0
        result = engine.handle_script(line)
        print_trace(result.trace)
        if result.status == 'error':
            print(result.format_error(), file=sys.stderr)
            continue
        if result.value is not None:
            print_value(printer, result.value)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        engine = make_engine(args)
    except (ConfigError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    with engine:
        if args.script:
            return run_script_file(engine, args.script)
        return repl(engine)


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nExiting.")
