import importlib.util
import sys
from pathlib import Path
import uuid

import pytest


def _load_cli_module():
    """Dynamically load the top-level aether.py (CLI/REPL) as a module with a unique name."""
    cli_path = Path(__file__).resolve().parents[1] / "aether.py"
    mod_name = f"aether_cli_for_test_{uuid.uuid4().hex}"
    spec = importlib.util.spec_from_file_location(mod_name, str(cli_path))
    mod = importlib.util.module_from_spec(spec)
    sys.modules[mod_name] = mod
    assert spec.loader is not None
    spec.loader.exec_module(mod)
    return mod


def _feed(monkeypatch, cli, lines):
    it = iter(lines)
    monkeypatch.setattr(cli, "read_line", lambda prompt: next(it, ""))


def test_repl_exit_immediately(monkeypatch, capsys):
    cli = _load_cli_module()
    _feed(monkeypatch, cli, ["exit\n"])
    assert cli.main([]) == 0
    out = capsys.readouterr().out
    assert "Aether REPL v0.1.0" in out
    assert "Type 'exit' or press Ctrl+D to quit." in out


def test_repl_keeps_state_and_prints_values(monkeypatch, capsys):
    cli = _load_cli_module()
    _feed(monkeypatch, cli, [
        "Set X 2\n",
        "\n",
        'TRACE("repl", "hi")\n',
        "(X * 21)\n",
        "exit\n",
    ])
    assert cli.main([]) == 0
    out = capsys.readouterr().out
    assert "[INFO] repl: hi" in out
    assert "\n42\n" in out


def test_repl_errors_print_to_stderr(monkeypatch, capsys):
    cli = _load_cli_module()
    _feed(monkeypatch, cli, ['(1 + "a")\n', "(1 + 1)\n", "exit\n"])
    assert cli.main([]) == 0
    out, err = capsys.readouterr()
    assert "TypeMismatch" in err
    assert "Error on line 1" in err
    assert "\n2\n" in out


def test_repl_eof_exits(monkeypatch, capsys):
    cli = _load_cli_module()
    _feed(monkeypatch, cli, [])
    assert cli.main([]) == 0
    assert "Exiting." in capsys.readouterr().out


def test_run_script_file(tmp_path, capsys):
    cli = _load_cli_module()
    script = tmp_path / "main.ae"
    script.write_text('Set NAME "world"\nTRACE("greet", NAME)\n{"hello": NAME}\n', encoding="utf-8")
    assert cli.main([str(script)]) == 0
    out = capsys.readouterr().out
    assert out.splitlines() == ["[INFO] greet: world", '{"hello": "world"}']


def test_script_io_is_relative_to_script_dir(tmp_path, capsys):
    cli = _load_cli_module()
    (tmp_path / "data.json").write_text('{"n": 5}', encoding="utf-8")
    script = tmp_path / "io.ae"
    script.write_text('READ_FILE("data.json")["n"]\n', encoding="utf-8")

    assert cli.main([str(script)]) == 1
    assert "PermissionDenied" in capsys.readouterr().err

    assert cli.main(["--allow-io", str(script)]) == 0
    assert capsys.readouterr().out.strip() == "5"


def test_max_steps_flag(tmp_path, capsys):
    cli = _load_cli_module()
    script = tmp_path / "loop.ae"
    script.write_text("While True { }\n", encoding="utf-8")
    assert cli.main(["--max-steps", "10", str(script)]) == 1
    assert "ResourceExceeded(StepLimit)" in capsys.readouterr().err


def test_missing_script(tmp_path, capsys):
    cli = _load_cli_module()
    assert cli.main([str(tmp_path / "nope.ae")]) == 1
    assert "file not found" in capsys.readouterr().err


def test_bad_config_exits_with_2(tmp_path, capsys):
    cli = _load_cli_module()
    cfg = tmp_path / "aether.yaml"
    cfg.write_text("colour: blue\n", encoding="utf-8")
    assert cli.main(["--config", str(cfg)]) == 2
    assert "unknown config key" in capsys.readouterr().err


def test_version_flag(capsys):
    cli = _load_cli_module()
    with pytest.raises(SystemExit) as exc:
        cli.main(["--version"])
    assert exc.value.code == 0
    assert "aether 0.1.0" in capsys.readouterr().out
