import pytest

from numstack import __version__, run_cli, run_repl


def test_runs_script(tmp_path, capsys):
    script = tmp_path / "hello.ns"
    script.write_text("(hello) println\n1 2 add println\n", encoding="utf-8")
    assert run_cli([str(script)]) == 0
    assert capsys.readouterr().out == "hello\n3\n"


def test_script_exit_status(tmp_path):
    script = tmp_path / "fail.ns"
    script.write_text("(bye) print 4 exit (never) println", encoding="utf-8")
    assert run_cli([str(script)]) == 4


def test_missing_script(tmp_path, capsys):
    assert run_cli([str(tmp_path / "absent.ns")]) == 1
    assert capsys.readouterr().err.startswith("Error! Failed to read")


def test_source_mode_with_arguments(capsys):
    assert run_cli(["-s", "args-cmd 1 get println", "first", "second"]) == 0
    assert capsys.readouterr().out == "first\n"


def test_debug_flag_traces(capsys):
    assert run_cli(["--debug", "-s", "1 2 add"]) == 0
    out = capsys.readouterr().out
    assert "Stack〔 1 | 2 〕 ←  add" in out
    assert out.rstrip().endswith("Stack〔 3 〕")


def test_source_mode_needs_program(capsys):
    assert run_cli(["-s"]) == 1
    assert "--source requires" in capsys.readouterr().err


def test_version(capsys):
    with pytest.raises(SystemExit) as info:
        run_cli(["--version"])
    assert info.value.code == 0
    assert __version__ in capsys.readouterr().out


def _feed(lines):
    pending = iter(lines)

    def _input(prompt):
        try:
            return next(pending)
        except StopIteration:
            raise EOFError

    return _input


def test_repl_runs_buffer_on_blank_line(capsys):
    assert run_repl(_feed(["(hi)", "println", "", ""])) == 0
    out = capsys.readouterr().out
    assert "[Output]: hi" in out


def test_repl_exit(capsys):
    assert run_repl(_feed(["7 exit", "", "(unreached) println", ""])) == 7
    assert "unreached" not in capsys.readouterr().out


def test_deeply_recursive_script(tmp_path, capsys):
    script = tmp_path / "countdown.ns"
    script.write_text(
        "600 (n) var\n((n 1 sub (n) var f eval) () 0 n less if) (f) var\nf eval n println\n",
        encoding="utf-8",
    )
    assert run_cli([str(script)]) == 0
    assert capsys.readouterr().out == "0\n"
