import io
import re

import pytest

from miraclectl.cli import (
    ArgCompare,
    Availability,
    Cli,
    Command,
    CommandNotFound,
    Severity,
    UsageError,
    get_args,
    parse_severity,
)


def make_cli(interactive=False):
    calls = []
    out = io.StringIO()

    def record(name):
        def fn(args):
            calls.append((name, list(args)))
            return name
        return fn

    cli_holder = {}

    def quit_fn(args):
        cli_holder["cli"].exit()
        calls.append(("quit", list(args)))

    commands = [
        Command("list", None, Availability.MAYBE, ArgCompare.LESS, 0, record("list"), "List all objects"),
        Command("select", "[link]", Availability.YES, ArgCompare.LESS, 1, record("select"), "Select default link"),
        Command("disconnect", "<peer>", Availability.MAYBE, ArgCompare.EQUAL, 1, record("disconnect"), "Disconnect from peer"),
        Command("batch", "<a>", Availability.NO, ArgCompare.MORE, 1, record("batch"), "Batch only"),
        Command("quit", None, Availability.YES, ArgCompare.MORE, 0, quit_fn, "Quit program"),
        Command("exit", None, Availability.YES, ArgCompare.MORE, 0, quit_fn, None),
        Command("help", None, Availability.MAYBE, ArgCompare.MORE, 0, None, "Print help"),
    ]
    cli = Cli(commands, interactive, out)
    cli_holder["cli"] = cli
    return cli, out, calls


def test_do_calls_function_with_rest():
    cli, _, calls = make_cli()
    assert cli.do(["disconnect", "peer0"]) == "disconnect"
    assert calls == [("disconnect", ["peer0"])]


def test_equal_mismatch():
    cli, out, calls = make_cli()
    with pytest.raises(UsageError):
        cli.do(["disconnect"])
    assert out.getvalue() == "Invalid number of arguments\n"
    assert calls == []


def test_less_too_many():
    cli, out, _ = make_cli()
    with pytest.raises(UsageError):
        cli.do(["list", "x"])
    assert out.getvalue() == "too many arguments\n"


def test_more_too_few():
    cli, out, _ = make_cli()
    with pytest.raises(UsageError):
        cli.do(["batch"])
    assert out.getvalue() == "too few arguments\n"


def test_unknown_command():
    cli, _, _ = make_cli()
    with pytest.raises(CommandNotFound):
        cli.do(["nope"])
    with pytest.raises(CommandNotFound):
        cli.do([])


def test_availability_filters():
    cli, _, _ = make_cli(interactive=False)
    with pytest.raises(CommandNotFound):
        cli.do(["select"])
    icli, _, _ = make_cli(interactive=True)
    with pytest.raises(CommandNotFound):
        icli.do(["batch", "a"])
    assert icli.do(["select"]) == "select"


def test_help_lists_available_commands():
    cli, out, _ = make_cli(interactive=True)
    assert cli.help(20) == 0
    text = out.getvalue()
    assert text.startswith("Available commands:\n")
    assert "Quit program" in text
    assert "Batch only" not in text
    lines = text.splitlines()[1:]
    columns = {line.index(desc) for line in lines
               for desc in ("List all objects", "Print help")
               if desc in line}
    assert len(columns) == 1


def test_help_command_without_function():
    cli, out, _ = make_cli()
    assert cli.do(["help"]) == 0
    assert "Available commands:" in out.getvalue()
    assert "Quit program" not in out.getvalue()


def test_handle_line_not_found():
    cli, out, _ = make_cli()
    cli.handle_line("bogus arg")
    assert out.getvalue() == "Command not found\n"


def test_handle_line_quoting_and_history():
    cli, _, calls = make_cli()
    cli.handle_line('disconnect "my peer"')
    assert calls == [("disconnect", ["my peer"])]
    assert cli.history == ['disconnect "my peer"']


def test_quit_not_in_history():
    cli, _, _ = make_cli(interactive=True)
    cli.handle_line("quit")
    assert cli.history == []


def test_history_file_written(tmp_path):
    cli, _, _ = make_cli()
    cli.history_file = tmp_path / "hist"
    cli.handle_line("list")
    assert cli.history_file.read_text() == "list\n"


def test_run_lines_stops_at_exit():
    cli, _, calls = make_cli(interactive=True)
    assert cli.run(["list", "quit", "list"]) == 0
    assert [name for name, _ in calls] == ["list", "quit"]


def test_end_of_input_exits():
    cli, out, calls = make_cli(interactive=True)
    cli.run(["list", None, "list"])
    assert out.getvalue().endswith("quit\n")
    assert len(calls) == 1


def test_severity_filtering():
    cli, out, _ = make_cli()
    cli.debug("hidden")
    cli.notice("shown")
    assert out.getvalue() == "NOTICE: shown\n"
    cli.max_severity = Severity.DEBUG
    cli.debug("now")
    assert out.getvalue().endswith("DEBUG: now\n")


def test_error_prefix():
    cli, out, _ = make_cli()
    cli.error("invalid arguments")
    assert out.getvalue() == "ERROR: invalid arguments\n"


def test_time_prefix():
    cli, _, _ = make_cli()
    assert cli.time_prefix() == ""
    cli.log_time_origin = 0.0
    assert re.fullmatch(r"\[\d{4,}\.\d{6}\] ", cli.time_prefix())


def test_running_reflects_interactive():
    assert make_cli(interactive=True)[0].running() is True
    assert make_cli(interactive=False)[0].running() is False


def test_parse_severity():
    assert parse_severity("debug") == Severity.DEBUG
    assert parse_severity("3") == Severity.ERROR
    with pytest.raises(ValueError):
        parse_severity("bogus")


def test_get_args():
    assert get_args("show") == 1
    assert get_args("show ") == 2
    assert get_args("set-managed wlan0 ") == 3