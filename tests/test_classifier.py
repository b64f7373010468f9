"""Tests for nu_dash.classifier: the classification pipeline."""

import asyncio
import json
import os
from pathlib import Path

import pytest

from nu_dash.classifier import (
    ExecutionResult,
    Level,
    build_argv,
    classify,
    parse_structured,
)
from nu_dash.config import GlobalConfig, TaskSpec

# --- Helpers ---


def _make_config(**overrides) -> GlobalConfig:
    """GlobalConfig that runs snippets through POSIX sh."""
    defaults = {"shell": ("sh", "-c"), "template": "%s"}
    defaults.update(overrides)
    return GlobalConfig(**defaults)


def _classify(task: TaskSpec, config: GlobalConfig | None = None, env=None) -> ExecutionResult:
    return asyncio.run(classify(task, config or _make_config(), env))


def _touch(marker: Path) -> str:
    return f"cat > /dev/null; touch {marker}"


# --- Tests ---


class TestBuildArgv:
    def test_shell_and_template(self):
        config = _make_config(template="set -e; %s")
        argv = build_argv(TaskSpec(name="t", command="ls"), config)
        assert argv == ["sh", "-c", "set -e; ls"]

    def test_isolated_env_wraps_with_direnv(self, tmp_path):
        task = TaskSpec(name="t", command="ls", isolated_env=True, workdir=str(tmp_path))
        argv = build_argv(task, _make_config())
        assert argv == ["direnv", "exec", str(tmp_path), "sh", "-c", "ls"]


class TestPlainPipeline:
    def test_echo_hello_is_info(self):
        result = _classify(TaskSpec(name="hello", command="echo hello"))
        assert result == ExecutionResult(level=Level.INFO, message="hello\n", details="hello\n")

    def test_template_applied(self):
        config = _make_config(template="echo wrapped; %s")
        result = _classify(TaskSpec(name="t", command="echo hello"), config)
        assert result.message == "wrapped\nhello\n"

    def test_details_include_stderr(self):
        result = _classify(TaskSpec(name="t", command="echo out; echo err >&2"))
        assert result.message == "out\n"
        assert result.details == "out\nerr\n"

    def test_ignore_stderr(self):
        task = TaskSpec(name="t", command="echo out; echo err >&2", ignore_stderr=True)
        result = _classify(task)
        assert result.details == "out\n"

    def test_env_is_passed(self):
        env = {**os.environ, "NU_DASH_STAGE": "prod"}
        result = _classify(TaskSpec(name="t", command="echo $NU_DASH_STAGE"), env=env)
        assert result.message == "prod\n"

    def test_workdir_is_used(self, tmp_path):
        (tmp_path / "marker.txt").write_text("x")
        result = _classify(TaskSpec(name="t", command="ls", workdir=str(tmp_path)))
        assert "marker.txt" in result.message


class TestExecutionFailure:
    def test_exit_1_is_critical(self):
        result = _classify(TaskSpec(name="t", command="exit 1"))
        assert result.level is Level.CRITICAL
        assert result.message == "exit status 1"
        assert "exit status 1" in result.details

    def test_partial_output_kept_in_details(self):
        result = _classify(TaskSpec(name="t", command="echo before; echo oops >&2; exit 2"))
        assert result.level is Level.CRITICAL
        assert "before" in result.details
        assert "oops" in result.details

    def test_auxiliary_commands_never_run(self, tmp_path):
        fmt_marker = tmp_path / "formatted"
        cond_marker = tmp_path / "condition"
        task = TaskSpec(
            name="t",
            command="exit 1",
            message_format=_touch(fmt_marker),
            error_if=_touch(cond_marker),
        )
        result = _classify(task)
        assert result.level is Level.CRITICAL
        assert result.message == "exit status 1"
        assert not fmt_marker.exists()
        assert not cond_marker.exists()

    def test_timeout_is_critical(self):
        config = _make_config(timeout=0.2)
        result = _classify(TaskSpec(name="t", command="sleep 5"), config)
        assert result.level is Level.CRITICAL
        assert result.message.startswith("timed out")


class TestMessageFormat:
    def test_formatter_replaces_message(self):
        task = TaskSpec(name="t", command="echo hello", message_format="tr a-z A-Z")
        result = _classify(task)
        assert result.level is Level.INFO
        assert result.message == "HELLO\n"
        assert result.details == "hello\n"

    def test_failed_formatter_keeps_message(self):
        task = TaskSpec(
            name="t",
            command="echo hello",
            message_format="echo partial; echo broken >&2; exit 3",
        )
        result = _classify(task)
        assert result.level is Level.INFO
        assert result.message == "hello\n"
        assert "exit status 3" in result.details
        assert "broken" in result.details
        assert "partial" in result.details

    def test_formatter_sees_stdout_only(self):
        task = TaskSpec(
            name="t",
            command="echo out; echo err >&2",
            message_format="cat",
        )
        assert _classify(task).message == "out\n"


class TestErrorCondition:
    @pytest.mark.parametrize("answer", ["true", "TRUE", "it is true!", "True\n"])
    def test_true_anywhere_is_error(self, answer):
        task = TaskSpec(name="t", command="echo x", error_if=f"cat > /dev/null; echo '{answer}'")
        assert _classify(task).level is Level.ERROR

    def test_false_is_info(self):
        task = TaskSpec(name="t", command="echo x", error_if="cat > /dev/null; echo false")
        assert _classify(task).level is Level.INFO

    def test_condition_sees_stdout(self):
        task = TaskSpec(
            name="t",
            command="echo 5",
            error_if='read n; if [ "$n" -gt 3 ]; then echo true; else echo false; fi',
        )
        result = _classify(task)
        assert result.level is Level.ERROR
        assert result.message == "5\n"
        assert "true" in result.details

    def test_condition_below_threshold(self):
        task = TaskSpec(
            name="t",
            command="echo 2",
            error_if='read n; if [ "$n" -gt 3 ]; then echo true; else echo false; fi',
        )
        assert _classify(task).level is Level.INFO

    def test_failing_condition_is_critical(self):
        task = TaskSpec(name="t", command="echo x", error_if="echo nope; exit 2")
        result = _classify(task)
        assert result.level is Level.CRITICAL
        assert result.message == "x\n"
        assert "exit status 2" in result.details

    def test_true_wins_over_condition_failure(self):
        task = TaskSpec(name="t", command="echo x", error_if="echo true; exit 2")
        assert _classify(task).level is Level.ERROR

    def test_formatted_message_kept_with_condition(self):
        task = TaskSpec(
            name="t",
            command="echo hello",
            message_format="tr a-z A-Z",
            error_if="cat > /dev/null; echo true",
        )
        result = _classify(task)
        assert result.level is Level.ERROR
        assert result.message == "HELLO\n"


class TestStructuredOutput:
    def test_record_returned_verbatim(self):
        record = {"level": "error", "message": "disk 91%", "details": "/dev/sda1 91%"}
        task = TaskSpec(name="t", command=f"echo '{json.dumps(record)}'", expect_json=True)
        result = _classify(task)
        assert result == ExecutionResult(Level.ERROR, "disk 91%", "/dev/sda1 91%")

    def test_pipeline_skipped(self, tmp_path):
        marker = tmp_path / "formatted"
        record = {"level": "info", "message": "m", "details": "d"}
        task = TaskSpec(
            name="t",
            command=f"echo '{json.dumps(record)}'",
            expect_json=True,
            message_format=_touch(marker),
        )
        assert _classify(task).message == "m"
        assert not marker.exists()

    def test_invalid_json_is_critical(self):
        task = TaskSpec(name="t", command="echo not-json", expect_json=True)
        result = _classify(task)
        assert result.level is Level.CRITICAL
        assert result.details == "not-json\n"
        assert result.message

    def test_unknown_level_is_critical(self):
        task = TaskSpec(
            name="t",
            command='echo \'{"level": "panic", "message": "m"}\'',
            expect_json=True,
        )
        result = _classify(task)
        assert result.level is Level.CRITICAL
        assert "panic" in result.message


class TestParseStructured:
    def test_missing_fields_default_empty(self):
        assert parse_structured('{"level": "info"}') == ExecutionResult(Level.INFO, "", "")

    def test_level_case_insensitive(self):
        assert parse_structured('{"level": "CRITICAL"}').level is Level.CRITICAL

    def test_rejects_list(self):
        with pytest.raises(ValueError):
            parse_structured("[1, 2]")

    def test_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_structured("{")
