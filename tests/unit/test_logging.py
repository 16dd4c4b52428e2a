"""Unit tests for logging and error reporting."""

import logging

import fixsync


class TestSetupLogging:
    """Test setup_logging."""

    def test_default_console_level_is_warning(self):
        fixsync.setup_logging(verbose=0, log_file=False)

        assert fixsync.logger.level == logging.WARNING
        assert fixsync.logger.handlers[0].level == logging.WARNING

    def test_single_verbose_shows_progress(self):
        fixsync.setup_logging(verbose=1, log_file=False)

        assert fixsync.logger.handlers[0].level == logging.INFO

    def test_double_verbose_shows_tool_output(self):
        fixsync.setup_logging(verbose=2, log_file=False)

        assert fixsync.logger.handlers[0].level == logging.DEBUG

    def test_log_file_records_debug_regardless_of_console(self, tmp_path):
        fixsync.setup_logging(verbose=0, log_file=True)
        fixsync.logger.debug("hello from test")
        for handler in fixsync.logger.handlers:
            handler.flush()

        log_path = tmp_path / "home" / ".fixsync" / "fixsync.log"
        assert fixsync.logger.level == logging.DEBUG
        assert "hello from test" in log_path.read_text()

    def test_log_file_override(self, tmp_path, monkeypatch):
        log_path = tmp_path / "logs" / "sync.log"
        monkeypatch.setenv("FIXSYNC_LOG", str(log_path))

        fixsync.setup_logging(verbose=0, log_file=True)

        assert fixsync.log_file_path() == log_path
        assert log_path.parent.is_dir()

    def test_handlers_not_duplicated(self):
        fixsync.setup_logging(verbose=0, log_file=False)
        fixsync.setup_logging(verbose=0, log_file=False)

        assert len(fixsync.logger.handlers) == 1


class TestVerboseSync:
    """Test -v and -vv with the sync command."""

    def test_progress_at_single_verbose(self, project_root, monkeypatch, toolchain_mock, capsys):
        toolchain_mock()
        monkeypatch.chdir(project_root)

        assert fixsync.main(["-v", "sync"]) == 0

        err = capsys.readouterr().err
        assert "INFO: Cloning" in err
        assert "git clone stderr" not in err

    def test_tool_output_at_double_verbose(self, project_root, monkeypatch, toolchain_mock, capsys):
        toolchain_mock()
        monkeypatch.chdir(project_root)

        assert fixsync.main(["-vv", "sync"]) == 0

        err = capsys.readouterr().err
        assert "DEBUG: Running git clone" in err
        assert "Cloning into 'spade'" in err
        assert "Removed working directory" in err


class TestErrorReporting:
    """Test report_error and report_sync_failure."""

    def test_prints_message_and_hint(self, capsys):
        result = fixsync.report_error("something broke", hint="try again")
        captured = capsys.readouterr()

        assert result == 1
        assert "Error: something broke" in captured.err
        assert "Hint: try again" in captured.err

    def test_no_color_env_disables_colors(self, monkeypatch):
        monkeypatch.setenv("NO_COLOR", "1")

        assert fixsync.paint("plain", "red", force=False) == "plain"
        assert not fixsync.color_enabled()

    def test_sync_failure_includes_step_and_detail(self, capsys):
        exc = fixsync.CheckoutFailed(
            "git checkout abc: git exited with code 128",
            "fatal: reference is not a tree: abc",
        )

        assert fixsync.report_sync_failure(exc) == 1
        err = capsys.readouterr().err
        assert "Error: checkout failed: git checkout abc" in err
        assert "fatal: reference is not a tree" in err

    def test_paint(self):
        assert fixsync.paint("x", "green", force=True) == "\033[32mx\033[0m"
        assert fixsync.paint("x", "nope", force=True) == "x"
