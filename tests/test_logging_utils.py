from __future__ import annotations

import logging
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from plan_gate import logging_utils


def _settings(log_file: str | None, level: str = "INFO") -> SimpleNamespace:
    return SimpleNamespace(
        logging=SimpleNamespace(level=level, file=log_file),
    )


@patch("plan_gate.logging_utils.load_settings")
@patch("plan_gate.logging_utils.logging.basicConfig")
def test_configure_logging_stream_only(
    mock_basic_config: MagicMock,
    mock_load_settings: MagicMock,
) -> None:
    mock_load_settings.return_value = _settings(None, level="debug")

    logging_utils.configure_logging()

    kwargs = mock_basic_config.call_args.kwargs
    assert kwargs["force"] is True
    assert kwargs["level"] == logging.DEBUG
    assert len(kwargs["handlers"]) == 1


@patch("plan_gate.logging_utils.load_settings")
@patch("plan_gate.logging_utils.logging.basicConfig")
def test_configure_logging_with_file(
    mock_basic_config: MagicMock,
    mock_load_settings: MagicMock,
    tmp_path,
) -> None:
    mock_load_settings.return_value = _settings(str(tmp_path / "logs" / "gate.log"))

    logging_utils.configure_logging()

    handlers = mock_basic_config.call_args.kwargs["handlers"]
    assert len(handlers) == 2
    assert (tmp_path / "logs").is_dir()
    handlers[1].close()


@patch("plan_gate.logging_utils.load_settings")
@patch("plan_gate.logging_utils.logging.FileHandler", side_effect=OSError("permission denied"))
@patch("plan_gate.logging_utils._logger")
@patch("plan_gate.logging_utils.logging.basicConfig")
def test_configure_logging_file_handler_error(
    _mock_basic_config: MagicMock,
    mock_logger: MagicMock,
    _mock_file_handler: MagicMock,
    mock_load_settings: MagicMock,
) -> None:
    mock_load_settings.return_value = _settings("./logs/gate.log")

    logging_utils.configure_logging()

    mock_logger.warning.assert_called_once()


def test_get_logger_auto_configures(monkeypatch) -> None:
    monkeypatch.setattr(logging_utils, "_logging_configured", False)

    calls = {"count": 0}

    def fake_configure() -> None:
        calls["count"] += 1
        monkeypatch.setattr(logging_utils, "_logging_configured", True)

    monkeypatch.setattr(logging_utils, "configure_logging", fake_configure)

    logger = logging_utils.get_logger("test.logger")
    logging_utils.get_logger("test.logger")
    assert logger.name == "test.logger"
    assert calls["count"] == 1


@patch("plan_gate.logging_utils.load_settings")
@patch("plan_gate.logging_utils.logging.basicConfig")
@patch("plan_gate.logging_utils._logger")
def test_configure_logging_unknown_level_falls_back(
    mock_logger: MagicMock,
    mock_basic_config: MagicMock,
    mock_load_settings: MagicMock,
) -> None:
    mock_load_settings.return_value = _settings(None, level="chatty")

    logging_utils.configure_logging()

    assert mock_basic_config.call_args.kwargs["level"] == logging.INFO
    mock_logger.warning.assert_called_once()


@patch("plan_gate.logging_utils.load_settings")
@patch("plan_gate.logging_utils.logging.basicConfig")
def test_configure_logging_level_override(
    mock_basic_config: MagicMock,
    mock_load_settings: MagicMock,
) -> None:
    mock_load_settings.return_value = _settings(None, level="INFO")

    logging_utils.configure_logging("warning")

    assert mock_basic_config.call_args.kwargs["level"] == logging.WARNING
