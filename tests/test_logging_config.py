import logging

from quiz_client import logging_config


def test_configure_logging_adds_rotating_file_handler_once(tmp_path, monkeypatch):
    monkeypatch.setattr(logging_config, "_configured", False)
    logger = logging.getLogger("quiz_client")
    before = list(logger.handlers)
    log_file = tmp_path / "client.log"

    try:
        logging_config.configure_logging("DEBUG", str(log_file))
        logging_config.configure_logging("INFO", str(log_file))

        added = [h for h in logger.handlers if h not in before]
        assert len(added) == 1
        assert logger.level == logging.INFO
        assert logging.getLogger("websockets").level == logging.WARNING
    finally:
        for handler in logger.handlers[:]:
            if handler not in before:
                logger.removeHandler(handler)
                handler.close()
