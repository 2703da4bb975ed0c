import logging

import pytest

from app.celery_beat import celery as beat_celery
from app.celery_logging import configure_celery_logging
from app.celery_shared import celery
from app.services.nuvemshop import sync_tasks  # noqa: F401  регистрирует задачи
from app.utils import logging_config
from app.utils.logging_config import BusinessLogicFilter, log_business_event, log_error_with_context


def make_record(name, msg):
    return logging.LogRecord(name, logging.INFO, __file__, 1, msg, None, None)


@pytest.fixture
def log_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(logging_config, "LOG_PATH", str(tmp_path))
    yield tmp_path
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()


def test_filter_hides_technical_loggers():
    log_filter = BusinessLogicFilter()
    assert log_filter.filter(make_record("sqlalchemy.engine", "anything")) is False
    assert log_filter.filter(make_record("httpx", "HTTP Request: GET")) is False
    assert log_filter.filter(make_record("app", "SELECT id FROM sync_run")) is False
    assert log_filter.filter(make_record("app", "COMMIT")) is False
    assert log_filter.filter(make_record("nuvemshop.sync", "Sync run committed")) is True


def test_setup_writes_rotating_files(log_dir):
    logging_config.setup_project_logging(log_level="warning")

    root = logging.getLogger()
    assert len(root.handlers) == 3
    console = root.handlers[0]
    assert console.level == logging.WARNING
    assert any(isinstance(f, BusinessLogicFilter) for f in console.filters)

    log_business_event("sync_committed", "orders synced", run_id="r-1", records=3)
    log_error_with_context(RuntimeError("boom"), "sync run", run_id="r-2")
    for handler in root.handlers:
        handler.flush()

    app_log = (log_dir / "app.log").read_text(encoding="utf-8")
    assert "[SYNC_COMMITTED] orders synced | run_id=r-1 | records=3" in app_log
    errors_log = (log_dir / "errors.log").read_text(encoding="utf-8")
    assert "[ERROR] sync run: boom | run_id=r-2" in errors_log
    assert "SYNC_COMMITTED" not in errors_log


def test_setup_is_idempotent(log_dir):
    logging_config.setup_project_logging()
    logging_config.setup_project_logging()
    assert len(logging.getLogger().handlers) == 3


def test_sql_logs_keep_console_unfiltered(log_dir):
    logging_config.setup_project_logging(enable_sql_logs=True)
    console = logging.getLogger().handlers[0]
    assert console.filters == []
    assert logging.getLogger("sqlalchemy").level == logging.WARNING


def test_celery_logging_signal_uses_project_handlers(log_dir):
    configure_celery_logging()
    assert (log_dir / "app.log").exists()
    assert len(logging.getLogger().handlers) == 3


def test_beat_schedule_points_at_registered_tasks():
    assert beat_celery is celery
    schedule = celery.conf.beat_schedule
    assert set(schedule) == {"purge-processed-events", "sweep-expired-sync-locks"}
    for entry in schedule.values():
        assert entry["task"] in celery.tasks


def test_worker_does_not_hijack_root_logger():
    assert celery.conf.worker_hijack_root_logger is False
    assert celery.conf.task_acks_late is True
