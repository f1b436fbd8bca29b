import pytest

from mr_reviewer import logger as logger_module
from mr_reviewer.logger import configure_logger, log_failure, log_file_dir, log_for_unit, log_timing
from mr_reviewer.models.review import ReviewUnit


@pytest.fixture(autouse=True)
def _restore_sinks(monkeypatch):
    monkeypatch.delenv(logger_module.LOG_DIR_ENV, raising=False)
    yield
    monkeypatch.delenv(logger_module.LOG_DIR_ENV, raising=False)
    configure_logger(force=True)


class TestFileSink:
    def test_file_logging_is_off_without_a_directory(self):
        assert log_file_dir() is None
        assert configure_logger(force=True) is None

    def test_directory_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv(logger_module.LOG_DIR_ENV, str(tmp_path / "logs"))

        assert log_file_dir() == (tmp_path / "logs").resolve()

    def test_configured_directory_receives_records(self, tmp_path):
        target = configure_logger(log_dir=tmp_path, force=True)

        logger_module.get_logger().info("written to file")
        logger_module.get_logger().complete()

        assert target == tmp_path.resolve()
        log_files = list(tmp_path.glob("mr-reviewer-*.log"))
        assert len(log_files) == 1
        assert "written to file" in log_files[0].read_text(encoding="utf-8")


class TestContextHelpers:
    def _capture(self):
        records = []
        sink_id = logger_module.get_logger().add(lambda message: records.append(message.record), level="DEBUG")
        return records, sink_id

    def test_unit_identifiers_are_bound(self):
        records, sink_id = self._capture()
        try:
            log_for_unit(logger_module.get_logger(), ReviewUnit(42, 7), delivery_id="d1").info("fetching")
        finally:
            logger_module.get_logger().remove(sink_id)

        assert records[0]["extra"] == {"project_id": 42, "merge_request_iid": 7, "delivery_id": "d1"}

    def test_failure_names_the_error_type(self):
        records, sink_id = self._capture()
        try:
            log_failure(logger_module.get_logger(), "publish failed", ValueError("bad"), unit=ReviewUnit(1, 2))
        finally:
            logger_module.get_logger().remove(sink_id)

        assert records[0]["message"] == "publish failed (ValueError: bad)"
        assert records[0]["extra"]["merge_request_iid"] == 2

    def test_timing_logs_failures_and_reraises(self):
        records, sink_id = self._capture()
        try:
            with pytest.raises(RuntimeError):
                with log_timing(logger_module.get_logger(), "fetch_changes"):
                    raise RuntimeError("boom")
        finally:
            logger_module.get_logger().remove(sink_id)

        assert records[-1]["level"].name == "ERROR"
        assert records[-1]["message"].startswith("fetch_changes: failed after")
