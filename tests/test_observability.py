#!/usr/bin/env python3
"""
Tests for structured logging and Prometheus metrics.
"""

import sys
import json
import logging

import pytest
from prometheus_client import CollectorRegistry

from plugdeck.observability.logging import (
    StructuredLogger, clear_request_context, configure_logging, generate_request_id,
    get_request_context, scheduler_logger, set_request_context,
)
from plugdeck.observability.metrics import RuntimeMetrics


def make_record(message="hello", **extra_fields):
    record = logging.LogRecord("plugdeck.test", logging.INFO, __file__, 10, message, None, None)
    record.extra_fields = extra_fields
    return record


@pytest.fixture(autouse=True)
def clean_context():
    clear_request_context()
    yield
    clear_request_context()


class TestJSONFormatter:

    def test_basic_fields(self):
        entry = json.loads(StructuredLogger.JSONFormatter().format(make_record()))
        assert entry["level"] == "INFO"
        assert entry["logger"] == "plugdeck.test"
        assert entry["message"] == "hello"
        assert entry["timestamp"].endswith("Z")

    def test_context_variables_are_included(self):
        set_request_context(request_id="req-1", job_key="github:sync")
        entry = json.loads(StructuredLogger.JSONFormatter().format(make_record()))
        assert entry["request_id"] == "req-1"
        assert entry["job_key"] == "github:sync"
        assert "run_id" not in entry

    def test_extra_fields_are_sanitized(self):
        record = make_record(api_token="abcd1234efgh5678", plugin_key="github", count=3)
        entry = json.loads(StructuredLogger.JSONFormatter().format(record))
        assert entry["api_token"] == "abcd***5678"
        assert entry["plugin_key"] == "github"
        assert entry["count"] == 3

    def test_identifier_lists_are_not_masked(self):
        long_key = "github-enterprise-mirror-sync"
        record = make_record(plugins=[long_key], skipped_plugins=[long_key], job_keys=[f"{long_key}:sync"])
        entry = json.loads(StructuredLogger.JSONFormatter().format(record))
        assert entry["plugins"] == [long_key]
        assert entry["skipped_plugins"] == [long_key]
        assert entry["job_keys"] == [f"{long_key}:sync"]

    def test_exception_info(self):
        try:
            raise ValueError("bad")
        except ValueError:
            record = logging.LogRecord("plugdeck.test", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())
        entry = json.loads(StructuredLogger.JSONFormatter().format(record))
        assert entry["exception_type"] == "ValueError"
        assert "bad" in entry["exception"]


class TestRequestContext:

    def test_set_and_clear(self):
        set_request_context(plugin_key="github", worker_id="w-1")
        assert get_request_context()["plugin_key"] == "github"
        clear_request_context()
        assert all(v is None for v in get_request_context().values())

    def test_generated_ids(self):
        assert generate_request_id().startswith("req-")
        assert generate_request_id() != generate_request_id()

    def test_configure_logging(self):
        configure_logging("warning")
        try:
            assert scheduler_logger.logger.level == logging.WARNING
        finally:
            configure_logging("INFO")


class TestRuntimeMetrics:

    @pytest.fixture
    def metrics(self):
        return RuntimeMetrics(CollectorRegistry())

    def test_job_metrics(self, metrics):
        metrics.record_job_run("github:sync", "success", 0.3)
        metrics.record_job_run("github:sync", "exhausted", 2.0)
        metrics.record_job_skipped("github:sync")
        metrics.set_running("github:sync", 1)

        registry = metrics.registry
        labels = {"job_key": "github:sync", "status": "success"}
        assert registry.get_sample_value("plugdeck_job_runs_total", labels) == 1
        assert registry.get_sample_value("plugdeck_job_duration_seconds_count", labels) == 1
        assert registry.get_sample_value("plugdeck_job_skipped_total", {"job_key": "github:sync"}) == 1
        assert registry.get_sample_value("plugdeck_jobs_running", {"job_key": "github:sync"}) == 1

    def test_config_validation_results(self, metrics):
        metrics.record_config_validation("github", True)
        metrics.record_config_validation("github", False)
        metrics.record_config_validation("github", False)
        value = metrics.registry.get_sample_value(
            "plugdeck_config_validations_total", {"plugin_key": "github", "result": "invalid"}
        )
        assert value == 2

    def test_export(self, metrics):
        metrics.record_manifest_load("ok")
        body = metrics.export().decode()
        assert 'plugdeck_manifest_loads_total{outcome="ok"} 1.0' in body
        assert metrics.content_type.startswith("text/plain")
