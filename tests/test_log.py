import logging
import sys

import durable_llama.log.handler as handler_module
from durable_llama.log import setup_logging
from durable_llama.log.handler import LokiHandler
from durable_llama.log.setup import MainFormatter


class FakeResponse:
    status_code = 204
    text = ""


def test_setup_logging_installs_single_console_handler():
    root = logging.getLogger()
    saved = list(root.handlers), root.level
    try:
        setup_logging(logging.DEBUG)
        setup_logging(logging.WARNING)

        console = [h for h in root.handlers if isinstance(h, logging.StreamHandler) and h.stream is sys.stdout]
        assert len(console) == 1
        assert console[0].level == logging.WARNING
        assert isinstance(console[0].formatter, MainFormatter)
    finally:
        root.handlers[:] = saved[0]
        root.setLevel(saved[1])


def test_loki_handler_pushes_buffered_records(monkeypatch):
    posts = []

    def fake_post(url, json=None, headers=None, timeout=None):
        posts.append((url, json, headers))
        return FakeResponse()

    monkeypatch.setattr(handler_module.requests, "post", fake_post)
    handler = LokiHandler(url="http://loki:3100/", org_id="tenant", flush_interval=60)
    try:
        record = logging.LogRecord("durable_llama.supervisor", logging.WARNING, __file__, 1, "worker down", None, None)
        handler.emit(record)
        handler.flush()
    finally:
        handler.close()

    url, payload, headers = posts[0]
    assert url == "http://loki:3100/loki/api/v1/push"
    assert headers["X-Scope-OrgID"] == "tenant"
    stream = payload["streams"][0]
    assert stream["stream"]["job"] == "durable-llama"
    assert stream["stream"]["level"] == "warning"
    assert stream["values"][0][1] == "worker down"


def test_loki_handler_survives_network_errors(monkeypatch, capsys):
    def failing_post(*args, **kwargs):
        raise handler_module.requests.ConnectionError("refused")

    monkeypatch.setattr(handler_module.requests, "post", failing_post)
    handler = LokiHandler(url="http://loki:3100", flush_interval=60)
    try:
        handler.emit(logging.LogRecord("x", logging.INFO, __file__, 1, "hello", None, None))
        handler.flush()
    finally:
        handler.close()

    assert "Failed to send 1 logs to Loki" in capsys.readouterr().err
