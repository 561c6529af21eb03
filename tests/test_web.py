"""Tests for the HTTP API."""
from __future__ import annotations

import csv
import io
import json
from unittest.mock import patch

import pytest

from netgauge.exporter import HistoryExporter
from netgauge.speedtest.controller import SpeedtestController
from netgauge.speedtest.process import ProcessResult
from netgauge.speedtest.resolver import RunnerResolver
from netgauge.speedtest.state import StateStore
from netgauge.web.app import create_web_app

STCLI_OUTPUT = json.dumps({"ping": 21.0, "download": 93_500_000, "upload": 11_000_000})


@pytest.fixture
def controller(app_config, inline_executor, clock):
    resolver = RunnerResolver(app_config)
    available = {"speedtest-cli": "/usr/bin/speedtest-cli"}
    with patch.object(resolver, "_which", side_effect=available.get), patch.object(
        resolver, "_is_python_speedtest", return_value=True
    ):
        yield SpeedtestController(
            app_config.speedtest,
            resolver,
            store=StateStore(app_config.state_path),
            executor=inline_executor,
            clock=clock,
        )


@pytest.fixture
def client(app_config, controller):
    app = create_web_app(app_config, controller, HistoryExporter(controller))
    app.config["TESTING"] = True
    return app.test_client()


@pytest.fixture
def speedtest_cli_ok():
    with patch(
        "netgauge.speedtest.runner.run_command",
        return_value=ProcessResult(0, STCLI_OUTPUT, ""),
    ) as mocked:
        yield mocked


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.get_json()["ok"] is True


class TestSpeedtestRoutes:
    def test_last_before_any_run(self, client):
        body = client.get("/speedtest/last").get_json()

        assert body["last"] is None
        assert body["running"] is False
        assert body["interval_min"] == 0
        assert body["history_24h"] == []

    def test_stats_alias(self, client):
        assert client.get("/stats/speedtest/last").status_code == 200

    @pytest.mark.parametrize("method", ["get", "post"])
    def test_run(self, client, speedtest_cli_ok, method):
        response = getattr(client, method)("/speedtest/run")

        body = response.get_json()
        assert response.status_code == 200
        assert body["runner"] == "speedtest-cli"
        assert body["last"]["down_mbps"] == pytest.approx(93.5)
        assert body["max_down_mbps"] == 100
        assert speedtest_cli_ok.call_count == 1

    def test_run_without_runner(self, app_config, inline_executor, clock):
        resolver = RunnerResolver(app_config)
        with patch.object(resolver, "_which", return_value=None):
            controller = SpeedtestController(app_config.speedtest, resolver, executor=inline_executor, clock=clock)
            app = create_web_app(app_config, controller, HistoryExporter(controller))
            body = app.test_client().post("/speedtest/run").get_json()

        assert body["last_error"].startswith("No speedtest runner found")

    def test_config_query_param(self, client):
        response = client.get("/speedtest/config?interval=30")

        assert response.status_code == 200
        assert response.get_json()["interval_min"] == 30

    def test_config_json_body(self, client):
        response = client.post("/speedtest/config", json={"interval": 5000})

        assert response.status_code == 200
        assert response.get_json()["interval_min"] == 1440

    @pytest.mark.parametrize("query", ["", "?interval=", "?interval=soon"])
    def test_config_bad_interval(self, client, query):
        response = client.get(f"/speedtest/config{query}")

        assert response.status_code == 400
        assert response.get_json() == {"error": "bad_interval"}

    def test_history(self, client, speedtest_cli_ok):
        client.post("/speedtest/run")

        body = client.get("/stats/speedtest/history").get_json()

        assert body["ok"] is True
        assert body["window"] == "24h"
        assert len(body["history"]) == 1
        assert body["history"][0]["runner"] == "speedtest-cli"
        assert body["max_up_mbps"] == 25

    def test_history_csv(self, client, speedtest_cli_ok):
        client.post("/speedtest/run")

        response = client.get("/speedtest/history.csv")

        assert response.status_code == 200
        assert response.mimetype == "text/csv"
        assert "attachment" in response.headers["Content-Disposition"]
        rows = list(csv.reader(io.StringIO(response.get_data(as_text=True))))
        assert rows[0][0] == "timestamp"
        assert rows[1][1] == "speedtest-cli"
        assert rows[1][4] == "93.5"


class TestErrors:
    def test_unknown_route(self, client):
        response = client.get("/nope")

        assert response.status_code == 404
        assert response.get_json() == {"error": "not_found"}

    def test_method_not_allowed(self, client):
        response = client.delete("/speedtest/run")

        assert response.status_code == 405
        assert response.get_json() == {"error": "method_not_allowed"}
