"""Flask application factory and HTTP routes."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from ..config import AppConfig
from ..exporter import HistoryExporter
from ..speedtest.controller import SpeedtestController
from ..speedtest.models import to_num

LOGGER = logging.getLogger(__name__)


def create_web_app(
    config: AppConfig,
    controller: SpeedtestController,
    exporter: HistoryExporter,
) -> Flask:
    app = Flask(__name__)

    if config.web.reverse_proxy_headers:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)  # type: ignore

    @app.get("/health")
    def health():
        return jsonify({"ok": True, "ts": int(time.time() * 1000)})

    @app.get("/speedtest/last")
    @app.get("/stats/speedtest/last")
    def speedtest_last():
        return jsonify(controller.snapshot())

    @app.route("/speedtest/run", methods=["GET", "POST"])
    @app.route("/stats/speedtest/run", methods=["GET", "POST"])
    def speedtest_run():
        return jsonify(controller.run_now())

    @app.route("/speedtest/config", methods=["GET", "POST"])
    @app.route("/stats/speedtest/config", methods=["GET", "POST"])
    def speedtest_config():
        raw = (request.args.get("interval") or "").strip()
        if not raw and request.is_json:
            body = request.get_json(silent=True) or {}
            raw = str(body.get("interval", "")).strip()
        interval = to_num(raw) if raw else None
        if interval is None:
            return jsonify({"error": "bad_interval"}), 400
        return jsonify(controller.set_interval_min(interval))

    @app.get("/stats/speedtest/history")
    def speedtest_history():
        snapshot = controller.snapshot()
        return jsonify(
            {
                "ok": True,
                "window": "24h",
                "now": int(time.time() * 1000),
                "history": snapshot["history_24h"],
                "max_down_mbps": snapshot["max_down_mbps"],
                "max_up_mbps": snapshot["max_up_mbps"],
            }
        )

    @app.get("/speedtest/history.csv")
    def speedtest_history_csv():
        buffer = exporter.build_csv()
        filename = f"speedtest-{datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%S')}.csv"
        return Response(
            buffer.getvalue(),
            mimetype="text/csv",
            headers={"Content-Disposition": f"attachment; filename={filename}"},
        )

    @app.errorhandler(404)
    def not_found(_error):
        return jsonify({"error": "not_found"}), 404

    @app.errorhandler(Exception)
    def internal_error(error):
        if isinstance(error, HTTPException):
            return jsonify({"error": error.name.lower().replace(" ", "_")}), error.code
        LOGGER.exception("Unhandled error serving %s", request.path)
        return jsonify({"error": str(error)}), 500

    return app
