import logging
from dataclasses import asdict
from datetime import datetime

from flask import Flask, jsonify, request

from axedash.auth import COOKIE_NAME, hash_password, load_access_credentials, login_required
from axedash.errors import AxedashError, ConfigError, ConfigParseError, PeerBadStatus, PeerError
from axedash.metrics import DEFAULT_QUERY_LIMIT, TABLES, format_ts
from axedash.remote import join_url

logger = logging.getLogger(__name__)

MAX_QUERY_LIMIT = 10000
NO_CACHE = {"Cache-Control": "no-cache, no-store, must-revalidate", "Pragma": "no-cache", "Expires": "0"}


def client_ip():
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("X-Real-IP") or request.remote_addr or "-"


def _find_device(config):
    instance_id = request.args.get("instanceId", "")
    if not instance_id:
        return None, (jsonify({"message": 'Missing "instanceId" query parameter.'}), 400)
    peer = config.find_device(instance_id)
    if peer is None:
        return None, (jsonify({"message": f'Instance "{instance_id}" not found in configuration.'}), 404)
    return peer, None


def _peer_failure(peer, e):
    logger.error(f"Request to {peer.name} ({peer.url}) failed: {e}")
    status = e.status_code if isinstance(e, PeerBadStatus) and e.status_code else 500
    return jsonify({"error": "Failed to reach instance", "message": str(e)}), status


def _parse_time(value):
    if not value:
        return None
    try:
        return format_ts(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        raise ValueError(f"invalid timestamp {value!r}, expected ISO-8601")


def _metric_row(metric):
    row = asdict(metric)
    for key in ("timestamp", "last_block_time"):
        if key in row:
            row[key] = format_ts(row[key])
    return row


def create_app(services):
    """Build the authenticated application served once setup is complete.

    ``services`` carries the collaborators the handlers use: ``store``,
    ``jwt_service``, ``systems``, ``client``, ``sink``, ``scheduler``,
    ``config_dir`` and ``on_config_change``.
    """
    app = Flask(__name__)
    app.config["AXEDASH"] = services

    @app.before_request
    def log_request():
        logger.info(f"[{client_ip()}] {request.method} {request.full_path.rstrip('?')}")

    @app.errorhandler(AxedashError)
    def handle_error(e):
        logger.error(f"Unhandled error on {request.path}: {e}")
        return jsonify({"status": "error", "message": str(e)}), 500

    @app.route("/api/login", methods=["POST"])
    def api_login():
        body = request.get_json(silent=True) or {}
        username = body.get("username", "")
        hashed = body.get("hashedPassword") or (hash_password(body["password"]) if body.get("password") else "")
        if not username or not hashed:
            return jsonify({"message": "Invalid request body"}), 400
        try:
            access = load_access_credentials(services.config_dir)
        except AxedashError as e:
            logger.error(f"Error reading access credentials: {e}")
            return jsonify({"message": "Server configuration error."}), 500
        if access.get(username) != hashed:
            logger.info(f"[{client_ip()}] Failed login for {username}")
            return jsonify({"message": "Invalid username or password"}), 401

        token = services.jwt_service.create_token(username)
        response = jsonify({"message": "Login successful"})
        response.set_cookie(COOKIE_NAME, token, max_age=services.store.get().cookie_max_age,
                            path="/", httponly=True, samesite="Strict")
        return response

    @app.route("/api/logout", methods=["GET", "POST"])
    def api_logout():
        response = jsonify({"message": "Logout successful"})
        response.delete_cookie(COOKIE_NAME, path="/")
        return response

    @app.route("/api/systems/info")
    @login_required
    def api_systems_info():
        config = services.store.get()
        return jsonify(services.systems.systems_info(config)), 200, NO_CACHE

    @app.route("/api/instance/info")
    @login_required
    def api_instance_info():
        config = services.store.get()
        peer, failure = _find_device(config)
        if failure:
            return failure
        try:
            data = services.client.get_json(peer.url, config.api_path("instanceInfo"))
        except PeerError as e:
            return _peer_failure(peer, e)
        return jsonify(data)

    @app.route("/api/instance/service/restart", methods=["POST"])
    @login_required
    def api_instance_restart():
        config = services.store.get()
        if config.disable_settings:
            return jsonify({"message": "Settings are disabled by configuration."}), 403
        peer, failure = _find_device(config)
        if failure:
            return failure
        try:
            services.client.call("POST", join_url(peer.url, config.api_path("instanceRestart")))
        except PeerError as e:
            return _peer_failure(peer, e)
        logger.info(f"[{client_ip()}] Restart initiated for {peer.name}")
        return jsonify({"status": "success", "message": f"Restart initiated for {peer.name}"})

    @app.route("/api/instance/service/settings", methods=["PATCH"])
    @login_required
    def api_instance_settings():
        config = services.store.get()
        if config.disable_settings:
            return jsonify({"message": "Settings are disabled by configuration."}), 403
        peer, failure = _find_device(config)
        if failure:
            return failure
        body = request.get_json(silent=True)
        if not isinstance(body, dict) or not body:
            return jsonify({"message": "Request body must be a non-empty JSON object."}), 400
        try:
            services.client.call("PATCH", join_url(peer.url, config.api_path("instanceSettings")), payload=body)
        except PeerError as e:
            return _peer_failure(peer, e)
        logger.info(f"[{client_ip()}] Settings updated for {peer.name}: {', '.join(sorted(body))}")
        return jsonify({"status": "success", "message": f"Settings updated for {peer.name}"})

    @app.route("/api/configuration", methods=["GET", "PATCH"])
    @login_required
    def api_configuration():
        config = services.store.get()
        if config.disable_configurations:
            return jsonify({"message": "Configurations are disabled by configuration."}), 403
        if request.method == "GET":
            return jsonify({"status": "success", "data": config.as_dict()})

        patch = request.get_json(silent=True)
        if not isinstance(patch, dict) or not patch:
            return jsonify({"status": "error",
                            "message": "Request body must be a JSON object with the settings to update."}), 400
        try:
            config = services.store.merge(patch)
        except ConfigParseError as e:
            return jsonify({"status": "error", "message": str(e)}), 400
        except ConfigError as e:
            logger.error(f"Configuration update failed: {e}")
            return jsonify({"status": "error", "message": str(e)}), 500

        if services.on_config_change is not None:
            services.on_config_change(config)
        return jsonify({
            "status": "success",
            "message": "Configuration updated successfully! Changes have been applied immediately.",
            "data": config.as_dict(),
        })

    @app.route("/api/statistics")
    @login_required
    def api_statistics():
        config = services.store.get()
        peer, failure = _find_device(config)
        if failure:
            return failure
        try:
            data = services.client.get_json(peer.url, config.api_path("statisticsDashboard"))
        except PeerError as e:
            logger.error(f"Failed to fetch statistics for {peer.name}: {e}")
            return jsonify({"success": False, "instanceId": peer.name,
                            "message": f"Failed to fetch statistics from {peer.name}: {e}"}), 500
        return jsonify({"success": True, "instanceId": peer.name, "instanceUrl": peer.url, "data": data})

    @app.route("/api/metrics/<kind>")
    @login_required
    def api_metrics(kind):
        if kind not in TABLES:
            return jsonify({"success": False, "message": f"Unknown metric kind {kind!r}"}), 404
        if services.sink is None:
            return jsonify({"success": False, "message": "Data collection is disabled"}), 404
        peer_id = request.args.get("id", "")
        if not peer_id:
            return jsonify({"success": False, "message": '"id" parameter is required'}), 400
        try:
            start = _parse_time(request.args.get("start"))
            end = _parse_time(request.args.get("end"))
            limit = int(request.args.get("limit", DEFAULT_QUERY_LIMIT))
        except ValueError as e:
            return jsonify({"success": False, "message": str(e)}), 400
        if limit < 1:
            return jsonify({"success": False, "message": '"limit" must be a positive integer'}), 400
        limit = min(limit, MAX_QUERY_LIMIT)
        metrics = services.sink.query(kind, peer_id, start, end, limit)
        return jsonify({"success": True, "id": peer_id, "data": [_metric_row(m) for m in metrics]})

    @app.route("/api/metrics/purge", methods=["POST"])
    @login_required
    def api_metrics_purge():
        if services.sink is None:
            return jsonify({"success": False, "message": "Data collection is disabled"}), 404
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            body = {}
        days = body["days"] if "days" in body else services.store.get().data_retention_days
        if not isinstance(days, int) or isinstance(days, bool) or days <= 0:
            return jsonify({"success": False, "message": '"days" must be a positive integer'}), 400
        deleted = services.sink.purge(days)
        return jsonify({"success": True, "deleted": deleted, "olderThanDays": days})

    @app.route("/api/scheduler")
    @login_required
    def api_scheduler():
        if services.scheduler is None:
            return jsonify({"running": False, "tasks": []})
        return jsonify(services.scheduler.status(services.store.get().timezone))

    return app
