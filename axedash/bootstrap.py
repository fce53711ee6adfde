"""First-run setup handler.

Served while the config directory lacks the files the normal application
needs. Submitting the setup form writes them; the next request then finds
them and promotes the server to normal mode.
"""

import logging
import os
import secrets

from flask import Flask, jsonify, request

from axedash.auth import hash_password
from axedash.config import (
    ACCESS_FILE, CONFIG_FILE, DEFAULT_COOKIE_MAX_AGE, DEFAULT_PORT, JWT_KEY_FILE, RPC_CONFIG_FILE,
    write_json_atomic,
)
from axedash.errors import ConfigError
from axedash.rpc import DEFAULT_RPC_PORT

logger = logging.getLogger(__name__)

CONFIG_VERSION = 3.0
JWT_KEY_LENGTH = 32
JWT_EXPIRY_SECONDS = {"1h": 3600, "8h": 28800, "24h": 86400, "7d": 604800}


def parse_port(value, default=DEFAULT_PORT):
    if value in (None, ""):
        return default
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"invalid port {value!r}")
    if port < 1024 or port > 65523:
        raise ValueError(f"port {port} out of range")
    return port


def _flag(form, key):
    value = form.get(key)
    return value is True or value == "true"


def _named_urls(entries):
    result = []
    for entry in entries or []:
        if isinstance(entry, dict) and entry.get("name") and entry.get("url"):
            result.append({entry["name"]: entry["url"]})
    return result


def validate(form):
    if not form.get("title"):
        return "Title is required"
    if _flag(form, "enableAuth"):
        if not form.get("username") or not form.get("password"):
            return "Username and password are required when authentication is enabled"
        if form.get("confirmPassword") not in (None, form.get("password")):
            return "Passwords do not match"
        if len(form.get("jwtKey") or "") != JWT_KEY_LENGTH:
            return f"JWT key must be {JWT_KEY_LENGTH} characters"
    if not _named_urls(form.get("bitaxeInstances")):
        return "At least one Bitaxe device is required"
    try:
        parse_port(form.get("port"))
        if _flag(form, "enableCryptoNode"):
            parse_port(form.get("cryptoNodeRpcPort"), DEFAULT_RPC_PORT)
    except ValueError as e:
        return str(e)
    return None


def build_config(form):
    enable_auth = _flag(form, "enableAuth")
    enable_nodes = _flag(form, "enableCryptoNode")
    config = {
        "axeos_dashboard_version": CONFIG_VERSION,
        "title": form["title"],
        "web_server_port": parse_port(form.get("port")),
        "disable_authentication": not enable_auth,
        "cookie_max_age": JWT_EXPIRY_SECONDS.get(form.get("jwtExpiry"), DEFAULT_COOKIE_MAX_AGE),
        "disable_settings": False,
        "disable_configurations": False,
        "axeos_instances": _named_urls(form.get("bitaxeInstances")),
        "mining_core_enabled": _flag(form, "enableMiningCore"),
        "mining_core_url": _named_urls(form.get("miningCoreInstances")) if _flag(form, "enableMiningCore") else [],
        "cryptNodesEnabled": enable_nodes,
        "cryptoNodes": [],
        "data_collection_enabled": _flag(form, "enableDataCollection"),
    }
    if enable_nodes:
        config["cryptoNodes"] = [{
            "NodeType": form.get("cryptoNodeType", ""),
            "NodeName": form.get("cryptoNodeName", ""),
            "NodeId": form.get("cryptoNodeId", ""),
            "NodeAlgo": form.get("cryptoNodeAlgo", ""),
        }]
    return config


def write_setup_files(config_dir, form):
    os.makedirs(config_dir, exist_ok=True)
    write_json_atomic(os.path.join(config_dir, CONFIG_FILE), build_config(form))

    if _flag(form, "enableAuth"):
        access = {form["username"]: hash_password(form["password"])}
        jwt_key = form["jwtKey"]
    else:
        # a key is still written so the files the server waits for all exist
        access = {}
        jwt_key = secrets.token_hex(JWT_KEY_LENGTH // 2)
    write_json_atomic(os.path.join(config_dir, ACCESS_FILE), access, indent=2)

    if _flag(form, "enableCryptoNode"):
        rpc_config = {"cryptoNodes": [{
            "type": form.get("cryptoNodeType", ""),
            "name": form.get("cryptoNodeName", ""),
            "algo": form.get("cryptoNodeAlgo", ""),
            "id": form.get("cryptoNodeId", ""),
            "rpcIp": form.get("cryptoNodeRpcIp", ""),
            "rpcPort": parse_port(form.get("cryptoNodeRpcPort"), DEFAULT_RPC_PORT),
            "rpcAuth": form.get("cryptoNodeRpcAuth", ""),
        }]}
        write_json_atomic(os.path.join(config_dir, RPC_CONFIG_FILE), rpc_config, indent=2)

    # written last: its presence completes the set the boot gate checks for
    write_json_atomic(os.path.join(config_dir, JWT_KEY_FILE), {"jsonWebTokenKey": jwt_key, "expiresIn": "1h"}, indent=2)


def create_bootstrap_app(config_dir):
    app = Flask(__name__)

    @app.route("/")
    def setup_page():
        return jsonify({
            "mode": "bootstrap",
            "message": "Initial setup required. POST the setup form to /bootstrap.",
        })

    @app.route("/bootstrap", methods=["POST"])
    def setup_submit():
        form = request.get_json(silent=True)
        if not isinstance(form, dict):
            return jsonify({"message": "Invalid request format"}), 400
        problem = validate(form)
        if problem:
            return jsonify({"message": problem}), 400
        try:
            write_setup_files(config_dir, form)
        except (ConfigError, OSError) as e:
            logger.error(f"Error saving setup files: {e}")
            return jsonify({"message": "Failed to save configuration"}), 500
        logger.info(f"Setup completed for '{form['title']}'")
        return jsonify({"success": True, "message": "Configuration created successfully! Redirecting to dashboard..."})

    return app
