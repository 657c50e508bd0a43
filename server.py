#!/usr/bin/env python3
"""Clay Stages - JSON API serving the live stage view."""

import logging
import os
import threading

from flask import Flask, jsonify, request

from config.defaults import DEFAULTS
from core.orchestrator import Orchestrator, RunRejected
from core.state import Artifact, PipelineState
from utils.imagegen import GeminiImageGenerator, api_key_available
from utils.log import configure_logging

log = logging.getLogger(__name__)

app = Flask(__name__)
state = PipelineState()
orchestrator = Orchestrator(state, GeminiImageGenerator())

# The thread of the current (or last) run; guarded by _run_lock.
_run_thread = None
_run_lock = threading.Lock()


def _stage_to_dict(stage):
    return {
        "rank": stage.rank,
        "label": stage.label,
        "description": stage.description,
        "status": stage.status.value,
        "error": stage.error,
        "image": stage.artifact.to_data_url() if stage.artifact else None,
    }


def _snapshot_to_dict():
    return {
        "running": _is_running(),
        "stages": [_stage_to_dict(s) for s in state.snapshot()],
    }


def _is_running():
    thread = _run_thread
    return orchestrator.is_running or (thread is not None and thread.is_alive())


def _run_in_background(prompt, reference):
    try:
        orchestrator.run(prompt, reference)
    except RunRejected as e:
        log.warning("Run rejected: %s", e)


@app.route("/api/health")
def api_health():
    return jsonify({"ok": True, "api_key_ready": api_key_available()})


@app.route("/api/stages")
def api_stages():
    return jsonify(_snapshot_to_dict())


@app.route("/api/generate", methods=["POST"])
def api_generate():
    """Start a run. Poll /api/stages to follow it."""
    global _run_thread

    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({"error": "Request body must be a JSON object"}), 400

    prompt = data.get("prompt") or ""
    image = data.get("image")
    if not isinstance(prompt, str):
        return jsonify({"error": "prompt must be a string"}), 400
    if image is not None and not isinstance(image, str):
        return jsonify({"error": "image must be a data URL string"}), 400
    prompt = prompt.strip()

    reference = None
    if image:
        try:
            reference = Artifact.from_data_url(image)
        except ValueError as e:
            return jsonify({"error": f"Invalid image: {e}"}), 400

    if not prompt and reference is None:
        return jsonify({"error": "Missing prompt or image"}), 400

    with _run_lock:
        if _is_running():
            return jsonify({"error": "A generation run is already in progress"}), 409
        _run_thread = threading.Thread(
            target=_run_in_background, args=(prompt, reference),
            name="claystages-run", daemon=True,
        )
        _run_thread.start()

    result = _snapshot_to_dict()
    result["running"] = True
    result["prompt"] = prompt
    return jsonify(result), 202


if __name__ == "__main__":
    configure_logging()
    port = int(os.environ.get("PORT", DEFAULTS["port"]))
    print(f"Clay Stages running at http://localhost:{port}")
    app.run(debug=False, port=port, threaded=True)
