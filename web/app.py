"""
Flask web server for the radar intake's collaborator services.

Routes
──────
POST   /api/interpret       SSE: stream Claude's JSON interpretation of {text}
GET    /api/radars          List recent radars (JSON)
POST   /api/radars          Create a radar from {topic, description?, cadence}
GET    /api/radars/<id>     Fetch a specific radar (JSON)
DELETE /api/radars/<id>     Delete a radar (JSON)
"""

from __future__ import annotations

import json
import logging
import os
import sys

from dotenv import load_dotenv
from flask import Flask, Response, jsonify, request, stream_with_context
from pydantic import ValidationError

# Allow running as `python web/app.py` from the project root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

load_dotenv()

from config.settings import Settings
from core import radar_store
from core.interpretation_service import interpret_streaming
from core.models import RadarDraft

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _sse(payload: object) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def create_app(settings: Settings | None = None) -> Flask:
    """Build the Flask app and make sure the radar table exists."""
    settings = settings or Settings()
    app = Flask(__name__)
    radar_store.init_db()

    # ── Interpretation stream ──────────────────────────────────────────────

    @app.route("/api/interpret", methods=["POST"])
    def interpret_endpoint():
        """SSE endpoint that streams one interpretation.

        JSON body:
          text  (required) — the user's free-text input

        SSE events emitted:
          {"type": "chunk", "text": "..."}      raw JSON text delta
          {"type": "error", "message": "..."}   on failure
          [DONE]                                end of stream
        """
        body = request.get_json(silent=True) or {}
        text = str(body.get("text", "")).strip()
        if not text:
            return jsonify({"error": "text is required"}), 400
        request_id = request.headers.get("X-Request-Id", "-")
        logger.info("Interpret request %s text=%r", request_id, text)

        def generate():
            try:
                for chunk in interpret_streaming(text, model=settings.interpret_model):
                    yield _sse({"type": "chunk", "text": chunk})
            except Exception as exc:
                logger.exception("Interpretation stream error for request %s", request_id)
                yield _sse({"type": "error", "message": str(exc)})

            yield "data: [DONE]\n\n"

        return Response(
            stream_with_context(generate()),
            mimetype="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    # ── Radar storage API ──────────────────────────────────────────────────

    @app.route("/api/radars")
    def list_radars():
        """Return the 50 most recent radars as JSON."""
        radars = radar_store.get_all(limit=50)
        return jsonify([r.model_dump(mode="json") for r in radars])

    @app.route("/api/radars", methods=["POST"])
    def create_radar():
        """Create a radar and return it with its generated ID."""
        try:
            draft = RadarDraft.model_validate(request.get_json(silent=True) or {})
            radar = radar_store.create(draft)
        except ValidationError as exc:
            return jsonify({"error": f"Invalid radar: {exc.error_count()} validation errors"}), 400
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 400
        return jsonify(radar.model_dump(mode="json")), 201

    @app.route("/api/radars/<int:radar_id>")
    def get_radar(radar_id: int):
        radar = radar_store.get_by_id(radar_id)
        if radar is None:
            return jsonify({"error": "Not found"}), 404
        return jsonify(radar.model_dump(mode="json"))

    @app.route("/api/radars/<int:radar_id>", methods=["DELETE"])
    def delete_radar(radar_id: int):
        """Delete a radar."""
        deleted = radar_store.delete(radar_id)
        if not deleted:
            return jsonify({"error": "Not found"}), 404
        return jsonify({"deleted": radar_id})

    return app


# ── Entry point ────────────────────────────────────────────────────────────

if __name__ == "__main__":
    settings = Settings()
    settings.validate()
    create_app(settings).run(debug=settings.debug, host="0.0.0.0", port=settings.port)
