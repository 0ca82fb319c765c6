"""Flask application factory for the markcut web API."""

import tempfile
from pathlib import Path

from flask import Flask, jsonify

from markcut.engine import ExportPipeline


def create_app(work_dir: Path | None = None, pipeline: ExportPipeline | None = None) -> Flask:
    app = Flask(__name__)
    app.config["WORK_DIR"] = work_dir or Path(tempfile.mkdtemp(prefix="markcut_"))
    app.config["MAX_CONTENT_LENGTH"] = 2 * 1024 * 1024 * 1024  # 2 GB
    # One pipeline per process: only a single export may run at a time.
    app.config["PIPELINE"] = pipeline or ExportPipeline()

    from markcut.web.routes import bp
    app.register_blueprint(bp)

    @app.errorhandler(413)
    def request_entity_too_large(error):
        return jsonify({"error": "File too large"}), 413

    return app
