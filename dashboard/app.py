# ruff: noqa: E501
"""
goal: flask web dashboard for ThreatLens. lets a user upload any file, shows the verdict, confidence, and
         per-feature attribution produced by the local analysis pipeline, and keeps a browsable history of
         past verdicts. runs entirely locally without cloud dependencies.

what this app is responsible for:
- upload handling: reads the uploaded stream through the file source (size capped) and hands it to the
  analysis service
- scoring: the analysis service extracts the five features, classifies them, and stores the record
- manual scoring: /api/predict scores five hand-entered feature values with the same classifier
- history: list/search/sort, fetch by id, delete, clear, statistics, and export (JSON, JSONL, CSV, XLSX)

how a request flows:
1. POST /api/analyze with a multipart "file"
2. FileSource reads it (413 when above max_upload_mb, 500 + retry flag when the stream can not be read)
3. AnalysisService extracts features (degrading to all zeros on extraction errors), classifies, assembles
   and appends the record (the only write)
4. the record JSON goes back to the browser; "degraded": true tells the UI the verdict is low-trust

failure responses keep "analysis failed, retry" (error + retry) apart from "completed with low confidence"
(a normal 201 record with degraded=true). a classifier that never loaded answers 503 and stores nothing.

the extractor, classifier, and store are built once in create_app() and passed to build_app(), so tests can
hand in their own instances.
"""

from __future__ import annotations

# --- standard library ---
import csv
import io
import json
import logging
import os
import time
from typing import Any

# --- third-party ---
import psutil
from flask import (
    Flask,
    jsonify,
    make_response,
    render_template,
    request,
    send_file,
)

# --- local/project imports ---
from agent.file_source import FileSource
from algorithm.classifier import Classifier, build_classifier
from algorithm.errors import EmptyInputError, FileTooLargeError, ModelNotLoadedError
from algorithm.feature_extractor import FeatureExtractor
from algorithm.pattern_scanner import PatternScanner, load_categories
from dashboard.analysis import AnalysisService
from dashboard.config import Config, load_config
from dashboard.records import AnalysisRecord
from dashboard.store import AnalysisStore, query

# single waitress optional block (we keep only this one, after all imports)
try:
    from waitress import serve as _serve  # type: ignore[import-untyped]

    HAVE_WAITRESS = True
except ImportError:
    HAVE_WAITRESS = False
    _serve = None  # type: ignore

logger = logging.getLogger("threatlens.dashboard")

STARTED_AT = time.time()

# flat columns for CSV/XLSX export, features are appended after these
EXPORT_COLS = [
    "id",
    "timestamp",
    "filename",
    "label",
    "confidence",
    "threat_level",
    "degraded",
    "file_type",
    "size",
    "sha256",
]


def _flat_row(rec: AnalysisRecord) -> dict[str, Any]:
    row: dict[str, Any] = {
        "id": rec.id,
        "timestamp": rec.timestamp,
        "filename": rec.filename,
        "label": rec.verdict.label,
        "confidence": round(rec.verdict.confidence, 2),
        "threat_level": rec.threat_level,
        "degraded": rec.degraded,
        "file_type": rec.metadata.get("file_type", ""),
        "size": rec.metadata.get("size", ""),
        "sha256": rec.metadata.get("sha256", ""),
    }
    row.update({k: round(v, 4) for k, v in rec.features.as_dict().items()})
    return row


def _flag(value: Any, default: bool = True) -> bool:
    # query args and JSON bodies both send "0", "false", "no" or a real boolean
    if isinstance(value, bool):
        return value
    text = "" if value is None else str(value).strip().lower()
    if not text:
        return default
    return text not in ("0", "false", "no", "off")


def _error(message: str, status: int, **extra: Any):
    body = {"error": message}
    body.update(extra)
    return jsonify(body), status


def build_app(service: AnalysisService, store: AnalysisStore, cfg: Config, source: FileSource | None = None) -> Flask:
    app = Flask(__name__)
    source = source or FileSource(cfg.max_upload_bytes)
    # let flask refuse absurd bodies before we read them, with headroom for multipart framing
    app.config["MAX_CONTENT_LENGTH"] = cfg.max_upload_bytes + 1024 * 1024

    @app.errorhandler(413)
    def too_large(_e):
        return _error(f"file exceeds the {cfg.max_upload_mb} MB upload limit", 413)

    @app.get("/")
    def index():
        return render_template("index.html", max_upload_mb=cfg.max_upload_mb)

    @app.get("/api/ping")
    def ping():
        return jsonify({"ok": True, "records": len(store.list_all())})

    # about endpoint: return version and build info from VERSION.txt
    @app.get("/api/about")
    def about():
        version = "-"
        build = "-"
        vpath = cfg.base_dir / "VERSION.txt"
        if vpath.exists():
            try:
                lines = [
                    line.strip()
                    for line in vpath.read_text(encoding="utf-8").splitlines()
                    if line.strip()
                ]
                if len(lines) >= 1:
                    version = lines[0]
                if len(lines) >= 2:
                    build = lines[1]
            except OSError:
                pass
        proc = psutil.Process(os.getpid())
        return jsonify(
            {
                "version": version,
                "build": build,
                "classifier": service.classifier.strategy,
                "model_loaded": service.classifier.is_loaded,
                "max_upload_mb": cfg.max_upload_mb,
                "uptime_sec": round(time.time() - STARTED_AT, 1),
                "rss_mb": round(proc.memory_info().rss / (1024 * 1024), 1),
            }
        )

    @app.get("/api/model")
    def model_info():
        return jsonify(service.classifier.describe())

    # upload analysis: the main entry point of the pipeline
    @app.post("/api/analyze")
    def analyze():
        upload = request.files.get("file")
        if upload is None or not upload.filename:
            return _error("no file uploaded (expected multipart field 'file')", 400)
        try:
            raw = source.read_stream(upload.filename, upload.stream)
        except FileTooLargeError as e:
            return _error(str(e), 413)
        except OSError as e:
            logger.error("reading upload %s failed: %s", upload.filename, e)
            return _error(f"could not read {upload.filename}: {e}", 500, retry=True)

        save = _flag(request.args.get("save"))
        try:
            record = service.analyze(raw, save=save)
        except EmptyInputError as e:
            return _error(str(e), 400)
        except ModelNotLoadedError as e:
            logger.error("analysis of %s refused: %s", raw.name, e)
            return _error("classifier is not loaded, no verdict available", 503, retry=True)
        except OSError as e:
            logger.error("storing analysis of %s failed: %s", raw.name, e)
            return _error(f"analysis could not be saved: {e}", 500, retry=True)
        return jsonify(record.to_dict()), 201

    # manual feature input: score five values typed into the UI
    @app.post("/api/predict")
    def predict():
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return _error("expected a JSON object of feature values", 400)
        features = body.get("features", body)
        if not isinstance(features, dict):
            return _error("features must be an object", 400)
        try:
            record = service.predict_features(features, save=_flag(body.get("save")))
        except (KeyError, ValueError, TypeError) as e:
            return _error(f"invalid features: {e}", 400)
        except ModelNotLoadedError:
            return _error("classifier is not loaded, no verdict available", 503, retry=True)
        return jsonify(record.to_dict()), 201

    def _filtered() -> list[AnalysisRecord]:
        return query(
            store.list_all(),
            q=request.args.get("q", ""),
            threat=request.args.get("threat", ""),
            sort=request.args.get("sort", "timestamp"),
            order=request.args.get("order", "desc"),
        )

    @app.get("/api/history")
    def history():
        return jsonify([r.to_dict() for r in _filtered()])

    @app.get("/api/history/<record_id>")
    def history_one(record_id: str):
        rec = store.get_by_id(record_id)
        if rec is None:
            return _error(f"no analysis with id {record_id}", 404)
        return jsonify(rec.to_dict())

    @app.delete("/api/history/<record_id>")
    def history_delete(record_id: str):
        return jsonify({"ok": True, "deleted": store.delete_by_id(record_id)})

    @app.delete("/api/history")
    def history_clear():
        return jsonify({"ok": True, "cleared": store.clear()})

    @app.get("/api/stats")
    def stats():
        return jsonify(store.statistics())

    # export endpoint: export history in various formats (JSON, JSONL, CSV, XLSX)
    @app.get("/api/export")
    def export_history():
        """
        export the history with the same filters as /api/history.
        format=json (default) | jsonl | csv | xlsx
        """
        rows = _filtered()
        fmt = (request.args.get("format") or "json").lower()
        stamp = time.strftime("%Y-%m-%d")

        # JSONL
        if fmt == "jsonl":
            lines = [json.dumps(r.to_dict(), ensure_ascii=False) for r in rows]
            resp = make_response("\n".join(lines))
            resp.headers["Content-Type"] = "application/x-ndjson"
            resp.headers["Content-Disposition"] = f'attachment; filename="threatlens_analyses_{stamp}.jsonl"'
            return resp

        flat = [_flat_row(r) for r in rows]
        cols = EXPORT_COLS + [k for k in (flat[0] if flat else {}) if k not in EXPORT_COLS]

        # XLSX
        if fmt == "xlsx":
            try:
                from openpyxl import Workbook
                from openpyxl.utils import get_column_letter
            except ImportError:
                return _error("xlsx export requires `openpyxl`", 400, hint="pip install openpyxl or use format=csv")

            wb = Workbook()
            ws = wb.active
            ws.title = "ThreatLens"
            ws.append(cols)
            for r in flat:
                ws.append([r.get(c, "") for c in cols])

            for i, c in enumerate(cols, 1):
                max_len = len(c)
                for row in ws.iter_rows(min_row=2, min_col=i, max_col=i):
                    v = row[0].value
                    if v is None:
                        continue
                    max_len = max(max_len, len(str(v)))
                ws.column_dimensions[get_column_letter(i)].width = max(10, min(60, int(max_len * 1.1 + 2)))

            bio = io.BytesIO()
            wb.save(bio)
            bio.seek(0)
            return send_file(
                bio,
                as_attachment=True,
                download_name=f"threatlens_analyses_{stamp}.xlsx",
                mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            )

        # CSV (Excel-friendly, BOM + quoted + CRLF)
        if fmt == "csv":
            buf = io.StringIO(newline="")
            writer = csv.DictWriter(
                buf,
                fieldnames=cols,
                extrasaction="ignore",
                quoting=csv.QUOTE_ALL,
                lineterminator="\r\n",
            )
            writer.writeheader()
            for r in flat:
                writer.writerow(r)
            resp = make_response(("\ufeff" + buf.getvalue()).encode("utf-8"))
            resp.headers["Content-Type"] = "text/csv; charset=utf-8"
            resp.headers["Content-Disposition"] = f'attachment; filename="threatlens_analyses_{stamp}.csv"'
            return resp

        # default: pretty JSON
        resp = make_response(json.dumps([r.to_dict() for r in rows], ensure_ascii=False, indent=2))
        resp.headers["Content-Type"] = "application/json"
        resp.headers["Content-Disposition"] = f'attachment; filename="threatlens_analyses_{stamp}.json"'
        return resp

    return app


def build_service(cfg: Config) -> AnalysisService:
    """Construct the extractor, classifier, and store once. A classifier that fails to load is logged, not fatal."""
    scanner = PatternScanner(load_categories(cfg.signatures_path))
    extractor = FeatureExtractor(scanner)
    classifier: Classifier = build_classifier(cfg.classifier, cfg.model_weights_path)
    try:
        classifier.load_model()
    except (OSError, ValueError) as e:
        # keep serving the history, /api/analyze answers 503 until this is fixed
        logger.error("could not load %s classifier: %s", classifier.strategy, e)
    store = AnalysisStore(cfg.history_path, cfg.history_max)
    return AnalysisService(extractor, classifier, store)


def create_app(cfg: Config | None = None) -> Flask:
    cfg = cfg or load_config()
    service = build_service(cfg)
    assert service.store is not None
    return build_app(service, service.store, cfg)


# run the dashboard: start the Flask app with optional Waitress server
def run_dashboard(cfg: Config | None = None) -> None:
    cfg = cfg or load_config()
    app = create_app(cfg)
    logger.info("dashboard listening on http://%s:%s", cfg.host, cfg.port)
    try:
        if HAVE_WAITRESS:
            _serve(app, host=cfg.host, port=cfg.port)
        else:
            app.run(host=cfg.host, port=cfg.port, debug=False)
    except KeyboardInterrupt:
        pass  # expected when shutting down


# standalone mode (optional): if you run "python -m dashboard.app"
if __name__ == "__main__":
    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(level=logging.INFO)
    run_dashboard()
