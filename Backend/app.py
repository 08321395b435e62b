from flask import Flask, request, jsonify
from flask_cors import CORS
from pydantic import ValidationError
import os
import sys

# --- Path Configuration ---
# Assumes app.py is one level below the project root.
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.append(PROJECT_ROOT)

from config.settings import BACKEND_PORT, TX_CONFIRMATION_TIMEOUT
from noise_services.models import ConfidentialRecord, Operation, ReportDraft
from noise_services.reporting.orchestrator import ReportLifecycle
from noise_services.runtime import BackgroundLoop, build_lifecycle, configure_logging

# Each orchestrator call may wait for up to two confirmations plus the relayer.
OPERATION_TIMEOUT = TX_CONFIRMATION_TIMEOUT * 2 + 60

ERROR_STATUS_CODES = {
    "NotAuthenticated": 401,
    "InvalidPlaintext": 400,
    "RecordNotFound": 404,
    "Rejected": 409,
    "ProofRejected": 409,
    "EncryptionUnavailable": 503,
    "DecryptionUnavailable": 503,
    "LedgerUnreachable": 503,
    "Unavailable": 503,
}


def record_view(record: ConfidentialRecord) -> dict:
    """Public JSON view of a record; the revealed value is withheld until verified."""
    data = record.model_dump(mode="json")
    data["revealed_value"] = record.trusted_value
    return data


def operation_response(op: Operation):
    body = {"status": op.outcome, "operation": op.model_dump(mode="json")}
    if op.succeeded:
        return jsonify(body)
    body["message"] = op.error
    return jsonify(body), ERROR_STATUS_CODES.get(op.error_kind, 500)


def create_app(lifecycle: ReportLifecycle, runner: BackgroundLoop) -> Flask:
    app = Flask(__name__)
    CORS(app,
         origins="*",
         methods=["GET", "POST", "OPTIONS"],
         allow_headers=["Content-Type", "Authorization"])

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({"status": "healthy", "records": len(lifecycle.records)})

    @app.route('/records', methods=['GET'])
    def list_records():
        return jsonify([record_view(r) for r in lifecycle.records])

    @app.route('/records/<record_id>', methods=['GET'])
    def get_record(record_id):
        record = lifecycle.get(record_id)
        if record is None:
            return jsonify({"status": "error", "message": f"Record {record_id} not found."}), 404
        return jsonify(record_view(record))

    @app.route('/records', methods=['POST'])
    def submit_report():
        """Encrypts and submits a new noise report."""
        if not request.is_json:
            return jsonify({"status": "error", "message": "Request must be JSON"}), 400
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({"status": "error", "message": "Invalid JSON format"}), 400

        record_id = data.pop("record_id", None)
        try:
            draft = ReportDraft.from_form(data)
        except ValidationError as e:
            return jsonify({"status": "error", "message": "Invalid report", "errors": e.errors(include_url=False, include_context=False, include_input=False)}), 400

        print(f"[API] Submitting noise report '{draft.label}'")
        op = runner.run(lifecycle.submit_report(draft, record_id=record_id), timeout=OPERATION_TIMEOUT)
        return operation_response(op)

    @app.route('/records/<record_id>/decrypt', methods=['POST'])
    def decrypt_record(record_id):
        print(f"[API] Decryption requested for {record_id}")
        op = runner.run(lifecycle.decrypt_report(record_id), timeout=OPERATION_TIMEOUT)
        return operation_response(op)

    @app.route('/refresh', methods=['POST'])
    def refresh():
        op = runner.run(lifecycle.refresh(), timeout=OPERATION_TIMEOUT)
        return operation_response(op)

    @app.route('/availability', methods=['GET'])
    def availability():
        op = runner.run(lifecycle.check_availability(), timeout=OPERATION_TIMEOUT)
        return operation_response(op)

    @app.route('/stats', methods=['GET'])
    def stats():
        return jsonify(lifecycle.stats().model_dump(mode="json"))

    @app.route('/heatmap', methods=['GET'])
    def heatmap():
        return jsonify(lifecycle.heatmap().model_dump(mode="json"))

    @app.route('/status', methods=['GET'])
    def status():
        return jsonify(lifecycle.notifier.current().model_dump(mode="json"))

    return app


if __name__ == '__main__':
    configure_logging()
    print("🚀 Starting EchoNet Confidential Noise Backend...")
    print(f"📁 Project root: {PROJECT_ROOT}")

    runner = BackgroundLoop().start()
    lifecycle = build_lifecycle()
    start_op = runner.run(lifecycle.start(), timeout=OPERATION_TIMEOUT)
    print(f"⛓️  Ledger: {'Connected' if start_op.succeeded else 'Not Available'} "
          f"({len(lifecycle.records)} records loaded)")

    create_app(lifecycle, runner).run(host='0.0.0.0', port=BACKEND_PORT)
