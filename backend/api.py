"""
SecureVote Credentials REST API

Registrar, oracle and ballot-system surfaces on one Flask app:

  Registration (registrants / registrar):
    POST /api/registrations                       — Submit encrypted registration
    GET  /api/registrations/<id>                  — Registration lifecycle status
    GET  /api/registrations/<id>/credential       — Credential lookup
    POST /api/registrations/<id>/verification     — Request eligibility verification
    POST /api/registrations/<id>/issuance         — Request credential issuance

  Oracle:
    POST /api/oracle/<kind>/callback              — Decryption result + proof
    POST /api/oracle/local/<request_id>/fulfil    — Local oracle test helper (testing/debug only)

  Ballot system:
    POST /api/commitments/consume                 — Spend a credential commitment
    GET  /api/commitments/<commitment>/status     — Check whether it is spent

  Audit / operations:
    GET  /api/pending                             — Unprocessed oracle requests
    GET  /api/events                              — Audit event log
    GET  /api/health

Registrar-gated routes require an `X-Registrar-Assertion` header.
"""

import base64
import binascii
import logging
import sys
from pathlib import Path

# Allow importing siblings
sys.path.insert(0, str(Path(__file__).parent))

from flask import Flask, jsonify, request
from flask_cors import CORS

from errors import CredentialError
from oracle import LocalOracle, RequestKind, encode_credentials, encode_eligibility
from registration_store import Ciphertexts
from registry import CredentialRegistry
from settings import Settings

logger = logging.getLogger("securevote.api")

REGISTRAR_HEADER = "X-Registrar-Assertion"
CIPHERTEXT_FIELDS = ("national_id", "date_of_birth", "address_hash", "eligibility_flags")

# ---------------------------------------------------------------------------
# App setup
# ---------------------------------------------------------------------------

app = Flask(__name__)
CORS(app)

_registry = None


def initialize(settings: Settings = None, oracle=None) -> CredentialRegistry:
    global _registry
    settings = settings or Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    app.config["DEBUG"] = settings.debug
    _registry = CredentialRegistry.bootstrap(settings, oracle=oracle)
    logger.info("SecureVote credential service initialized and ready.")
    return _registry


def get_registry() -> CredentialRegistry:
    if _registry is None:
        raise RuntimeError("Registry not initialized. Run initialize() first.")
    return _registry


@app.errorhandler(CredentialError)
def handle_credential_error(e: CredentialError):
    return jsonify(e.to_dict()), e.status


def _bad_request(message: str):
    return jsonify({"success": False, "error": message}), 400


def _b64_field(data: dict, name: str) -> bytes:
    value = data.get(name)
    if not isinstance(value, str) or not value:
        raise ValueError(f"{name} is required")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise ValueError(f"Invalid base64 encoding for {name}")


# ---------------------------------------------------------------------------
# Registration API
# ---------------------------------------------------------------------------

@app.route("/api/registrations", methods=["POST"])
def api_submit_registration():
    """
    Submit an encrypted registration.

    Request JSON:
      { "national_id": str, "date_of_birth": str,
        "address_hash": str, "eligibility_flags": str }   # opaque ciphertext handles

    Response JSON (success):
      { "success": true, "registration_id": int }
    """
    data = request.get_json(silent=True) or {}
    handles = {name: data.get(name) for name in CIPHERTEXT_FIELDS}
    missing = [name for name, value in handles.items() if not isinstance(value, str) or not value]
    if missing:
        return _bad_request(f"Missing ciphertext handles: {', '.join(missing)}")

    registration_id = get_registry().registrations.submit(Ciphertexts(**handles))
    return jsonify({"success": True, "registration_id": registration_id}), 201


@app.route("/api/registrations/<int:registration_id>", methods=["GET"])
def api_registration_status(registration_id: int):
    return jsonify(get_registry().registrations.status(registration_id))


@app.route("/api/registrations/<int:registration_id>/credential", methods=["GET"])
def api_get_credential(registration_id: int):
    value, issued = get_registry().registrations.get_credential(registration_id)
    return jsonify({"registration_id": registration_id, "value": value, "issued": issued})


@app.route("/api/registrations/<int:registration_id>/verification", methods=["POST"])
def api_request_verification(registration_id: int):
    request_id = get_registry().verification.request_verification(
        request.headers.get(REGISTRAR_HEADER), registration_id,
    )
    return jsonify({"success": True, "request_id": request_id}), 202


@app.route("/api/registrations/<int:registration_id>/issuance", methods=["POST"])
def api_request_issuance(registration_id: int):
    """
    Request credential issuance.

    Request JSON:
      { "commitment": str }
    """
    data = request.get_json(silent=True) or {}
    commitment = data.get("commitment")
    if not isinstance(commitment, str) or not commitment:
        return _bad_request("commitment is required")

    request_id = get_registry().issuance.request_issuance(
        request.headers.get(REGISTRAR_HEADER), registration_id, commitment,
    )
    return jsonify({"success": True, "request_id": request_id}), 202


# ---------------------------------------------------------------------------
# Oracle API
# ---------------------------------------------------------------------------

@app.route("/api/oracle/<kind>/callback", methods=["POST"])
def api_oracle_callback(kind: str):
    """
    Oracle callback.

    Request JSON:
      { "request_id": str, "clear_result_b64": str, "proof_b64": str }
    """
    try:
        kind = RequestKind(kind)
    except ValueError:
        return jsonify({"success": False, "error": "Unknown callback kind"}), 404

    data = request.get_json(silent=True) or {}
    request_id = data.get("request_id")
    if not isinstance(request_id, str) or not request_id:
        return _bad_request("request_id is required")
    try:
        clear_result = _b64_field(data, "clear_result_b64")
        proof = _b64_field(data, "proof_b64")
    except ValueError as e:
        return _bad_request(str(e))

    target_id = get_registry().handle_callback(kind, request_id, clear_result, proof)
    return jsonify({"success": True, "registration_id": target_id})


@app.route("/api/oracle/local/<request_id>/fulfil", methods=["POST"])
def api_local_oracle_fulfil(request_id: str):
    """
    Test helper: have the local oracle answer a request and deliver the callback.
    Only served when the app runs in testing or debug mode, and only to registrars.

    Request JSON:
      { "eligible": bool }             # verification requests
      { "credentials": [str, ...] }    # issuance requests
    """
    if not (app.config.get("TESTING") or app.debug):
        return jsonify({"success": False, "error": "Not found"}), 404
    registry = get_registry()
    registry.authorizer.require(request.headers.get(REGISTRAR_HEADER))
    oracle = registry.oracle
    if not isinstance(oracle, LocalOracle):
        return jsonify({"success": False, "error": "Local oracle not in use"}), 404
    if request_id not in oracle.requests:
        return jsonify({"success": False, "error": "Request not dispatched"}), 404

    data = request.get_json(silent=True) or {}
    _, kind = oracle.requests[request_id]
    if kind == RequestKind.VERIFICATION:
        clear_result = encode_eligibility(bool(data.get("eligible", False)))
    else:
        credentials = data.get("credentials")
        if not isinstance(credentials, list):
            return _bad_request("credentials must be a list")
        clear_result = encode_credentials(credentials)

    target_id = registry.handle_callback(kind, *oracle.fulfil(request_id, clear_result))
    return jsonify({"success": True, "registration_id": target_id})


# ---------------------------------------------------------------------------
# Ballot system API
# ---------------------------------------------------------------------------

@app.route("/api/commitments/consume", methods=["POST"])
def api_consume_commitment():
    """
    Spend a credential commitment at vote time.

    Request JSON:
      { "commitment": str }
    """
    data = request.get_json(silent=True) or {}
    commitment = data.get("commitment")
    if not isinstance(commitment, str) or not commitment:
        return _bad_request("commitment is required")

    result = get_registry().gate.consume(commitment)
    return jsonify({"success": True, **result})


@app.route("/api/commitments/<commitment>/status", methods=["GET"])
def api_commitment_status(commitment: str):
    return jsonify({"spent": get_registry().gate.is_spent(commitment)})


# ---------------------------------------------------------------------------
# Audit / operations
# ---------------------------------------------------------------------------

@app.route("/api/pending", methods=["GET"])
def api_pending():
    return jsonify({"pending": get_registry().pending_requests()})


@app.route("/api/events", methods=["GET"])
def api_events():
    """Audit log. Optional query filters: ?kind=...&subject=..."""
    events = get_registry().ledger.events(
        kind=request.args.get("kind"), subject=request.args.get("subject"),
    )
    return jsonify({"events": events})


@app.route("/api/health", methods=["GET"])
def api_health():
    return jsonify({"status": "ok", "service": "SecureVote Credentials"})


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    settings = Settings.from_env()
    initialize(settings)
    app.run(host="0.0.0.0", port=settings.port, debug=settings.debug)
