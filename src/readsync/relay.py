"""
Relay endpoint for clients that cannot reach the progress server themselves.

Browser-hosted readers cannot send mixed-content or cross-origin requests to an
arbitrary self-hosted server, so they POST an envelope here instead:

    {"serverUrl": ..., "endpoint": ..., "method": ..., "headers": {...}, "body": {...}}

The relay performs the real request and mirrors the server's status and body.

Errors:
    405 - anything but POST
    400 - serverUrl or endpoint missing
    500 - the request failed or the server did not answer with JSON
"""

import json
import logging

import requests
from flask import Blueprint, Flask, Response, jsonify, request

from .transport import ACCEPT_HEADER, DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

relay = Blueprint('relay', __name__)

RELAY_METHODS = ['GET', 'POST', 'PUT', 'PATCH', 'DELETE']


def forward(envelope: dict, timeout: float = DEFAULT_TIMEOUT) -> requests.Response:
    target_url = f"{envelope['serverUrl'].rstrip('/')}{envelope['endpoint']}"
    headers = dict(envelope.get('headers') or {})
    headers.update({
        "Accept": ACCEPT_HEADER,
        "Content-Type": "application/json",
    })
    body = envelope.get('body')
    return requests.request(
        envelope.get('method') or 'GET',
        target_url,
        headers=headers,
        data=json.dumps(body) if body else None,
        timeout=timeout,
    )


@relay.route('/kosync', methods=RELAY_METHODS)
def relay_request():
    if request.method != 'POST':
        return jsonify({"error": "Method Not Allowed"}), 405

    envelope = request.get_json(silent=True) or {}
    if not envelope.get('serverUrl') or not envelope.get('endpoint'):
        return jsonify({"error": "serverUrl and endpoint are required"}), 400

    try:
        response = forward(envelope)
        content_type = response.headers.get('content-type') or ''
        if 'application/json' not in content_type:
            raise ValueError("Invalid sync server response: Unexpected Content-Type.")
    except (requests.exceptions.RequestException, ValueError) as e:
        logger.error(f"[KOSYNC RELAY] Error: {e}")
        return jsonify({"error": "Proxy request failed", "details": str(e)}), 500

    try:
        return jsonify(response.json()), response.status_code
    except ValueError:
        return Response(response.text, status=response.status_code, mimetype='text/plain')


def create_app() -> Flask:
    app = Flask(__name__)
    app.register_blueprint(relay, url_prefix='/api')
    return app
