import hmac
from functools import wraps

from flask import current_app, request, jsonify

# ------------------------------------------------------------
# LOCAL / REMOTE RULES
# ------------------------------------------------------------

def is_local_request():
    host = request.remote_addr
    return host in ["127.0.0.1", "::1", "localhost"]


# ------------------------------------------------------------
# AUTH DECORATOR
# ------------------------------------------------------------

def require_auth(f):
    """
    Loopback callers are always allowed.
    Remote callers must present the configured api token as a Bearer token;
    with no token configured the API is open.
    """
    @wraps(f)
    def wrapper(*args, **kwargs):
        if is_local_request():
            return f(*args, **kwargs)

        token = current_app.config.get("API_TOKEN") or ""
        if not token:
            return f(*args, **kwargs)

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return jsonify({"error": "missing_auth"}), 401

        supplied = auth_header.split(" ", 1)[1]
        if not hmac.compare_digest(supplied, token):
            return jsonify({"error": "invalid_token"}), 401

        return f(*args, **kwargs)
    return wrapper


# ------------------------------------------------------------
# HTTP UTILITIES
# ------------------------------------------------------------

def ok(data=None):
    return jsonify({"status": "ok", "data": data})


def fail(msg, code=400):
    return jsonify({"status": "error", "message": msg}), code
