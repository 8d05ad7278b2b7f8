"""
Thin HTTP adapter over AuthService.

Every operation maps onto one JSON endpoint; business rules live in the service.
"""

from typing import Optional

from flask import Flask, current_app, jsonify, make_response, request
from werkzeug.exceptions import BadRequest

from . import configure_logging
from .auth import AuthService
from .config import SecurityConfig, get_config
from .errors import AuthError
from .models import DeviceInfo, IssuedSession, MFAType, User

COOKIE_NAME = 'session_id'


def create_app(service: Optional[AuthService] = None, config: Optional[SecurityConfig] = None) -> Flask:
    config = config or (service.config if service else get_config())
    configure_logging(config.LOG_LEVEL)

    app = Flask(__name__)
    app.extensions['authcore'] = service or AuthService(config)

    @app.after_request
    def add_security_headers(response):
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Content-Security-Policy'] = "default-src 'self'"
        response.headers['Cache-Control'] = 'no-store'
        return response

    @app.errorhandler(AuthError)
    def handle_auth_error(error: AuthError):
        return jsonify({"error": error.kind.value, "message": error.message}), error.status_code

    @app.errorhandler(BadRequest)
    def handle_bad_request(error: BadRequest):
        return jsonify({"error": "invalid_request", "message": error.description}), 400

    @app.route('/register', methods=['POST'])
    def register():
        data = _json()
        profile = {k: _text(data, k) for k in ('first_name', 'last_name', 'phone_number') if data.get(k)}
        user = _service().register(
            _text(data, 'email'),
            _text(data, 'username'),
            _text(data, 'password'),
            profile=profile,
            ip_address=request.remote_addr,
        )
        return jsonify({"msg": "User created. Please verify email.", "user": _user_payload(user)}), 201

    @app.route('/login', methods=['POST'])
    def login():
        """
        If MFA is enabled and no code was sent, asks the client to retry with one.
        Otherwise returns tokens and sets the session cookie.
        """
        data = _json()
        result = _service().login(
            _text(data, 'email'),
            _text(data, 'password'),
            device_info=_device_info(data.get('device')),
            mfa_code=_code(data, 'mfa_code'),
            ip_address=request.remote_addr,
        )
        if result.requires_mfa:
            return jsonify({"msg": "MFA Required", "next_step": "verify_mfa", "requires_mfa": True}), 200

        resp = make_response(jsonify({
            "msg": "Login success",
            "requires_mfa": False,
            "user": _user_payload(result.user),
            **_session_payload(result.session),
        }))
        _set_session_cookie(resp, result.session)
        return resp

    @app.route('/logout', methods=['POST'])
    def logout():
        token = _access_token()
        if token:
            _service().logout(token, ip_address=request.remote_addr)
        resp = make_response(jsonify({"msg": "Logged out"}))
        resp.delete_cookie(COOKIE_NAME)
        return resp

    @app.route('/refresh', methods=['POST'])
    def refresh():
        issued = _service().refresh_session(_text(_json(), 'refresh_token'))
        resp = make_response(jsonify(_session_payload(issued)))
        _set_session_cookie(resp, issued)
        return resp

    @app.route('/session', methods=['GET'])
    def session_status():
        user = _service().authenticate(_access_token() or '')
        return jsonify({"valid": True, "user": _user_payload(user)})

    @app.route('/mfa/setup', methods=['POST'])
    def mfa_setup():
        data = _json()
        user = _service().authenticate(_access_token() or '')
        try:
            mfa_type = MFAType(_text(data, 'type') or MFAType.TOTP.value)
        except ValueError:
            return jsonify({"error": "invalid_request", "message": "Unknown MFA type"}), 400
        setup = _service().setup_mfa(user.id, mfa_type, _text(data, 'name') or 'Authenticator')
        return jsonify({
            "device_id": setup.device_id,
            "secret": setup.secret,
            "backup_codes": setup.backup_codes,
            "enrollment_uri": setup.enrollment_uri,
            "qr_code": setup.qr_code,
        }), 201

    @app.route('/mfa/confirm', methods=['POST'])
    def mfa_confirm():
        data = _json()
        user = _service().authenticate(_access_token() or '')
        device = _service().confirm_mfa(user.id, _text(data, 'device_id'), _code(data, 'code'))
        return jsonify({"msg": "MFA enabled", "device_id": device.id})

    @app.route('/password-reset/request', methods=['POST'])
    def password_reset_request():
        message = _service().request_password_reset(_text(_json(), 'email'), ip_address=request.remote_addr)
        return jsonify({"success": True, "msg": message})

    @app.route('/password-reset/redeem', methods=['POST'])
    def password_reset_redeem():
        data = _json()
        _service().redeem_password_reset(
            _text(data, 'token'),
            _text(data, 'new_password'),
            ip_address=request.remote_addr,
        )
        resp = make_response(jsonify({"success": True, "msg": "Password updated. Please log in again."}))
        resp.delete_cookie(COOKIE_NAME)
        return resp

    return app


def _service() -> AuthService:
    return current_app.extensions['authcore']


def _json() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _text(data: dict, key: str) -> str:
    value = data.get(key, '')
    if value is None:
        return ''
    if not isinstance(value, str):
        raise BadRequest(f"'{key}' must be a string")
    return value


def _code(data: dict, key: str) -> Optional[str]:
    """One-time codes arrive as strings or, from some clients, as JSON numbers."""
    value = data.get(key)
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    raise BadRequest(f"'{key}' must be a string")


def _access_token() -> Optional[str]:
    header = request.headers.get('Authorization', '')
    if header.lower().startswith('bearer '):
        return header[7:].strip()
    return request.cookies.get(COOKIE_NAME)


def _device_info(data) -> DeviceInfo:
    if not isinstance(data, dict):
        data = {}
    return DeviceInfo(
        device_type=str(data.get('device_type', 'web')),
        device_name=str(data.get('device_name', 'unknown')),
        os_version=str(data.get('os_version', '')),
        app_version=str(data.get('app_version', '')),
        user_agent=request.headers.get('User-Agent'),
    )


def _user_payload(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "username": user.username,
        "display_name": user.display_name,
        "status": user.status.value,
        "email_verified": user.email_verified,
        "mfa_enabled": user.mfa_enabled,
        "created_at": user.created_at.isoformat(),
        "last_login_at": user.last_login_at.isoformat() if user.last_login_at else None,
    }


def _session_payload(issued: IssuedSession) -> dict:
    return {
        "session_id": issued.session.id,
        "access_token": issued.access_token,
        "refresh_token": issued.refresh_token,
        "expires_at": issued.expires_at.isoformat(),
    }


def _set_session_cookie(resp, issued: IssuedSession) -> None:
    config = _service().config
    resp.set_cookie(
        COOKIE_NAME, issued.access_token,
        httponly=config.COOKIE_HTTPONLY,
        secure=config.COOKIE_SECURE,
        samesite=config.COOKIE_SAMESITE,
        max_age=config.COOKIE_MAX_AGE,
    )
