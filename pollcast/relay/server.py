#!/usr/bin/env python3
"""
Poll Relay - HTTP surface
JSON endpoints used by the page-side client plus the bot webhook.

Every POST body is a JSON object. Errors are translated from the RelayError
hierarchy into {"error", "code"} bodies; anything unexpected becomes a bare
500 so no internals leak to callers.
"""

import hmac
import time
import uuid
from functools import wraps

from flask import Flask, g, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from pollcast.core.config import get_config
from pollcast.core.errors import AuthError, RelayError, ValidationError
from pollcast.core.relay_logging import configure_logging, http_logger
from pollcast.relay.broadcast import BroadcastDispatcher
from pollcast.relay.identity import IdentityService
from pollcast.relay.key_store import KeyStore
from pollcast.relay.messenger import TelegramMessenger
from pollcast.relay.session_registry import SessionRegistry

SECRET_HEADER = 'X-Telegram-Bot-Api-Secret-Token'


def log_request(f):
    """Decorator to log every relay request with a request id"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        request_id = str(uuid.uuid4())
        g.request_id = request_id

        # Field names only; bodies carry tokens and codes
        body = request.get_json(silent=True) if request.is_json else None
        http_logger.log_info("REQUEST", f"{request.method} {request.path}", {
            "request_id": request_id,
            "fields": sorted(body.keys()) if isinstance(body, dict) else None
        })

        start_time = time.time()
        result = f(*args, **kwargs)
        http_logger.log_info("RESPONSE", f"{request.method} {request.path}", {
            "request_id": request_id,
            "duration": f"{time.time() - start_time:.3f}s"
        })
        return result
    return decorated_function


def json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Invalid JSON body')
    return data


def create_app(config=None, store=None, messenger=None) -> Flask:
    """
    Build the relay app. Tests pass a fakeredis-backed store and a
    recording messenger; production builds both from config.
    """
    config = config or get_config()
    store = store or KeyStore.from_config(config)
    messenger = messenger or TelegramMessenger.from_config(config)

    identity = IdentityService(store, messenger, config)
    registry = SessionRegistry(store, identity, messenger, config)
    dispatcher = BroadcastDispatcher(store, identity, messenger, config)

    app = Flask(__name__)
    app.config['RELAY_CONFIG'] = config
    CORS(app)

    @app.errorhandler(RelayError)
    def handle_relay_error(error):
        http_logger.log_warning(error.code.name, error.message, {
            "request_id": getattr(g, 'request_id', None),
            "status": error.status_code
        })
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'error': error.name}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected(error):
        http_logger.log_error("UNHANDLED", f"{type(error).__name__}: {error}", {
            "request_id": getattr(g, 'request_id', None)
        })
        return jsonify({'error': 'Internal server error'}), 500

    @app.route('/health', methods=['GET'])
    def health_check():
        return jsonify({'status': 'ok', 'store': store.health_check()})

    @app.route('/register', methods=['POST'])
    @log_request
    def register():
        data = json_body()
        token = identity.register(data.get('code'))
        return jsonify({'success': True, 'userToken': token})

    @app.route('/notify', methods=['POST'])
    @log_request
    def notify():
        data = json_body()
        dispatcher.notify(data.get('userToken'), data.get('title'), data.get('message'))
        return jsonify({'success': True})

    @app.route('/join-class', methods=['POST'])
    @log_request
    def join_class():
        data = json_body()
        is_new_join = registry.join_class(data.get('userToken'), data.get('courseId'))
        return jsonify({
            'success': True,
            'courseId': data.get('courseId'),
            'isNewJoin': is_new_join
        })

    @app.route('/join-session', methods=['POST'])
    @log_request
    def join_session():
        data = json_body()
        result = registry.join_session(
            data.get('userToken'),
            course_id=data.get('courseId'),
            activity_id=data.get('activityId')
        )
        return jsonify(result.to_dict())

    @app.route('/leave-session', methods=['POST'])
    @log_request
    def leave_session():
        data = json_body()
        registry.leave(data.get('userToken'))
        return jsonify({'success': True})

    @app.route('/heartbeat', methods=['POST'])
    @log_request
    def heartbeat():
        data = json_body()
        registry.heartbeat(
            data.get('userToken'),
            course_id=data.get('courseId'),
            activity_id=data.get('activityId')
        )
        return jsonify({'success': True})

    @app.route('/broadcast', methods=['POST'])
    @log_request
    def broadcast():
        data = json_body()
        result = dispatcher.broadcast(
            data.get('userToken'),
            course_id=data.get('courseId'),
            activity_id=data.get('activityId'),
            title=data.get('title'),
            message=data.get('message')
        )
        return jsonify(result.to_dict())

    @app.route('/webhook', methods=['POST'])
    @log_request
    def webhook():
        if config.WEBHOOK_SECRET:
            supplied = request.headers.get(SECRET_HEADER, '')
            if not hmac.compare_digest(supplied.encode('utf-8'), config.WEBHOOK_SECRET.encode('utf-8')):
                raise AuthError('Unauthorized')
        identity.handle_update(request.get_json(silent=True) or {})
        return 'OK', 200

    return app


def main():
    config = get_config()
    configure_logging(config.LOG_LEVEL)

    for issue in config.validate_config():
        http_logger.log_warning("CONFIG_ISSUE", issue)

    app = create_app(config)
    http_logger.log_info("SERVICE_START", "Poll relay starting", {
        "host": config.SERVICE_HOST,
        "port": config.SERVICE_PORT
    })
    app.run(host=config.SERVICE_HOST, port=config.SERVICE_PORT, debug=config.DEBUG)


if __name__ == '__main__':
    main()
