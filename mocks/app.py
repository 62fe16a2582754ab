"""
Regportal Auth Microservice Mock
A small Flask application standing in for the external authentication
microservice during local development.

Point the API at it with:
    REGPORTAL_AUTH_SERVICE__BASE_URL=http://localhost:8019/api/auth_microservice
"""

from datetime import datetime, timedelta, timezone
import uuid

from flask import Flask, jsonify, request

app = Flask(__name__)

PREFIX = '/api/auth_microservice'
ACCESS_LIFETIME = timedelta(minutes=60)
REFRESH_LIFETIME = timedelta(days=1)

# Seed accounts: username -> record
MOCK_USERS = {
    'admin': {
        'user_id': 1,
        'password': 'admin-password',
        'first_name': 'Ada',
        'last_name': 'Admin',
        'email': 'admin@regportal.example.com',
        'roles': ['admin', 'agent'],
    },
    'supervisor': {
        'user_id': 2,
        'password': 'supervisor-password',
        'first_name': 'Sam',
        'last_name': 'Supervisor',
        'email': 'supervisor@regportal.example.com',
        'roles': ['supervisor'],
    },
    'agent': {
        'user_id': 3,
        'password': 'agent-password',
        'first_name': 'Alex',
        'last_name': 'Agent',
        'email': 'agent@regportal.example.com',
        'roles': ['agent'],
    },
    'viewer': {
        'user_id': 4,
        'password': 'viewer-password',
        'first_name': '',
        'last_name': '',
        'email': 'viewer@regportal.example.com',
        'roles': [],
    },
}

# Issued tokens: token -> {'username', 'kind', 'exp'}
TOKENS = {}


def _now():
    return datetime.now(timezone.utc)


def _issue(username, kind, lifetime):
    token = f'{kind}-{uuid.uuid4().hex}'
    TOKENS[token] = {
        'username': username,
        'kind': kind,
        'exp': int((_now() + lifetime).timestamp()),
    }
    return token


def _issue_pair(username):
    return {
        'access': _issue(username, 'access', ACCESS_LIFETIME),
        'refresh': _issue(username, 'refresh', REFRESH_LIFETIME),
    }


def _lookup(token, kind):
    record = TOKENS.get(token or '')
    if record is None or record['kind'] != kind:
        return None
    if record['exp'] <= int(_now().timestamp()):
        return None
    return record


def _json_body():
    return request.get_json(silent=True) or {}


@app.route(f'{PREFIX}/login/', methods=['POST'])
def login():
    body = _json_body()
    user = MOCK_USERS.get(body.get('username', ''))
    if user is None or user['password'] != body.get('password'):
        return jsonify({'detail': 'No active account found with the given credentials'}), 401
    return jsonify(_issue_pair(body['username']))


@app.route(f'{PREFIX}/decode-token/', methods=['POST'])
def decode_token():
    record = _lookup(_json_body().get('token'), 'access')
    if record is None:
        return jsonify({'detail': 'Token is invalid or expired'}), 401

    username = record['username']
    user = MOCK_USERS[username]
    return jsonify({
        'payload': {
            'user_id': user['user_id'],
            'exp': record['exp'],
            'roles': list(user['roles']),
            'profile': {
                'username': username,
                'first_name': user['first_name'],
                'last_name': user['last_name'],
                'email': user['email'],
            },
        }
    })


@app.route(f'{PREFIX}/refresh/', methods=['POST'])
def refresh():
    token = _json_body().get('refresh')
    record = _lookup(token, 'refresh')
    if record is None:
        return jsonify({'detail': 'Token is invalid or expired'}), 401

    # Refresh tokens rotate
    TOKENS.pop(token, None)
    return jsonify(_issue_pair(record['username']))


@app.route(f'{PREFIX}/register/', methods=['POST'])
def register():
    body = _json_body()
    required = ('username', 'password', 'first_name', 'last_name', 'email')
    errors = {field: ['This field is required.'] for field in required if not body.get(field)}
    if body.get('username') in MOCK_USERS:
        errors['username'] = ['A user with that username already exists.']
    if errors:
        return jsonify(errors), 400

    MOCK_USERS[body['username']] = {
        'user_id': max(u['user_id'] for u in MOCK_USERS.values()) + 1,
        'password': body['password'],
        'first_name': body['first_name'],
        'last_name': body['last_name'],
        'email': body['email'],
        'roles': ['admin'] if body.get('is_superuser') else [],
    }
    return jsonify({'message': 'User registered successfully'}), 201


@app.errorhandler(404)
def not_found(e):
    return jsonify({'detail': 'Not found'}), 404


if __name__ == '__main__':
    app.run(host='0.0.0.0', port=8019, debug=True)
