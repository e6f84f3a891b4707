from flask import Blueprint, jsonify

from tapdash import registry

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the TapDash race server!'})

@main.route('/healthz')
def healthz():
    return jsonify({'status': 'ok', 'rooms': len(registry)})
