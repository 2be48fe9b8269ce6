from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import create_access_token, get_jwt_identity
from copyboss import db, bcrypt
from copyboss.logger import app_logger as logger
from copyboss.utils.auth import jwt_required_custom
from copyboss.utils.users import create_user, get_user_by_email, get_user_by_id

auth_bp = Blueprint('auth', __name__)


# ------------------ SIGNUP ------------------
@auth_bp.route('/signup', methods=['POST'])
def signup():
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'message': 'Request body must be JSON'}), 400

    email = data.get('email')
    username = data.get('username')
    password = data.get('password')
    referrer_id = data.get('referrerId') or data.get('referrer_id')

    if not email or not username or not password:
        return jsonify({'message': 'Email, username, and password required'}), 400

    if get_user_by_email(email):
        return jsonify({'message': 'User already exists'}), 400

    # An unknown referrer is dropped rather than failing the signup
    if referrer_id and not get_user_by_id(referrer_id):
        logger.info(f"Ignoring unknown referrer {referrer_id} for {email}")
        referrer_id = None

    try:
        user = create_user(email, username, password, referrer_id)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Signup error: {e}")
        return jsonify({'message': f'Error: {str(e)}'}), 500

    return jsonify({'message': 'User created', 'userId': user.id}), 201


# ------------------ LOGIN ------------------
@auth_bp.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    email = data.get('email')
    password = data.get('password')

    if not email or not password:
        return jsonify({'message': 'Email and password are required'}), 400

    user = get_user_by_email(email)
    if not user or not user.password_hash or not bcrypt.check_password_hash(user.password_hash, password):
        return jsonify({'message': 'Invalid credentials'}), 401

    role = 'admin' if user.email in current_app.config.get('ADMIN_EMAILS', []) else 'user'
    access_token = create_access_token(identity=user.id, additional_claims={'role': role})

    return jsonify({
        'access_token': access_token,
        'user': {
            'id': user.id,
            'email': user.email,
            'username': user.username,
            'role': role,
        }
    }), 200


# ------------------ ME ------------------
@auth_bp.route('/me', methods=['GET'])
@jwt_required_custom
def me():
    user = get_user_by_id(get_jwt_identity())
    if not user:
        return jsonify({'message': 'User not found'}), 404
    return jsonify({
        'id': user.id,
        'email': user.email,
        'username': user.username,
        'referrer_id': user.referrer_id,
        **user.status()
    }), 200
