from flask import Blueprint, current_app, request, jsonify
from .models import db, User, Pet
from flask_login import login_user, logout_user, login_required, current_user

main = Blueprint('main', __name__)

@main.route('/register', methods=['POST', 'OPTIONS'])
def register():
    if request.method == 'OPTIONS':
        return jsonify({'status': 'ok'}), 200
    data = request.get_json(silent=True) or {}
    username = data.get('username')
    password = data.get('password')
    if not all([username, password]):
        return jsonify({"success": False, "message": "Username and password are required"}), 400
    if User.query.filter_by(username=username).first():
        return jsonify({"success": False, "message": "Username already exists"}), 400

    new_user = User(username=username, gold=0)
    new_user.set_password(password)
    db.session.add(new_user)
    db.session.flush()
    pet_name = data.get('pet_name') or f"{username}'s pet"
    pet = Pet(user_id=new_user.id, name=pet_name, level=1, exp=0, max_exp=100, hp=100, max_hp=100)
    db.session.add(pet)
    db.session.commit()
    login_user(new_user)
    return jsonify({"success": True, "user": new_user.to_dict(), "pet": pet.to_dict()}), 201

@main.route('/login', methods=['POST', 'OPTIONS'])
def login():
    if request.method == 'OPTIONS':
        return jsonify({'status': 'ok'}), 200
    data = request.get_json(silent=True) or {}
    user = User.query.filter_by(username=data.get('username')).first()
    if user and user.check_password(data.get('password') or ''):
        login_user(user)
        return jsonify({"success": True, "user": user.to_dict()})
    return jsonify({"success": False, "message": "Invalid credentials"}), 401

@main.route('/check_login', methods=['GET', 'OPTIONS'])
def check_login():
    if request.method == 'OPTIONS':
        return jsonify({'status': 'ok'}), 200

    @login_required
    def protected_check():
        return jsonify({"success": True, "user": current_user.to_dict()})

    return protected_check()

@main.route('/logout', methods=['POST', 'OPTIONS'])
@login_required
def logout():
    logout_user()
    return jsonify({"success": True})

@main.route('/realtime/online')
def realtime_online():
    """Presence snapshot plus queue/match counts from the live battle server."""
    return jsonify(current_app.extensions['battle_server'].stats())
