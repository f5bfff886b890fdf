# roster_app/routes/auth.py

"""
JSON session login for operators of the admin API
"""

from flask import current_app, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user

from roster_app.models import AdminLog, User


def register_auth_routes(app):
    """Register authentication routes"""

    @app.route("/api/auth/login", methods=["POST"])
    def api_login():
        payload = request.get_json(silent=True) or {}
        username = (payload.get("username") or "").strip()
        password = payload.get("password") or ""
        if not username or not password:
            return jsonify({"error": "username and password are required"}), 400

        user = User.query.filter_by(username=username).first()
        if user is None or not user.is_active or not user.check_password(password):
            current_app.logger.warning(f"Failed login attempt for username: {username}")
            return jsonify({"error": "Invalid username or password"}), 401

        login_user(user, remember=bool(payload.get("remember")))
        AdminLog.log_action(
            admin_user_id=user.id,
            action="LOGIN",
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )
        current_app.logger.info(f"User {user.username} logged in")
        return jsonify({"id": user.id, "username": user.username, "isAdmin": user.is_admin})

    @app.route("/api/auth/logout", methods=["POST"])
    @login_required
    def api_logout():
        username = current_user.username
        logout_user()
        current_app.logger.info(f"User {username} logged out")
        return jsonify({"success": True})
