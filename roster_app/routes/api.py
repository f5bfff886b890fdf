# roster_app/routes/api.py

"""
API routes for AJAX/JSON endpoints
"""

from flask import current_app, jsonify
from flask_login import login_required
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from roster_app.models import Organization, db


def register_api_routes(app):
    """Register API routes"""

    @app.route("/health", methods=["GET"])
    def health():
        try:
            db.session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            current_app.logger.error(f"Health check database probe failed: {str(e)}")
            return jsonify({"status": "error", "database": "unavailable"}), 503
        return jsonify({"status": "ok", "database": "ok"})

    @app.route("/api/organizations", methods=["GET"])
    @login_required
    def api_list_organizations():
        """Active organizations, for choosing an import target"""
        organizations = Organization.query.filter_by(is_active=True).order_by(Organization.name).all()
        return jsonify(
            {
                "results": [
                    {
                        "id": org.id,
                        "name": org.name,
                        "slug": org.slug,
                        "status": org.status.value if org.status else None,
                    }
                    for org in organizations
                ]
            }
        )
