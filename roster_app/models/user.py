# roster_app/models/user.py

from flask_login import UserMixin
from werkzeug.security import check_password_hash

from .base import BaseModel, db


class User(BaseModel, UserMixin):
    """Back-office operator account"""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    first_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=True)
    role = db.Column(db.String(20), default="USER", nullable=False)  # USER, ADMIN
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    is_super_admin = db.Column(db.Boolean, default=False, nullable=False)

    def __repr__(self):
        return f"<User {self.username}>"

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self):
        """Super admins and ADMIN-role users may run roster imports"""
        return bool(self.is_super_admin or (self.role or "").upper() == "ADMIN")
