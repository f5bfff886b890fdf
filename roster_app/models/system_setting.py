# roster_app/models/system_setting.py

import json

from .base import BaseModel, db


class SystemSetting(BaseModel):
    """Keyed system-wide setting holding a JSON value.

    ``version`` is bumped on every write so callers can compare-and-swap
    instead of relying on an in-process lock.
    """

    __tablename__ = "system_settings"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(100), unique=True, nullable=False, index=True)
    value = db.Column(db.Text, nullable=False)  # JSON string
    version = db.Column(db.Integer, default=1, nullable=False)
    description = db.Column(db.Text, nullable=True)

    def __repr__(self):
        return f"<SystemSetting {self.key} v{self.version}>"

    def get_value(self):
        """Decode the stored JSON value"""
        try:
            return json.loads(self.value)
        except (TypeError, json.JSONDecodeError):
            return {}

    def set_value(self, value):
        self.value = json.dumps(value, ensure_ascii=False) if not isinstance(value, str) else value
