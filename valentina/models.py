import json
from datetime import datetime, timezone
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import Column, Integer, String, Text, Boolean
from werkzeug.security import generate_password_hash, check_password_hash

db = SQLAlchemy()


def utc_timestamp():
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2025-01-01T10:00:00.000Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class User(db.Model):
    """A dashboard operator."""
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    username = Column(String(80), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)


class ChatHistory(db.Model):
    """One message of a WhatsApp conversation."""
    __tablename__ = "history"
    id = Column(Integer, primary_key=True, autoincrement=True)
    phone = Column(String(32), index=True, nullable=False)
    role = Column(String(16), nullable=False)  # user | bot | manual
    text = Column(Text, nullable=False, default="")
    time = Column(String(32), nullable=False, default=utc_timestamp)

    def to_dict(self):
        return {"id": self.id, "phone": self.phone, "role": self.role, "text": self.text, "time": self.time}


class Lead(db.Model):
    """A prospect qualified by the assistant or edited from the dashboard."""
    __tablename__ = "leads"
    id = Column(Integer, primary_key=True, autoincrement=True)
    phone = Column(String(32), index=True)
    name = Column(Text)
    interest = Column(Text)
    tag = Column(Text)
    created = Column(String(32), default=utc_timestamp)
    city = Column(Text)
    email = Column(Text)

    # Wire keys used by the dashboard -> model attributes
    WIRE_FIELDS = {
        "phone": "phone",
        "nombre": "name",
        "interes": "interest",
        "etiqueta": "tag",
        "fecha": "created",
        "ciudad": "city",
        "correo": "email",
    }

    def to_dict(self):
        data = {"id": self.id}
        for wire_key, attr in self.WIRE_FIELDS.items():
            data[wire_key] = getattr(self, attr)
        return data


class ContactMetadata(db.Model):
    __tablename__ = "metadata"
    phone = Column(String(32), primary_key=True)
    contact_name = Column(Text)
    labels = Column(Text, default="[]", nullable=False)
    pinned = Column(Boolean, default=False, nullable=False)
    added_manual = Column(Boolean, default=False, nullable=False)
    photo_url = Column(Text)

    @property
    def label_list(self):
        try:
            return json.loads(self.labels or "[]")
        except ValueError:
            return []


class BotStatus(db.Model):
    """Per-chat switch; a chat without a row is handled by the bot."""
    __tablename__ = "bot_status"
    phone = Column(String(32), primary_key=True)
    active = Column(Boolean, default=True, nullable=False)


class InventoryItem(db.Model):
    __tablename__ = "inventory"
    id = Column(Integer, primary_key=True, autoincrement=True)
    searchable = Column(Text, unique=True, nullable=False)
    raw_data = Column(Text, nullable=False)

    @property
    def data(self):
        return json.loads(self.raw_data)

    def to_dict(self):
        return {"id": self.id, "searchable": self.searchable, "raw_data": self.raw_data}


class ConfigEntry(db.Model):
    """Key/value settings edited from the dashboard. Values are JSON-encoded."""
    __tablename__ = "config"
    key = Column(String(64), primary_key=True)
    value = Column(Text)


class Shortcut(db.Model):
    __tablename__ = "shortcuts"
    id = Column(Integer, primary_key=True, autoincrement=True)
    keyword = Column(String(100), unique=True, nullable=False)
    text = Column(Text)

    def to_dict(self):
        return {"id": self.id, "keyword": self.keyword, "text": self.text}


class GlobalTag(db.Model):
    __tablename__ = "global_tags"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False)
    color = Column(String(32))

    def to_dict(self):
        return {"id": self.id, "name": self.name, "color": self.color}
