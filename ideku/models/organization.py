"""
Organization Models — divisions, departments, categories, events, roles, users.

Users carry an optional acting delegation: for the window
[acting_start_date, acting_end_date] the user additionally holds the
acting role and acting location. The home role and home location are
never overwritten, so expiry needs no restore step.
"""

from datetime import datetime, timezone

from ideku.models import db


def as_utc(value):
    """Normalise to an aware UTC datetime; naive values (SQLite round-trips) are UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ═══════════════════════════════════════════════════════════════
# 1. LOCATIONS
# ═══════════════════════════════════════════════════════════════
class Division(db.Model):
    __tablename__ = "divisions"

    id = db.Column(db.String(3), primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    is_active = db.Column(db.Boolean, default=True)

    departments = db.relationship("Department", back_populates="division", lazy="dynamic")

    def to_dict(self):
        return {"id": self.id, "name": self.name, "is_active": self.is_active}

    def __repr__(self):
        return f"<Division {self.id}: {self.name}>"


class Department(db.Model):
    __tablename__ = "departments"

    id = db.Column(db.String(3), primary_key=True)
    division_id = db.Column(
        db.String(3), db.ForeignKey("divisions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(100), nullable=False)
    is_active = db.Column(db.Boolean, default=True)

    division = db.relationship("Division", back_populates="departments")

    def to_dict(self):
        return {
            "id": self.id,
            "division_id": self.division_id,
            "name": self.name,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Department {self.id}: {self.name}>"


# ═══════════════════════════════════════════════════════════════
# 2. IDEA CLASSIFIERS
# ═══════════════════════════════════════════════════════════════
class Category(db.Model):
    __tablename__ = "categories"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    is_active = db.Column(db.Boolean, default=True)

    def to_dict(self):
        return {"id": self.id, "name": self.name, "is_active": self.is_active}


class Event(db.Model):
    __tablename__ = "events"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    is_active = db.Column(db.Boolean, default=True)

    def to_dict(self):
        return {"id": self.id, "name": self.name, "is_active": self.is_active}


# ═══════════════════════════════════════════════════════════════
# 3. ROLES
# ═══════════════════════════════════════════════════════════════
class Role(db.Model):
    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
        }

    def __repr__(self):
        return f"<Role {self.name}>"


# ═══════════════════════════════════════════════════════════════
# 4. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(100), unique=True, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200))
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=False, index=True)
    division_id = db.Column(db.String(3), db.ForeignKey("divisions.id"), nullable=True)
    department_id = db.Column(db.String(3), db.ForeignKey("departments.id"), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    # Acting delegation (overlay on top of the home identity)
    is_acting = db.Column(db.Boolean, default=False, nullable=False)
    acting_role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=True)
    acting_division_id = db.Column(db.String(3), db.ForeignKey("divisions.id"), nullable=True)
    acting_department_id = db.Column(db.String(3), db.ForeignKey("departments.id"), nullable=True)
    acting_start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    acting_end_date = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_users_location", "division_id", "department_id"),
        db.Index("ix_users_acting_role", "acting_role_id"),
    )

    role = db.relationship("Role", foreign_keys=[role_id])
    acting_role = db.relationship("Role", foreign_keys=[acting_role_id])

    def is_acting_at(self, at=None) -> bool:
        """True when the acting window covers *at* (default: now)."""
        if not self.is_acting or not self.acting_start_date or not self.acting_end_date:
            return False
        at = as_utc(at or datetime.now(timezone.utc))
        return as_utc(self.acting_start_date) <= at <= as_utc(self.acting_end_date)

    def to_dict(self, at=None):
        return {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "email": self.email,
            "role_id": self.role_id,
            "role": self.role.name if self.role else None,
            "division_id": self.division_id,
            "department_id": self.department_id,
            "is_active": self.is_active,
            "is_acting": self.is_acting,
            "is_currently_acting": self.is_acting_at(at),
            "acting_role_id": self.acting_role_id,
            "acting_division_id": self.acting_division_id,
            "acting_department_id": self.acting_department_id,
            "acting_start_date": self.acting_start_date.isoformat() if self.acting_start_date else None,
            "acting_end_date": self.acting_end_date.isoformat() if self.acting_end_date else None,
        }

    def __repr__(self):
        return f"<User {self.username}>"
