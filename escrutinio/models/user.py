from flask_login import UserMixin

from escrutinio.extensions import db

ADMIN_ROLES = {"local-admin", "comunal-admin", "regional-admin", "general-admin"}


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(200), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(30), nullable=False, default="table-rep")

    assignments = db.relationship("TableAssignment", backref="user", lazy=True)

    @property
    def is_admin(self):
        return self.role in ADMIN_ROLES
