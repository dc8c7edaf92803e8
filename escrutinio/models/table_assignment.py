from escrutinio.extensions import db


class TableAssignment(db.Model):
    __tablename__ = "table_assignments"
    __table_args__ = (db.UniqueConstraint("user_id", "table_id"),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    table_id = db.Column(db.Integer, db.ForeignKey("polling_tables.id"), nullable=False)
