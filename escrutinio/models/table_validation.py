from escrutinio.extensions import db


class TableValidation(db.Model):
    __tablename__ = "table_validations"
    __table_args__ = (db.UniqueConstraint("table_id", "election_id"),)

    id = db.Column(db.Integer, primary_key=True)
    table_id = db.Column(db.Integer, db.ForeignKey("polling_tables.id"), nullable=False)
    election_id = db.Column(db.String(50), nullable=False)
    validated_by = db.Column(db.String(200), nullable=False)
    validated_at = db.Column(db.DateTime(timezone=True), nullable=False)
    vote_counts = db.Column(db.JSON, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="validated")
