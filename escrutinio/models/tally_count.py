from escrutinio.extensions import db


class TallyCount(db.Model):
    __tablename__ = "tally_counts"
    __table_args__ = (
        db.UniqueConstraint("table_id", "election_id", "office", "candidate_key"),
    )

    id = db.Column(db.Integer, primary_key=True)
    table_id = db.Column(db.Integer, db.ForeignKey("polling_tables.id"), nullable=False)
    election_id = db.Column(db.String(50), nullable=False)
    office = db.Column(db.String(50), nullable=False)
    candidate_key = db.Column(db.String(120), nullable=False)
    votes = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
