from escrutinio.extensions import db


class Candidate(db.Model):
    __tablename__ = "candidates"
    __table_args__ = (db.UniqueConstraint("election_id", "office", "key"),)

    id = db.Column(db.Integer, primary_key=True)
    election_id = db.Column(db.String(50), nullable=False)
    office = db.Column(db.String(50), nullable=False)
    key = db.Column(db.String(100), nullable=False)
    display_name = db.Column(db.String(200), nullable=False)
    ballot_number = db.Column(db.String(20), nullable=True)
