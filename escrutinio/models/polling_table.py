from escrutinio.extensions import db


class PollingTable(db.Model):
    __tablename__ = "polling_tables"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)
    local_id = db.Column(db.String(100), nullable=False)
    comuna = db.Column(db.String(100), nullable=True)
    region = db.Column(db.String(100), nullable=True)

    assignments = db.relationship("TableAssignment", backref="table", lazy=True)
    tally_counts = db.relationship("TallyCount", backref="table", lazy=True)
    validations = db.relationship("TableValidation", backref="table", lazy=True)
