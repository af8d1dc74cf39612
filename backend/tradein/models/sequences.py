from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class SequenceCounter(db.Model):
    """
    Named global counters (one row per counter, e.g. "orderId").

    `count` is the last value handed out. `version_id` is bumped by every
    writer, including the atomic UPDATE path, so an optimistic writer that
    read a stale row fails with StaleDataError instead of overwriting.
    """
    __tablename__ = "sequence_counters"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_sequence_counters_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False)
    count = db.Column(db.Integer, nullable=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<SequenceCounter name={self.name!r} count={self.count}>"

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "count": self.count,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }
