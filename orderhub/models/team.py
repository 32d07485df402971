"""
Team domain models.

Models:
    - Team:        a work group owning catalog services; has one leader
    - TeamMember:  User ↔ Team membership, soft-deleted via is_active

Memberships are reactivated on rejoin instead of recreated, so
(team_id, user_id) stays unique.
"""

from datetime import datetime, timezone

from orderhub.models import db


class Team(db.Model):
    __tablename__ = "teams"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), unique=True, nullable=False)
    description = db.Column(db.Text, default="")
    leader_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    leader = db.relationship("User", foreign_keys=[leader_id])
    members = db.relationship(
        "TeamMember", back_populates="team", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_members=False):
        d = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "leader_id": self.leader_id,
            "leader": self.leader.to_dict() if self.leader else None,
            "is_active": self.is_active,
            "member_count": self.members.filter_by(is_active=True).count(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_members:
            d["members"] = [m.to_dict() for m in self.members.filter_by(is_active=True)]
        return d

    def __repr__(self):
        return f"<Team {self.id}: {self.name}>"


class TeamMember(db.Model):
    __tablename__ = "team_members"
    __table_args__ = (
        db.UniqueConstraint("team_id", "user_id", name="uq_team_member"),
    )

    id = db.Column(db.Integer, primary_key=True)
    team_id = db.Column(
        db.Integer, db.ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    joined_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    team = db.relationship("Team", back_populates="members")
    user = db.relationship("User", back_populates="memberships")

    def to_dict(self):
        return {
            "id": self.id,
            "team_id": self.team_id,
            "user_id": self.user_id,
            "user": self.user.to_dict() if self.user else None,
            "is_active": self.is_active,
            "joined_at": self.joined_at.isoformat() if self.joined_at else None,
        }

    def __repr__(self):
        return f"<TeamMember team={self.team_id} user={self.user_id} active={self.is_active}>"
