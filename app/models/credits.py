"""
Credit ledger and AI usage models.

Models:
    - ProjectCredits: one balance row per project (table ``user_credits``).
    - CreditTransaction: immutable ledger entry; ``amount`` is signed and
      ``balance_after`` is the running balance once the entry is applied.
    - AIUsage: one row per AI-assisted operation, counted for tier windows.

Ledger invariant: balance == total_purchased - total_used, and the signed
sum of a project's transaction amounts equals its balance.
"""

from app.models import db, utcnow

TRANSACTION_TYPES = ("purchase", "usage", "bonus", "admin_adjustment", "refund")


class ProjectCredits(db.Model):
    __tablename__ = "user_credits"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, unique=True,
    )
    balance = db.Column(db.Integer, nullable=False, default=0)
    total_purchased = db.Column(db.Integer, nullable=False, default=0)
    total_used = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.CheckConstraint("balance >= 0", name="ck_user_credits_balance_non_negative"),
    )

    def to_dict(self):
        return {
            "project_id": self.project_id,
            "balance": self.balance,
            "total_purchased": self.total_purchased,
            "total_used": self.total_used,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class CreditTransaction(db.Model):
    __tablename__ = "credit_transactions"
    __table_args__ = (
        db.Index("idx_credit_transactions_project", "project_id", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False,
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    transaction_type = db.Column(db.String(20), nullable=False)
    amount = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(500))

    # Idempotency key for externally-triggered credits (payment session id)
    external_reference = db.Column(db.String(255), unique=True)
    payment_intent_id = db.Column(db.String(255))
    package_id = db.Column(db.String(50))
    ai_usage_id = db.Column(db.Integer, db.ForeignKey("ai_usage.id", ondelete="SET NULL"))

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "transaction_type": self.transaction_type,
            "amount": self.amount,
            "balance_after": self.balance_after,
            "description": self.description,
            "external_reference": self.external_reference,
            "package_id": self.package_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class AIUsage(db.Model):
    __tablename__ = "ai_usage"
    __table_args__ = (
        db.Index("idx_ai_usage_user_created", "user_id", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"))
    operation_type = db.Column(db.String(50), nullable=False)
    model_name = db.Column(db.String(100))
    input_tokens = db.Column(db.Integer, nullable=False, default=0)
    output_tokens = db.Column(db.Integer, nullable=False, default=0)
    credits_used = db.Column(db.Integer, nullable=False, default=0)
    was_free_tier = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "project_id": self.project_id,
            "operation_type": self.operation_type,
            "model_name": self.model_name,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "credits_used": self.credits_used,
            "was_free_tier": self.was_free_tier,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
