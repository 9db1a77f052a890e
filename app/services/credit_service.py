"""
Credit ledger and AI rate-limit gate.

Every balance change is one conditional UPDATE on the project's
``user_credits`` row plus one immutable ``credit_transactions`` row, in
the same database transaction.  Debits never read-modify-write: the
``balance >= amount`` guard lives in the UPDATE's WHERE clause.

Ledger invariant: balance == total_purchased - total_used.

Usage:
    from app.services.credit_service import CreditService

    svc = CreditService()
    svc.debit(project_id=3, user_id=7, amount=2, reason="AI summary")
    svc.credit(project_id=3, user_id=7, amount=500, transaction_type="purchase",
               external_reference="cs_test_123")
"""

import logging
from datetime import timedelta

import sqlalchemy as sa
from flask import current_app
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import (
    InsufficientCreditsError,
    NotFoundError,
    RateLimitExceededError,
    ValidationError,
)
from app.models import db, utcnow
from app.models.auth import User
from app.models.credits import TRANSACTION_TYPES, AIUsage, CreditTransaction, ProjectCredits

logger = logging.getLogger(__name__)

CREDIT_TYPES = tuple(t for t in TRANSACTION_TYPES if t != "usage")


def _positive_int(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Amount must be a positive integer", details={"amount": "must be > 0"})
    return amount


class CreditService:
    """Per-project credit balance, package top-ups and AI usage accounting."""

    # ── Balance row ──────────────────────────────────────────────────────

    def get_account(self, project_id: int) -> ProjectCredits:
        """Return the project's balance row, creating an empty one on first use."""
        account = ProjectCredits.query.filter_by(project_id=project_id).first()
        if account is None:
            account = ProjectCredits(project_id=project_id, balance=0, total_purchased=0, total_used=0)
            db.session.add(account)
            db.session.flush()
        return account

    def get_balance(self, project_id: int) -> int:
        account = ProjectCredits.query.filter_by(project_id=project_id).first()
        return account.balance if account else 0

    def list_transactions(self, project_id: int, limit: int = 50) -> list[CreditTransaction]:
        return (
            CreditTransaction.query.filter_by(project_id=project_id)
            .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
            .limit(limit)
            .all()
        )

    def _apply(self, project_id: int, values: dict, *guards) -> int | None:
        """Run the balance UPDATE; return the new balance or None when a guard failed."""
        self.get_account(project_id)
        stmt = (
            sa.update(ProjectCredits)
            .where(ProjectCredits.project_id == project_id, *guards)
            .values(**values, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if db.session.execute(stmt).rowcount == 0:
            return None
        return db.session.execute(
            sa.select(ProjectCredits.balance).where(ProjectCredits.project_id == project_id)
        ).scalar_one()

    # ── Debit ────────────────────────────────────────────────────────────

    def debit(self, project_id: int, user_id: int | None, amount, reason: str | None = None,
              *, ai_usage_id: int | None = None, commit: bool = True) -> dict:
        """
        Take *amount* credits from the project balance.

        Raises:
            ValidationError: amount is not a positive integer.
            InsufficientCreditsError: balance < amount; nothing is written.
        """
        amount = _positive_int(amount)
        new_balance = self._apply(
            project_id,
            {
                "balance": ProjectCredits.balance - amount,
                "total_used": ProjectCredits.total_used + amount,
            },
            ProjectCredits.balance >= amount,
        )
        if new_balance is None:
            balance = self.get_balance(project_id)
            db.session.rollback()
            logger.info(
                "Debit of %s refused: balance %s", amount, balance,
                extra={"project_id": project_id, "user_id": user_id},
            )
            raise InsufficientCreditsError(balance, amount)

        tx = CreditTransaction(
            project_id=project_id,
            user_id=user_id,
            transaction_type="usage",
            amount=-amount,
            balance_after=new_balance,
            description=reason,
            ai_usage_id=ai_usage_id,
        )
        db.session.add(tx)
        if commit:
            db.session.commit()
        logger.info(
            "Debited %s credits (balance %s)", amount, new_balance,
            extra={"project_id": project_id, "user_id": user_id},
        )
        return {"newBalance": new_balance, "transaction": tx}

    # ── Credit ───────────────────────────────────────────────────────────

    def credit(self, project_id: int, user_id: int | None, amount, *,
               transaction_type: str = "admin_adjustment",
               description: str | None = None,
               external_reference: str | None = None,
               payment_intent_id: str | None = None,
               package_id: str | None = None) -> dict:
        """
        Add *amount* credits.  With an ``external_reference`` the credit is
        applied at most once; a repeat returns ``{"duplicate": True}``.
        """
        amount = _positive_int(amount)
        if transaction_type not in CREDIT_TYPES:
            raise ValidationError(f"transaction_type must be one of: {', '.join(CREDIT_TYPES)}",
                                  details={"transaction_type": "invalid"})

        if external_reference:
            existing = CreditTransaction.query.filter_by(external_reference=external_reference).first()
            if existing is not None:
                logger.info("Duplicate credit for reference %s ignored", external_reference,
                            extra={"project_id": project_id})
                return {"newBalance": self.get_balance(project_id), "transaction": existing, "duplicate": True}

        new_balance = self._apply(project_id, {
            "balance": ProjectCredits.balance + amount,
            "total_purchased": ProjectCredits.total_purchased + amount,
        })
        tx = CreditTransaction(
            project_id=project_id,
            user_id=user_id,
            transaction_type=transaction_type,
            amount=amount,
            balance_after=new_balance,
            description=description,
            external_reference=external_reference,
            payment_intent_id=payment_intent_id,
            package_id=package_id,
        )
        db.session.add(tx)
        try:
            db.session.commit()
        except IntegrityError:
            # A concurrent delivery with the same reference committed first
            db.session.rollback()
            existing = CreditTransaction.query.filter_by(external_reference=external_reference).first()
            if external_reference and existing is not None:
                logger.info("Duplicate credit for reference %s lost the race", external_reference)
                return {"newBalance": self.get_balance(project_id), "transaction": existing, "duplicate": True}
            raise
        logger.info(
            "Credited %s credits (%s, balance %s)", amount, transaction_type, new_balance,
            extra={"project_id": project_id, "user_id": user_id},
        )
        return {"newBalance": new_balance, "transaction": tx, "duplicate": False}

    def adjust(self, project_id: int, user_id: int, amount, reason: str | None) -> dict:
        """Manual adjustment: positive → admin_adjustment credit, negative → debit."""
        if isinstance(amount, bool) or not isinstance(amount, int) or amount == 0:
            raise ValidationError("Amount must be a non-zero integer", details={"amount": "invalid"})
        if not reason or not str(reason).strip():
            raise ValidationError("Reason is required", details={"reason": "required"})
        if amount > 0:
            return self.credit(project_id, user_id, amount, transaction_type="admin_adjustment",
                               description=reason)
        return self.debit(project_id, user_id, -amount, reason=reason)

    # ── Packages ─────────────────────────────────────────────────────────

    def list_packages(self) -> list[dict]:
        packages = current_app.config.get("CREDIT_PACKAGES", {})
        return [{"id": pid, **pkg} for pid, pkg in packages.items()]

    def resolve_package(self, package_id: str | None) -> dict:
        packages = current_app.config.get("CREDIT_PACKAGES", {})
        pkg = packages.get(package_id or "")
        if pkg is None:
            raise ValidationError("Invalid package", details={"package_id": "unknown"})
        return {"id": package_id, **pkg}

    def purchase_package(self, project_id: int, user_id: int | None, package_id: str,
                         external_reference: str, payment_intent_id: str | None = None) -> dict:
        """Credit a fixed top-up tier; unknown ids fail before any ledger write."""
        package = self.resolve_package(package_id)
        return self.credit(
            project_id, user_id, package["credits"],
            transaction_type="purchase",
            description=f"Purchased {package['name']} package",
            external_reference=external_reference,
            payment_intent_id=payment_intent_id,
            package_id=package["id"],
        )

    # ── AI rate limit ────────────────────────────────────────────────────

    def _tier(self, user: User) -> tuple[str, dict]:
        tiers = current_app.config.get("AI_RATE_LIMIT_TIERS", {})
        default = current_app.config.get("AI_DEFAULT_TIER", "free")
        name = user.ai_tier if user.ai_tier in tiers else default
        return name, tiers[name]

    def usage_counts(self, user_id: int) -> dict:
        now = utcnow()
        windows = {
            "hour": now - timedelta(hours=1),
            "day": now - timedelta(days=1),
            "month": now - timedelta(days=30),
        }
        return {
            window: AIUsage.query.filter(AIUsage.user_id == user_id, AIUsage.created_at > since).count()
            for window, since in windows.items()
        }

    def check_ai_rate_limit(self, user_id: int, project_id: int | None) -> dict:
        """
        Evaluate the caller's tier.  Raises RateLimitExceededError on an
        exhausted window and InsufficientCreditsError when a credit-based
        tier cannot pay for one request.
        """
        user = db.session.get(User, user_id)
        if user is None:
            raise NotFoundError(resource="User", resource_id=user_id)
        tier_name, tier = self._tier(user)
        counts = self.usage_counts(user_id)

        for window in ("hour", "day", "month"):
            limit = tier.get(f"requests_per_{window}")
            if limit is not None and counts[window] >= limit:
                raise RateLimitExceededError(window, limit, counts[window])

        cost = tier.get("credits_per_request", 0) if tier.get("requires_credits") else 0
        if cost:
            if project_id is None:
                raise ValidationError("project_id is required for credit-based AI usage")
            balance = self.get_balance(project_id)
            if balance < cost:
                raise InsufficientCreditsError(balance, cost)

        return {"allowed": True, "tier": tier_name, "cost": cost, "usage": counts}

    def record_ai_usage(self, user_id: int, project_id: int | None, operation_type: str | None,
                        *, model_name: str | None = None, input_tokens: int = 0,
                        output_tokens: int = 0) -> dict:
        """Gate, then insert the usage row and debit its cost atomically."""
        if not operation_type:
            raise ValidationError("operation_type is required", details={"operation_type": "required"})
        gate = self.check_ai_rate_limit(user_id, project_id)
        cost = gate["cost"]

        usage = AIUsage(
            user_id=user_id,
            project_id=project_id,
            operation_type=operation_type,
            model_name=model_name,
            input_tokens=int(input_tokens or 0),
            output_tokens=int(output_tokens or 0),
            credits_used=cost,
            was_free_tier=cost == 0,
        )
        db.session.add(usage)
        db.session.flush()
        balance = None
        if cost:
            balance = self.debit(project_id, user_id, cost, reason=f"AI {operation_type}",
                                 ai_usage_id=usage.id, commit=False)["newBalance"]
        db.session.commit()
        return {"usage": usage, "tier": gate["tier"], "creditsUsed": cost, "newBalance": balance}

    def usage_summary(self, user_id: int) -> dict:
        user = db.session.get(User, user_id)
        if user is None:
            raise NotFoundError(resource="User", resource_id=user_id)
        tier_name, tier = self._tier(user)
        counts = self.usage_counts(user_id)
        return {
            "tier": tier_name,
            "limits": {
                "hour": tier.get("requests_per_hour"),
                "day": tier.get("requests_per_day"),
                "month": tier.get("requests_per_month"),
            },
            "usage": counts,
            "requiresCredits": bool(tier.get("requires_credits")),
            "creditsPerRequest": tier.get("credits_per_request", 0),
        }

