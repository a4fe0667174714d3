from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session, selectinload

from dispute_manager.models_sqlalchemy.models import Dispute, DisputeResponse, Shop
from dispute_manager.utils.logger import logger


class ShopService:

    @staticmethod
    def _to_utc(dt: Optional[datetime]) -> Optional[datetime]:
        """Normalize a datetime to timezone-aware UTC.

        SQLite hands back naive datetimes, Postgres aware ones.
        """
        if dt is None:
            return None
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)

    def get_shop_by_domain(self, db: Session, shop_domain: str) -> Optional[Shop]:
        return db.query(Shop).filter(Shop.shop_domain == shop_domain).first()

    def get_or_create_shop(
        self,
        db: Session,
        shop_domain: str,
        access_token: Optional[str] = None,
    ) -> Shop:
        """Create the shop row or reactivate it; the token is only replaced when given."""
        existing = self.get_shop_by_domain(db, shop_domain)

        if existing:
            if access_token is not None:
                existing.access_token = access_token
            existing.active = True
            existing.updated_at = datetime.now(timezone.utc)
            db.commit()
            db.refresh(existing)
            return existing

        shop = Shop(shop_domain=shop_domain, active=True)
        if access_token is not None:
            shop.access_token = access_token
        db.add(shop)
        db.commit()
        db.refresh(shop)
        logger.info(f"Created shop record for {shop_domain}: {shop.id}")
        return shop

    def get_disputes(self, db: Session, shop_domain: str) -> List[Dispute]:
        """All disputes and chargebacks for the shop, newest first."""
        shop = self.get_or_create_shop(db, shop_domain)
        return (
            db.query(Dispute)
            .filter(Dispute.shop_id == shop.id)
            .order_by(Dispute.created_at.desc())
            .all()
        )

    def get_dispute_by_id(self, db: Session, dispute_id: str) -> Optional[Dispute]:
        return (
            db.query(Dispute)
            .options(selectinload(Dispute.shop), selectinload(Dispute.dispute_responses))
            .filter(Dispute.id == dispute_id)
            .first()
        )

    def get_latest_dispute_response(self, db: Session, dispute_id: str) -> Optional[DisputeResponse]:
        return (
            db.query(DisputeResponse)
            .filter(DisputeResponse.dispute_id == dispute_id)
            .order_by(DisputeResponse.created_at.desc())
            .first()
        )

    def create_dispute_response(
        self,
        db: Session,
        dispute: Dispute,
        draft_text: str,
        model_used: Optional[str] = None,
        is_final: bool = False,
    ) -> DisputeResponse:
        """Persist a new draft row; drafts are never edited in place."""
        response = DisputeResponse(
            dispute=dispute,
            shop_id=dispute.shop_id,
            draft_text=draft_text,
            model_used=model_used,
            is_final=is_final,
        )
        db.add(response)
        db.commit()
        db.refresh(response)
        logger.info(f"Saved dispute response {response.id} for dispute {dispute.id}")
        return response


shop_service = ShopService()
