from fastapi import Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.services.pricing import PricingSnapshot, pricing_provider


def get_pricing(db: Session = Depends(get_db)) -> PricingSnapshot:
    return pricing_provider.get(db)
