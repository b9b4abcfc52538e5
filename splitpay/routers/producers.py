"""Producer and product catalogue endpoints."""
from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from splitpay.db import get_db
from splitpay.models import Producer, Product
from splitpay.schemas.producer import ProducerCreate, ProducerRead, ProductCreate, ProductRead
from splitpay.utils.errors import ProducerNotFound

router = APIRouter(prefix="/producers", tags=["producers"])


def _get_producer(db: Session, producer_id: int) -> Producer:
    producer = db.get(Producer, producer_id)
    if producer is None:
        raise ProducerNotFound(f"Producer {producer_id} not found.")
    return producer


@router.post("", response_model=ProducerRead, status_code=status.HTTP_201_CREATED)
def create_producer(payload: ProducerCreate, db: Session = Depends(get_db)) -> Producer:
    producer = Producer(**payload.model_dump())
    db.add(producer)
    db.commit()
    db.refresh(producer)
    return producer


@router.get("/{producer_id}", response_model=ProducerRead)
def get_producer(producer_id: int, db: Session = Depends(get_db)) -> Producer:
    return _get_producer(db, producer_id)


@router.post("/{producer_id}/products", response_model=ProductRead, status_code=status.HTTP_201_CREATED)
def create_product(producer_id: int, payload: ProductCreate, db: Session = Depends(get_db)) -> Product:
    producer = _get_producer(db, producer_id)
    product = Product(producer_id=producer.id, **payload.model_dump())
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


@router.get("/{producer_id}/products", response_model=list[ProductRead])
def list_products(producer_id: int, db: Session = Depends(get_db)) -> list[Product]:
    _get_producer(db, producer_id)
    stmt = select(Product).where(Product.producer_id == producer_id).order_by(Product.id)
    return list(db.execute(stmt).scalars())


__all__ = ["router"]
