from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from .. import models, schemas
from ..database import session_scope
from ..errors import Conflict, NotFound
from ..utils.logging import get_logger

logger = get_logger(__name__)


class ProductService:
    def __init__(self, session_factory, notifications):
        self.session_factory = session_factory
        self.notifications = notifications

    def _get(self, db: Session, product_id, lock: bool = False) -> models.Product:
        query = db.query(models.Product).filter(models.Product.id == product_id)
        if lock:
            query = query.with_for_update()
        product = query.one_or_none()
        if product is None:
            raise NotFound(f"Product with ID {product_id} not found")
        return product

    def create(self, data: schemas.ProductCreate) -> schemas.ProductOut:
        with session_scope(self.session_factory) as db:
            if db.query(models.Product).filter(models.Product.sku == data.sku).first():
                raise Conflict(f"Product with SKU {data.sku} already exists")
            product = models.Product(**data.model_dump())
            db.add(product)
            db.flush()
            return schemas.ProductOut.model_validate(product)

    def find_all(
        self,
        page: int = 1,
        page_size: int = 10,
        search: Optional[str] = None,
        low_stock: bool = False,
    ) -> schemas.ProductPage:
        with session_scope(self.session_factory) as db:
            query = db.query(models.Product).filter(models.Product.is_active.is_(True))
            if search:
                pattern = f"%{search}%"
                query = query.filter(or_(models.Product.name.ilike(pattern), models.Product.sku.ilike(pattern)))
            if low_stock:
                query = query.filter(models.Product.stock_quantity <= models.Product.low_stock_threshold)
            total = query.count()
            products = query.order_by(models.Product.name).offset((page - 1) * page_size).limit(page_size).all()
            return schemas.ProductPage(
                data=[schemas.ProductOut.model_validate(p) for p in products],
                meta=schemas.page_meta(total, page, page_size),
            )

    def find_by_id(self, product_id) -> schemas.ProductOut:
        with session_scope(self.session_factory) as db:
            return schemas.ProductOut.model_validate(self._get(db, product_id))

    def update(self, product_id, data: schemas.ProductUpdate) -> schemas.ProductOut:
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        with session_scope(self.session_factory) as db:
            product = self._get(db, product_id)
            new_sku = changes.get("sku")
            if new_sku and new_sku != product.sku:
                if db.query(models.Product).filter(models.Product.sku == new_sku).first():
                    raise Conflict(f"Product with SKU {new_sku} already exists")
            for field, value in changes.items():
                setattr(product, field, value)
            db.flush()
            logger.info("Product updated", sku=product.sku, fields=sorted(changes))
            return schemas.ProductOut.model_validate(product)

    def update_stock(self, product_id, quantity: int, operation: str) -> schemas.ProductOut:
        """Adjust stock under a row lock and append the change to the inventory log."""
        with session_scope(self.session_factory) as db:
            product = self._get(db, product_id, lock=True)
            if operation == "add":
                change = quantity
            elif operation == "subtract":
                change = -min(quantity, product.stock_quantity)
            elif operation == "set":
                change = quantity - product.stock_quantity
            else:
                raise ValueError(f"Unknown stock operation: {operation}")

            product.stock_quantity += change
            db.add(models.InventoryLog(
                product_id=product.id,
                quantity_change=change,
                reason=f"Stock {operation}: {quantity} units",
            ))
            db.flush()
            logger.info("Stock adjusted", sku=product.sku, operation=operation, change=change, stock=product.stock_quantity)
            return schemas.ProductOut.model_validate(product)

    def delete(self, product_id) -> schemas.MessageOut:
        """Products are deactivated, never removed; order lines keep referencing them."""
        with session_scope(self.session_factory) as db:
            product = self._get(db, product_id)
            product.is_active = False
        return schemas.MessageOut(message="Product deleted successfully")

    def check_low_stock(self) -> int:
        """Emit one low-stock notification per active product at or below its threshold."""
        with session_scope(self.session_factory) as db:
            rows = (
                db.query(
                    models.Product.id,
                    models.Product.name,
                    models.Product.stock_quantity,
                    models.Product.low_stock_threshold,
                )
                .filter(
                    models.Product.is_active.is_(True),
                    models.Product.stock_quantity <= models.Product.low_stock_threshold,
                )
                .all()
            )
        for product_id, name, stock, threshold in rows:
            self.notifications.low_stock(product_id, name, stock, threshold)
        if rows:
            logger.info("Found products with low stock", count=len(rows))
        return len(rows)
