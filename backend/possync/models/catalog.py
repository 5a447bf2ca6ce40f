from __future__ import annotations

from ..extensions import db


class CachedProduct(db.Model):
    """
    Product snapshot pulled from the ledger for offline selling.

    Mutated by reference-data refresh. The sale path only reads it, except
    cost_price which is rewritten after cost reconciliation.
    """
    __tablename__ = "products"
    __store_indexes__ = ("barcode", "category_id", "name")

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    barcode = db.Column(db.String(128), nullable=True, index=True)
    sku = db.Column(db.String(128), nullable=True)
    category_id = db.Column(db.String(64), nullable=True, index=True)
    description = db.Column(db.Text, nullable=True)
    cost_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    wholesale_price = db.Column(db.Numeric(12, 2), nullable=True)
    image_url = db.Column(db.String(512), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    updated_at = db.Column(db.String(40), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "barcode": self.barcode,
            "sku": self.sku,
            "category_id": self.category_id,
            "description": self.description,
            "cost_price": float(self.cost_price or 0),
            "price": float(self.price or 0),
            "wholesale_price": float(self.wholesale_price) if self.wholesale_price is not None else None,
            "image_url": self.image_url,
            "is_active": self.is_active,
            "updated_at": self.updated_at,
        }


class CachedInventory(db.Model):
    """
    Branch-scoped stock snapshot.

    Keyed by the (product_id, branch_id) pair because stock lives per branch.
    quantity may go negative while offline; the ledger resolves it at sync.

    Invariant: quantity == ledger quantity at last refresh + net delta of
    every queued sale that has not reached the ledger yet.
    """
    __tablename__ = "inventory"
    __store_indexes__ = ("product_id", "branch_id")

    product_id = db.Column(db.String(64), primary_key=True)
    branch_id = db.Column(db.String(64), primary_key=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.String(40), nullable=True)

    __table_args__ = (
        db.Index("ix_inventory_product", "product_id"),
        db.Index("ix_inventory_branch", "branch_id"),
    )

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "quantity": self.quantity,
            "updated_at": self.updated_at,
        }


class CachedBranch(db.Model):
    __tablename__ = "branches"
    __store_indexes__ = ()

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "is_active": self.is_active}


class CachedCategory(db.Model):
    __tablename__ = "categories"
    __store_indexes__ = ("parent_id",)

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    parent_id = db.Column(db.String(64), nullable=True, index=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "parent_id": self.parent_id}


class CachedCustomer(db.Model):
    __tablename__ = "customers"
    __store_indexes__ = ("phone", "name")

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    phone = db.Column(db.String(64), nullable=True, index=True)
    email = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "phone": self.phone, "email": self.email}


class CachedRecord(db.Model):
    """A record is a safe / till that sale proceeds are posted against."""
    __tablename__ = "records"
    __store_indexes__ = ("branch_id",)

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    branch_id = db.Column(db.String(64), nullable=True, index=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "branch_id": self.branch_id}


class CachedPaymentMethod(db.Model):
    __tablename__ = "payment_methods"
    __store_indexes__ = ()

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "is_active": self.is_active}
