from datetime import datetime
from sqlalchemy.orm import relationship, validates
from extensions import db

# --------------------------------
# Warehouses
# --------------------------------
class Warehouse(db.Model):
    __tablename__ = "warehouses"
    __table_args__ = {"extend_existing": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), unique=True, nullable=False)
    department_name = db.Column(db.String(80), nullable=True, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<Warehouse id={self.id} name={self.name!r} dept={self.department_name!r}>"


class _StockMovementMixin:
    """Columns shared by stock-in and stock-out records."""

    id = db.Column(db.Integer, primary_key=True)
    material_code = db.Column(db.String(80), nullable=False, index=True)
    description   = db.Column(db.String(255))
    scheme        = db.Column(db.String(120), index=True)   # scheme or PO number
    quantity      = db.Column(db.Float, nullable=False, default=0)
    unit          = db.Column(db.String(32))
    date          = db.Column(db.Date, nullable=True, index=True)
    notes         = db.Column(db.String(500))
    is_active     = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_by    = db.Column(db.String(80))
    created_at    = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at    = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @validates("quantity")
    def _validate_quantity(self, key, value):
        try:
            q = float(value or 0)
        except (TypeError, ValueError):
            q = 0.0
        return max(0.0, q)

    @validates("material_code")
    def _validate_code(self, key, value):
        return (value or "").strip()


# --------------------------------
# Stock in (received)
# --------------------------------
class StockInRecord(_StockMovementMixin, db.Model):
    __tablename__ = "stock_in"
    __table_args__ = {"extend_existing": True}

    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    warehouse = relationship("Warehouse", lazy="joined")

    def __repr__(self):
        return f"<StockIn id={self.id} code={self.material_code} qty={self.quantity} on={self.date}>"


# --------------------------------
# Stock out (issued)
# --------------------------------
class StockOutRecord(_StockMovementMixin, db.Model):
    __tablename__ = "stock_out"
    __table_args__ = {"extend_existing": True}

    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    warehouse = relationship("Warehouse", lazy="joined")

    def __repr__(self):
        return f"<StockOut id={self.id} code={self.material_code} qty={self.quantity} on={self.date}>"
