import uuid
from datetime import datetime

from sqlalchemy import (
    Column, String, Numeric, Date, TIMESTAMP, Integer, Text, UniqueConstraint
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


# ------------- upstream reference data (read by the engine) -------------

class Tenant(Base):
    __tablename__ = "tenants"
    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    tier = Column(String(20), nullable=False, default="professional")
    created_at = Column(TIMESTAMP, default=datetime.utcnow)


class Product(Base):
    __tablename__ = "products"
    id = Column(String(64), primary_key=True)
    tenant_id = Column(String(64), nullable=False)
    sku = Column(String(100), nullable=False)
    name = Column(String(255), nullable=False)
    category = Column(String(100))
    vertical = Column(String(20), nullable=False, default="GENERAL")
    criticality = Column(String(20), nullable=False, default="standard")
    lead_time_days = Column(Integer, nullable=False, default=7)
    unit_cost = Column(Numeric(14, 4), nullable=False, default=0)
    unit_price = Column(Numeric(14, 4), nullable=False, default=0)
    holding_cost_rate = Column(Numeric(6, 4), nullable=False, default=0.25)
    current_stock = Column(Numeric(14, 3), nullable=False, default=0)
    days_to_maintenance = Column(Integer)
    __table_args__ = (
        UniqueConstraint("tenant_id", "sku", name="uq_product_tenant_sku"),
    )


class Sale(Base):
    __tablename__ = "sales"
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), nullable=False)
    product_id = Column(String(64), nullable=False)
    sale_date = Column(Date, nullable=False)
    quantity = Column(Numeric(14, 3), nullable=False)
    unit_price = Column(Numeric(14, 4), nullable=False, default=0)


# ------------- engine results (upserted) -------------

# 1) Demand Forecast
class DemandForecast(Base):
    __tablename__ = "demand_forecasts"
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id = Column(String(64), nullable=False)
    forecast_date = Column(Date, nullable=False)
    predicted_quantity = Column(Numeric(14, 3), nullable=False)
    confidence = Column(Numeric(6, 4), nullable=False)
    lower_bound = Column(Numeric(14, 3), nullable=False)
    upper_bound = Column(Numeric(14, 3), nullable=False)
    model_used = Column(String(50), nullable=False)
    model_version = Column(String(50), default="v1.0")
    generated_at = Column(TIMESTAMP, default=datetime.utcnow)
    __table_args__ = (
        UniqueConstraint(
            "product_id", "forecast_date", "model_version",
            name="uq_forecast_product_date_version"
        ),
    )


# 2) Inventory Recommendation
class InventoryRecommendation(Base):
    __tablename__ = "inventory_recommendations"
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id = Column(String(64), nullable=False)
    action = Column(String(20), nullable=False)
    quantity = Column(Integer)
    priority = Column(String(10), nullable=False)
    confidence = Column(Numeric(6, 4), nullable=False)
    reason = Column(Text)
    safety_stock = Column(Numeric(14, 3), nullable=False)
    reorder_point = Column(Numeric(14, 3), nullable=False)
    eoq = Column(Numeric(14, 3), nullable=False)
    stock_status = Column(String(20), nullable=False)
    inventory_health_score = Column(Numeric(6, 2), nullable=False)
    model_version = Column(String(50), nullable=False)
    generated_at = Column(TIMESTAMP, default=datetime.utcnow)
    __table_args__ = (
        UniqueConstraint("product_id", "model_version", name="uq_recommendation_product_version"),
    )


# 3) ABC Classification
class AbcClassification(Base):
    __tablename__ = "abc_classifications"
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id = Column(String(64), nullable=False)
    category = Column(String(1), nullable=False)
    annual_value = Column(Numeric(18, 2), nullable=False)
    cumulative_percentage = Column(Numeric(6, 2), nullable=False)
    model_version = Column(String(50), nullable=False)
    generated_at = Column(TIMESTAMP, default=datetime.utcnow)
    __table_args__ = (
        UniqueConstraint("product_id", "model_version", name="uq_abc_product_version"),
    )
