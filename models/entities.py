from dataclasses import asdict, dataclass, field
from datetime import date
from enum import Enum


class Vertical(str, Enum):
    INDUSTRIAL = "INDUSTRIAL"
    APPAREL = "APPAREL"
    GENERAL = "GENERAL"

    @classmethod
    def parse(cls, value, default=None):
        if value is None or value == "":
            return default if default is not None else cls.GENERAL
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ValueError(f"Unknown vertical: {value}")


class Criticality(str, Enum):
    CRITICAL = "critical"
    IMPORTANT = "important"
    STANDARD = "standard"


class LifecycleStage(str, Enum):
    INTRODUCTION = "introduction"
    GROWTH = "growth"
    MATURITY = "maturity"
    DECLINE = "decline"


class Action(str, Enum):
    REORDER = "REORDER"
    REDUCE = "REDUCE"
    MAINTAIN = "MAINTAIN"
    PROMOTE = "PROMOTE"
    DISCONTINUE = "DISCONTINUE"


class Priority(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class AbcCategory(str, Enum):
    A = "A"
    B = "B"
    C = "C"


@dataclass(frozen=True)
class SalesObservation:
    date: date
    quantity: float
    unit_price: float = 0.0


@dataclass(frozen=True)
class Product:
    id: str
    vertical: Vertical = Vertical.GENERAL
    lead_time_days: int = 7
    criticality: Criticality = Criticality.STANDARD
    unit_cost: float = 0.0
    holding_cost_rate: float = 0.25
    unit_price: float = 0.0
    sku: str = ""
    name: str = ""
    category: str = ""
    current_stock: float = 0.0
    days_to_maintenance: int | None = None
    tier: str = "professional"

    @property
    def holding_cost(self) -> float:
        """Annual holding cost per unit."""
        return self.unit_cost * self.holding_cost_rate


@dataclass(frozen=True)
class ExternalFactorSnapshot:
    date: date
    temperature: float = 20.0
    precipitation: float = 0.0
    humidity: float = 65.0
    gdp_growth: float = 2.5
    inflation: float = 3.2
    unemployment: float = 4.1
    search_interest: float = 50.0
    sentiment: float = 0.1
    degraded: bool = False

    def to_dict(self):
        data = asdict(self)
        data["date"] = self.date.isoformat()
        return data


@dataclass(frozen=True)
class ForecastPoint:
    date: date
    predicted_quantity: float
    confidence: float
    lower_bound: float
    upper_bound: float

    def to_dict(self):
        return {
            "date": self.date.isoformat(),
            "predicted_quantity": round(self.predicted_quantity, 3),
            "confidence": round(self.confidence, 4),
            "lower_bound": round(self.lower_bound, 3),
            "upper_bound": round(self.upper_bound, 3),
        }


@dataclass(frozen=True)
class ModelAccuracy:
    r2: float = 0.0
    mape: float = 0.0
    mae: float = 0.0
    rmse: float = 0.0
    accuracy: float = 0.0

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class OptimizationRecommendation:
    action: Action
    priority: Priority
    confidence: float
    reason: str
    quantity: int | None = None
    expected_impact: dict = field(default_factory=dict)
    metrics: dict = field(default_factory=dict)

    def to_dict(self):
        return {
            "action": self.action.value,
            "quantity": self.quantity,
            "priority": self.priority.value,
            "confidence": round(self.confidence, 4),
            "reason": self.reason,
            "expected_impact": dict(self.expected_impact),
            "metrics": dict(self.metrics),
        }
