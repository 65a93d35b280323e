MODEL_VERSION = "v1.0"
DEFAULT_FORECAST_DAYS = 30
HISTORY_LOOKBACK_DAYS = 365
MIN_TS_POINTS = 3  # minimum daily points for lifecycle detection and backtests

# Standard-normal quantiles for the supported service levels (exact lookup, no interpolation)
Z_SCORES = {
    0.80: 0.84,
    0.85: 1.04,
    0.90: 1.28,
    0.95: 1.65,
    0.99: 2.33,
}
DEFAULT_Z = 1.28  # 90% service level
LEAD_TIME_VARIABILITY_RATIO = 0.1
FULL_CONFIDENCE_POINTS = 14

# Ensemble priors; re-estimated by the retraining pass
ENSEMBLE_PRIORS = {
    "temporal": 0.35,
    "external": 0.25,
    "product": 0.25,
    "market": 0.15,
}
META_LEARNING_RATE = 0.001
OPTIMIZATION_EPOCHS = 50
CV_FOLDS = 5
HIGH_ACCURACY = 0.85
MEDIUM_ACCURACY = 0.75

CONFIDENCE_FLOOR = 0.5
CONFIDENCE_CEILING = 0.95
CONFIDENCE_DECAY = 0.3
BAND_MIN = 0.10
BAND_MAX = 0.15

# Tier-derived forecast horizon limits (days)
TIER_HORIZON_LIMITS = {
    "starter": 30,
    "professional": 90,
    "enterprise": 365,
}
DEFAULT_TIER = "professional"
