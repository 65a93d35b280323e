class ForecastEngineError(Exception):
    """Base class for errors surfaced to callers of the forecasting engine."""

    code = "INTERNAL_ERROR"
    status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"status": "error", "code": self.code, "message": self.message}


class ValidationError(ForecastEngineError):
    code = "INVALID_INPUT"
    status = 400


class NotFoundError(ForecastEngineError):
    code = "NOT_FOUND"
    status = 404


class ModelNotTrainedError(ForecastEngineError):
    """Raised when a vertical model was never trained; retraining happens out-of-band."""

    code = "MODEL_NOT_READY"
    status = 409


class UpstreamUnavailable(ForecastEngineError):
    """External signal fetch failed and no usable fallback exists."""

    code = "UPSTREAM_UNAVAILABLE"
    status = 503


class InternalEngineError(ForecastEngineError):
    code = "INTERNAL_ERROR"
    status = 500
