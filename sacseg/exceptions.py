class SegmentationError(Exception):
    """Base class for errors raised by sacseg."""


class PointCloudError(SegmentationError, ValueError):
    """The cloud does not have a layout we can read xyz from."""


class InitializationError(SegmentationError):
    """A processor was run before its inputs were set."""


class UnsupportedModelError(SegmentationError):
    def __init__(self, model, reason: str = ""):
        message = f"Unsupported model type: {model!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.model = model


class ModelNotFoundError(SegmentationError):
    def __init__(self, message: str, iterations: int = 0):
        super().__init__(message)
        self.iterations = iterations


class UnsupportedMethodError(SegmentationError):
    def __init__(self, method):
        super().__init__(f"Unsupported sample consensus method: {method!r}")
        self.method = method
