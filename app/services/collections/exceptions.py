class AnchorRunError(Exception):
    """Base class for anchor engine failures."""


class AnchorRunInputError(AnchorRunError):
    """The invocation itself is malformed; nothing was processed."""


class FxRateError(AnchorRunError):
    def __init__(self, date_key: str, message: str):
        super().__init__(message)
        self.date_key = date_key


class MissingFxRateError(FxRateError):
    def __init__(self, date_key: str, fx_type: str = "dolar_bsp"):
        super().__init__(date_key, f"Missing {fx_type} rate for {date_key}")


class NoFxRateAvailableError(FxRateError):
    def __init__(self, date_key: str, fx_type: str = "dolar_bsp"):
        super().__init__(date_key, f"No {fx_type} rate available on or before {date_key}")


class AnchorTransactionTimeoutError(AnchorRunError):
    def __init__(self, elapsed_ms: int, timeout_ms: int):
        super().__init__(
            f"Anchor transaction exceeded {timeout_ms} ms (elapsed {elapsed_ms} ms)"
        )
        self.elapsed_ms = elapsed_ms
        self.timeout_ms = timeout_ms
