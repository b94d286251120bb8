# incidence_engine/errors.py


class IncidenceEngineError(Exception):
    """Base class for everything the incidence engine raises."""


class RegistryLookupError(IncidenceEngineError):
    def __init__(self, entity_id, kind, cause=None):
        self.entity_id = entity_id
        self.kind = kind
        self.cause = cause
        super().__init__(f"Registry lookup failed for {kind} {entity_id}: {cause}")


class ProtocolError(IncidenceEngineError):
    """Modem answered with something we could not make sense of."""


class DeviceProtocolError(IncidenceEngineError):
    """Modem explicitly rejected an SMS submission."""

    def __init__(self, code=None, message=None):
        self.code = code
        self.vendor_message = message
        if code is None and message is None:
            text = "Unknown error while sending SMS"
        else:
            text = f"SMS error - code: {code or 'unknown'}, message: {message or 'no message'}"
        super().__init__(text)


class ModemUnreachableError(IncidenceEngineError):
    pass


class RecorderError(IncidenceEngineError):
    pass


class EmailDeliveryError(IncidenceEngineError):
    pass


class DispatchError(IncidenceEngineError):
    """Alert sequence finished with at least one failed channel."""

    def __init__(self, detail, failures=None):
        self.detail = detail
        self.failures = failures or {}
        super().__init__(detail)
