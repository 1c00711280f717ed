"""Domain exceptions."""


class SignalEngineError(Exception):
    """Base class for engine errors."""


class InvalidEntityError(SignalEngineError, ValueError):
    """An entity was constructed with values that break its invariants."""


class EntityNotFoundError(SignalEngineError):
    def __init__(self, entity, entity_id):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class LookupNotFoundError(SignalEngineError):
    def __init__(self, type_code, code):
        super().__init__(f"Lookup value '{code}' of type '{type_code}' not found")
        self.type_code = type_code
        self.code = code
