class GeometryError(Exception):
    """Base class for errors of the geometry index service"""
    pass


class InvalidGeometry(GeometryError):
    """Raised when a value is not a well-formed supported geometry"""

    def __init__(self, message, value=None):
        """Constructor

        :param str message: Reason
        :param obj value: Offending input value
        """
        super().__init__(message)
        self.value = value


class InvalidQueryPredicate(GeometryError):
    """Raised when a geo filter cannot be normalized"""
    pass


class UnsupportedDialectOperation(GeometryError):
    """Raised when a predicate has no translation for a database dialect"""
    pass


class UnsupportedPredicate(UnsupportedDialectOperation):
    """Raised when an empty or contradictory predicate reaches the compiler"""
    pass


class SyncInconsistency(GeometryError):
    """Raised when stored geometry literals are not consistent"""

    def __init__(self, inconsistencies):
        """Constructor

        :param list[Inconsistency] inconsistencies: Problems found by check
        """
        super().__init__(
            "%d inconsistent geometry values" % len(inconsistencies)
        )
        self.inconsistencies = inconsistencies


class StorageFailure(GeometryError):
    """Raised when a database statement fails"""
    pass
