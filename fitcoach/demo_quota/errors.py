# fitcoach/demo_quota/errors.py


class DemoQuotaCoordinatorError(Exception):
    pass


class LoggingFailedError(DemoQuotaCoordinatorError):
    """The session logger rejected every attempt; the quota has been failed closed."""


class DeviceIdentityUnavailableError(DemoQuotaCoordinatorError):
    pass


class DeviceIdentityError(Exception):
    pass


class KeychainUnavailableError(DeviceIdentityError):
    """Secure local storage could not be read or written."""


class IdentityNetworkUnavailableError(DeviceIdentityError):
    pass


class UnableToGenerateIdentityError(DeviceIdentityError):
    """Stored identity exists but is not a valid UUID."""


class EvaluationError(Exception):
    pass


class EvaluationTimeoutError(EvaluationError):
    pass


class EvaluationNetworkError(EvaluationError):
    pass


class InvalidEvaluationResponseError(EvaluationError):
    pass


class SessionLoggingError(Exception):
    pass


class SnapshotSyncError(Exception):
    pass
