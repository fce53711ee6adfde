class AxedashError(Exception):
    pass


class ConfigError(AxedashError):
    pass


class ConfigNotFound(ConfigError):
    pass


class ConfigParseError(ConfigError):
    pass


class ConfigIOError(ConfigError):
    pass


class PeerError(AxedashError):
    """A single remote peer could not be queried. Never fatal to a batch."""


class PeerUnreachable(PeerError):
    pass


class PeerBadStatus(PeerError):
    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class PeerBadPayload(PeerError):
    pass


class SchedulerError(AxedashError):
    pass


class SchedulerAlreadyRunning(SchedulerError):
    pass


class SchedulerNotRunning(SchedulerError):
    pass


class SinkWriteError(AxedashError):
    pass


class AuthError(AxedashError):
    pass
