class MessagingError(Exception):
    """Base class for WhatsApp channel failures.

    The instance manager hands these back as values on its results; only the
    send path raises them.
    """

    code = 'messaging_error'

    def __init__(self, message: str = ''):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return self.message or self.code

class NotConfigured(MessagingError):
    """Provider credentials or the shop's instance are missing."""

    code = 'not_configured'

class Conflict(MessagingError):
    """The shop already owns a messaging instance."""

    code = 'conflict'

class RemoteTransportError(MessagingError):
    """Network failure or timeout talking to the provider."""

    code = 'remote_transport'

class RemoteProtocolError(MessagingError):
    """The provider answered with an error or an unexpected body."""

    code = 'remote_protocol'
