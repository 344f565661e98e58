from __future__ import annotations


class TextServiceError(RuntimeError):
    """Raised when the Bedrock text service fails or times out."""


class MalformedCommandError(ValueError):
    pass


class NoActiveMeetingError(RuntimeError):
    def __init__(self, command_type: str):
        super().__init__(f"No active meeting for command '{command_type}'")
        self.command_type = command_type


class RegistryClosedError(RuntimeError):
    pass
