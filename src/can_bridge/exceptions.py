class CanBridgeError(Exception):
    pass


class FormatError(CanBridgeError):
    def __init__(self, text: str, reason: str) -> None:
        super().__init__(f"invalid frame text {text!r}: {reason}")
        self.text = text
        self.reason = reason


class ConfigError(CanBridgeError):
    pass


class SendError(CanBridgeError):
    """Writing to the client connection failed; the client is gone."""


class DeviceError(CanBridgeError):
    def __init__(self, device: str, reason: str) -> None:
        super().__init__(f"{device}: {reason}")
        self.device = device
        self.reason = reason


class OpenError(DeviceError):
    pass


class ReadError(DeviceError):
    pass


class WriteError(DeviceError):
    pass
