"""web-adb - bridge a browser extension to the Android Debug Bridge."""

__version__ = "0.1.0"
