"""
Stream Events
=============

Names of the events a StreamController emits.

Payloads:
    START  - none
    STOP   - none
    DATA   - Frame (a bytes subclass: the raw JPEG bytes plus index/timestamp)
    EXIT   - int return code of a decoder that exited on its own
    ERROR  - StreamError raised in a background task
"""

from enum import Enum


class StreamEvent(str, Enum):
    """Event names accepted by StreamController.on/off/emit."""

    START = "start"
    STOP = "stop"
    DATA = "data"
    EXIT = "exit"
    ERROR = "error"
