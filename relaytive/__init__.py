"""RelayTive: on-device continual learning of a speaker's personal vocabulary"""

__version__ = "0.1.0"
