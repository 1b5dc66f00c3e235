"""Achievement engine for a personal series/movie watch tracker."""

__version__ = "0.1.0"
