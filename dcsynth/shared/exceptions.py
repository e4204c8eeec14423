"""Custom exceptions for the NeuroSynth DCS pipeline."""


class DCSynthException(Exception):
    """Base exception for all pipeline errors."""
    pass


# Input

class InputError(DCSynthException):
    """Empty or invalid notes. Fails fast with no partial result."""
    pass


# LLM adapter (recovered locally, extraction degrades to pattern-only)

class AdapterError(DCSynthException):
    """Base exception for LLM adapter failures."""
    pass


class LLMTimeoutError(AdapterError):
    """LLM call exceeded its deadline."""
    pass


class LLMUnavailableError(AdapterError):
    """Provider unreachable, unconfigured, or circuit open."""
    pass


class LLMResponseFormatError(AdapterError):
    """LLM responded but the payload could not be parsed into the schema."""
    pass


class LLMParsingError(DCSynthException):
    """Raised when LLM output cannot be parsed."""
    pass


# Non-fatal pipeline errors

class ValidationError(DCSynthException):
    """Record validation error (surfaced as warning, never raised past the validator)."""
    pass


class IntelligenceBuildError(DCSynthException):
    """Error while building the clinical intelligence bundle."""
    pass


# Configuration

class ConfigurationError(DCSynthException):
    """Error in configuration."""
    pass


class PatternStoreError(ConfigurationError):
    """Learned pattern definitions could not be loaded."""
    pass
