"""Job-level failures; each one routes the job to failure persistence."""


class EnrichmentError(Exception):
    """Base class for enrichment job failures."""


class MissingReadmeError(EnrichmentError):
    def __init__(self, identifier: str) -> None:
        super().__init__(f"No README available for {identifier}")


class PhaseFailedError(EnrichmentError):
    def __init__(self, phase: str, reason: str) -> None:
        super().__init__(f"{phase} phase failed: {reason}")
        self.phase = phase
        self.reason = reason


class ValidationGateError(EnrichmentError):
    def __init__(self) -> None:
        super().__init__("AI validation failed: no summary, tech stack or skills produced")
