"""Exception hierarchy shared by the analyzer and the sqlglot host adapter."""


class LineageError(Exception):
    """Base class for every error raised while computing lineage."""


class PlanShapeError(LineageError):
    """A node is missing a field the lineage rules for its kind depend on."""


class ExtractionFailure(LineageError):
    """Traversal hit a plan it cannot reason about."""


class PlanDepthError(ExtractionFailure):
    def __init__(self, depth: int, limit: int):
        super().__init__(f"plan depth {depth} exceeds the configured limit of {limit}")
        self.depth = depth
        self.limit = limit


class AnalysisError(LineageError):
    """SQL text could not be resolved into a logical plan."""
