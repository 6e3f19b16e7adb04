"""Failure kinds of the prompt-to-chart pipeline.

Each carries the HTTP status it maps to; the message is surfaced verbatim as
``{"error": message}``.
"""


class ChartPipelineError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequest(ChartPipelineError):
    status_code = 400


class InvalidGeneratedQuery(ChartPipelineError):
    """The model's output failed a structural or intent rule."""
    status_code = 400


class QueryExecutionFailed(ChartPipelineError):
    status_code = 400


class EmptyResult(ChartPipelineError):
    status_code = 400


class PinnedChartNotFound(ChartPipelineError):
    status_code = 404


class NoChartableData(ChartPipelineError):
    """No label/value pair could be derived from an otherwise valid result."""
    status_code = 500


class UpstreamUnavailable(ChartPipelineError):
    status_code = 503
