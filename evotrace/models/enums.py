from __future__ import annotations

from enum import Enum


class MetricKey(str, Enum):
    NUMBER_OF_REVISIONS = "NUMBER_OF_REVISIONS"
    AVERAGE_CHANGE_SET_SIZE = "AVERAGE_CHANGE_SET_SIZE"
    MAX_CHANGE_SET_SIZE = "MAX_CHANGE_SET_SIZE"
    LOC = "LOC"
    LOC_ADDED = "LOC_ADDED"
    MAX_LOC_ADDED = "MAX_LOC_ADDED"
    AVERAGE_LOC_ADDED = "AVERAGE_LOC_ADDED"
    LOC_TOUCHED = "LOC_TOUCHED"
    CHURN = "CHURN"
    MAX_CHURN = "MAX_CHURN"
    AVERAGE_CHURN = "AVERAGE_CHURN"
    AGE_IN_WEEKS = "AGE_IN_WEEKS"
    WEIGHTED_AGE_IN_WEEKS = "WEIGHTED_AGE_IN_WEEKS"
    NUMBER_OF_AUTHORS = "NUMBER_OF_AUTHORS"


class FailureKind(str, Enum):
    MALFORMED_OUTPUT = "malformed_output"
    DEGENERATE_METRIC = "degenerate_metric"
