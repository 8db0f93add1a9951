from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional, Union

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field

from evotrace.models.enums import MetricKey

MetricValue = Union[int, float]


class Commit(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    hash: str
    date: AwareDatetime


class Release(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    version_id: str
    name: str
    date: datetime


class File(BaseModel):
    """A file in the tree at some commit, plus the metrics computed for it."""

    model_config = ConfigDict(extra="forbid")

    path: str
    blob_hash: str
    metadata: Dict[MetricKey, MetricValue] = Field(default_factory=dict)
    # Metrics left unset because they are undefined for this file, with the reason.
    flagged: Dict[MetricKey, str] = Field(default_factory=dict)

    def set_metric(self, key: MetricKey, value: MetricValue) -> None:
        self.metadata[key] = value

    def get_metric(self, key: MetricKey) -> Optional[MetricValue]:
        return self.metadata.get(key)

    def require_metric(self, key: MetricKey) -> MetricValue:
        if key not in self.metadata:
            raise KeyError(f"{key.value} has not been computed for {self.path}")
        return self.metadata[key]

    def flag_metric(self, key: MetricKey, reason: str) -> None:
        self.metadata.pop(key, None)
        self.flagged[key] = reason

    def clear_metrics(self) -> None:
        self.metadata.clear()
        self.flagged.clear()
