from pydantic import BaseModel, ConfigDict, Field


class ProjectRules(BaseModel):
    slug: str = "eventlens"
    rules_version: str = "1"


class BucketRules(BaseModel):
    max_buckets: int = Field(default=2000, ge=1)
    default_granularity: str = "day"


class MetricRules(BaseModel):
    top_k: int = Field(default=10, ge=1)
    other_label: str = "other"
    missing_label: str = "(none)"
    default_metrics: list[str] = ["sessions", "pageviews", "users", "bounce_rate", "session_duration"]


class ConcurrencyRules(BaseModel):
    max_workers: int = Field(default=4, ge=1)
    session_batch_size: int = Field(default=500, ge=1)


class RetryRules(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    backoff_seconds: list[float] = [0.1, 0.5, 2.0]


class StorageRules(BaseModel):
    retry: RetryRules = RetryRules()


class PaginationRules(BaseModel):
    default_page_size: int = Field(default=25, ge=1)
    max_page_size: int = Field(default=100, ge=1)


class JourneyRules(BaseModel):
    default_steps: int = Field(default=3, ge=1)
    max_steps: int = Field(default=10, ge=1)
    default_limit: int = Field(default=100, ge=1)


class QueryRules(BaseModel):
    timeout_seconds: float | None = 30.0


class Rules(BaseModel):
    model_config = ConfigDict(extra="ignore")

    project: ProjectRules = ProjectRules()
    buckets: BucketRules = BucketRules()
    metrics: MetricRules = MetricRules()
    concurrency: ConcurrencyRules = ConcurrencyRules()
    storage: StorageRules = StorageRules()
    pagination: PaginationRules = PaginationRules()
    journeys: JourneyRules = JourneyRules()
    query: QueryRules = QueryRules()


DEFAULT_RULES = Rules()
