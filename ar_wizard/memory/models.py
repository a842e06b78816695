"""TypedDict models for knowledge store records."""

from typing import Any, Literal, TypedDict

ExpertiseKind = Literal["sql-procedure", "business-rule", "schema-knowledge", "billing-pattern"]
ExpertiseDomain = Literal["job-billing", "job-costing", "contract-management", "change-orders", "wip-analysis"]
KnowledgeCategory = Literal["predictive-model", "billing-rule", "integration-pattern", "test-case"]
DatabaseName = Literal["kls", "gbi", "taft", "ideal"]
AnalysisKind = Literal["data-quality", "performance", "pattern-recognition", "schema-analysis"]
ModelType = Literal["billing-prediction", "cost-analysis", "wip-calculation", "pattern-recognition"]


class ExpertiseRecord(TypedDict):
    id: str
    kind: ExpertiseKind
    domain: ExpertiseDomain
    content: Any
    confidence: float  # 0..1
    last_updated: str  # ISO 8601
    source: str
    validated: bool
    usage_count: int


class KnowledgePerformance(TypedDict):
    execution_time: float
    memory_usage: float
    success_rate: float


class KnowledgeRecord(TypedDict):
    id: str
    category: KnowledgeCategory
    description: str
    implementation: Any
    accuracy: float | None
    performance: KnowledgePerformance | None
    dependencies: list[str]
    created_at: str  # ISO 8601
    last_used: str  # ISO 8601


class AnalysisMetrics(TypedDict):
    data_volume: float
    quality_score: float
    performance_score: float
    completeness_score: float


class AnalysisRecord(TypedDict):
    id: str
    database: DatabaseName
    analysis_kind: AnalysisKind
    results: Any
    metrics: AnalysisMetrics
    recommendations: list[str]
    analyzed_at: str  # ISO 8601
    valid_until: str  # ISO 8601


class DateRange(TypedDict):
    start: str  # ISO 8601
    end: str  # ISO 8601


class TrainingData(TypedDict):
    source: str
    size: int
    date_range: DateRange


class ModelPerformance(TypedDict):
    accuracy: float
    precision: float
    recall: float
    f1_score: float


class PredictiveModelRecord(TypedDict):
    id: str
    name: str
    type: ModelType
    algorithm: str
    features: list[str]
    training_data: TrainingData
    performance: ModelPerformance
    model: Any  # Serialized model
    version: str
    trained_at: str  # ISO 8601
    last_validated: str  # ISO 8601


class SharedContextEntry(TypedDict):
    key: str
    data: Any
    timestamp: str  # ISO 8601
    ttl: int  # milliseconds


class KnowledgeSnapshot(TypedDict):
    viewpoint_expertise: list[ExpertiseRecord]
    ar_wizard_knowledge: list[KnowledgeRecord]
    database_analyses: list[AnalysisRecord]
    predictive_models: list[PredictiveModelRecord]
    exported_at: str  # ISO 8601
